"""
cuebridge - Live speech-to-script alignment with gap reconstruction.

Follows a presenter's speech through a prepared script, notices passages
they skipped, and offers a short bridging sentence to cover them.
"""

__version__ = "0.1.0"

from .engine import AlignmentEngine, EngineSnapshot
from .generation import GeminiClient, GenerationClient, GenerationResult
from .matcher import SequentialMatcher, compare_speech
from .reconstruction import reconstruct_script
from .script_parser import ReferenceScript, normalize_word
from .server import WebServer
from .similarity import similarity
from .transcript import TranscriptEvent

__all__ = [
    "AlignmentEngine",
    "EngineSnapshot",
    "GeminiClient",
    "GenerationClient",
    "GenerationResult",
    "ReferenceScript",
    "SequentialMatcher",
    "TranscriptEvent",
    "WebServer",
    "compare_speech",
    "normalize_word",
    "reconstruct_script",
    "similarity",
]
