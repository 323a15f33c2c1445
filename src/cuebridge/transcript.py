# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Handling of the recognizer's transcript stream.

Recognizers report the full text of the current utterance over and over,
revising interim results as they go, and finish with a final result. The
engine needs each spoken word exactly once, in order, so this module keeps
track of how much of the current utterance has already been consumed.
"""

import time
from dataclasses import dataclass, field

from .script_parser import normalize_word


@dataclass(frozen=True)
class TranscriptEvent:
    """An interim or final recognizer result for the current utterance."""
    text: str
    is_final: bool = False
    timestamp: float = field(default_factory=time.monotonic)


def spoken_words(text: str) -> list[str]:
    """Split transcript text into words, dropping punctuation-only tokens."""
    return [w for w in text.split() if normalize_word(w)]


class UtteranceTracker:
    """Tracks which words of the current utterance have been consumed."""

    def __init__(self) -> None:
        self.consumed: int = 0
        self.last_interim_text: str = ""

    def pending_words(self, text: str) -> list[str]:
        """
        Words of `text` not yet consumed for this utterance.

        The text is treated as the whole utterance so far; words before the
        consumed count are never handed out again, even if the recognizer has
        revised them since.
        """
        return spoken_words(text)[self.consumed:]

    def mark_consumed(self, count: int) -> None:
        """Record that `count` more words were consumed."""
        self.consumed += count

    def close(self) -> None:
        """End the current utterance (after a final result)."""
        self.consumed = 0
        self.last_interim_text = ""


class RecentSpeechBuffer:
    """Rolling buffer of recently finalised speech, trimmed to whole words."""

    def __init__(self, max_chars: int = 200) -> None:
        self.max_chars: int = max_chars
        self._text: str = ""

    @property
    def text(self) -> str:
        return self._text

    def append(self, text: str) -> None:
        """Add a final transcript, dropping the oldest words beyond max_chars."""
        text = ' '.join(text.split())
        if not text:
            return
        combined: str = f"{self._text} {text}".strip()
        if len(combined) > self.max_chars:
            combined = combined[-self.max_chars:]
            # Don't start with a cut-off word
            space: int = combined.find(' ')
            if space != -1:
                combined = combined[space + 1:]
        self._text = combined

    def clear(self) -> None:
        self._text = ""
