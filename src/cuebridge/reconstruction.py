# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Reconstruction requests: the context sent to the generation service when the
speaker has skipped part of the script, and the prompt built from it.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from .generation import SKIP_MARKER, GenerationClient, GenerationResult
from .script_parser import ReferenceScript

logger = logging.getLogger(__name__)

# Characters of script context sent on either side of the cursor
DEFAULT_CONTEXT_CHARS: int = 300

# Spans included in one request
DEFAULT_MAX_SPANS: int = 5

DEFAULT_TEMPERATURE: float = 0.4
DEFAULT_MAX_OUTPUT_TOKENS: int = 100

BRIDGE_PROMPT_TEMPLATE: str = """\
You are assisting a presenter who is reading a prepared script from a teleprompter.
While speaking, the presenter skipped part of the script.

Write ONE short sentence (roughly 30 to 50 characters) that the presenter can say
next, in the first person, to weave the skipped content naturally into what comes next.

Rules:
- Use the same language and speaking tone as the script.
- Do not apologise, and do not mention skipping, forgetting or correcting anything.
- Output only the sentence itself, without quotes or explanations.
- If the skipped content is already covered by what was said, or no natural bridge
  is possible, output exactly {skip_marker}

[Skipped content]
{skipped_text}

[Script just before the current position]
{previous_context}

[Script from the current position]
{current_context}

[Recently spoken]
{recent_speech}
"""


@dataclass(frozen=True)
class ReconstructionRequest:
    """Snapshot of engine state at the moment a reconstruction is requested."""
    skipped_text: str
    current_context: str
    previous_context: str
    issued_at_cursor: int  # Cursor character offset when issued
    gap_end_offset: int  # Character offset where the furthest skipped span ends
    script_version: int
    recent_speech: str = ""


@dataclass(frozen=True)
class ReconstructionResponse:
    """Result of the stateless reconstruction interface."""
    reconstructed: str
    skipped: bool

    def to_dict(self) -> dict[str, Any]:
        return {"reconstructed": self.reconstructed, "skipped": self.skipped}


def extract_context(
    text: str,
    offset: int,
    context_chars: int = DEFAULT_CONTEXT_CHARS
) -> tuple[str, str]:
    """
    Script text either side of a character offset.

    Returns:
        Tuple of (previous_context, current_context): up to `context_chars`
        characters before the offset, and up to `context_chars` from it
    """
    offset = max(0, min(offset, len(text)))
    previous: str = text[max(0, offset - context_chars):offset]
    current: str = text[offset:offset + context_chars]
    return previous, current


def build_bridge_prompt(request: ReconstructionRequest) -> str:
    """Build the generation prompt for a reconstruction request."""
    return BRIDGE_PROMPT_TEMPLATE.format(
        skip_marker=SKIP_MARKER,
        skipped_text=request.skipped_text.strip() or "(none)",
        previous_context=request.previous_context.strip() or "(start of script)",
        current_context=request.current_context.strip() or "(end of script)",
        recent_speech=request.recent_speech.strip() or "(nothing yet)",
    )


async def reconstruct_script(
    script: str,
    skipped_ranges: Sequence[tuple[int, int]],
    current_index: int,
    client: GenerationClient,
    context_chars: int = DEFAULT_CONTEXT_CHARS,
    max_spans: int = DEFAULT_MAX_SPANS,
    temperature: float = DEFAULT_TEMPERATURE,
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
) -> ReconstructionResponse:
    """
    Stateless reconstruction: ask for a bridge sentence covering skipped ranges.

    Args:
        script: The full script text
        skipped_ranges: Character ranges (start, end) the speaker skipped;
            clamped to the script, empty ranges ignored
        current_index: Character offset of the speaker's current position
        client: Generation service to ask

    Returns:
        ReconstructionResponse; `skipped` is True when there was nothing to
        bridge or the service declined or failed
    """
    reference = ReferenceScript(script)
    ranges: list[tuple[int, int]] = []
    for start, end in skipped_ranges:
        start, end = reference.clamp(start), reference.clamp(end)
        if start < end:
            ranges.append((start, end))

    if not ranges:
        return ReconstructionResponse(reconstructed="", skipped=True)

    cursor: int = reference.clamp(current_index)
    previous, current = extract_context(script, cursor, context_chars)
    request = ReconstructionRequest(
        skipped_text=' '.join(script[start:end].strip() for start, end in ranges[:max_spans]),
        current_context=current,
        previous_context=previous,
        issued_at_cursor=cursor,
        gap_end_offset=max(end for _, end in ranges),
        script_version=reference.version,
    )

    try:
        result: GenerationResult = await client.generate(
            build_bridge_prompt(request),
            temperature=temperature,
            max_output_tokens=max_output_tokens
        )
    except Exception as e:  # pylint: disable=broad-except
        logger.error("Reconstruction failed: %s", e, exc_info=True)
        return ReconstructionResponse(reconstructed="", skipped=True)

    return ReconstructionResponse(reconstructed=result.text, skipped=result.skipped)
