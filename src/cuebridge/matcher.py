# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Sequential matching of spoken words against the reference script.

Each spoken word is compared against a bounded window of upcoming script
words. The first window word that is similar enough wins: the cursor moves
past it, and any words jumped over are reported as a skipped span. Words with
no match in the window leave the cursor where it is and are only recorded as
mismatches.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from . import debug_log
from .script_parser import ReferenceScript
from .similarity import DEFAULT_MATCH_THRESHOLD, is_match
from .transcript import spoken_words

logger = logging.getLogger(__name__)

# Number of script words searched ahead of the cursor for each spoken word
DEFAULT_WINDOW_SIZE: int = 20

# Number of mismatches kept for diagnostics
MISMATCH_HISTORY: int = 100


@dataclass(frozen=True)
class SkippedSpan:
    """A half-open run of script words passed over without being spoken."""
    start_word: int
    end_word: int

    @property
    def length(self) -> int:
        """Number of words in the span."""
        return self.end_word - self.start_word


@dataclass(frozen=True)
class MismatchRecord:
    """A spoken word that found no acceptable match in the search window."""
    expected_word: str  # Script word at the cursor ("" once the script is finished)
    spoken_word: str
    position: int  # Cursor position when the word was spoken


@dataclass
class MatchOutcome:
    """Result of consuming one spoken word."""
    matched: bool
    matched_index: int | None = None
    skipped_span: SkippedSpan | None = None
    mismatch: MismatchRecord | None = None


@dataclass
class BatchResult:
    """Result of consuming a batch of spoken words (e.g. one utterance)."""
    new_cursor: int
    is_fully_matched: bool = True
    skipped_spans: list[SkippedSpan] = field(default_factory=list)
    mismatches: list[MismatchRecord] = field(default_factory=list)
    matched_count: int = 0


class SequentialMatcher:
    """
    Tracks the reading position in a script from a stream of spoken words.

    The cursor is the index of the next unmatched script word. It never moves
    backwards while the script stays the same; only replacing the script or
    an explicit reset/jump repositions it.
    """

    script: ReferenceScript
    window_size: int
    match_threshold: float
    cursor: int
    skipped_spans: list[SkippedSpan]
    mismatches: deque[MismatchRecord]
    speculative: bool

    def __init__(
        self,
        script: ReferenceScript | str,
        window_size: int = DEFAULT_WINDOW_SIZE,
        match_threshold: float = DEFAULT_MATCH_THRESHOLD,
        speculative: bool = False
    ) -> None:
        """
        Initialize the matcher.

        Args:
            script: The reference script (plain text is wrapped as version 0)
            window_size: Number of script words to search from the cursor
            match_threshold: Minimum similarity (0-1) for a word to match
            speculative: True for throwaway copies used on interim transcripts;
                these don't write to the debug log
        """
        if window_size < 1:
            raise ValueError(f"window_size must be positive, got {window_size}")
        if not 0.0 < match_threshold <= 1.0:
            raise ValueError(
                f"match_threshold must be in (0, 1], got {match_threshold}")

        self.script = script if isinstance(script, ReferenceScript) else ReferenceScript(script)
        self.window_size = window_size
        self.match_threshold = match_threshold
        self.speculative = speculative

        self.cursor = 0
        self.skipped_spans = []
        self.mismatches = deque(maxlen=MISMATCH_HISTORY)

    @property
    def words(self) -> list[str]:
        """The raw script words being matched against."""
        return self.script.raw_words

    @property
    def cursor_char_offset(self) -> int:
        """Character offset of the cursor in the script text."""
        return self.script.char_offset_for_word(self.cursor)

    @property
    def is_at_end(self) -> bool:
        """True once every script word has been passed."""
        return self.cursor >= len(self.words)

    @property
    def progress(self) -> float:
        """Get overall progress through the script (0.0 to 1.0)."""
        if not self.words:
            return 0.0
        return self.cursor / len(self.words)

    def consume(self, spoken_word: str) -> MatchOutcome:
        """
        Match one spoken word against the window of script words at the cursor.

        The earliest window word scoring at or above the threshold wins, not
        the best-scoring one, so alignment stays streaming and never revisits
        earlier decisions.
        """
        words: list[str] = self.words
        if not words or not spoken_word.strip():
            return MatchOutcome(matched=True)

        if self.cursor >= len(words):
            return self._record_mismatch(spoken_word, "")

        window_end: int = min(self.cursor + self.window_size, len(words))
        for i in range(self.cursor, window_end):
            if is_match(spoken_word, words[i], self.match_threshold):
                return self._advance_to(i, spoken_word)

        return self._record_mismatch(spoken_word, words[self.cursor])

    def _advance_to(self, index: int, spoken_word: str) -> MatchOutcome:
        """Move the cursor past `index`, recording any words jumped over."""
        skipped: SkippedSpan | None = None
        if index > self.cursor:
            skipped = SkippedSpan(self.cursor, index)
            self.skipped_spans.append(skipped)
            logger.debug("Skip detected: words [%d, %d)", self.cursor, index)
            if not self.speculative:
                debug_log.log_skip(self.cursor, index,
                                   self.script.span_text(self.cursor, index))

        if not self.speculative:
            debug_log.log_match(index, self.words[index], spoken_word)

        self.cursor = index + 1
        return MatchOutcome(matched=True, matched_index=index, skipped_span=skipped)

    def _record_mismatch(self, spoken_word: str, expected_word: str) -> MatchOutcome:
        mismatch = MismatchRecord(
            expected_word=expected_word,
            spoken_word=spoken_word,
            position=self.cursor
        )
        self.mismatches.append(mismatch)
        if not self.speculative:
            debug_log.log_mismatch(self.cursor, expected_word, spoken_word)
        return MatchOutcome(matched=False, mismatch=mismatch)

    def consume_batch(self, spoken_words: list[str]) -> BatchResult:
        """
        Consume spoken words in order and aggregate the outcomes.

        The batch is fully matched only if every word found a match and no
        words were skipped along the way. An empty batch is trivially matched.
        """
        result = BatchResult(new_cursor=self.cursor)
        for spoken_word in spoken_words:
            outcome: MatchOutcome = self.consume(spoken_word)
            if outcome.matched:
                result.matched_count += 1
            if outcome.skipped_span is not None:
                result.skipped_spans.append(outcome.skipped_span)
            if outcome.mismatch is not None:
                result.mismatches.append(outcome.mismatch)

        result.new_cursor = self.cursor
        result.is_fully_matched = not result.mismatches and not result.skipped_spans
        return result

    def clone(self, speculative: bool = True) -> 'SequentialMatcher':
        """Create a copy sharing the (immutable) script, for speculative matching."""
        other = SequentialMatcher(
            self.script,
            window_size=self.window_size,
            match_threshold=self.match_threshold,
            speculative=speculative
        )
        other.cursor = self.cursor
        other.skipped_spans = list(self.skipped_spans)
        other.mismatches = deque(self.mismatches, maxlen=MISMATCH_HISTORY)
        return other

    def commit(self, other: 'SequentialMatcher') -> None:
        """Adopt the state of a speculative copy made from this matcher."""
        if other.script is not self.script:
            logger.warning("Ignoring commit from a matcher on a different script version")
            return
        self.cursor = max(self.cursor, other.cursor)
        self.skipped_spans = list(other.skipped_spans)
        self.mismatches = deque(other.mismatches, maxlen=MISMATCH_HISTORY)

    def reset_tracking(self) -> None:
        """Clear skip and mismatch bookkeeping without moving the cursor."""
        self.skipped_spans.clear()
        self.mismatches.clear()

    def reset(self) -> None:
        """Reset tracking to the beginning of the script."""
        self.cursor = 0
        self.reset_tracking()

    def replace_script(self, script: ReferenceScript, keep_cursor: bool = True) -> None:
        """
        Switch to a new script version.

        Args:
            script: The new script
            keep_cursor: Keep the current word index (used after merging text in
                ahead of the cursor); otherwise start again from 0
        """
        self.script = script
        self.cursor = script.clamp_word_index(self.cursor) if keep_cursor else 0
        self.reset_tracking()

    def jump_to(self, word_index: int) -> None:
        """Move the cursor to a specific word (e.g. the user clicked a word)."""
        self.cursor = self.script.clamp_word_index(word_index)
        self.reset_tracking()


@dataclass
class ComparisonResult:
    """Result of comparing spoken text against a reference script."""
    current_matched_index: int
    is_correct: bool
    skipped_parts: list[str] = field(default_factory=list)
    skipped_ranges: list[tuple[int, int]] = field(default_factory=list)
    mismatched_words: list[MismatchRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form of the result."""
        return {
            "currentMatchedIndex": self.current_matched_index,
            "isCorrect": self.is_correct,
            "skippedParts": self.skipped_parts,
            "skippedRanges": [
                {"start": start, "end": end} for start, end in self.skipped_ranges
            ],
            "mismatchedWords": [
                {
                    "expected": m.expected_word,
                    "spoken": m.spoken_word,
                    "position": m.position,
                }
                for m in self.mismatched_words
            ],
        }


def compare_speech(
    spoken_text: str,
    reference_text: str,
    last_matched_index: int = 0,
    window_size: int = DEFAULT_WINDOW_SIZE,
    match_threshold: float = DEFAULT_MATCH_THRESHOLD
) -> ComparisonResult:
    """
    Stateless alignment of spoken text against a reference script.

    Args:
        spoken_text: Recognized speech, whitespace separated
        reference_text: The full script text
        last_matched_index: Word index to start matching from

    Returns:
        ComparisonResult with the new word index, skipped parts both as text
        and as character ranges, and mismatched words
    """
    if not spoken_text.strip() or not reference_text.strip():
        return ComparisonResult(current_matched_index=last_matched_index, is_correct=True)

    script = ReferenceScript(reference_text)
    matcher = SequentialMatcher(
        script,
        window_size=window_size,
        match_threshold=match_threshold,
        speculative=True
    )
    matcher.cursor = script.clamp_word_index(last_matched_index)

    batch: BatchResult = matcher.consume_batch(spoken_words(spoken_text))

    return ComparisonResult(
        current_matched_index=batch.new_cursor,
        is_correct=batch.is_fully_matched,
        skipped_parts=[
            script.span_text(s.start_word, s.end_word) for s in batch.skipped_spans
        ],
        skipped_ranges=[
            script.span_to_chars(s.start_word, s.end_word) for s in batch.skipped_spans
        ],
        mismatched_words=batch.mismatches
    )
