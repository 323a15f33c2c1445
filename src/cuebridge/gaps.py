# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Aggregation of skipped script spans since the last merge.
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass

from .matcher import SkippedSpan
from .script_parser import ReferenceScript

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CharSpan:
    """A half-open [start, end) range of characters in the script text."""
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start

    def contains(self, other: 'CharSpan') -> bool:
        """True if `other` lies entirely within this span."""
        return self.start <= other.start and other.end <= self.end


@dataclass(frozen=True)
class GapEntry:
    """A skipped span in both word and character form."""
    words: SkippedSpan
    chars: CharSpan
    text: str  # Skipped words joined by a single space


class GapSet:
    """
    Skipped spans accumulated since the last merge or dismissal.

    No entry is ever contained in another: a new span inside an existing one
    is dropped, and existing spans inside a new one are absorbed by it.
    Spans that only partially overlap are kept as separate entries.

    `version` increases on every change so debounced consumers can tell
    whether anything happened while they waited.
    """

    def __init__(self, script: ReferenceScript) -> None:
        self.script: ReferenceScript = script
        self._entries: list[GapEntry] = []
        self.version: int = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[GapEntry]:
        return iter(list(self._entries))

    @property
    def entries(self) -> list[GapEntry]:
        """Current entries, in insertion order."""
        return list(self._entries)

    @property
    def char_spans(self) -> list[CharSpan]:
        """Character spans of the current entries."""
        return [e.chars for e in self._entries]

    def add_span(self, span: SkippedSpan) -> bool:
        """
        Add a skipped word span.

        Returns:
            True if the set changed, False if the span was empty or already
            covered by an existing span
        """
        start, end = self.script.span_to_chars(span.start_word, span.end_word)
        if end <= start:
            return False
        chars = CharSpan(start, end)

        for entry in self._entries:
            if entry.chars.contains(chars):
                logger.debug("Dropping span %s: contained in %s", chars, entry.chars)
                return False

        absorbed: int = len(self._entries)
        self._entries = [e for e in self._entries if not chars.contains(e.chars)]
        absorbed -= len(self._entries)
        if absorbed:
            logger.debug("Span %s absorbed %d existing span(s)", chars, absorbed)

        self._entries.append(GapEntry(
            words=span,
            chars=chars,
            text=self.script.span_text(span.start_word, span.end_word)
        ))
        self.version += 1
        return True

    @property
    def total_skipped_chars(self) -> int:
        """Number of script characters covered by at least one span."""
        total: int = 0
        covered_to: int = -1
        for span in sorted(self.char_spans, key=lambda s: s.start):
            start: int = max(span.start, covered_to)
            if span.end > start:
                total += span.end - start
                covered_to = span.end
        return total

    def skipped_sentence_count(self) -> int:
        """Number of script sentences fully contained in some span."""
        spans: list[CharSpan] = self.char_spans
        if not spans:
            return 0
        return sum(
            1 for start, end in self.script.sentences
            if any(s.contains(CharSpan(start, end)) for s in spans)
        )

    @property
    def last_span_end(self) -> int | None:
        """Character offset where the furthest span ends."""
        if not self._entries:
            return None
        return max(e.chars.end for e in self._entries)

    def joined_text(self, limit: int = 5) -> str:
        """Text of the first `limit` spans, joined by spaces."""
        return ' '.join(e.text for e in self._entries[:limit])

    def clear(self) -> None:
        """Forget all spans."""
        if self._entries:
            self._entries.clear()
            self.version += 1

    def rebind(self, script: ReferenceScript) -> None:
        """Attach to a new script version; spans of the old version are dropped."""
        self.script = script
        self.clear()
