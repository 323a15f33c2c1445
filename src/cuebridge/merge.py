# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Holds a generated bridge sentence until the user accepts or dismisses it,
and splices accepted sentences into the script.
"""

import logging
import time
from dataclasses import dataclass, field

from . import debug_log
from .config import DEFAULT_CONFIG, MergeSettings
from .gaps import GapSet
from .generation import GenerationResult
from .matcher import SequentialMatcher
from .reconstruction import ReconstructionRequest
from .script_parser import ReferenceScript

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconstructionSuggestion:
    """A bridge sentence waiting for the user to accept or dismiss it."""
    text: str
    request: ReconstructionRequest
    created_at: float = field(default_factory=time.monotonic)


class SuggestionMergeManager:
    """
    Decides whether a generation result is still relevant, and merges it.

    Every decision reads the live matcher cursor and script at the time it is
    made. The request a result answers is only used for the offset where the
    gap ended and the script version it was built against.
    """

    def __init__(
        self,
        matcher: SequentialMatcher,
        gaps: GapSet,
        settings: MergeSettings | None = None
    ) -> None:
        settings = settings or DEFAULT_CONFIG["merge"]
        self.matcher: SequentialMatcher = matcher
        self.gaps: GapSet = gaps
        self.staleness_limit: int = settings.get("staleness_limit_chars", 500)
        self.insert_search_limit: int = settings.get("insert_search_limit", 1000)
        self.suggestion: ReconstructionSuggestion | None = None

    @property
    def has_suggestion(self) -> bool:
        return self.suggestion is not None

    def receive(
        self,
        request: ReconstructionRequest,
        result: GenerationResult
    ) -> ReconstructionSuggestion | None:
        """
        Handle a completed generation call.

        Returns:
            The new pending suggestion, or None if the result was a skip,
            empty, or stale
        """
        if result.skipped or not result.text.strip():
            logger.debug("Generation produced no suggestion (%s)", result.error or "skip")
            debug_log.log_suggestion("rejected", result.text, result.error or "skip")
            return None

        if request.script_version != self.matcher.script.version:
            logger.info("Dropping suggestion built for script version %d (now %d)",
                        request.script_version, self.matcher.script.version)
            debug_log.log_suggestion("stale", result.text, "script changed")
            return None

        distance: int = self.matcher.cursor_char_offset - request.gap_end_offset
        if distance > self.staleness_limit:
            logger.info("Dropping stale suggestion: speaker is %d chars past the gap",
                        distance)
            debug_log.log_suggestion("stale", result.text, f"distance={distance}")
            return None

        self.suggestion = ReconstructionSuggestion(text=result.text.strip(), request=request)
        logger.info("Suggestion ready: '%s'", self.suggestion.text)
        debug_log.log_suggestion("received", self.suggestion.text,
                                 f"gap_end={request.gap_end_offset}")
        return self.suggestion

    def insertion_offset(self) -> int:
        """
        Where an accepted suggestion goes in the current script.

        Just past the first sentence end at or after the live cursor, looking
        at most `insert_search_limit` characters ahead; the end of the script
        if there is none.
        """
        script: ReferenceScript = self.matcher.script
        offset: int | None = script.next_sentence_end(
            self.matcher.cursor_char_offset, self.insert_search_limit
        )
        return len(script.text) if offset is None else offset

    def accept(self) -> ReferenceScript | None:
        """
        Merge the pending suggestion into the script.

        The matcher keeps its word cursor and its skip bookkeeping is reset;
        the gap set is cleared and rebound to the new script version.

        Returns:
            The new script, or None if there was nothing to accept
        """
        if self.suggestion is None:
            return None

        suggestion: ReconstructionSuggestion = self.suggestion
        offset: int = self.insertion_offset()
        script: ReferenceScript = self.matcher.script.with_insertion(offset, suggestion.text)

        self.matcher.replace_script(script, keep_cursor=True)
        self.gaps.rebind(script)
        self.suggestion = None

        logger.info("Merged suggestion at offset %d (script version %d)",
                    offset, script.version)
        debug_log.log_suggestion("accepted", suggestion.text, f"offset={offset}")
        debug_log.log_merge(offset, suggestion.text, script.version)
        return script

    def dismiss(self) -> bool:
        """
        Discard the pending suggestion and the gaps it was built from.

        Returns:
            True if there was a suggestion to dismiss
        """
        if self.suggestion is None:
            return False
        debug_log.log_suggestion("dismissed", self.suggestion.text)
        logger.info("Suggestion dismissed")
        self.suggestion = None
        self.gaps.clear()
        self.matcher.reset_tracking()
        return True

    def clear(self) -> None:
        """Drop any pending suggestion without touching gaps (script changed)."""
        self.suggestion = None
