# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Tests for suggestion staleness checks and merging into the script.
"""

from cuebridge.gaps import GapSet
from cuebridge.generation import GenerationResult
from cuebridge.matcher import SequentialMatcher
from cuebridge.merge import SuggestionMergeManager
from cuebridge.reconstruction import ReconstructionRequest
from cuebridge.script_parser import ReferenceScript

# Word offsets:
#   0 First  1 sentence  2 here.  3 Second  4 one  5 is  6 skipped.
#   7 Third  8 sentence  9 continues.  10 Final  11 words.
SCRIPT: str = (
    "First sentence here. Second one is skipped. "
    "Third sentence continues. Final words."
)

BRIDGE: str = "As I said, this matters."

# Every word starts ten characters after the previous one
UNIFORM: str = " ".join(["abcdefghi"] * 100)


def make_manager(text: str = SCRIPT, **settings) -> SuggestionMergeManager:
    matcher = SequentialMatcher(ReferenceScript(text))
    gaps = GapSet(matcher.script)
    merged = {"staleness_limit_chars": 500, "insert_search_limit": 1000, **settings}
    return SuggestionMergeManager(matcher, gaps, merged)  # type: ignore[arg-type]


def speak(manager: SuggestionMergeManager, text: str) -> None:
    """Feed spoken words to the matcher and record any skips."""
    batch = manager.matcher.consume_batch(text.split())
    for span in batch.skipped_spans:
        manager.gaps.add_span(span)


def make_request(gap_end_offset: int, script_version: int = 0) -> ReconstructionRequest:
    return ReconstructionRequest(
        skipped_text="Second one is skipped.",
        current_context="",
        previous_context="",
        issued_at_cursor=gap_end_offset,
        gap_end_offset=gap_end_offset,
        script_version=script_version,
    )


def ok(text: str = BRIDGE) -> GenerationResult:
    return GenerationResult(text=text, skipped=False)


class TestReceive:
    """Tests for deciding whether a result becomes a suggestion."""

    def test_fresh_result_stored(self) -> None:
        manager = make_manager()
        speak(manager, "First sentence here. Third")
        suggestion = manager.receive(make_request(43), ok("  " + BRIDGE + " "))
        assert suggestion is not None
        assert suggestion.text == BRIDGE
        assert manager.has_suggestion
        assert manager.suggestion is suggestion

    def test_skip_result_ignored(self) -> None:
        manager = make_manager()
        assert manager.receive(make_request(43), GenerationResult.skip()) is None
        assert not manager.has_suggestion

    def test_empty_text_ignored(self) -> None:
        manager = make_manager()
        assert manager.receive(make_request(43), ok("   ")) is None
        assert not manager.has_suggestion

    def test_other_script_version_ignored(self) -> None:
        manager = make_manager()
        assert manager.receive(make_request(43, script_version=3), ok()) is None

    def test_stale_when_speaker_moved_far_past_gap(self) -> None:
        """Cursor 550 characters past the gap end: dropped."""
        manager = make_manager(UNIFORM)
        manager.matcher.jump_to(65)
        assert manager.matcher.cursor_char_offset == 650
        assert manager.receive(make_request(100), ok()) is None
        assert not manager.has_suggestion

    def test_fresh_at_staleness_limit(self) -> None:
        """Exactly the limit is still fresh."""
        manager = make_manager(UNIFORM)
        manager.matcher.jump_to(60)
        assert manager.matcher.cursor_char_offset == 600
        assert manager.receive(make_request(100), ok()) is not None

    def test_fresh_when_close_to_gap(self) -> None:
        manager = make_manager(UNIFORM)
        manager.matcher.jump_to(10)
        assert manager.receive(make_request(100), ok()) is not None

    def test_custom_staleness_limit(self) -> None:
        manager = make_manager(UNIFORM, staleness_limit_chars=50)
        manager.matcher.jump_to(20)
        assert manager.receive(make_request(100), ok()) is None


class TestInsertionOffset:
    """Tests for choosing where a suggestion goes."""

    def test_next_sentence_end_after_live_cursor(self) -> None:
        manager = make_manager()
        manager.matcher.jump_to(8)
        assert manager.insertion_offset() == SCRIPT.index("continues.") + len("continues.")

    def test_no_terminator_means_end_of_script(self) -> None:
        manager = make_manager("one two three four five")
        manager.matcher.jump_to(1)
        assert manager.insertion_offset() == len("one two three four five")

    def test_search_limit(self) -> None:
        manager = make_manager(insert_search_limit=5)
        manager.matcher.jump_to(7)  # "Third"; the next "." is further than five characters
        assert manager.insertion_offset() == len(SCRIPT)


class TestAccept:
    """Tests for merging an accepted suggestion."""

    def test_inserted_after_live_sentence_not_issue_position(self) -> None:
        """The speaker kept talking; the merge follows them."""
        manager = make_manager()
        speak(manager, "First sentence here. Third")
        request = make_request(manager.gaps.last_span_end or 0)
        assert request.gap_end_offset == 43

        # Result arrives after the speaker has moved into the final sentence
        speak(manager, "sentence continues. Final")
        manager.receive(request, ok())

        merged = manager.accept()
        assert merged is not None
        assert merged.text == SCRIPT + " " + BRIDGE
        assert merged.version == 1

    def test_accept_updates_matcher_and_gaps(self) -> None:
        manager = make_manager()
        speak(manager, "First sentence here. Third sentence")
        assert len(manager.gaps) == 1
        manager.receive(make_request(43), ok())

        merged = manager.accept()
        assert merged is not None
        assert manager.matcher.script is merged
        assert manager.matcher.cursor == 9
        assert manager.matcher.skipped_spans == []
        assert manager.gaps.script is merged
        assert len(manager.gaps) == 0
        assert not manager.has_suggestion
        assert merged.text == (
            "First sentence here. Second one is skipped. "
            "Third sentence continues. " + BRIDGE + " Final words."
        )

    def test_merged_text_is_not_flagged_when_spoken(self) -> None:
        """Reading on through the merged sentence produces no new skips."""
        manager = make_manager()
        speak(manager, "First sentence here. Third sentence")
        manager.receive(make_request(43), ok())
        manager.accept()

        speak(manager, "continues. As I said, this matters. Final words.")
        assert manager.matcher.skipped_spans == []
        assert len(manager.gaps) == 0
        assert manager.matcher.is_at_end

    def test_merged_text_flagged_when_skipped(self) -> None:
        """Jumping over the merged sentence is a skip like any other."""
        manager = make_manager()
        speak(manager, "First sentence here. Third sentence")
        manager.receive(make_request(43), ok())
        manager.accept()

        speak(manager, "continues. Final words.")
        assert len(manager.gaps) == 1
        assert manager.gaps.entries[0].text == BRIDGE

    def test_accept_without_suggestion(self) -> None:
        manager = make_manager()
        assert manager.accept() is None
        assert manager.matcher.script.version == 0


class TestDismiss:
    """Tests for dismissing a suggestion."""

    def test_dismiss_clears_suggestion_and_gaps(self) -> None:
        manager = make_manager()
        speak(manager, "First sentence here. Third")
        manager.receive(make_request(43), ok())

        assert manager.dismiss()
        assert not manager.has_suggestion
        assert len(manager.gaps) == 0
        assert manager.matcher.skipped_spans == []
        assert manager.matcher.script.text == SCRIPT
        assert manager.matcher.cursor == 8

    def test_dismiss_without_suggestion(self) -> None:
        manager = make_manager()
        assert not manager.dismiss()

    def test_clear_keeps_gaps(self) -> None:
        manager = make_manager()
        speak(manager, "First sentence here. Third")
        manager.receive(make_request(43), ok())
        manager.clear()
        assert not manager.has_suggestion
        assert len(manager.gaps) == 1
