# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""Tests for the transcript replay tool."""

import argparse
import io
import tempfile
from pathlib import Path

import pytest

from cuebridge.replay import (
    ReplayEvent,
    add_replay_arguments,
    load_transcript,
    replay_transcript,
    run_replay,
)

SCRIPT: str = "Hello everyone and welcome. Today we talk about science. Then we wrap up."


class TestLoadTranscript:
    """Tests for loading transcript files."""

    def test_load_transcript_filters_metadata(self) -> None:
        """Verify metadata lines starting with === are filtered out."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.txt', delete=False) as f:
            f.write("=== Transcript started at 2025-12-21T00:00:00 ===\n")
            f.write("\n")
            f.write("hello world\n")
            f.write("this is a test\n")
            f.write("\n")
            f.write("=== Transcript ended at 2025-12-21T00:05:00 ===\n")
            f.flush()
            path: Path = Path(f.name)

        lines: list[str] = load_transcript(path)
        assert lines == ["hello world", "this is a test"]

    def test_load_transcript_strips_whitespace(self) -> None:
        with tempfile.NamedTemporaryFile(mode='w', suffix='.txt', delete=False) as f:
            f.write("   padded line   \n\n\n")
            f.flush()
            path: Path = Path(f.name)

        assert load_transcript(path) == ["padded line"]


class TestReplayTranscript:
    """Tests for replaying transcript lines through the engine."""

    def test_straight_read_advances(self) -> None:
        output = io.StringIO()
        events: list[ReplayEvent] = replay_transcript(
            ["hello everyone and welcome", "today we talk about science"], SCRIPT, output)

        assert [e.event_type for e in events] == ["advance", "advance"]
        assert events[0].cursor_before == 0
        assert events[0].cursor_after == 4
        assert events[1].cursor_after == 9
        assert all(e.skipped_text == [] for e in events)

    def test_skip_reported(self) -> None:
        output = io.StringIO()
        events = replay_transcript(
            ["hello everyone and welcome", "then we wrap up"], SCRIPT, output)

        assert events[1].event_type == "skip"
        assert events[1].skipped_text == ["Today we talk about science."]
        log = output.getvalue()
        assert "*** SKIP DETECTED ***" in log
        assert "Lines with skips: 1" in log
        assert "Skipped characters pending: 28" in log

    def test_unmatched_words_counted(self) -> None:
        output = io.StringIO()
        events = replay_transcript(["hello banana everyone"], SCRIPT, output)
        assert events[0].mismatches == 1
        assert events[0].event_type == "advance"
        assert "Unmatched words: 1" in output.getvalue()

    def test_no_change(self) -> None:
        output = io.StringIO()
        events = replay_transcript(["completely unrelated"], SCRIPT, output)
        assert events[0].event_type == "no_change"
        assert events[0].mismatches == 2

    def test_log_sections(self) -> None:
        output = io.StringIO()
        replay_transcript(["hello everyone"], SCRIPT, output, verbose=True)
        log = output.getvalue()
        assert "TRANSCRIPT REPLAY LOG" in log
        assert "SCRIPT WORDS:" in log
        assert "[   0] Hello" in log
        assert "ALIGNMENT LOG:" in log
        assert "SUMMARY:" in log
        assert "Final position: 2 / 13" in log
        assert '"and" (advance, 0 unmatched)' in log

    def test_word_by_word_matches_final_replay(self) -> None:
        """Feeding interim results first ends at the same place."""
        lines = ["hello everyone and welcome", "then we wrap up"]
        plain = replay_transcript(lines, SCRIPT, io.StringIO())
        output = io.StringIO()
        stepped = replay_transcript(lines, SCRIPT, output, verbose=True, word_by_word=True)

        assert [e.cursor_after for e in stepped] == [e.cursor_after for e in plain]
        assert stepped[1].event_type == "skip"
        assert "WORD-BY-WORD MODE" in output.getvalue()
        assert "interim" in output.getvalue()


class TestRunReplay:
    """Tests for the command-line entry point."""

    @staticmethod
    def parse(argv: list[str]) -> argparse.Namespace:
        parser = argparse.ArgumentParser()
        add_replay_arguments(parser)
        return parser.parse_args(argv)

    def test_writes_log_file(self, tmp_path: Path) -> None:
        transcript = tmp_path / "transcript.txt"
        transcript.write_text("hello everyone\nthen we wrap up\n", encoding="utf-8")
        script = tmp_path / "script.md"
        script.write_text("# Talk\n\n" + SCRIPT + "\n", encoding="utf-8")
        log = tmp_path / "replay.log"

        run_replay(self.parse([str(transcript), str(script), "-o", str(log)]))
        assert "SKIP DETECTED" in log.read_text(encoding="utf-8")

    def test_missing_transcript_exits(self, tmp_path: Path) -> None:
        script = tmp_path / "script.txt"
        script.write_text(SCRIPT, encoding="utf-8")
        with pytest.raises(SystemExit):
            run_replay(self.parse([str(tmp_path / "missing.txt"), str(script)]))

    def test_empty_transcript_exits(self, tmp_path: Path) -> None:
        transcript = tmp_path / "transcript.txt"
        transcript.write_text("=== only metadata ===\n", encoding="utf-8")
        script = tmp_path / "script.txt"
        script.write_text(SCRIPT, encoding="utf-8")
        with pytest.raises(SystemExit):
            run_replay(self.parse([str(transcript), str(script)]))
