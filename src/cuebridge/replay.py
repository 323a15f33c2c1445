# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Debug tool for replaying a transcript through the alignment engine.

This CLI tool takes a transcript file and a script file, feeds the
transcript to the engine as recognizer results, and writes a log of how the
cursor moved, which passages were flagged as skipped and which words found
no match. No generation service is used.
"""

import argparse
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Literal, TextIO

from .engine import AlignmentEngine
from .script_parser import load_script_file
from .transcript import TranscriptEvent, spoken_words

EventType = Literal["advance", "skip", "no_change"]


@dataclass
class ReplayEvent:
    """What one transcript event did to the engine."""
    transcript_line: int
    transcript_text: str
    cursor_before: int
    cursor_after: int
    event_type: EventType
    skipped_text: list[str]
    mismatches: int


def load_transcript(path: Path) -> list[str]:
    """Load transcript file and extract transcript lines.

    Filters out metadata lines (starting with '===').
    Returns list of transcript text lines.
    """
    lines: list[str] = []
    with open(path, encoding='utf-8') as f:
        for line in f:
            stripped_line: str = line.strip()
            # Skip metadata lines and empty lines
            if stripped_line.startswith('===') or not stripped_line:
                continue
            lines.append(stripped_line)
    return lines


def _script_word(engine: AlignmentEngine, index: int) -> str:
    words: list[str] = engine.matcher.words
    return words[index] if index < len(words) else "<END>"


def replay_transcript(
    transcript_lines: list[str],
    script_text: str,
    output: TextIO,
    verbose: bool = False,
    word_by_word: bool = False
) -> list[ReplayEvent]:
    """Replay transcript lines through the engine and log what happened.

    Args:
        transcript_lines: Lines of transcript text, one utterance per line
        script_text: The script content
        output: File handle to write log output
        verbose: If True, log every event. If False, only skips.
        word_by_word: Build each line up one word at a time as interim
            results before the final one, as a live recognizer would

    Returns:
        List of replay events, one per final result
    """
    engine = AlignmentEngine(script_text)
    events: list[ReplayEvent] = []

    # Write header
    output.write("=" * 80 + "\n")
    output.write("TRANSCRIPT REPLAY LOG" + (" (WORD-BY-WORD MODE)" if word_by_word else "") + "\n")
    output.write(f"Generated: {datetime.now().isoformat()}\n")
    output.write(f"Script words: {engine.script.word_count}\n")
    output.write(f"Transcript lines: {len(transcript_lines)}\n")
    output.write("=" * 80 + "\n\n")

    output.write("SCRIPT WORDS:\n")
    output.write("-" * 40 + "\n")
    for i, word in enumerate(engine.matcher.words):
        output.write(f"  [{i:4d}] {word}\n")
    output.write("\n" + "=" * 80 + "\n\n")

    output.write("ALIGNMENT LOG:\n")
    output.write("-" * 40 + "\n")

    for line_num, line in enumerate(transcript_lines, start=1):
        line_display: str = f"--- Line {line_num}: \"{line[:60]}"
        line_display += '...' if len(line) > 60 else ''
        line_display += "\" ---"
        output.write(f"\n{line_display}\n")

        cursor_before: int = engine.matcher.cursor
        spans_before: int = len(engine.matcher.skipped_spans)

        if word_by_word:
            words: list[str] = spoken_words(line)
            for word_idx in range(1, len(words)):
                partial: str = " ".join(words[:word_idx])
                engine.handle_transcript(TranscriptEvent(partial, is_final=False))
                if verbose:
                    output.write(
                        f"    interim \"{words[word_idx - 1]}\" -> "
                        f"speculative [{engine.speculative_cursor:4d}]\n"
                    )

        engine.handle_transcript(TranscriptEvent(line, is_final=True))
        cursor_after: int = engine.matcher.cursor

        new_spans = engine.matcher.skipped_spans[spans_before:]
        skipped_text: list[str] = [
            engine.script.span_text(s.start_word, s.end_word) for s in new_spans
        ]
        last_batch = engine.last_final_batch
        mismatches: int = len(last_batch.mismatches) if last_batch else 0

        event_type: EventType
        if new_spans:
            event_type = "skip"
        elif cursor_after > cursor_before:
            event_type = "advance"
        else:
            event_type = "no_change"

        if event_type == "skip":
            output.write("  *** SKIP DETECTED ***\n")
            for span, text in zip(new_spans, skipped_text):
                output.write(f"      [{span.start_word}, {span.end_word}) \"{text}\"\n")
            output.write(
                f"      Position: {cursor_before} -> {cursor_after} "
                f"\"{_script_word(engine, cursor_after)}\"\n"
            )
        elif verbose:
            output.write(
                f"  [{cursor_after:4d}] \"{_script_word(engine, cursor_after)}\" "
                f"({event_type}, {mismatches} unmatched)\n"
            )

        events.append(ReplayEvent(
            transcript_line=line_num,
            transcript_text=line,
            cursor_before=cursor_before,
            cursor_after=cursor_after,
            event_type=event_type,
            skipped_text=skipped_text,
            mismatches=mismatches
        ))

    # Write summary
    output.write("\n" + "=" * 80 + "\n")
    output.write("SUMMARY:\n")
    output.write("-" * 40 + "\n")

    skips: list[ReplayEvent] = [e for e in events if e.event_type == "skip"]
    output.write(f"Total lines processed: {len(transcript_lines)}\n")
    output.write(
        f"Final position: {engine.matcher.cursor} / {engine.script.word_count}\n")
    output.write(f"Lines with skips: {len(skips)}\n")
    output.write(f"Unmatched words: {sum(e.mismatches for e in events)}\n")
    output.write(f"Skipped characters pending: {engine.gaps.total_skipped_chars}\n")

    if skips:
        output.write("\nSkip events:\n")
        for e in skips:
            output.write(
                f"  Line {e.transcript_line}: {e.cursor_before} -> {e.cursor_after} "
                f"skipped {' | '.join(e.skipped_text)}\n"
            )

    return events


def add_replay_arguments(parser: argparse.ArgumentParser) -> None:
    """Add the replay tool's arguments to a parser."""
    parser.add_argument(
        "transcript",
        type=Path,
        help="Path to transcript file"
    )
    parser.add_argument(
        "script",
        type=Path,
        help="Path to script file (plain text or Markdown)"
    )
    parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Output log file path (default: stdout)"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log every line, not just skips"
    )
    parser.add_argument(
        "-w", "--word-by-word",
        action="store_true",
        help="Feed each line word-by-word as interim results first"
    )


def run_replay(args: argparse.Namespace) -> None:
    """Run a replay from parsed command-line arguments."""
    # Validate inputs
    if not args.transcript.exists():
        print(f"Error: Transcript file not found: {args.transcript}", file=sys.stderr)
        sys.exit(1)

    if not args.script.exists():
        print(f"Error: Script file not found: {args.script}", file=sys.stderr)
        sys.exit(1)

    try:
        transcript_lines: list[str] = load_transcript(args.transcript)
        script_text: str = load_script_file(args.script)
    except OSError as e:
        print(f"Error loading files: {e}", file=sys.stderr)
        sys.exit(1)

    if not transcript_lines:
        print("Error: No transcript lines found", file=sys.stderr)
        sys.exit(1)

    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            replay_transcript(transcript_lines, script_text, f,
                              args.verbose, args.word_by_word)
        print(f"Replay log written to: {args.output}")
    else:
        replay_transcript(transcript_lines, script_text, sys.stdout,
                          args.verbose, args.word_by_word)


def main() -> None:
    """CLI entry point for the replay tool."""
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Replay a transcript through the alignment engine and log the result"
    )
    add_replay_arguments(parser)
    run_replay(parser.parse_args())


if __name__ == "__main__":
    main()
