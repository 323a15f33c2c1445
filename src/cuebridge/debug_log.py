# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Debug logging for alignment and reconstruction events.

Creates two log files:
- alignment.log: Matches, skips and mismatches produced by the matcher
- reconstruction.log: Reconstruction requests, suggestions and merges

Logging is disabled by default. Call enable() to turn it on.
"""

from datetime import datetime
from pathlib import Path

# Log files location (in project root)
LOG_DIR: Path = Path(__file__).parent.parent.parent / "logs"
ALIGNMENT_LOG: Path = LOG_DIR / "alignment.log"
RECONSTRUCTION_LOG: Path = LOG_DIR / "reconstruction.log"

# Global flag to control whether debug logging is enabled
_ENABLED: bool = False  # pylint: disable=invalid-name


def enable() -> None:
    """Enable debug logging."""
    global _ENABLED  # pylint: disable=global-statement
    _ENABLED = True


def disable() -> None:
    """Disable debug logging."""
    global _ENABLED  # pylint: disable=global-statement
    _ENABLED = False


def is_enabled() -> bool:
    """Check if debug logging is enabled."""
    return _ENABLED


def _ensure_log_dir() -> None:
    """Create log directory if it doesn't exist."""
    LOG_DIR.mkdir(exist_ok=True)


def _timestamp() -> str:
    """Get current timestamp."""
    return datetime.now().strftime("%H:%M:%S.%f")[:-3]


def _append(log_file: Path, line: str) -> None:
    _ensure_log_dir()
    with open(log_file, 'a', encoding='utf-8') as f:
        f.write(f"[{_timestamp()}] {line}\n")


def clear_logs() -> None:
    """Clear both log files for a fresh session."""
    if not _ENABLED:
        return
    _ensure_log_dir()
    log_file: Path
    for log_file in [ALIGNMENT_LOG, RECONSTRUCTION_LOG]:
        with open(log_file, 'w', encoding='utf-8') as f:
            f.write(
                f"=== New session started at {datetime.now().isoformat()} ===\n\n")


def log_match(word_index: int, script_word: str, spoken_word: str) -> None:
    """
    Log a spoken word matched to the script.

    Args:
        word_index: The script position that was matched
        script_word: The script word at that position
        spoken_word: The word as recognized
    """
    if not _ENABLED:
        return
    _append(ALIGNMENT_LOG,
            f"{'match':10} pos={word_index:4d} word=\"{script_word}\" spoken=\"{spoken_word}\"")


def log_skip(start_word: int, end_word: int, text: str) -> None:
    """Log a span of script words passed over without being spoken."""
    if not _ENABLED:
        return
    _append(ALIGNMENT_LOG,
            f"{'skip':10} span=[{start_word}, {end_word}) text=\"{text}\"")


def log_mismatch(position: int, expected_word: str, spoken_word: str) -> None:
    """Log a spoken word that found no match in the search window."""
    if not _ENABLED:
        return
    _append(ALIGNMENT_LOG,
            f"{'mismatch':10} pos={position:4d} expected=\"{expected_word}\" spoken=\"{spoken_word}\"")


def log_request(cursor_offset: int, skipped_text: str) -> None:
    """Log a reconstruction request being issued."""
    if not _ENABLED:
        return
    _append(RECONSTRUCTION_LOG,
            f"{'request':10} cursor={cursor_offset} skipped=\"{skipped_text[:80]}\"")


def log_suggestion(event: str, text: str, detail: str = "") -> None:
    """
    Log what happened to a generation result.

    Args:
        event: One of received, rejected, stale, accepted, dismissed
        text: The suggestion text (may be empty)
        detail: Extra information such as offsets or the rejection reason
    """
    if not _ENABLED:
        return
    _append(RECONSTRUCTION_LOG, f"{event:10} text=\"{text}\" {detail}".rstrip())


def log_merge(offset: int, text: str, script_version: int) -> None:
    """Log a suggestion merged into the script."""
    if not _ENABLED:
        return
    _append(RECONSTRUCTION_LOG,
            f"{'merge':10} offset={offset} version={script_version} text=\"{text}\"")
