"""Tests for the debug_log module enable/disable functionality."""

import tempfile
from pathlib import Path
from unittest import mock

import pytest

from cuebridge import debug_log


@pytest.fixture
def log_dir(monkeypatch):
    """Point the debug log files at a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        monkeypatch.setattr(debug_log, "LOG_DIR", Path(tmpdir))
        monkeypatch.setattr(debug_log, "ALIGNMENT_LOG", Path(tmpdir) / "alignment.log")
        monkeypatch.setattr(debug_log, "RECONSTRUCTION_LOG",
                            Path(tmpdir) / "reconstruction.log")
        yield Path(tmpdir)


class TestDebugLogEnableDisable:
    """Test the enable/disable functionality of debug logging."""

    def test_disabled_by_default(self):
        """Debug logging should be disabled by default."""
        assert not debug_log.is_enabled()

    def test_enable(self):
        """enable() should turn on debug logging."""
        debug_log.enable()
        assert debug_log.is_enabled()

    def test_disable(self):
        """disable() should turn off debug logging."""
        debug_log.enable()
        debug_log.disable()
        assert not debug_log.is_enabled()

    @pytest.mark.parametrize("call", [
        lambda: debug_log.clear_logs(),
        lambda: debug_log.log_match(0, "word", "word"),
        lambda: debug_log.log_skip(0, 2, "two words"),
        lambda: debug_log.log_mismatch(0, "expected", "spoken"),
        lambda: debug_log.log_request(0, "skipped"),
        lambda: debug_log.log_suggestion("received", "text"),
        lambda: debug_log.log_merge(0, "text", 1),
    ])
    def test_no_op_when_disabled(self, call):
        """Nothing touches the filesystem while disabled."""
        with mock.patch.object(debug_log, '_ensure_log_dir') as mock_ensure:
            call()
            mock_ensure.assert_not_called()


class TestDebugLogWriting:
    """Test what gets written when logging is enabled."""

    def test_clear_logs_writes_when_enabled(self, log_dir):
        """clear_logs() should start both log files afresh."""
        debug_log.enable()
        debug_log.clear_logs()

        assert debug_log.ALIGNMENT_LOG.exists()
        assert debug_log.RECONSTRUCTION_LOG.exists()
        assert "New session started" in debug_log.ALIGNMENT_LOG.read_text()

    def test_alignment_events(self, log_dir):
        """Matches, skips and mismatches go to the alignment log."""
        debug_log.enable()
        debug_log.log_match(42, "hello", "helo")
        debug_log.log_skip(3, 5, "two words")
        debug_log.log_mismatch(7, "expected", "spoken")

        content = debug_log.ALIGNMENT_LOG.read_text()
        assert "pos=  42" in content
        assert 'word="hello"' in content
        assert 'spoken="helo"' in content
        assert 'span=[3, 5) text="two words"' in content
        assert 'expected="expected"' in content
        assert not debug_log.RECONSTRUCTION_LOG.exists()

    def test_reconstruction_events(self, log_dir):
        """Requests, suggestions and merges go to the reconstruction log."""
        debug_log.enable()
        debug_log.log_request(120, "Skipped sentence one.")
        debug_log.log_suggestion("stale", "Bridge.", "distance=600")
        debug_log.log_merge(69, "Bridge.", 2)

        lines = debug_log.RECONSTRUCTION_LOG.read_text().splitlines()
        assert len(lines) == 3
        assert 'cursor=120 skipped="Skipped sentence one."' in lines[0]
        assert lines[1].endswith('stale      text="Bridge." distance=600')
        assert "offset=69 version=2" in lines[2]

    def test_appends_across_calls(self, log_dir):
        """Each call appends one line."""
        debug_log.enable()
        for i in range(3):
            debug_log.log_match(i, "w", "w")
        assert len(debug_log.ALIGNMENT_LOG.read_text().splitlines()) == 3
