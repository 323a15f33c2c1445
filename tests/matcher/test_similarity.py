# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Tests for word similarity scoring.
"""

import pytest

from cuebridge.similarity import is_match, levenshtein, similarity


class TestLevenshtein:
    """Tests for the edit distance."""

    def test_classic_examples(self) -> None:
        """Unit-cost insert/delete/substitute distance."""
        assert levenshtein("kitten", "sitting") == 3
        assert levenshtein("", "abc") == 3
        assert levenshtein("same", "same") == 0


class TestSimilarity:
    """Tests for normalized similarity."""

    def test_identical_words(self) -> None:
        """A word is fully similar to itself."""
        assert similarity("hello", "hello") == 1.0
        assert similarity("시작하겠습니다", "시작하겠습니다") == 1.0

    def test_equal_after_normalization(self) -> None:
        """Case and punctuation do not count as differences."""
        assert similarity("Hello,", "hello") == 1.0
        assert similarity("첫째,", "첫째") == 1.0

    def test_both_empty_after_normalization(self) -> None:
        """Two punctuation-only tokens are equal."""
        assert similarity("...", "!") == 1.0

    def test_one_empty(self) -> None:
        """An empty word shares nothing with a non-empty one."""
        assert similarity("", "word") == 0.0

    def test_partial_similarity(self) -> None:
        """Score is one minus distance over the longer length."""
        # kitten -> sitting: distance 3, longer length 7
        assert similarity("kitten", "sitting") == pytest.approx(1 - 3 / 7)

    def test_symmetric(self) -> None:
        """Argument order does not matter."""
        pairs = [("kitten", "sitting"), ("presentation", "presentations"), ("a", "abc")]
        for a, b in pairs:
            assert similarity(a, b) == similarity(b, a)

    @pytest.mark.parametrize("a,b", [
        ("hello", "world"), ("x", "xyzzy"), ("", ""), ("발표를", "발표"), ("AI", "ai."),
    ])
    def test_bounds(self, a: str, b: str) -> None:
        """Similarity always lies in [0, 1]."""
        assert 0.0 <= similarity(a, b) <= 1.0


class TestIsMatch:
    """Tests for the threshold check."""

    def test_default_threshold(self) -> None:
        """One edit in a five-letter word is exactly 0.8 and matches."""
        assert is_match("hallo", "hello")
        assert not is_match("help", "hello")

    def test_custom_threshold(self) -> None:
        """A stricter threshold rejects near misses."""
        assert not is_match("hallo", "hello", threshold=0.9)
