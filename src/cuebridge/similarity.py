# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Word similarity scoring for matching spoken words to script words.
"""

from rapidfuzz.distance import Levenshtein

from .script_parser import normalize_word

# Minimum similarity for a spoken word to count as the script word
DEFAULT_MATCH_THRESHOLD: float = 0.8


def levenshtein(a: str, b: str) -> int:
    """Classic edit distance with unit insert/delete/substitute costs."""
    return Levenshtein.distance(a, b)


def similarity(a: str, b: str) -> float:
    """
    Normalized edit-distance similarity between two words, in [0.0, 1.0].

    Both words are normalized first. Equal normalized forms score 1.0, which
    includes two tokens that are both pure punctuation. Otherwise the score is
    `1 - distance / len(longer)`, so it is symmetric in its arguments.
    """
    a_norm: str = normalize_word(a)
    b_norm: str = normalize_word(b)

    if a_norm == b_norm:
        return 1.0

    longest: int = max(len(a_norm), len(b_norm))
    if longest == 0:
        return 1.0

    return 1.0 - levenshtein(a_norm, b_norm) / longest


def is_match(spoken: str, scripted: str, threshold: float = DEFAULT_MATCH_THRESHOLD) -> bool:
    """Check if a spoken word is close enough to a script word."""
    return similarity(spoken, scripted) >= threshold
