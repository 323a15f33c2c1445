# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Script parsing module for the reference script the speaker reads from.

A script is kept in two forms:
1. The full text, which is what gets displayed and what character offsets
   (UI highlighting, reconstruction context, merge points) refer to.
2. A word list, where each word remembers its [start, end) offsets in the
   full text so word-level matching can be mapped back to characters.
"""

import re
from dataclasses import dataclass
from functools import cached_property
from html.parser import HTMLParser
from pathlib import Path

import markdown

# Characters that end a sentence
SENTENCE_TERMINATORS: frozenset[str] = frozenset(['.', '!', '?', '\n'])

# Closing characters that belong to the sentence they follow (e.g. `끝."`)
_SENTENCE_CLOSERS: frozenset[str] = frozenset([
    '"', "'", ')', ']', '}', '»', '”', '’', '」', '』', '】',
])

_NON_WORD_RE = re.compile(r'[\W_]+')
_TOKEN_RE = re.compile(r'\S+')

# Block-level tags that end a line when flattening rendered Markdown
_BLOCK_TAGS: frozenset[str] = frozenset([
    'p', 'br', 'li', 'div', 'blockquote', 'pre', 'tr',
    'h1', 'h2', 'h3', 'h4', 'h5', 'h6',
])


def normalize_word(word: str) -> str:
    """Normalize a word for matching (case-fold, strip punctuation and whitespace).

    Applied identically to script words and spoken words so comparisons
    are symmetric.
    """
    return _NON_WORD_RE.sub('', word.casefold())


@dataclass(frozen=True)
class ScriptWord:
    """A whitespace-delimited word of the script with its character offsets."""
    text: str  # Raw token as written, punctuation included
    start: int  # Offset of the first character
    end: int  # Offset one past the last character
    index: int  # Position in the word list

    @property
    def normalized(self) -> str:
        """The normalized form used for matching."""
        return normalize_word(self.text)


@dataclass(frozen=True)
class ReferenceScript:
    """An immutable version of the reference script.

    A new version is produced whenever a reconstruction is merged in; all
    cursor and gap state is tied to one version.
    """
    text: str = ""
    version: int = 0

    @cached_property
    def words(self) -> list[ScriptWord]:
        """The script split into words, with character offsets.

        Punctuation-only tokens (a standalone `-` or `—`) are not words: they
        stay in `text` but can never be spoken, so they are left out here.
        """
        tokens = [m for m in _TOKEN_RE.finditer(self.text) if normalize_word(m.group())]
        return [
            ScriptWord(text=m.group(), start=m.start(), end=m.end(), index=i)
            for i, m in enumerate(tokens)
        ]

    @cached_property
    def raw_words(self) -> list[str]:
        """The raw word strings, in script order."""
        return [w.text for w in self.words]

    @property
    def word_count(self) -> int:
        """Number of words in the script."""
        return len(self.words)

    def clamp(self, offset: int) -> int:
        """Clamp a character offset to [0, len(text)]."""
        return max(0, min(offset, len(self.text)))

    def clamp_word_index(self, index: int) -> int:
        """Clamp a word index to [0, word_count]."""
        return max(0, min(index, len(self.words)))

    def char_offset_for_word(self, index: int) -> int:
        """Character offset of the word at `index`.

        An index at (or past) the end of the word list maps to the end of the
        text, so a cursor that has consumed every word points past the script.
        """
        index = self.clamp_word_index(index)
        if index >= len(self.words):
            return len(self.text)
        return self.words[index].start

    def span_to_chars(self, start_word: int, end_word: int) -> tuple[int, int]:
        """Map a half-open word span to the half-open character span it covers."""
        start_word = self.clamp_word_index(start_word)
        end_word = self.clamp_word_index(end_word)
        if end_word <= start_word:
            offset = self.char_offset_for_word(start_word)
            return offset, offset
        return self.words[start_word].start, self.words[end_word - 1].end

    def span_text(self, start_word: int, end_word: int) -> str:
        """Text of a word span, words joined by a single space."""
        start_word = self.clamp_word_index(start_word)
        end_word = self.clamp_word_index(end_word)
        return ' '.join(self.raw_words[start_word:end_word])

    @cached_property
    def sentences(self) -> list[tuple[int, int]]:
        """Character ranges of the sentences in the script.

        A sentence runs from its first non-whitespace character up to and
        including its terminator (`.`, `!`, `?`), or up to the end of its line.
        Runs of terminators (`?!`, `...`) and closing quotes or brackets right
        after them stay with the sentence they close.
        """
        ranges: list[tuple[int, int]] = []
        start: int | None = None
        for i, ch in enumerate(self.text):
            if start is None:
                if ch.isspace():
                    continue
                if (
                    (ch in SENTENCE_TERMINATORS or ch in _SENTENCE_CLOSERS)
                    and ranges and ranges[-1][1] == i
                ):
                    # Trailing terminators and closers ("?!", `."`) extend the previous sentence
                    ranges[-1] = (ranges[-1][0], i + 1)
                    continue
                start = i

            if ch == '\n':
                ranges.append((start, self._rstrip_offset(start, i)))
                start = None
            elif ch in SENTENCE_TERMINATORS:
                ranges.append((start, i + 1))
                start = None

        if start is not None:
            ranges.append((start, self._rstrip_offset(start, len(self.text))))

        return ranges

    def _rstrip_offset(self, start: int, end: int) -> int:
        """Move `end` back over trailing whitespace, not past `start`."""
        while end > start and self.text[end - 1].isspace():
            end -= 1
        return end

    def next_sentence_end(self, offset: int, limit: int | None = None) -> int | None:
        """Offset just past the next sentence terminator at or after `offset`.

        For `.`, `!` and `?` the returned offset is after the terminator (and any
        closing quotes or brackets that follow it); for a newline it is the
        position of the newline itself, so text inserted there stays on the
        same line.

        Args:
            offset: Character offset to start searching from (clamped)
            limit: Maximum number of characters to search, or None for no limit

        Returns:
            The offset, or None if no terminator was found within the limit
        """
        offset = self.clamp(offset)
        stop: int = len(self.text) if limit is None else min(len(self.text), offset + limit)
        for i in range(offset, stop):
            ch = self.text[i]
            if ch == '\n':
                return i
            if ch in SENTENCE_TERMINATORS:
                end = i + 1
                while end < len(self.text) and (
                    self.text[end] in _SENTENCE_CLOSERS
                    or self.text[end] in ('.', '!', '?')
                ):
                    end += 1
                return end
        return None

    def with_insertion(self, offset: int, insert_text: str) -> 'ReferenceScript':
        """Return the next script version with `insert_text` spliced in at `offset`.

        A separating space is added on either side of the inserted text unless
        whitespace is already there.
        """
        offset = self.clamp(offset)
        insert: str = insert_text.strip()
        if not insert:
            return ReferenceScript(self.text, self.version + 1)

        before: str = self.text[:offset]
        after: str = self.text[offset:]
        if before and not before[-1].isspace():
            insert = ' ' + insert
        if after and not after[0].isspace():
            insert = insert + ' '
        return ReferenceScript(before + insert + after, self.version + 1)


class _TextExtractor(HTMLParser):
    """Flattens rendered HTML to plain text, one line per block element."""

    def __init__(self) -> None:
        super().__init__()
        self.parts: list[str] = []

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag == 'br':
            self.parts.append('\n')

    def handle_endtag(self, tag: str) -> None:
        if tag in _BLOCK_TAGS:
            self.parts.append('\n')

    def handle_data(self, data: str) -> None:
        self.parts.append(data)

    def get_text(self) -> str:
        lines: list[str] = [
            ' '.join(line.split()) for line in ''.join(self.parts).split('\n')
        ]
        return '\n'.join(line for line in lines if line)


def markdown_to_text(script_text: str) -> str:
    """Render Markdown and flatten it to the plain text that will be spoken.

    Formatting markers (`#`, `**`, list bullets) are dropped; each paragraph,
    heading or list item becomes its own line.
    """
    rendered_html: str = markdown.markdown(script_text, extensions=['sane_lists'])
    extractor = _TextExtractor()
    extractor.feed(rendered_html)
    extractor.close()
    return extractor.get_text()


def load_script_file(path: Path) -> str:
    """Load a script file as plain reference text.

    Markdown files (`.md`, `.markdown`) are rendered and flattened; anything
    else is read as-is.
    """
    text: str = path.read_text(encoding='utf-8')
    if path.suffix.lower() in ('.md', '.markdown'):
        return markdown_to_text(text)
    return text
