"""
A small T-SQL tokenizer.

It only knows enough about the language to never split a statement inside a literal,
a quoted identifier or a comment. Offsets are indices into the python string.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import List

from sqlcoverlib.errors import SegmentationError


class TokenKind(Enum):
    WHITESPACE = "whitespace"
    LINE_COMMENT = "line_comment"
    BLOCK_COMMENT = "block_comment"
    STRING = "string"
    QUOTED_IDENTIFIER = "quoted_identifier"
    NUMBER = "number"
    WORD = "word"
    PUNCT = "punct"


TRIVIA = (TokenKind.WHITESPACE, TokenKind.LINE_COMMENT, TokenKind.BLOCK_COMMENT)

WORD_RE = re.compile(r'[\w@#$]+')
NUMBER_RE = re.compile(r'0[xX][0-9a-fA-F]*|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?')
WHITESPACE_RE = re.compile(r'\s+')


# Tokens are created for every character of every module, keep them plain dataclasses.
@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    start: int
    end: int

    @property
    def upper(self) -> str:
        if self.kind is TokenKind.WORD:
            return self.text.upper()
        return ""

    def is_punct(self, char: str) -> bool:
        return self.kind is TokenKind.PUNCT and self.text == char

    @property
    def is_variable(self) -> bool:
        return self.kind is TokenKind.WORD and self.text.startswith("@")


def _scan_quoted(text: str, start: int, close: str) -> int:
    # The closing character doubled is an escaped literal character.
    j = start + 1
    while True:
        k = text.find(close, j)
        if k == -1:
            raise SegmentationError(f"Unterminated literal starting at offset {start}", offset=start)
        if text.startswith(close, k + 1):
            j = k + 2
            continue
        return k + 1


def _scan_block_comment(text: str, start: int) -> int:
    # T-SQL block comments nest.
    depth = 0
    j = start
    n = len(text)
    while j < n:
        if text.startswith("/*", j):
            depth += 1
            j += 2
        elif text.startswith("*/", j):
            depth -= 1
            j += 2
            if depth == 0:
                return j
        else:
            j += 1
    raise SegmentationError(f"Unterminated block comment starting at offset {start}", offset=start)


def tokenize(text: str) -> List[Token]:
    tokens = []
    i = 0
    n = len(text)
    while i < n:
        c = text[i]
        if c.isspace():
            j = WHITESPACE_RE.match(text, i).end()
            kind = TokenKind.WHITESPACE
        elif text.startswith("--", i):
            j = text.find("\n", i)
            j = n if j == -1 else j
            kind = TokenKind.LINE_COMMENT
        elif text.startswith("/*", i):
            j = _scan_block_comment(text, i)
            kind = TokenKind.BLOCK_COMMENT
        elif c == "'":
            j = _scan_quoted(text, i, "'")
            kind = TokenKind.STRING
        elif c in "Nn" and text.startswith("'", i + 1):
            j = _scan_quoted(text, i + 1, "'")
            kind = TokenKind.STRING
        elif c == "[":
            j = _scan_quoted(text, i, "]")
            kind = TokenKind.QUOTED_IDENTIFIER
        elif c == '"':
            j = _scan_quoted(text, i, '"')
            kind = TokenKind.QUOTED_IDENTIFIER
        elif c.isdigit() or (c == "." and i + 1 < n and text[i + 1].isdigit()):
            j = NUMBER_RE.match(text, i).end()
            kind = TokenKind.NUMBER
        elif c.isalpha() or c in "_@#":
            j = WORD_RE.match(text, i).end()
            kind = TokenKind.WORD
        else:
            j = i + 1
            kind = TokenKind.PUNCT
        tokens.append(Token(kind, text[i:j], i, j))
        i = j
    return tokens


def significant_tokens(text: str) -> List[Token]:
    """Tokenizes `text` and drops whitespace and comments."""
    return [t for t in tokenize(text) if t.kind not in TRIVIA]
