from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional

from values import BINARY_OPERATORS, UNARY_OPERATORS, BinaryOp, UnaryOp


TOKEN_PUNCT = "PUNCT"
TOKEN_WORD = "WORD"
TOKEN_STRING = "STRING"

CHAR_WORD = 0
CHAR_PUNCT = 1
CHAR_SPACE = 2

WHITESPACE = frozenset(" \t\n\r\x0c")
PUNCTUATION = frozenset("!\"#$%&'()*+,-./:;<=>?@[\\]^`{|}~")


@dataclass
class Token:
    type: str
    value: str
    line: int
    column: int
    # Resolved once here so the interpreter never compares operator strings.
    binary: Optional[BinaryOp] = None
    unary: Optional[UnaryOp] = None


def char_type(ch: str) -> int:
    if ch in WHITESPACE:
        return CHAR_SPACE
    if ch in PUNCTUATION:
        return CHAR_PUNCT
    return CHAR_WORD


class Lexer:
    """Splits source text into tokens, appending them to a reusable buffer."""

    def __init__(self) -> None:
        self.tokens: List[Token] = []
        self.line = 1
        self.column = 1

    def clear(self) -> None:
        self.tokens.clear()
        self.line = 1
        self.column = 1

    def feed(self, text: str) -> List[Token]:
        start = len(self.tokens)
        self._text = text
        self._index = 0
        self._word: List[str] = []
        self._word_line = self.line
        self._word_column = self.column
        in_string = False
        n = len(text)

        while self._index < n:
            ch = text[self._index]
            nxt = text[self._index + 1] if self._index + 1 < n else ""

            if in_string:
                self._push_char(ch)
                self._advance()
                if ch == '"' and len(self._word) > 1 and self._word[-2] != "\\":
                    in_string = False
                    self._flush(TOKEN_STRING)
                continue

            if ch == "/" and nxt == "/":
                self._consume_line_comment()
                continue
            if ch == "/" and nxt == "*":
                self._consume_block_comment()
                continue

            kind = char_type(ch)
            if kind == CHAR_SPACE:
                self._flush()
                self._advance()
                continue
            if ch == '"':
                self._flush()
                self._push_char(ch)
                self._advance()
                in_string = True
                continue
            if kind == CHAR_PUNCT:
                if self._word and not self._extends_operator(ch):
                    self._flush()
                self._push_char(ch)
                self._advance()
                continue
            if self._word and char_type(self._word[-1]) != CHAR_WORD:
                self._flush()
            self._push_char(ch)
            self._advance()

        # An unterminated string is closed silently at end of input.
        self._flush(TOKEN_STRING if in_string else None)
        return self.tokens[start:]

    def _extends_operator(self, ch: str) -> bool:
        if char_type(self._word[-1]) != CHAR_PUNCT:
            return False
        return ("".join(self._word) + ch) in BINARY_OPERATORS

    def _push_char(self, ch: str) -> None:
        if not self._word:
            self._word_line = self.line
            self._word_column = self.column
        self._word.append(ch)

    def _flush(self, token_type: Optional[str] = None) -> None:
        if not self._word:
            return
        value = "".join(self._word)
        self._word = []
        if token_type is None:
            token_type = TOKEN_PUNCT if char_type(value[0]) == CHAR_PUNCT else TOKEN_WORD
        token = Token(token_type, value, self._word_line, self._word_column)
        if token_type == TOKEN_PUNCT:
            token.binary = BINARY_OPERATORS.get(value)
            token.unary = UNARY_OPERATORS.get(value)
        self.tokens.append(token)

    def _consume_line_comment(self) -> None:
        text = self._text
        n = len(text)
        while self._index < n and text[self._index] != "\n":
            self._advance()

    def _consume_block_comment(self) -> None:
        text = self._text
        n = len(text)
        self._advance()
        self._advance()
        while self._index < n:
            if text[self._index] == "*" and self._index + 1 < n and text[self._index + 1] == "/":
                self._advance()
                self._advance()
                return
            self._advance()

    def _advance(self) -> None:
        if self._text[self._index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self._index += 1
