"""
Adapters for the SQL lexer and parser under test.

The harness only depends on the two small protocols below. The default
implementations are backed by sqlparse; any other lexer or parser can be
plugged in by implementing `tokenize` or `parse`.
"""

from __future__ import annotations

from typing import Iterator, NamedTuple, Protocol

import sqlparse
from sqlparse import tokens as T
from sqlparse.lexer import tokenize as sqlparse_tokenize

# Reserved token code marking the end of a query.
END_OF_INPUT = 0


class LexToken(NamedTuple):
    """A token as reported by a lexer.

    For string literals `text` holds the unquoted content and `is_string`
    is set, so the caller can re-quote it.
    """

    code: int
    text: str
    is_string: bool = False


class Lexer(Protocol):
    def tokenize(self, text: str) -> Iterator[LexToken]:
        """Yield the tokens of `text`, ending with the END_OF_INPUT token."""
        ...


class Parser(Protocol):
    def parse(self, query: str) -> bool:
        """Try to parse `query` and report whether it succeeded."""
        ...


class SqlparseLexer:
    """
    Lexer backed by sqlparse's regex lexer.

    sqlparse reports token *types*, not codes, so this class assigns a stable
    integer code per token kind: one per keyword, one per operator or
    punctuation character sequence, and one per literal class (identifier,
    integer, string, ...). Codes are allocated on first sight and start at 1.
    """

    def __init__(self) -> None:
        self.codes: dict[str, int] = {}

    def _code_for(self, kind: str) -> int:
        code = self.codes.get(kind)
        if code is None:
            code = len(self.codes) + 1
            self.codes[kind] = code
        return code

    @staticmethod
    def classify(ttype, value: str) -> str | None:
        """Map a sqlparse token to the kind used for code allocation.

        Returns None for tokens that carry no syntax (whitespace, comments).
        """
        if ttype in T.Whitespace or ttype in T.Comment:
            return None
        if ttype in T.Keyword or ttype in T.Name.Builtin:
            return value.upper()
        if ttype in T.Name.Placeholder:
            return "PLACEHOLDER"
        if ttype in T.Name:
            return "IDENTIFIER"
        if ttype in T.Literal.String.Single:
            return "STRING"
        if ttype in T.Literal.String.Symbol:
            return "QUOTED_IDENTIFIER"
        if ttype in T.Literal.Number.Float:
            return "FLOAT"
        if ttype in T.Literal.Number.Hexadecimal:
            return "HEX_NUMBER"
        if ttype in T.Literal.Number:
            return "INTEGER"
        if ttype in T.Operator or ttype in T.Punctuation or ttype in T.Wildcard:
            return value
        return str(ttype)

    def tokenize(self, text: str) -> Iterator[LexToken]:
        for ttype, value in sqlparse_tokenize(text):
            kind = self.classify(ttype, value)
            if kind is None:
                continue
            if kind == "STRING":
                yield LexToken(self._code_for(kind), value[1:-1], True)
            else:
                yield LexToken(self._code_for(kind), value)
        yield LexToken(END_OF_INPUT, "")


class SqlparseParser:
    """Parser backed by sqlparse. A query parses if it yields any statement."""

    def parse(self, query: str) -> bool:
        return len(sqlparse.parse(query)) > 0
