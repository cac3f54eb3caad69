"""
Markov model of token transitions learned from a corpus of sample queries.

The corpus holds one SQL statement per line. Every line is run through the
lexer and each consecutive pair of token codes is counted. The counts are then
turned into a cumulative distribution per source token, so the generator can
pick a successor with a single uniform draw.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, NamedTuple

from sqlfuzz.errors import CorpusError
from sqlfuzz.sql import END_OF_INPUT, Lexer

logger = logging.getLogger(__name__)

CPD_TOLERANCE = 1e-6


class Transition(NamedTuple):
    """A successor token with the cumulative probability of picking it or an earlier one."""

    token: int
    cumulative: float


class DisplayTable(Mapping[int, str]):
    """Read-only mapping from token code to the text used to rebuild a query."""

    def __init__(self, strings: Mapping[int, str]):
        self._strings = MappingProxyType(dict(strings))
        self.max_token = max(self._strings) if self._strings else END_OF_INPUT

    def __getitem__(self, token: int) -> str:
        return self._strings[token]

    def __iter__(self) -> Iterator[int]:
        return iter(self._strings)

    def __len__(self) -> int:
        return len(self._strings)

    def __repr__(self) -> str:
        return f"DisplayTable({dict(self._strings)!r})"


class TransitionModel(Mapping[int, tuple[Transition, ...]]):
    """Read-only mapping from a source token to its successor distribution."""

    def __init__(self, cpds: Mapping[int, Iterable[Transition]]):
        self._cpds = MappingProxyType({token: tuple(cpd) for token, cpd in cpds.items()})

    def __getitem__(self, token: int) -> tuple[Transition, ...]:
        return self._cpds[token]

    def __iter__(self) -> Iterator[int]:
        return iter(self._cpds)

    def __len__(self) -> int:
        return len(self._cpds)

    def __repr__(self) -> str:
        return f"TransitionModel({dict(self._cpds)!r})"

    @classmethod
    def from_counts(cls, counts: Mapping[int, Mapping[int, int]]) -> TransitionModel:
        """Normalize successor counts into cumulative distributions.

        Successors keep the order in which they were first seen. Sources with
        no successors get no entry.
        """
        cpds: dict[int, list[Transition]] = {}
        for source, successors in counts.items():
            total = sum(successors.values())
            if total == 0:
                continue
            cumulative = 0.0
            cpd = []
            for token, count in successors.items():
                cumulative += count / total
                cpd.append(Transition(token, cumulative))
            cpds[source] = cpd
        return cls(cpds)


@dataclass(frozen=True)
class MarkovModel:
    """The display table and transition model built from one corpus."""

    display: DisplayTable
    transitions: TransitionModel

    def check_invariants(self) -> None:
        """Raise ValueError if any cumulative distribution is malformed."""
        for source, cpd in self.transitions.items():
            if not cpd:
                raise ValueError(f"Token {source} has an empty distribution")
            previous = 0.0
            for transition in cpd:
                if transition.cumulative < previous:
                    raise ValueError(f"Distribution of token {source} is decreasing")
                previous = transition.cumulative
            if not math.isclose(previous, 1.0, abs_tol=CPD_TOLERANCE):
                raise ValueError(f"Distribution of token {source} ends at {previous}, not 1.0")


def scan_corpus(
    lines: Iterable[str], lexer: Lexer
) -> tuple[dict[int, str], dict[int, dict[int, int]], int]:
    """Tokenize every line and count consecutive token pairs.

    Returns (display strings, pair counts, number of lines scanned).
    """
    display: dict[int, str] = {}
    counts: dict[int, dict[int, int]] = defaultdict(lambda: defaultdict(int))
    scanned = 0

    for line in lines:
        line = line.rstrip("\r\n")
        if not line.strip():
            continue
        scanned += 1
        previous: int | None = None
        for lex_token in lexer.tokenize(line):
            if lex_token.code not in display:
                if lex_token.is_string:
                    display[lex_token.code] = f'"{lex_token.text}"'
                else:
                    display[lex_token.code] = lex_token.text
            if previous is not None:
                counts[previous][lex_token.code] += 1
            previous = lex_token.code
            if lex_token.code == END_OF_INPUT:
                break

    return display, counts, scanned


def build_model(corpus_path: str | Path, lexer: Lexer) -> MarkovModel:
    """Build the Markov model from a corpus file with one query per line."""
    try:
        with open(corpus_path, "r", encoding="utf-8", errors="replace") as f:
            display, counts, scanned = scan_corpus(f, lexer)
    except OSError as e:
        raise CorpusError(corpus_path, e.strerror or str(e)) from e
    if not scanned:
        raise CorpusError(corpus_path, "no queries found")

    model = MarkovModel(DisplayTable(display), TransitionModel.from_counts(counts))
    try:
        model.check_invariants()
    except ValueError as e:
        raise CorpusError(corpus_path, f"malformed model: {e}") from e
    pairs = sum(len(successors) for successors in counts.values())
    logger.info(
        f"[+] Built model from {scanned} queries in {corpus_path}: "
        f"{len(model.display)} tokens, {pairs} distinct transitions."
    )
    return model
