"""
Random SQL query generation from a learned Markov model.

Queries are produced by walking the transition model from a random starting
token until the end-of-input token is drawn. A small fraction of steps ignore
the model and jump to any known token, which keeps the output from only ever
replaying the corpus.
"""

from __future__ import annotations

import os
import random
import time

from sqlfuzz.errors import ModelAssumptionError
from sqlfuzz.model import MarkovModel, TransitionModel
from sqlfuzz.sql import END_OF_INPUT

RANDOM_JUMP_PROBABILITY = 0.05

# Statements in the corpus begin with one of these. The generator draws one
# and then discards it, see generate_query().
START_KEYWORDS = (
    "SELECT",
    "INSERT",
    "UPDATE",
    "DELETE",
    "SET",
    "SHOW",
    "DESCRIBE",
    "EXPLAIN",
)


def get_rand_seed() -> int:
    """Return a seed from the wall clock in milliseconds mixed with the pid.

    Mixing in the pid keeps workers forked in the same millisecond apart.
    """
    return (time.time_ns() // 1_000_000) ^ (os.getpid() << 20)


def new_random_stream() -> random.Random:
    """Return a freshly seeded random stream for the calling process."""
    return random.Random(get_rand_seed())


def random_known_token(model: MarkovModel, rng: random.Random) -> int:
    """Draw uniformly from [0, max_token] until the draw is a known token."""
    max_token = model.display.max_token
    while True:
        token = rng.randint(0, max_token)
        if token in model.display:
            return token


def next_token(transitions: TransitionModel, token: int, draw: float) -> int:
    """Pick the first successor of `token` whose cumulative probability covers `draw`."""
    try:
        cpd = transitions[token]
    except KeyError:
        raise ModelAssumptionError(token) from None
    for transition in cpd:
        if transition.cumulative >= draw:
            return transition.token
    # Rounding can leave the last cumulative value a hair under the draw.
    return cpd[-1].token


def generate_query(model: MarkovModel, rng: random.Random) -> str:
    """
    Generate one (possibly invalid) query from the model.

    The result is the display string of every visited token followed by a
    single space. `rng` is the only state touched; the model is read-only.

    The first draw picks a statement keyword from START_KEYWORDS and throws
    it away: the starting token always comes from rejection sampling over the
    known tokens. The draw is kept so the stream advances the same way the
    original harness did; the keyword set has no effect on the output.
    """
    transitions = model.transitions
    rng.choice(START_KEYWORDS)

    token = random_known_token(model, rng)
    parts: list[str] = []
    while token != END_OF_INPUT:
        parts.append(model.display[token])
        parts.append(" ")
        previous = token

        if rng.random() < RANDOM_JUMP_PROBABILITY:
            token = random_known_token(model, rng)
        else:
            token = next_token(transitions, token, rng.random())

        # A non-final token must be able to continue the walk. Fall back to
        # the last successor of the previous token, which has to exist.
        if token != END_OF_INPUT and token not in transitions:
            if previous not in transitions:
                raise ModelAssumptionError(token, previous)
            token = transitions[previous][-1].token

    return "".join(parts)


class QueryGenerator:
    """Generates queries from a shared model with a stream owned by this instance."""

    def __init__(self, model: MarkovModel, rng: random.Random | None = None):
        self.model = model
        self.rng = rng if rng is not None else new_random_stream()
        self.queries_generated = 0

    def reseed(self) -> None:
        """Replace the stream with a fresh one, e.g. right after a fork."""
        self.rng = new_random_stream()

    def generate(self) -> str:
        self.queries_generated += 1
        return generate_query(self.model, self.rng)

    def generate_batch(self, size: int) -> list[str]:
        return [self.generate() for _ in range(size)]
