#!/usr/bin/env python3
"""
Tests for random query generation in sqlfuzz/generator.py.
"""

import random
import unittest
from unittest.mock import patch

from sqlfuzz.errors import ModelAssumptionError
from sqlfuzz.generator import (
    START_KEYWORDS,
    QueryGenerator,
    generate_query,
    new_random_stream,
    next_token,
    random_known_token,
)
from sqlfuzz.model import DisplayTable, MarkovModel, Transition, TransitionModel
from sqlfuzz.sql import END_OF_INPUT

SELECT = 1
IDENTIFIER = 2
STAR = 3
FROM = 4


class ScriptedRandom:
    """A stand-in for random.Random that replays fixed draws."""

    def __init__(self, randints, randoms):
        self.randints = list(randints)
        self.randoms = list(randoms)
        self.choices = []

    def choice(self, seq):
        self.choices.append(seq)
        return seq[0]

    def randint(self, a, b):
        value = self.randints.pop(0)
        assert a <= value <= b
        return value

    def random(self):
        return self.randoms.pop(0)


def worked_example_model():
    display = DisplayTable({SELECT: "SELECT", IDENTIFIER: "IDENTIFIER", END_OF_INPUT: "<END>"})
    transitions = TransitionModel.from_counts(
        {SELECT: {IDENTIFIER: 2}, IDENTIFIER: {END_OF_INPUT: 2}}
    )
    return MarkovModel(display, transitions)


def richer_model():
    display = DisplayTable(
        {SELECT: "SELECT", IDENTIFIER: "a", STAR: "*", FROM: "FROM", END_OF_INPUT: "<END>"}
    )
    transitions = TransitionModel.from_counts(
        {
            SELECT: {STAR: 3, IDENTIFIER: 1},
            STAR: {FROM: 1},
            FROM: {IDENTIFIER: 1},
            IDENTIFIER: {END_OF_INPUT: 2, FROM: 1},
        }
    )
    return MarkovModel(display, transitions)


class TestGenerateQuery(unittest.TestCase):
    def test_worked_example(self):
        """Test that sole successors are picked whatever the draw."""
        model = worked_example_model()
        for draw in (0.05, 0.5, 0.999999):
            # Start on SELECT, no random jump, then the CPD draw, twice.
            rng = ScriptedRandom(randints=[SELECT], randoms=[0.5, draw, 0.5, draw])
            self.assertEqual(generate_query(model, rng), "SELECT IDENTIFIER ")

    def test_start_keyword_draw_is_discarded(self):
        model = worked_example_model()
        rng = ScriptedRandom(randints=[IDENTIFIER], randoms=[0.5, 0.3])

        self.assertEqual(generate_query(model, rng), "IDENTIFIER ")
        self.assertEqual(rng.choices, [START_KEYWORDS])

    def test_starting_on_end_token_gives_empty_query(self):
        model = worked_example_model()
        rng = ScriptedRandom(randints=[END_OF_INPUT], randoms=[])
        self.assertEqual(generate_query(model, rng), "")

    def test_rejection_sampling_skips_unknown_tokens(self):
        display = DisplayTable({END_OF_INPUT: "", 5: "SELECT"})
        model = MarkovModel(display, TransitionModel.from_counts({5: {END_OF_INPUT: 1}}))
        rng = ScriptedRandom(randints=[3, 1, 4, 5], randoms=[])

        self.assertEqual(random_known_token(model, rng), 5)
        self.assertEqual(rng.randints, [])

    def test_random_jump(self):
        """Test that a draw under 0.05 ignores the transition model."""
        model = worked_example_model()
        # SELECT, jump (0.01) to SELECT, no jump, IDENTIFIER, no jump, END.
        rng = ScriptedRandom(randints=[SELECT, SELECT], randoms=[0.01, 0.5, 0.2, 0.5, 0.2])
        self.assertEqual(generate_query(model, rng), "SELECT SELECT IDENTIFIER ")

    def test_inverse_cdf_selection(self):
        model = richer_model()
        # SELECT -> draw 0.8 lands past STAR (0.75) on IDENTIFIER -> END (draw 0.1).
        rng = ScriptedRandom(randints=[SELECT], randoms=[0.5, 0.8, 0.5, 0.1])
        self.assertEqual(generate_query(model, rng), "SELECT a ")

    def test_never_contains_end_token_text(self):
        model = richer_model()
        rng = random.Random(1234)
        for _ in range(500):
            self.assertNotIn("<END>", generate_query(model, rng))

    def test_reproducible_for_same_seed(self):
        model = richer_model()
        first = [generate_query(model, random.Random(99)) for _ in range(5)]
        rng_a = random.Random(7)
        rng_b = random.Random(7)
        series_a = [generate_query(model, rng_a) for _ in range(50)]
        series_b = [generate_query(model, rng_b) for _ in range(50)]

        self.assertEqual(series_a, series_b)
        self.assertEqual(len(set(first)), 1)

    def test_output_ends_with_single_space(self):
        model = richer_model()
        rng = random.Random(5)
        for _ in range(100):
            query = generate_query(model, rng)
            if query:
                self.assertTrue(query.endswith(" "))
                self.assertNotIn("  ", query)


class TestFallback(unittest.TestCase):
    def test_fallback_uses_last_successor_of_previous_token(self):
        """Test that a token without successors is replaced by the previous token's last successor."""
        display = DisplayTable({END_OF_INPUT: "", SELECT: "SELECT", IDENTIFIER: "a", STAR: "*"})
        transitions = TransitionModel(
            {
                SELECT: [Transition(STAR, 0.5), Transition(IDENTIFIER, 1.0)],
                IDENTIFIER: [Transition(END_OF_INPUT, 1.0)],
            }
        )
        model = MarkovModel(display, transitions)
        # SELECT -> STAR (no entry) -> replaced by IDENTIFIER -> END.
        rng = ScriptedRandom(randints=[SELECT], randoms=[0.5, 0.1, 0.5, 0.5])
        self.assertEqual(generate_query(model, rng), "SELECT a ")

    def test_fallback_without_entry_raises(self):
        display = DisplayTable({END_OF_INPUT: "", SELECT: "SELECT", STAR: "*"})
        transitions = TransitionModel({SELECT: [Transition(END_OF_INPUT, 1.0)]})
        model = MarkovModel(display, transitions)
        # STAR has no entry; a jump from it lands on STAR again.
        rng = ScriptedRandom(randints=[STAR, STAR], randoms=[0.01])

        with self.assertRaises(ModelAssumptionError) as ctx:
            generate_query(model, rng)
        self.assertEqual(ctx.exception.token, STAR)
        self.assertEqual(ctx.exception.previous, STAR)

    def test_lookup_of_unknown_token_raises(self):
        transitions = TransitionModel({SELECT: [Transition(END_OF_INPUT, 1.0)]})
        with self.assertRaises(ModelAssumptionError):
            next_token(transitions, STAR, 0.5)

    def test_next_token_rounding_falls_back_to_last(self):
        transitions = TransitionModel({SELECT: [Transition(STAR, 0.5), Transition(FROM, 0.9999999)]})
        self.assertEqual(next_token(transitions, SELECT, 0.99999999), FROM)


class TestQueryGenerator(unittest.TestCase):
    def test_counts_generated_queries(self):
        generator = QueryGenerator(richer_model(), random.Random(3))
        batch = generator.generate_batch(10)

        self.assertEqual(len(batch), 10)
        self.assertEqual(generator.queries_generated, 10)

    def test_reseed_replaces_stream(self):
        generator = QueryGenerator(richer_model(), random.Random(3))
        old_rng = generator.rng
        generator.reseed()
        self.assertIsNot(generator.rng, old_rng)

    def test_streams_differ_between_processes(self):
        with patch("sqlfuzz.generator.time.time_ns", return_value=1_000_000_000):
            with patch("sqlfuzz.generator.os.getpid", return_value=100):
                parent = new_random_stream().random()
            with patch("sqlfuzz.generator.os.getpid", return_value=101):
                child = new_random_stream().random()
        self.assertNotEqual(parent, child)


if __name__ == "__main__":
    unittest.main()
