"""
Unit tests for distractor validation and option assembly
"""
import random

import pytest

from conftest import FakeGenerativeClient, run
from studygen.services.distractors import (
    DistractorBuilder,
    assemble_options,
    simple_distractors,
    simple_options,
)
from studygen.services.llm import DISTRACTOR_TOOL

ATP_QUESTION = "Which organelle produces ATP?"
ATP_SENTENCES = [
    "Mitochondria produces ATP for the cell.",
    "Chloroplasts also produces ATP in plants.",
    "The nucleus stores DNA.",
]

POWERHOUSE_QUESTION = "Which organelle is the powerhouse of the cell?"
ORGANELLE_SENTENCES = [
    "The mitochondria is the powerhouse of the cell.",
    "Ribosome units build proteins from amino acids.",
    "The lysosome digests worn parts of the cell.",
    "The golgi apparatus packages proteins for transport.",
]


@pytest.fixture
def builder(config):
    return DistractorBuilder(config, rng=random.Random(0))


class TestEvaluate:
    def test_identical_candidate_rejected(self, builder):
        """Test the correct answer is never its own distractor"""
        ctx = builder.context(ATP_QUESTION, "Mitochondria", ATP_SENTENCES)
        assert builder.evaluate("mitochondria.", "quiz", "Mitochondria", ctx) is None

    def test_near_duplicate_rejected(self, builder):
        """Test a candidate 0.9 similar to the correct answer is rejected"""
        correct = "alpha beta gamma delta epsilon zeta eta theta iota kappa"
        candidate = "alpha beta gamma delta epsilon zeta eta theta iota"
        ctx = builder.context("Which letters?", correct, [])
        assert builder.evaluate(candidate, "quiz", correct, ctx) is None

    def test_plausible_candidate_accepted(self, builder):
        """Test 0.4 similarity with no source support is accepted"""
        correct = "red blue green yellow"
        ctx = builder.context("Which colors appear on the flag?", correct, [])
        candidate = builder.evaluate("red blue purple", "quiz", correct, ctx)
        assert candidate is not None
        assert candidate.similarity == pytest.approx(0.4)
        assert candidate.support == 0.0
        assert candidate.score == pytest.approx(0.05)

    def test_strongly_supported_candidate_rejected(self, builder):
        """Test a candidate the source backs as well as the correct answer is rejected"""
        ctx = builder.context(ATP_QUESTION, "Mitochondria", ATP_SENTENCES)
        assert ctx.correct_support == pytest.approx(0.5)
        assert builder.evaluate("Chloroplasts", "quiz", "Mitochondria", ctx) is None

    def test_on_topic_unsupported_candidate_accepted(self, builder):
        """Test a source term unrelated to the question is a good distractor"""
        ctx = builder.context(ATP_QUESTION, "Mitochondria", ATP_SENTENCES)
        candidate = builder.evaluate("Nucleus", "quiz", "Mitochondria", ctx)
        assert candidate is not None
        assert candidate.support == 0.0

    def test_off_topic_candidate_rejected(self, builder):
        """Test a dissimilar candidate absent from the source is useless"""
        ctx = builder.context(ATP_QUESTION, "Mitochondria", ATP_SENTENCES)
        assert builder.evaluate("Guernica", "quiz", "Mitochondria", ctx) is None


class TestRank:
    def test_source_priority(self, builder):
        """Test the model's own options come before sibling answers"""
        raw = [("Ribosome", "sibling"), ("Lysosome", "quiz")]
        ranked = builder.rank(POWERHOUSE_QUESTION, "Mitochondria", raw, ORGANELLE_SENTENCES)
        assert [c.text for c in ranked] == ["Lysosome", "Ribosome"]

    def test_siblings_lead_without_model_options(self, builder):
        """Test sibling answers come before source sentences for flashcard questions"""
        raw = [("The lysosome digests worn parts of the cell.", "sentence"), ("Ribosome", "sibling")]
        ranked = builder.rank(POWERHOUSE_QUESTION, "Mitochondria", raw, ORGANELLE_SENTENCES)
        assert [c.source for c in ranked] == ["sibling", "sentence"]

    def test_candidates_never_duplicate_each_other(self, builder):
        """Test near-identical candidates collapse to one"""
        raw = [("Golgi apparatus", "quiz"), ("golgi apparatus.", "sibling")]
        ranked = builder.rank(POWERHOUSE_QUESTION, "Mitochondria", raw, ORGANELLE_SENTENCES)
        assert [c.text for c in ranked] == ["Golgi apparatus"]

    def test_sentence_candidates_only_for_long_answers(self, builder):
        """Test source sentences are offered for sentence-length answers only"""
        sentences = [
            "The mitochondria produces ATP through respiration in cells.",
            "Ribosomes build proteins.",
            "Yes.",
        ]
        assert builder.sentence_candidates("Mitochondria", sentences) == []
        assert builder.sentence_candidates("produces ATP through respiration", sentences) == [
            "Ribosomes build proteins."
        ]


class TestBuild:
    def test_model_options_are_enough(self, builder):
        """Test no fallback call when the model's options validate"""
        option_set = run(builder.build(
            POWERHOUSE_QUESTION, "Mitochondria", [], ORGANELLE_SENTENCES,
            model_distractors=["Ribosome", "Lysosome", "Golgi apparatus"],
        ))
        assert option_set is not None
        assert not option_set.used_fallback
        assert len(option_set.options) == 4
        assert option_set.options[option_set.correct_index] == "Mitochondria"

    def test_fallback_generation(self, config):
        """Test one generation call fills the missing distractors"""
        client = FakeGenerativeClient([{"distractors": ["Ribosome", "Lysosome", "Golgi apparatus", "Mitochondria"]}])
        builder = DistractorBuilder(config, client=client, rng=random.Random(1))
        option_set = run(builder.build(POWERHOUSE_QUESTION, "Mitochondria", [], ORGANELLE_SENTENCES, excerpt="..."))
        assert option_set is not None
        assert option_set.used_fallback
        assert sorted(option_set.options) == ["Golgi apparatus", "Lysosome", "Mitochondria", "Ribosome"]
        assert option_set.options[option_set.correct_index] == "Mitochondria"
        assert client.tool_names == [DISTRACTOR_TOOL.name]

    def test_skipped_when_fallback_is_insufficient(self, config):
        """Test a question without three valid distractors yields nothing"""
        client = FakeGenerativeClient([{"distractors": ["Mitochondria", "mitochondria"]}])
        builder = DistractorBuilder(config, client=client, rng=random.Random(1))
        assert run(builder.build(POWERHOUSE_QUESTION, "Mitochondria", ["Ribosome"], ORGANELLE_SENTENCES)) is None
        assert len(client.calls) == 1

    def test_fallback_failure_skips_question(self, config):
        """Test a failed fallback call is not fatal"""
        client = FakeGenerativeClient([])
        builder = DistractorBuilder(config, client=client, rng=random.Random(1))
        assert run(builder.build(POWERHOUSE_QUESTION, "Mitochondria", [], ORGANELLE_SENTENCES)) is None
        assert len(client.calls) == 1


class TestOptions:
    def test_assemble_options(self):
        """Test four options with the correct one at a shuffled index"""
        positions = set()
        for seed in range(20):
            option_set = assemble_options("Mitochondria", ["Ribosome", "Lysosome", "Nucleus"], random.Random(seed))
            assert len(option_set.options) == 4
            assert option_set.options[option_set.correct_index] == "Mitochondria"
            positions.add(option_set.correct_index)
        assert len(positions) > 1

    def test_assemble_needs_three_distractors(self):
        """Test fewer than three distractors is an error"""
        with pytest.raises(ValueError):
            assemble_options("Mitochondria", ["Ribosome", "Lysosome"], random.Random(0))

    def test_simple_distractors_pad_with_altered_answers(self):
        """Test sibling answers are deduplicated and padded"""
        chosen = simple_distractors("Mitochondria", ["mitochondria", "Nucleus", "Nucleus."], random.Random(0))
        assert chosen == ["Nucleus", "Mitocho...", "Mitochondria (alt)"]

    def test_simple_options(self):
        """Test simple mode always produces four distinct options"""
        option_set = simple_options("ATP", ["Glucose", "Oxygen", "DNA", "Protein"], random.Random(3))
        assert len(set(option_set.options)) == 4
        assert option_set.options[option_set.correct_index] == "ATP"
