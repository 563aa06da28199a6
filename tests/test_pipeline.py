"""
Pipeline tests with a scripted generative client
"""
import random
from types import SimpleNamespace

import pytest

from conftest import BIOLOGY_TEXT, FakeGenerativeClient, run
from studygen.services.errors import GenerationError, GroundingError, InvalidRequestError, NormalizationError
from studygen.services.llm import DISTRACTOR_TOOL, FLASHCARD_TOOL, QUIZ_TOOL
from studygen.services.pipeline import FlashcardPipeline, QuizPipeline, cards_in_page_range, prepare_source
from studygen.services.prompts import STRICT_GROUNDING, STRICT_LENGTH
from studygen.services.schemas import FlashcardItem
from studygen.services.text_utils import content_tokens, sentence_count, word_count

MITOCHONDRIA_TEXT = "The mitochondria is the powerhouse of the cell. It produces ATP."

SUPPORTED_CARDS = [
    {"question": "What is the powerhouse of the cell?", "answer": "The mitochondria", "difficulty": "easy"},
    {"question": "Where does photosynthesis take place?", "answer": "In the chloroplast", "difficulty": "easy"},
    {"question": "What do ribosomes build?", "answer": "Proteins from amino acids", "difficulty": "easy"},
]

HARD_ANSWERS = [
    {
        "question": "How does the mitochondria power the cell?",
        "answer": "The mitochondria is the powerhouse of the cell. Mitochondria produce ATP through cellular "
                  "respiration. The inner membrane of the mitochondria holds the electron transport chain. "
                  "This chain moves electrons and pumps protons so that ATP synthase can make ATP for the whole cell.",
        "difficulty": "hard",
    },
    {
        "question": "How do chloroplasts support the plant?",
        "answer": "Photosynthesis takes place in the chloroplast. Chloroplasts capture light energy and store it "
                  "as glucose. Plants release oxygen as a product of photosynthesis. The glucose made in the "
                  "chloroplast is later used by the mitochondria of the plant cell to produce ATP for growth.",
        "difficulty": "hard",
    },
]

UNREPAIRABLE_HARD = [
    {"question": "What does the mitochondria produce?", "answer": "Energy currency molecules", "difficulty": "hard"},
    {"question": "What does the chloroplast capture?", "answer": "Solar rays", "difficulty": "hard"},
]


def unsupported_cards(n):
    return [
        {"question": f"Zorblax quux {i}?", "answer": "Frobnicate", "difficulty": "easy"}
        for i in range(n)
    ]


def five_page_document():
    return "\f".join([
        "Alpha alpha introduction alpha overview. " * 20,
        "Mitochondria produce energy. The mitochondria membrane matters. " * 20,
        "Mitochondria and ribosomes cooperate. Ribosomes build proteins. " * 20,
        "Chloroplast chloroplast pigments absorb light. " * 20,
        "Closing remarks closing summary. " * 20,
    ])


class TestPrepareSource:
    def test_full_text_index_and_selected_sentences(self, config):
        """Test grounding uses the whole document while sentences follow the page range"""
        source = prepare_source(BIOLOGY_TEXT, config, start_page=3, end_page=3)
        assert "mitochondria" in source.index.tokens
        assert all("mitochondria" not in s.lower() for s in source.sentences)
        assert source.language.code == "en"
        assert [p.number for p in source.pages] == [3]

    def test_page_range_after_blank_page(self, config):
        """Test page numbers count an image-only page with no text"""
        text = "Alpha " * 30 + "\f\f" + "Gamma " * 30
        third = prepare_source(text, config, start_page=3, end_page=3)
        assert "Gamma" in third.excerpt
        assert "Alpha" not in third.excerpt
        assert {(c.page_from, c.page_to) for c in third.selection.chunks} == {(3, 3)}

        blank = prepare_source(text, config, start_page=2, end_page=2)
        assert blank.selection.chunks == []
        assert blank.excerpt == ""


class TestFlashcardPipeline:
    def test_single_easy_card(self, config):
        """Test one easy card grounded in a two-sentence document"""
        client = FakeGenerativeClient([{"flashcards": [
            {"question": "What is the powerhouse of the cell?", "answer": "The mitochondria", "difficulty": "easy"},
        ]}])
        batch = run(FlashcardPipeline(client, config).run(MITOCHONDRIA_TEXT, "Cells", count=1, difficulty="easy"))

        assert len(batch.items) == 1
        card = batch.items[0]
        assert word_count(card.answer) <= 12
        assert sentence_count(card.answer) <= 1
        assert set(content_tokens(card.answer)) & {"mitochondria", "atp"}
        assert card.difficulty == "easy"
        assert batch.attempts == 1
        assert client.tool_names == [FLASHCARD_TOOL.name]

    def test_long_easy_answer_is_shortened(self, config):
        """Test an over-long easy answer is repaired without another call"""
        client = FakeGenerativeClient([{"flashcards": [{
            "question": "What is the powerhouse of the cell?",
            "answer": "The mitochondria is the powerhouse of the cell because it produces ATP "
                      "for all of the cell's activities.",
            "difficulty": "easy",
        }]}])
        batch = run(FlashcardPipeline(client, config).run(MITOCHONDRIA_TEXT, count=1, difficulty="easy"))
        card = batch.items[0]
        assert card.answer.endswith("...")
        assert word_count(card.answer) == 12
        assert len(client.calls) == 1

    def test_low_support_fails_after_one_retry(self, config):
        """Test 3 of 10 grounded cards fails the request after exactly one retry"""
        response = {"flashcards": SUPPORTED_CARDS + unsupported_cards(7)}
        client = FakeGenerativeClient([response, response])

        with pytest.raises(GroundingError) as exc:
            run(FlashcardPipeline(client, config).run(BIOLOGY_TEXT, count=10))

        assert len(client.calls) == 2
        assert exc.value.metrics["support_rate"] == 0.3
        assert exc.value.status_code == 422
        assert STRICT_GROUNDING in client.calls[1][0].system
        assert STRICT_GROUNDING not in client.calls[0][0].system

    def test_retry_recovers(self, config):
        """Test a grounded second attempt is used"""
        client = FakeGenerativeClient([
            {"flashcards": SUPPORTED_CARDS[:1] + unsupported_cards(3)},
            {"flashcards": SUPPORTED_CARDS},
        ])
        batch = run(FlashcardPipeline(client, config).run(BIOLOGY_TEXT, count=3))
        assert batch.attempts == 2
        assert batch.support_rate == 1.0
        assert len(batch.items) == 3

    def test_unsupported_items_are_dropped(self, config):
        """Test items failing the support check never reach the output"""
        client = FakeGenerativeClient([{"flashcards": SUPPORTED_CARDS + unsupported_cards(1)}])
        batch = run(FlashcardPipeline(client, config).run(BIOLOGY_TEXT, count=4))
        assert batch.support_rate == 0.75
        assert all("Zorblax" not in card.question for card in batch.items)

    def test_duplicates_removed(self, config):
        """Test near-duplicate cards collapse before selection"""
        cards = SUPPORTED_CARDS + [
            {"question": "What is the powerhouse of the cell?", "answer": "The mitochondria.", "difficulty": "easy"},
        ]
        client = FakeGenerativeClient([{"flashcards": cards}])
        batch = run(FlashcardPipeline(client, config).run(BIOLOGY_TEXT, count=3))
        assert batch.duplicates_removed == 1
        assert len(batch.items) == 3
        assert len({card.question for card in batch.items}) == 3

    def test_compliance_retry(self, config):
        """Test unrepairable lengths trigger one stricter regeneration"""
        client = FakeGenerativeClient([
            {"flashcards": UNREPAIRABLE_HARD},
            {"flashcards": HARD_ANSWERS},
        ])
        batch = run(FlashcardPipeline(client, config).run(BIOLOGY_TEXT, count=2, difficulty="hard"))

        assert len(client.calls) == 2
        assert STRICT_LENGTH in client.calls[1][0].system
        assert batch.attempts == 2
        assert batch.compliance == 1.0
        assert [card.difficulty for card in batch.items] == ["hard", "hard"]
        assert all(word_count(card.answer) >= 41 for card in batch.items)

    def test_normalization_failure(self, config):
        """Test two non-compliant attempts fail the request"""
        client = FakeGenerativeClient([{"flashcards": UNREPAIRABLE_HARD}, {"flashcards": UNREPAIRABLE_HARD}])
        with pytest.raises(NormalizationError) as exc:
            run(FlashcardPipeline(client, config).run(BIOLOGY_TEXT, count=2, difficulty="hard"))
        assert exc.value.stage == "normalization"
        assert exc.value.metrics["compliance"] == 0.0
        assert len(client.calls) == 2

    def test_page_range(self, config):
        """Test pages 2-3 restrict the excerpt and the provenance"""
        client = FakeGenerativeClient([{"flashcards": [
            {"question": "What do mitochondria produce?", "answer": "Energy", "difficulty": "easy"},
        ]}])
        batch = run(FlashcardPipeline(client, config).run(
            five_page_document(), count=1, start_page=2, end_page=3,
        ))
        excerpt = client.calls[0][0].user
        assert "Alpha" not in excerpt
        assert "Chloroplast" not in excerpt
        assert "Mitochondria" in excerpt
        card = batch.items[0]
        assert 2 <= card.page_from <= card.page_to <= 3

    def test_empty_generation(self, config):
        """Test a model reply without usable cards is a generation error"""
        client = FakeGenerativeClient([{"flashcards": []}, {"flashcards": [{"question": "", "answer": "x"}]}])
        with pytest.raises(GenerationError):
            run(FlashcardPipeline(client, config).run(BIOLOGY_TEXT, count=2))
        assert len(client.calls) == 2

    @pytest.mark.parametrize("count", [0, 51])
    def test_count_bounds(self, config, count):
        """Test counts outside 1..50 are rejected before any call"""
        client = FakeGenerativeClient()
        with pytest.raises(InvalidRequestError):
            run(FlashcardPipeline(client, config).run(BIOLOGY_TEXT, count=count))
        assert client.calls == []

    def test_unknown_difficulty(self, config):
        """Test an unknown difficulty is rejected"""
        with pytest.raises(InvalidRequestError):
            run(FlashcardPipeline(FakeGenerativeClient(), config).run(BIOLOGY_TEXT, difficulty="extreme"))


class TestQuizPipeline:
    def test_generated_quiz(self, config):
        """Test model options that validate are kept without a fallback call"""
        client = FakeGenerativeClient([{"questions": [{
            "question": "Which organelle is the powerhouse of the cell?",
            "options": ["Ribosomes", "Mitochondria", "Nucleus", "Chloroplast"],
            "correctIndex": 1,
            "explanation": "The mitochondria is the powerhouse of the cell.",
        }]}])
        batch = run(QuizPipeline(client, config, rng=random.Random(0)).run(BIOLOGY_TEXT, "Cells", count=1))

        assert batch.origin == "generated"
        assert len(batch.items) == 1
        item = batch.items[0]
        assert len(item.options) == 4
        assert item.options[item.correct_index] == "Mitochondria"
        assert sorted(item.options) == ["Chloroplast", "Mitochondria", "Nucleus", "Ribosomes"]
        assert batch.fallback_calls == 0
        assert client.tool_names == [QUIZ_TOOL.name]

    def test_question_without_distractors_fails_quiz(self, config):
        """Test a quiz whose only question cannot get options is an error"""
        client = FakeGenerativeClient([
            {"questions": [{
                "question": "Which organelle is the powerhouse of the cell?",
                "options": ["Mitochondria", "mitochondria", "Mitochondria.", "The Mitochondria"],
                "correctIndex": 0,
                "explanation": "",
            }]},
            {"distractors": ["Mitochondria"]},
        ])
        with pytest.raises(GroundingError) as exc:
            run(QuizPipeline(client, config, rng=random.Random(0)).run(BIOLOGY_TEXT, count=1))
        assert exc.value.stage == "distractors"
        assert client.tool_names == [QUIZ_TOOL.name, DISTRACTOR_TOOL.name]

    def test_from_flashcards_simple(self, config):
        """Test stored cards become questions without document text"""
        cards = [FlashcardItem(**{k: c[k] for k in ("question", "answer")}) for c in SUPPORTED_CARDS]
        cards.append(FlashcardItem("What stores the genetic material?", "The nucleus"))
        client = FakeGenerativeClient()
        batch = run(QuizPipeline(client, config, rng=random.Random(2)).from_flashcards(cards, count=4))

        assert batch.origin == "flashcards"
        assert batch.language is None
        assert len(batch.items) == 4
        answers = {c.question: c.answer for c in cards}
        for item in batch.items:
            assert len(item.options) == 4
            assert item.options[item.correct_index] == answers[item.question]
        assert client.calls == []

    def test_from_flashcards_validated(self, config):
        """Test sibling answers are validated against the document text"""
        cards = [
            FlashcardItem("Which organelle is the powerhouse of the cell?", "Mitochondria"),
            FlashcardItem("Where does photosynthesis take place?", "Chloroplast"),
            FlashcardItem("What stores the genetic material?", "Nucleus"),
            FlashcardItem("What builds proteins from amino acids?", "Ribosomes"),
        ]
        client = FakeGenerativeClient()
        batch = run(QuizPipeline(client, config, rng=random.Random(5)).from_flashcards(
            cards, count=4, text=BIOLOGY_TEXT,
        ))
        assert len(batch.items) == 4
        assert batch.skipped == 0
        assert batch.language.code == "en"
        for item in batch.items:
            assert sorted(item.options) == ["Chloroplast", "Mitochondria", "Nucleus", "Ribosomes"]
        assert client.calls == []


class TestCardsInPageRange:
    CARDS = [
        SimpleNamespace(answer="Mitochondria", page_from=1, page_to=1),
        SimpleNamespace(answer="Chloroplast", page_from=2, page_to=3),
        SimpleNamespace(answer="Nucleus", page_from=4, page_to=4),
        SimpleNamespace(answer="Ribosomes", page_from=None, page_to=None),
    ]

    def answers(self, cards):
        return [c.answer for c in cards]

    def test_no_range_keeps_every_card(self):
        """Test reuse without a range considers all stored cards"""
        assert self.answers(cards_in_page_range(self.CARDS)) == ["Mitochondria", "Chloroplast", "Nucleus", "Ribosomes"]

    def test_overlapping_spans(self):
        """Test cards spanning into the range are kept and unplaced cards are not"""
        assert self.answers(cards_in_page_range(self.CARDS, 3, 4)) == ["Chloroplast", "Nucleus"]

    def test_open_ended_and_inverted_ranges(self):
        """Test a start page alone and a reversed range"""
        assert self.answers(cards_in_page_range(self.CARDS, 2, None)) == ["Chloroplast", "Nucleus"]
        assert self.answers(cards_in_page_range(self.CARDS, None, 1)) == ["Mitochondria"]
        assert self.answers(cards_in_page_range(self.CARDS, 2, 1)) == ["Mitochondria", "Chloroplast"]
