"""
Document-to-study-material generation pipeline.

One request runs as a sequence of awaited stages: page selection, chunk
selection, language detection, generation with a bounded grounding retry,
normalization (flashcards) or distractor building (quizzes), deduplication.
Each stage receives the immutable PipelineConfig; nothing is kept between
requests.
"""
import random
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import structlog

from studygen.config import PipelineConfig
from studygen.services.chunker import ChunkSelection, build_excerpt, select_relevant_chunks
from studygen.services.dedupe import deduplicate
from studygen.services.difficulty import (
    DifficultyClassifier,
    LengthDifficultyClassifier,
    NormalizationReport,
    desired_counts,
    normalize_flashcards,
    select_by_distribution,
)
from studygen.services.distractors import DistractorBuilder, simple_options
from studygen.services.errors import GenerationError, GroundingError, InvalidRequestError, NormalizationError
from studygen.services.grounding import GroundingReport, SourceIndex, ground_items
from studygen.services.language import DetectedLanguage, LanguageDetector, StopwordLanguageDetector
from studygen.services.llm import FLASHCARD_TOOL, QUIZ_TOOL, GenerativeClient
from studygen.services.logging import log_performance
from studygen.services.pages import Page, segment_pages, select_pages
from studygen.services.prompts import build_flashcard_prompt, build_quiz_prompt
from studygen.services.retry import with_retry
from studygen.services.schemas import FlashcardItem, QuizItem, parse_flashcards, parse_quiz_questions
from studygen.services.text_utils import split_sentences

logger = structlog.get_logger()


# -------------------- SOURCE --------------------

@dataclass
class SourceContext:
    text: str
    pages: List[Page]
    selection: ChunkSelection
    excerpt: str
    index: SourceIndex
    sentences: List[str]
    language: DetectedLanguage


def prepare_source(text: str, config: PipelineConfig, detector: Optional[LanguageDetector] = None,
                   start_page: Optional[int] = None, end_page: Optional[int] = None) -> SourceContext:
    """Restrict the document to the requested pages and pick the excerpt sent to the model.

    Grounding always checks against the full text; sentences for
    normalization and distractors come from the selected pages only.
    """
    all_pages = segment_pages(text, config)
    pages = select_pages(all_pages, start_page, end_page)
    selection = select_relevant_chunks(pages, config)
    excerpt = build_excerpt(selection.chunks)
    language = (detector or StopwordLanguageDetector()).detect(excerpt or text)
    sentences = split_sentences(" ".join(p.text for p in pages))

    logger.info(
        "source_prepared",
        total_pages=len(all_pages),
        selected_pages=[pages[0].number, pages[-1].number] if pages else [],
        excerpt_chars=len(excerpt),
        language=language.code,
        language_confidence=round(language.confidence, 3),
    )
    return SourceContext(
        text=text,
        pages=pages,
        selection=selection,
        excerpt=excerpt,
        index=SourceIndex(text),
        sentences=sentences,
        language=language,
    )


def _resolve_count(count: Optional[int], config: PipelineConfig) -> int:
    if count is None:
        return config.default_count
    if count < 1 or count > config.max_count:
        raise InvalidRequestError(f"count must be between 1 and {config.max_count}")
    return count


def _check_grounding(report: GroundingReport, config: PipelineConfig, attempts: int, kind: str):
    metrics = {
        "support_rate": round(report.support_rate, 3),
        "supported": len(report.supported),
        "total": report.total,
        "attempts": attempts,
    }
    if not report.supported or report.support_rate < config.reject_floor:
        logger.error("grounding_failed", kind=kind, **metrics)
        raise GroundingError(
            f"Could not generate {kind} supported by the document "
            f"({len(report.supported)} of {report.total} items were grounded). "
            "Ensure the document contains selectable text about its subject.",
            metrics=metrics,
        )


# -------------------- FLASHCARDS --------------------

@dataclass
class FlashcardBatch:
    items: List[FlashcardItem]
    language: DetectedLanguage
    support_rate: float
    compliance: float
    attempts: int
    selection_mode: str
    duplicates_removed: int = 0
    normalization_failed: int = 0


@dataclass
class _FlashcardAttempt:
    grounding: GroundingReport
    normalization: Optional[NormalizationReport] = None


class FlashcardPipeline:
    def __init__(self, client: GenerativeClient, config: PipelineConfig,
                 detector: Optional[LanguageDetector] = None,
                 classifier: Optional[DifficultyClassifier] = None):
        self.client = client
        self.config = config
        self.detector = detector or StopwordLanguageDetector()
        self.classifier = classifier or LengthDifficultyClassifier()

    async def _generate(self, source: SourceContext, title: str, desired: Dict[str, int],
                        strict_grounding: bool, strict_length: bool) -> GroundingReport:
        prompt = build_flashcard_prompt(source.excerpt, title, desired, source.language,
                                        strict_grounding=strict_grounding, strict_length=strict_length)
        data = await self.client.generate_structured(prompt, FLASHCARD_TOOL)
        items = parse_flashcards(data)
        if not items:
            raise GenerationError("Model returned no usable flashcards")
        return ground_items(items, source.index, source.selection.chunks,
                            self.config.question_weight, self.config.answer_weight)

    def _normalize(self, report: GroundingReport, difficulty: str, source: SourceContext) -> NormalizationReport:
        return normalize_flashcards(
            report.supported, difficulty, source.sentences, source.index, self.classifier,
            accept_flagged=self.config.accept_flagged_in_mixed,
            question_weight=self.config.question_weight,
            answer_weight=self.config.answer_weight,
            chunks=source.selection.chunks,
        )

    @log_performance("flashcard_generation")
    async def run(self, text: str, title: str = "", count: Optional[int] = None, difficulty: str = "mixed",
                  start_page: Optional[int] = None, end_page: Optional[int] = None) -> FlashcardBatch:
        cfg = self.config
        count = _resolve_count(count, cfg)
        if difficulty not in ("easy", "medium", "hard", "mixed"):
            raise InvalidRequestError(f"Unknown difficulty: {difficulty}")
        source = prepare_source(text, cfg, self.detector, start_page, end_page)
        desired = desired_counts(count, difficulty)

        grounded = await with_retry(
            lambda n: self._generate(source, title, desired, strict_grounding=n > 0, strict_length=False),
            accept=lambda r: r.support_rate >= cfg.retry_trigger,
            max_attempts=cfg.max_attempts,
            stage="grounding",
        )
        _check_grounding(grounded.value, cfg, grounded.attempts, "flashcards")
        first = _FlashcardAttempt(grounded.value, self._normalize(grounded.value, difficulty, source))

        async def attempt(n: int) -> _FlashcardAttempt:
            if n == 0:
                return first
            report = await self._generate(source, title, desired, strict_grounding=True, strict_length=True)
            return _FlashcardAttempt(report, self._normalize(report, difficulty, source))

        outcome = await with_retry(
            attempt,
            accept=lambda a: (a.normalization.compliance >= cfg.min_compliance
                              and a.grounding.support_rate >= cfg.reject_floor),
            max_attempts=cfg.max_attempts,
            stage="normalization",
        )
        final = outcome.value
        attempts = grounded.attempts + outcome.attempts - 1
        if final is not first:
            _check_grounding(final.grounding, cfg, attempts, "flashcards")
        if final.normalization.compliance < cfg.min_compliance or not final.normalization.accepted:
            metrics = {
                "compliance": round(final.normalization.compliance, 3),
                "failed": len(final.normalization.failed),
                "total": final.normalization.total,
                "attempts": attempts,
            }
            logger.error("normalization_failed", difficulty=difficulty, **metrics)
            raise NormalizationError(
                "Generated flashcards did not follow the answer length rules for the requested difficulty.",
                metrics=metrics,
            )

        accepted = final.normalization.accepted
        unique = deduplicate(accepted, cfg.dedupe_threshold)
        items = select_by_distribution(unique, desired, count)

        logger.info(
            "flashcards_generated",
            requested=count,
            difficulty=difficulty,
            produced=len(items),
            support_rate=round(final.grounding.support_rate, 3),
            compliance=round(final.normalization.compliance, 3),
            attempts=attempts,
        )
        return FlashcardBatch(
            items=items,
            language=source.language,
            support_rate=final.grounding.support_rate,
            compliance=final.normalization.compliance,
            attempts=attempts,
            selection_mode=source.selection.mode,
            duplicates_removed=len(accepted) - len(unique),
            normalization_failed=len(final.normalization.failed),
        )


# -------------------- QUIZ --------------------

@dataclass
class QuizBatch:
    items: List[QuizItem]
    language: Optional[DetectedLanguage]
    support_rate: float
    attempts: int
    origin: str  # "flashcards" | "generated"
    skipped: int = 0
    fallback_calls: int = 0


def cards_in_page_range(cards: Sequence, start_page: Optional[int] = None,
                        end_page: Optional[int] = None) -> List:
    """Stored cards whose page span overlaps the requested range; unplaced cards only without a range."""
    if start_page is None and end_page is None:
        return list(cards)
    lo = start_page or 1
    hi = end_page if end_page is not None else float("inf")
    if lo > hi:
        lo, hi = hi, lo
    return [
        c for c in cards
        if c.page_from is not None and c.page_to is not None and c.page_from <= hi and c.page_to >= lo
    ]


async def build_quiz_from_flashcards(cards: Sequence, count: int, builder: DistractorBuilder,
                                     source: Optional[SourceContext] = None,
                                     rng: Optional[random.Random] = None) -> List[QuizItem]:
    """Turn stored flashcards into questions, answers of the other cards serving as distractors.

    With document text the validating builder is used; without it the
    simple mode pads sibling answers with altered versions of the answer.
    """
    rng = rng or builder.rng
    pool = list(cards)
    rng.shuffle(pool)
    questions: List[QuizItem] = []
    for card in pool:
        if len(questions) >= count:
            break
        siblings = [c.answer for c in pool if c is not card]
        if source is not None:
            option_set = await builder.build(card.question, card.answer, siblings, source.sentences,
                                             source.excerpt, source.language)
        else:
            option_set = simple_options(card.answer, siblings, rng)
        if option_set is None:
            continue
        questions.append(QuizItem(
            question=card.question,
            options=option_set.options,
            correct_index=option_set.correct_index,
            confidence=card.confidence or 0.0,
            supported=True,
            page_from=card.page_from,
            page_to=card.page_to,
        ))
    logger.info("quiz_from_flashcards", cards=len(pool), questions=len(questions),
                mode="validated" if source is not None else "simple")
    return questions


class QuizPipeline:
    def __init__(self, client: GenerativeClient, config: PipelineConfig,
                 detector: Optional[LanguageDetector] = None,
                 builder: Optional[DistractorBuilder] = None,
                 rng: Optional[random.Random] = None):
        self.client = client
        self.config = config
        self.detector = detector or StopwordLanguageDetector()
        self.builder = builder or DistractorBuilder(config, client, rng)

    async def _generate(self, source: SourceContext, title: str, count: int, strict: bool) -> GroundingReport:
        prompt = build_quiz_prompt(source.excerpt, title, count, source.language, strict_grounding=strict)
        data = await self.client.generate_structured(prompt, QUIZ_TOOL)
        items = parse_quiz_questions(data)
        if not items:
            raise GenerationError("Model returned no usable quiz questions")
        return ground_items(items, source.index, source.selection.chunks,
                            self.config.question_weight, self.config.answer_weight)

    async def from_flashcards(self, cards: Sequence, count: Optional[int] = None,
                              text: Optional[str] = None, start_page: Optional[int] = None,
                              end_page: Optional[int] = None) -> QuizBatch:
        count = _resolve_count(count, self.config)
        source = prepare_source(text, self.config, self.detector, start_page, end_page) if text else None
        questions = await build_quiz_from_flashcards(cards, count, self.builder, source)
        questions = deduplicate(questions, self.config.dedupe_threshold)
        return QuizBatch(
            items=questions,
            language=source.language if source else None,
            support_rate=1.0,
            attempts=0,
            origin="flashcards",
            skipped=min(count, len(cards)) - len(questions),
        )

    @log_performance("quiz_generation")
    async def run(self, text: str, title: str = "", count: Optional[int] = None,
                  start_page: Optional[int] = None, end_page: Optional[int] = None,
                  sibling_answers: Sequence[str] = ()) -> QuizBatch:
        cfg = self.config
        count = _resolve_count(count, cfg)
        source = prepare_source(text, cfg, self.detector, start_page, end_page)

        outcome = await with_retry(
            lambda n: self._generate(source, title, count, strict=n > 0),
            accept=lambda r: r.support_rate >= cfg.retry_trigger,
            max_attempts=cfg.max_attempts,
            stage="grounding",
        )
        report = outcome.value
        _check_grounding(report, cfg, outcome.attempts, "quiz questions")

        questions: List[QuizItem] = []
        skipped = fallback_calls = 0
        for item in report.supported:
            correct = item.answer_text
            own = [o for i, o in enumerate(item.options) if i != item.correct_index and o]
            siblings = [a for a in sibling_answers if a != correct]
            option_set = await self.builder.build(item.question, correct, siblings, source.sentences,
                                                  source.excerpt, source.language, model_distractors=own)
            if option_set is None:
                skipped += 1
                continue
            fallback_calls += int(option_set.used_fallback)
            item.options, item.correct_index = option_set.options, option_set.correct_index
            questions.append(item)

        questions = deduplicate(questions, cfg.dedupe_threshold)[:count]
        if not questions:
            metrics = {"skipped": skipped, "supported": len(report.supported)}
            logger.error("quiz_failed", **metrics)
            raise GroundingError(
                "Could not build quiz questions with enough valid answer options from this document.",
                stage="distractors",
                metrics=metrics,
            )

        logger.info(
            "quiz_generated",
            requested=count,
            produced=len(questions),
            skipped=skipped,
            fallback_calls=fallback_calls,
            support_rate=round(report.support_rate, 3),
            attempts=outcome.attempts,
        )
        return QuizBatch(
            items=questions,
            language=source.language,
            support_rate=report.support_rate,
            attempts=outcome.attempts,
            origin="generated",
            skipped=skipped,
            fallback_calls=fallback_calls,
        )
