"""
Request-level orchestration: document lookup, extraction with content
caching, pipeline run and persistence.
"""
import random
from typing import Any, Dict, Optional

import structlog

from studygen.config import PipelineConfig
from studygen.models import Document
from studygen.services.errors import ExtractionError
from studygen.services.extractor import TextExtractor
from studygen.services.llm import GenerativeClient
from studygen.services.pipeline import FlashcardPipeline, QuizBatch, QuizPipeline, cards_in_page_range
from studygen.services.repository import StudyRepository
from studygen.services.schemas import FlashcardRequest, QuizRequest
from studygen.services.storage import FileStorage

logger = structlog.get_logger()

MIN_REUSABLE_FLASHCARDS = 4


class StudyService:
    def __init__(self, repository: StudyRepository, storage: FileStorage, extractor: TextExtractor,
                 client: GenerativeClient, config: PipelineConfig, rng: Optional[random.Random] = None):
        self.repository = repository
        self.storage = storage
        self.extractor = extractor
        self.client = client
        self.config = config
        self.rng = rng or random.Random()

    async def document_text(self, document: Document) -> str:
        """Extracted text of a document, cached on the row after the first extraction."""
        cached = document.content
        if cached and len(cached.strip()) >= self.config.min_text_length:
            return cached
        data = self.storage.load(document.file_path)
        result = await self.extractor.extract(data, cached)
        if result.method != "cache":
            self.repository.cache_content(document, result.text, result.method)
        return result.text

    async def generate_flashcards(self, user_id: str, request: FlashcardRequest) -> Dict[str, Any]:
        document = self.repository.get_document(request.document_id, user_id)
        text = await self.document_text(document)
        pipeline = FlashcardPipeline(self.client, self.config)
        batch = await pipeline.run(
            text,
            title=document.title,
            count=request.count,
            difficulty=request.difficulty,
            start_page=request.start_page,
            end_page=request.end_page,
        )
        flashcard_set = self.repository.save_flashcard_set(
            document, user_id, f"Flashcards: {document.title}", request.difficulty, batch.items,
            language=batch.language.code,
        )
        return {
            "success": True,
            "setId": flashcard_set.id,
            "title": flashcard_set.title,
            "count": len(batch.items),
            "items": [item.to_dict() for item in batch.items],
            "language": batch.language.code,
            "supportRate": round(batch.support_rate, 4),
            "compliance": round(batch.compliance, 4),
            "attempts": batch.attempts,
        }

    async def generate_quiz(self, user_id: str, request: QuizRequest) -> Dict[str, Any]:
        document = self.repository.get_document(request.document_id, user_id)
        pipeline = QuizPipeline(self.client, self.config, rng=self.rng)
        cards = self.repository.list_flashcards(document.id, user_id)
        cards = [c for c in cards if not c.normalization_failed]
        cards = cards_in_page_range(cards, request.start_page, request.end_page)

        batch: Optional[QuizBatch] = None
        if request.reuse_flashcards and len(cards) >= MIN_REUSABLE_FLASHCARDS:
            text: Optional[str] = None
            try:
                text = await self.document_text(document)
            except ExtractionError as e:
                # stored cards are enough for the simple option builder
                logger.warning("quiz_source_unavailable", document_id=document.id, error=e.message)
            batch = await pipeline.from_flashcards(cards, request.count, text, request.start_page, request.end_page)
            if not batch.items:
                batch = None

        if batch is None:
            text = await self.document_text(document)
            batch = await pipeline.run(
                text,
                title=document.title,
                count=request.count,
                start_page=request.start_page,
                end_page=request.end_page,
                sibling_answers=[c.answer for c in cards],
            )

        language = batch.language.code if batch.language else None
        quiz = self.repository.save_quiz(
            document, user_id, f"Quiz: {document.title}", batch.items, origin=batch.origin, language=language,
        )
        return {
            "success": True,
            "quizId": quiz.id,
            "title": quiz.title,
            "count": len(batch.items),
            "items": [item.to_dict() for item in batch.items],
            "language": language,
            "origin": batch.origin,
            "supportRate": round(batch.support_rate, 4),
            "skipped": batch.skipped,
        }
