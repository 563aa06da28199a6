from fastapi import APIRouter, Depends, Request
from sqlmodel import Session

from studygen.auth import get_current_user_id
from studygen.config import PipelineConfig, get_config
from studygen.db import get_session
from studygen.middleware.rate_limit import ai_generation_limit
from studygen.services.errors import PipelineError
from studygen.services.extractor import TextExtractor
from studygen.services.llm import get_document_reader, get_generative_client
from studygen.services.monitoring import AI_GENERATION_REQUESTS, GENERATED_ITEMS, PIPELINE_FAILURES
from studygen.services.repository import StudyRepository
from studygen.services.schemas import FlashcardRequest, QuizRequest
from studygen.services.storage import FileStorage, get_storage
from studygen.services.study import StudyService


router = APIRouter(tags=["generation"])


def get_study_service(
    session: Session = Depends(get_session),
    storage: FileStorage = Depends(get_storage),
    client=Depends(get_generative_client),
    reader=Depends(get_document_reader),
    config: PipelineConfig = Depends(get_config),
) -> StudyService:
    return StudyService(
        repository=StudyRepository(session),
        storage=storage,
        extractor=TextExtractor(config, reader=reader),
        client=client,
        config=config,
    )


async def _tracked(kind: str, call):
    try:
        result = await call
    except PipelineError as e:
        AI_GENERATION_REQUESTS.labels(type=kind, status="error").inc()
        PIPELINE_FAILURES.labels(stage=e.stage).inc()
        raise
    AI_GENERATION_REQUESTS.labels(type=kind, status="success").inc()
    GENERATED_ITEMS.labels(type=kind).inc(result["count"])
    return result


@router.post("/flashcards/generate")
@ai_generation_limit()
async def generate_flashcards(
    request: Request,
    body: FlashcardRequest,
    user_id: str = Depends(get_current_user_id),
    service: StudyService = Depends(get_study_service),
):
    return await _tracked("flashcards", service.generate_flashcards(user_id, body))


@router.post("/quiz/generate")
@ai_generation_limit()
async def generate_quiz(
    request: Request,
    body: QuizRequest,
    user_id: str = Depends(get_current_user_id),
    service: StudyService = Depends(get_study_service),
):
    return await _tracked("quiz", service.generate_quiz(user_id, body))


@router.get("/flashcards/sets/{set_id}")
def get_flashcard_set(set_id: int, user_id: str = Depends(get_current_user_id),
                      session: Session = Depends(get_session)):
    flashcard_set = StudyRepository(session).get_flashcard_set(set_id, user_id)
    return {
        "id": flashcard_set.id,
        "documentId": flashcard_set.document_id,
        "title": flashcard_set.title,
        "difficulty": flashcard_set.difficulty,
        "language": flashcard_set.language,
        "count": flashcard_set.card_count,
        "items": [
            {
                "id": c.id,
                "question": c.question,
                "answer": c.answer,
                "difficulty": c.difficulty,
                "confidence": c.confidence,
                "page_from": c.page_from,
                "page_to": c.page_to,
                "normalization_failed": c.normalization_failed,
            }
            for c in flashcard_set.cards
        ],
    }


@router.get("/quizzes/{quiz_id}")
def get_quiz(quiz_id: int, user_id: str = Depends(get_current_user_id),
             session: Session = Depends(get_session)):
    repository = StudyRepository(session)
    quiz = repository.get_quiz(quiz_id, user_id)
    questions = repository.quiz_questions(quiz)
    return {
        "id": quiz.id,
        "documentId": quiz.document_id,
        "title": quiz.title,
        "origin": quiz.origin,
        "language": quiz.language,
        "count": len(questions),
        "items": [
            {
                "question": q.question,
                "options": q.options,
                "correctIndex": q.correct_index,
                "explanation": q.explanation,
                "confidence": q.confidence,
                "page_from": q.page_from,
                "page_to": q.page_to,
            }
            for q in questions
        ],
    }
