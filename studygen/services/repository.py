"""
Persistence for documents and generated study material.

Sets and quizzes are append-only: the parent row is inserted first, then
its items. A failure between the two commits leaves an empty parent row,
which readers treat as a set with no cards.
"""
from typing import List, Optional, Sequence

import structlog
from sqlmodel import Session, select

from studygen.models import Document, Flashcard, FlashcardSet, Quiz, QuizQuestion
from studygen.services.errors import DocumentNotFoundError
from studygen.services.schemas import FlashcardItem, QuizItem

logger = structlog.get_logger()


class StudyRepository:
    def __init__(self, session: Session):
        self.session = session

    # -------------------- DOCUMENTS --------------------

    def create_document(self, user_id: str, title: str, file_path: str, mime_type: Optional[str] = None) -> Document:
        document = Document(user_id=user_id, title=title, file_path=file_path, mime_type=mime_type)
        self.session.add(document)
        self.session.commit()
        self.session.refresh(document)
        logger.info("document_created", document_id=document.id, user_id=user_id)
        return document

    def get_document(self, document_id: int, user_id: str) -> Document:
        document = self.session.get(Document, document_id)
        if document is None or document.user_id != user_id:
            raise DocumentNotFoundError("Document not found")
        return document

    def cache_content(self, document: Document, content: str, method: str) -> Document:
        document.content = content
        document.extraction_method = method
        self.session.add(document)
        self.session.commit()
        self.session.refresh(document)
        return document

    # -------------------- FLASHCARDS --------------------

    def save_flashcard_set(self, document: Document, user_id: str, title: str, difficulty: str,
                           items: Sequence[FlashcardItem], language: Optional[str] = None) -> FlashcardSet:
        flashcard_set = FlashcardSet(
            user_id=user_id,
            document_id=document.id,
            title=title,
            card_count=len(items),
            difficulty=difficulty,
            language=language,
        )
        self.session.add(flashcard_set)
        self.session.commit()
        self.session.refresh(flashcard_set)

        for item in items:
            self.session.add(Flashcard(
                set_id=flashcard_set.id,
                user_id=user_id,
                document_id=document.id,
                question=item.question,
                answer=item.answer,
                difficulty=item.difficulty,
                confidence=item.confidence,
                page_from=item.page_from,
                page_to=item.page_to,
                normalization_failed=item.normalization_failed,
            ))
        self.session.commit()
        self.session.refresh(flashcard_set)
        logger.info("flashcard_set_saved", set_id=flashcard_set.id, cards=len(items))
        return flashcard_set

    def get_flashcard_set(self, set_id: int, user_id: str) -> FlashcardSet:
        flashcard_set = self.session.get(FlashcardSet, set_id)
        if flashcard_set is None or flashcard_set.user_id != user_id:
            raise DocumentNotFoundError("Flashcard set not found")
        return flashcard_set

    def list_flashcards(self, document_id: int, user_id: str) -> List[Flashcard]:
        statement = (
            select(Flashcard)
            .where(Flashcard.document_id == document_id)
            .where(Flashcard.user_id == user_id)
            .order_by(Flashcard.id)
        )
        return list(self.session.exec(statement).all())

    # -------------------- QUIZZES --------------------

    def save_quiz(self, document: Document, user_id: str, title: str, items: Sequence[QuizItem],
                  origin: str = "generated", language: Optional[str] = None) -> Quiz:
        quiz = Quiz(user_id=user_id, document_id=document.id, title=title, origin=origin, language=language)
        self.session.add(quiz)
        self.session.commit()
        self.session.refresh(quiz)

        for position, item in enumerate(items):
            self.session.add(QuizQuestion(
                quiz_id=quiz.id,
                position=position,
                question=item.question,
                options=list(item.options),
                correct_index=item.correct_index,
                explanation=item.explanation,
                confidence=item.confidence,
                page_from=item.page_from,
                page_to=item.page_to,
            ))
        self.session.commit()
        self.session.refresh(quiz)
        logger.info("quiz_saved", quiz_id=quiz.id, questions=len(items), origin=origin)
        return quiz

    def get_quiz(self, quiz_id: int, user_id: str) -> Quiz:
        quiz = self.session.get(Quiz, quiz_id)
        if quiz is None or quiz.user_id != user_id:
            raise DocumentNotFoundError("Quiz not found")
        return quiz

    def quiz_questions(self, quiz: Quiz) -> List[QuizQuestion]:
        statement = select(QuizQuestion).where(QuizQuestion.quiz_id == quiz.id).order_by(QuizQuestion.position)
        return list(self.session.exec(statement).all())
