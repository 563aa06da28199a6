from datetime import datetime
from typing import List, Optional

from sqlmodel import Field, SQLModel, Relationship
from sqlalchemy import Column, JSON


class Document(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    title: str
    file_path: str
    mime_type: Optional[str] = None
    content: Optional[str] = None
    extraction_method: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class FlashcardSet(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    document_id: int = Field(foreign_key="document.id", index=True)
    title: str
    card_count: int = 0
    difficulty: str = "mixed"
    language: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    cards: List["Flashcard"] = Relationship(
        back_populates="flashcard_set",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class Flashcard(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    set_id: int = Field(foreign_key="flashcardset.id", index=True)
    user_id: str = Field(index=True)
    document_id: int = Field(foreign_key="document.id", index=True)
    question: str
    answer: str
    difficulty: str = "medium"
    confidence: float = 0.0
    page_from: Optional[int] = None
    page_to: Optional[int] = None
    normalization_failed: bool = False

    flashcard_set: Optional[FlashcardSet] = Relationship(back_populates="cards")


class Quiz(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    document_id: int = Field(foreign_key="document.id", index=True)
    title: str
    origin: str = "generated"
    language: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    questions: List["QuizQuestion"] = Relationship(
        back_populates="quiz",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class QuizQuestion(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    quiz_id: int = Field(foreign_key="quiz.id", index=True)
    position: int = 0
    question: str
    options: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    correct_index: int
    explanation: str = ""
    confidence: float = 0.0
    page_from: Optional[int] = None
    page_to: Optional[int] = None

    quiz: Optional[Quiz] = Relationship(back_populates="questions")
