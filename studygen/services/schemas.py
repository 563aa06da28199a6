"""
Pipeline item types and API request/response schemas.

Generated items are plain dataclasses that the pipeline stages mutate as
they are grounded, normalized and deduplicated. Request and response bodies
are pydantic models.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

DIFFICULTIES = ("easy", "medium", "hard")


# -------------------- PIPELINE ITEMS --------------------

@dataclass
class FlashcardItem:
    question: str
    answer: str
    difficulty: str = "medium"
    confidence: float = 0.0
    supported: bool = False
    page_from: Optional[int] = None
    page_to: Optional[int] = None
    normalization: str = "none"  # none | source_sentence | shortened | expanded | failed
    model_difficulty: Optional[str] = None

    @property
    def answer_text(self) -> str:
        return self.answer

    @property
    def normalization_failed(self) -> bool:
        return self.normalization == "failed"

    @property
    def dedupe_text(self) -> str:
        return f"{self.question} ||| {self.answer}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question": self.question,
            "answer": self.answer,
            "difficulty": self.difficulty,
            "confidence": round(self.confidence, 4),
            "page_from": self.page_from,
            "page_to": self.page_to,
            "normalized": self.normalization not in ("none", "failed"),
            "normalization_failed": self.normalization_failed,
        }


@dataclass
class QuizItem:
    question: str
    options: List[str] = field(default_factory=list)
    correct_index: int = 0
    explanation: str = ""
    confidence: float = 0.0
    supported: bool = False
    page_from: Optional[int] = None
    page_to: Optional[int] = None

    @property
    def answer_text(self) -> str:
        if 0 <= self.correct_index < len(self.options):
            return self.options[self.correct_index]
        return ""

    @property
    def dedupe_text(self) -> str:
        return f"{self.question} ||| {self.answer_text}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question": self.question,
            "options": list(self.options),
            "correctIndex": self.correct_index,
            "explanation": self.explanation,
            "confidence": round(self.confidence, 4),
            "page_from": self.page_from,
            "page_to": self.page_to,
        }


def _clean(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def parse_flashcards(data: Dict[str, Any]) -> List[FlashcardItem]:
    """Turn a ``create_flashcards`` payload into items, dropping malformed entries."""
    items = []
    for raw in data.get("flashcards") or []:
        if not isinstance(raw, dict):
            continue
        question, answer = _clean(raw.get("question")), _clean(raw.get("answer"))
        if not question or not answer:
            continue
        label = _clean(raw.get("difficulty")).lower()
        label = label if label in DIFFICULTIES else None
        items.append(FlashcardItem(question=question, answer=answer,
                                   difficulty=label or "medium", model_difficulty=label))
    return items


def parse_quiz_questions(data: Dict[str, Any]) -> List[QuizItem]:
    """Turn a ``create_quiz`` payload into items; the correct index must point at an option."""
    items = []
    for raw in data.get("questions") or []:
        if not isinstance(raw, dict):
            continue
        question = _clean(raw.get("question"))
        raw_options = raw.get("options")
        if not isinstance(raw_options, list):
            continue
        options = [_clean(o) for o in raw_options]
        try:
            correct_index = int(raw.get("correctIndex"))
        except (TypeError, ValueError):
            continue
        if not question or not 0 <= correct_index < len(options) or not options[correct_index]:
            continue
        items.append(QuizItem(question=question, options=options, correct_index=correct_index,
                              explanation=_clean(raw.get("explanation"))))
    return items


# -------------------- API SCHEMAS --------------------

class _PageRange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: int = Field(..., alias="documentId")
    count: Optional[int] = Field(None, ge=1, le=50)
    start_page: Optional[int] = Field(None, alias="startPage", ge=1)
    end_page: Optional[int] = Field(None, alias="endPage", ge=1)


class FlashcardRequest(_PageRange):
    difficulty: Literal["easy", "medium", "hard", "mixed"] = "mixed"


class QuizRequest(_PageRange):
    reuse_flashcards: bool = Field(True, alias="reuseFlashcards")
