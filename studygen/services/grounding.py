"""
Lexical grounding of generated items against the source document.

An item is supported when any 3+ character token of its question or of its
answer appears verbatim in the full document text. The check is deliberately
permissive; the per-item confidence score is the finer signal.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Set

import structlog

from studygen.services.chunker import Chunk
from studygen.services.text_utils import content_tokens, tokenize

logger = structlog.get_logger()


class SourceIndex:
    """Lowercased full text plus its token set, built once per request."""

    def __init__(self, text: str):
        self.text = text or ""
        self.lower = self.text.lower()
        self.tokens: Set[str] = set(tokenize(self.text))


def supported_by_source(needle: str, index: SourceIndex) -> bool:
    if not needle or not index.lower:
        return False
    return any(token in index.lower for token in content_tokens(needle))


def token_overlap(text: str, index: SourceIndex) -> float:
    tokens = content_tokens(text)
    if not tokens:
        return 0.0
    return sum(1 for t in tokens if t in index.tokens) / len(tokens)


def item_confidence(question: str, answer: str, index: SourceIndex,
                    question_weight: float = 0.4, answer_weight: float = 0.6) -> float:
    return question_weight * token_overlap(question, index) + answer_weight * token_overlap(answer, index)


def is_item_supported(question: str, answer: str, index: SourceIndex) -> bool:
    return supported_by_source(question, index) or supported_by_source(answer, index)


def best_matching_chunk(text: str, chunks: Sequence[Chunk]) -> Optional[Chunk]:
    tokens = set(content_tokens(text))
    best, best_hits = None, 0
    for c in chunks:
        hits = len(tokens & set(tokenize(c.text)))
        if hits > best_hits:
            best, best_hits = c, hits
    return best


@dataclass
class GroundingReport:
    supported: List = field(default_factory=list)
    rejected: List = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.supported) + len(self.rejected)

    @property
    def support_rate(self) -> float:
        return len(self.supported) / self.total if self.total else 0.0


def annotate_item(item, index: SourceIndex, chunks: Sequence[Chunk] = (),
                  question_weight: float = 0.4, answer_weight: float = 0.6):
    """Set ``supported``, ``confidence`` and page provenance on a flashcard or quiz item."""
    answer = item.answer_text
    item.supported = is_item_supported(item.question, answer, index)
    item.confidence = item_confidence(item.question, answer, index, question_weight, answer_weight)
    chunk = best_matching_chunk(f"{item.question} {answer}", chunks) if chunks else None
    if chunk is not None:
        item.page_from, item.page_to = chunk.page_from, chunk.page_to
    return item


def ground_items(items: Sequence, index: SourceIndex, chunks: Sequence[Chunk] = (),
                 question_weight: float = 0.4, answer_weight: float = 0.6) -> GroundingReport:
    report = GroundingReport()
    for item in items:
        annotate_item(item, index, chunks, question_weight, answer_weight)
        (report.supported if item.supported else report.rejected).append(item)
    logger.info(
        "items_grounded",
        total=report.total,
        supported=len(report.supported),
        rejected=len(report.rejected),
        support_rate=round(report.support_rate, 3),
    )
    return report
