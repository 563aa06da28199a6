"""
Difficulty bands for flashcard answers and the normalizer that enforces them.

The measured answer length decides a card's difficulty; the model's own
label is only a hint. Answers that fit no band are repaired from the source
text when possible and flagged otherwise.
"""
import math
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence

import structlog

from studygen.services.chunker import Chunk
from studygen.services.grounding import SourceIndex, annotate_item
from studygen.services.schemas import FlashcardItem
from studygen.services.text_utils import content_tokens, sentence_count, split_sentences, word_count

logger = structlog.get_logger()

ELLIPSIS = "..."


@dataclass(frozen=True)
class Band:
    name: str
    min_words: int
    max_words: int
    max_sentences: int

    def fits(self, text: str) -> bool:
        words = word_count(text)
        return self.min_words <= words <= self.max_words and sentence_count(text) <= self.max_sentences


BANDS: "OrderedDict[str, Band]" = OrderedDict(
    (b.name, b) for b in (
        Band("easy", 1, 12, 1),
        Band("medium", 13, 40, 2),
        Band("hard", 41, 250, 6),
    )
)


def desired_counts(count: int, difficulty: str) -> Dict[str, int]:
    """Per-band targets: all in one band, or 40/40/20 with the remainder on medium."""
    counts = OrderedDict((name, 0) for name in BANDS)
    if difficulty in BANDS:
        counts[difficulty] = count
        return counts
    counts["easy"] = int(math.floor(count * 0.4 + 0.5))
    counts["hard"] = int(math.floor(count * 0.2 + 0.5))
    counts["medium"] = count - counts["easy"] - counts["hard"]
    return counts


# -------------------- CLASSIFIER --------------------

class DifficultyClassifier(Protocol):
    def classify(self, answer: str) -> Optional[str]:
        ...

    def nearest(self, answer: str) -> str:
        ...


class LengthDifficultyClassifier:
    """Band whose word and sentence limits the answer satisfies."""

    def classify(self, answer: str) -> Optional[str]:
        for name, band in BANDS.items():
            if band.fits(answer):
                return name
        return None

    def nearest(self, answer: str) -> str:
        words = word_count(answer)
        for name, band in BANDS.items():
            if words <= band.max_words:
                return name
        return "hard"


# -------------------- NORMALIZER --------------------

@dataclass
class NormalizedAnswer:
    answer: str
    method: str  # none | source_sentence | shortened | expanded | failed

    @property
    def failed(self) -> bool:
        return self.method == "failed"


def _strip_end(text: str) -> str:
    return text.strip().rstrip(".!?;:, ").lower()


def locate_source_sentence(question: str, answer: str, sentences: Sequence[str]) -> Optional[int]:
    """Index of the source sentence that best carries the answer, if any."""
    needle = _strip_end(answer)
    if len(needle) >= 3:
        for i, s in enumerate(sentences):
            if needle in s.lower():
                return i
    q_needle = _strip_end(question)
    if len(q_needle) >= 3:
        for i, s in enumerate(sentences):
            if q_needle in s.lower():
                return i

    answer_tokens = set(content_tokens(answer))
    question_tokens = set(content_tokens(question))
    if not answer_tokens:
        return None
    needed = max(1, math.ceil(len(answer_tokens) * 0.5))
    best, best_key = None, (0, 0)
    for i, s in enumerate(sentences):
        tokens = set(content_tokens(s))
        hits = len(answer_tokens & tokens)
        if hits < needed:
            continue
        key = (hits, len(question_tokens & tokens))
        if key > best_key:
            best, best_key = i, key
    return best


def truncate_words(text: str, max_words: int) -> str:
    words = text.split()
    if len(words) <= max_words:
        return text.strip()
    return " ".join(words[:max_words]).rstrip(",;:.!?") + ELLIPSIS


def shorten(text: str, band: Band) -> str:
    """Leading sentences that fit the band, or the first sentence cut at the word limit."""
    sents = split_sentences(text)
    if not sents:
        return text
    kept: List[str] = []
    for s in sents:
        if len(kept) + 1 > band.max_sentences or word_count(" ".join(kept + [s])) > band.max_words:
            break
        kept.append(s)
    if kept:
        return " ".join(kept)
    return truncate_words(sents[0], band.max_words)


def expand(sentences: Sequence[str], start: int, band: Band) -> str:
    """Grow from a source sentence until the band's minimum length is reached."""
    kept: List[str] = []
    for s in sentences[start:]:
        candidate = kept + [s]
        if len(candidate) > band.max_sentences or word_count(" ".join(candidate)) > band.max_words:
            break
        kept = candidate
        if word_count(" ".join(kept)) >= band.min_words:
            break
    return " ".join(kept)


def normalize_answer(question: str, answer: str, difficulty: str, sentences: Sequence[str]) -> NormalizedAnswer:
    band = BANDS[difficulty]
    if band.fits(answer):
        return NormalizedAnswer(answer, "none")

    idx = locate_source_sentence(question, answer, sentences)
    if idx is not None:
        sentence = sentences[idx]
        candidate = sentence if band.fits(sentence) else shorten(sentence, band)
        if band.fits(candidate):
            return NormalizedAnswer(candidate, "source_sentence")

    too_long = word_count(answer) > band.max_words or sentence_count(answer) > band.max_sentences
    if too_long:
        candidate = shorten(answer, band)
        if band.fits(candidate):
            return NormalizedAnswer(candidate, "shortened")

    if word_count(answer) < band.min_words and idx is not None:
        candidate = expand(sentences, idx, band)
        if band.fits(candidate):
            return NormalizedAnswer(candidate, "expanded")

    return NormalizedAnswer(answer, "failed")


@dataclass
class NormalizationReport:
    accepted: List[FlashcardItem] = field(default_factory=list)
    failed: List[FlashcardItem] = field(default_factory=list)
    total: int = 0

    @property
    def compliance(self) -> float:
        if not self.total:
            return 0.0
        return (self.total - len(self.failed)) / self.total


def normalize_flashcards(items: Sequence[FlashcardItem], requested: str, source_sentences: Sequence[str],
                         index: SourceIndex, classifier: Optional[DifficultyClassifier] = None,
                         accept_flagged: bool = False,
                         question_weight: float = 0.4, answer_weight: float = 0.6,
                         chunks: Sequence[Chunk] = ()) -> NormalizationReport:
    """Give every card a measured difficulty and enforce its band.

    ``requested`` is easy/medium/hard for a strict batch or "mixed". Failed
    cards are dropped unless ``accept_flagged`` (mixed batches only).
    Rewritten answers are matched against ``chunks`` again for their pages.
    """
    classifier = classifier or LengthDifficultyClassifier()
    strict = requested in BANDS
    report = NormalizationReport(total=len(items))

    for item in items:
        measured = classifier.classify(item.answer)
        if strict:
            target = requested
        elif measured is not None:
            target = measured
        else:
            target = item.model_difficulty or classifier.nearest(item.answer)

        if measured == target:
            item.difficulty = target
            item.normalization = "none"
        else:
            was_supported = item.supported
            result = normalize_answer(item.question, item.answer, target, source_sentences)
            if not result.failed and result.method != "none":
                item.answer = result.answer
                # page provenance follows the rewritten answer
                annotate_item(item, index, chunks, question_weight, answer_weight)
                if was_supported and not item.supported:
                    result = NormalizedAnswer(item.answer, "failed")
            item.normalization = result.method
            item.difficulty = classifier.classify(item.answer) or target

        if item.normalization_failed:
            report.failed.append(item)
            if accept_flagged and not strict:
                report.accepted.append(item)
        else:
            report.accepted.append(item)

    logger.info(
        "flashcards_normalized",
        requested=requested,
        total=report.total,
        failed=len(report.failed),
        compliance=round(report.compliance, 3),
    )
    return report


def select_by_distribution(items: Sequence, desired: Dict[str, int], count: int) -> List:
    """Pick up to ``count`` items honoring per-band targets, best confidence first.

    Shortfalls in one band are filled from the others. Original order is kept.
    """
    ranked = sorted(range(len(items)), key=lambda i: items[i].confidence, reverse=True)
    chosen = set()
    for band, n in desired.items():
        taken = 0
        for i in ranked:
            if taken >= n:
                break
            if i not in chosen and items[i].difficulty == band:
                chosen.add(i)
                taken += 1
    for i in ranked:
        if len(chosen) >= count:
            break
        chosen.add(i)
    return [items[i] for i in sorted(chosen)]
