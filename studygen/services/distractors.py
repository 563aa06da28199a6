"""
Wrong-answer options for multiple-choice questions.

Candidates come from the question's own generated options, sibling answers
and short declarative source sentences, in that order. Options the model
wrote for the question rank ahead of sibling answers; questions built from
stored flashcards have no model options, so sibling answers lead there. A
candidate must look tempting without being a second correct answer: it may not repeat or
nearly repeat the correct answer, and the source may not back it as
strongly as the correct one.
"""
import random
from dataclasses import dataclass
from typing import List, Optional, Sequence, Set

import structlog

from studygen.config import PipelineConfig
from studygen.services.errors import GenerationError
from studygen.services.language import DetectedLanguage
from studygen.services.llm import DISTRACTOR_TOOL, GenerativeClient
from studygen.services.prompts import build_distractor_prompt
from studygen.services.text_utils import jaccard, keyword_tokens, normalize_for_compare, tokenize, word_count

logger = structlog.get_logger()

OPTION_COUNT = 4
DISTRACTOR_COUNT = OPTION_COUNT - 1

SOURCE_PRIORITY = {"quiz": 0, "sibling": 1, "sentence": 2, "fallback": 3}


@dataclass
class Candidate:
    text: str
    source: str
    similarity: float = 0.0
    support: float = 0.0
    score: float = 0.0


@dataclass
class SourceProfile:
    question_tokens: Set[str]
    profiles: List[Set[str]]
    vocabulary: Set[str]
    correct_support: float


@dataclass
class OptionSet:
    options: List[str]
    correct_index: int
    used_fallback: bool = False


# -------------------- OPTIONS --------------------

def assemble_options(correct: str, distractors: Sequence[str], rng: random.Random) -> OptionSet:
    """Exactly four options with the correct one at a shuffled position."""
    if len(distractors) < DISTRACTOR_COUNT:
        raise ValueError(f"need {DISTRACTOR_COUNT} distractors, got {len(distractors)}")
    labelled = [(True, correct)] + [(False, d) for d in distractors[:DISTRACTOR_COUNT]]
    rng.shuffle(labelled)
    correct_index = next(i for i, (is_correct, _) in enumerate(labelled) if is_correct)
    return OptionSet(options=[text for _, text in labelled], correct_index=correct_index)


def altered_answers(correct: str) -> List[str]:
    """Truncated or tagged variants of the correct answer used as padding."""
    variants = []
    if len(correct) > 10:
        variants.append(correct[:max(5, int(len(correct) * 0.6))] + "...")
    variants += [f"{correct} (alt)", f"Not {correct}", f"{correct} (incorrect)"]
    return variants


def simple_distractors(correct: str, siblings: Sequence[str], rng: random.Random) -> List[str]:
    """Sibling answers as-is, padded with altered versions of the correct answer."""
    seen = {normalize_for_compare(correct)}
    pool = []
    for s in siblings:
        key = normalize_for_compare(s)
        if s and key not in seen:
            seen.add(key)
            pool.append(s)
    rng.shuffle(pool)
    chosen = pool[:DISTRACTOR_COUNT]
    for alt in altered_answers(correct):
        if len(chosen) >= DISTRACTOR_COUNT:
            break
        if alt not in chosen:
            chosen.append(alt)
    return chosen


def simple_options(correct: str, siblings: Sequence[str], rng: random.Random) -> OptionSet:
    return assemble_options(correct, simple_distractors(correct, siblings, rng), rng)


# -------------------- VALIDATING BUILDER --------------------

class DistractorBuilder:
    def __init__(self, config: PipelineConfig, client: Optional[GenerativeClient] = None,
                 rng: Optional[random.Random] = None):
        self.config = config
        self.client = client
        self.rng = rng or random.Random()

    def sentence_candidates(self, correct: str, sentences: Sequence[str]) -> List[str]:
        """Declarative source sentences; only offered when the answer is itself sentence-length."""
        if word_count(correct) < self.config.distractor_min_words:
            return []
        needle = correct.strip().rstrip(".").lower()
        result = []
        for s in sentences:
            n = word_count(s)
            if not self.config.distractor_min_words <= n <= self.config.distractor_max_words:
                continue
            if needle and needle in s.lower():
                continue
            result.append(s)
        return result

    @staticmethod
    def support(text: str, question_tokens: Set[str], profiles: Sequence[Set[str]]) -> float:
        """How strongly one source sentence ties the text to the question.

        Fraction of the text's own keywords (question words excluded) found in
        the sentence, weighted by the fraction of question keywords it covers.
        """
        tokens = set(keyword_tokens(text)) - question_tokens
        if not tokens or not question_tokens:
            return 0.0
        best = 0.0
        for profile in profiles:
            on_question = len(question_tokens & profile) / len(question_tokens)
            if on_question:
                best = max(best, on_question * len(tokens & profile) / len(tokens))
        return best

    def context(self, question: str, correct: str, sentences: Sequence[str]) -> SourceProfile:
        profiles = [set(keyword_tokens(s)) for s in sentences]
        question_tokens = set(keyword_tokens(question))
        return SourceProfile(
            question_tokens=question_tokens,
            profiles=profiles,
            vocabulary=set().union(*profiles) if profiles else set(),
            correct_support=self.support(correct, question_tokens, profiles),
        )

    def evaluate(self, text: str, source: str, correct: str, ctx: SourceProfile) -> Optional[Candidate]:
        """Scored candidate, or None if it could pass for the correct answer or is useless."""
        cfg = self.config
        if not text or normalize_for_compare(text) == normalize_for_compare(correct):
            return None
        similarity = jaccard(tokenize(text), tokenize(correct))
        if similarity >= cfg.near_duplicate_threshold:
            return None
        support = self.support(text, ctx.question_tokens, ctx.profiles)
        if support >= max(cfg.strong_support_floor, cfg.strong_support_ratio * ctx.correct_support):
            return None
        plausible = cfg.plausible_min_similarity <= similarity <= cfg.plausible_max_similarity
        on_topic = support > 0 or bool(set(keyword_tokens(text)) & ctx.vocabulary)
        topical = similarity < cfg.plausible_min_similarity and on_topic
        if not (plausible or topical):
            return None
        score = abs(similarity - cfg.sweet_spot_similarity) + support
        return Candidate(text=text, source=source, similarity=similarity, support=support, score=score)

    def rank(self, question: str, correct: str, raw: Sequence[tuple], sentences: Sequence[str],
             exclude: Sequence[str] = ()) -> List[Candidate]:
        """Valid candidates from ``(text, source)`` pairs, best first, without near-duplicates of each other."""
        ctx = self.context(question, correct, sentences)
        valid = []
        for text, source in raw:
            c = self.evaluate(text, source, correct, ctx)
            if c is not None:
                valid.append(c)
        valid.sort(key=lambda c: (SOURCE_PRIORITY.get(c.source, 9), c.score))

        picked: List[Candidate] = []
        taken = [set(tokenize(t)) for t in exclude]
        for c in valid:
            tokens = set(tokenize(c.text))
            if any(jaccard(tokens, t) >= self.config.near_duplicate_threshold for t in taken):
                continue
            picked.append(c)
            taken.append(tokens)
        return picked

    async def generate_fallback(self, question: str, correct: str, excerpt: str, needed: int,
                                language: Optional[DetectedLanguage]) -> List[str]:
        if self.client is None:
            return []
        prompt = build_distractor_prompt(question, correct, excerpt, needed, language)
        try:
            data = await self.client.generate_structured(prompt, DISTRACTOR_TOOL)
        except GenerationError as e:
            logger.warning("distractor_fallback_failed", question=question[:80], error=e.message)
            return []
        raw = data.get("distractors") or []
        return [str(d).strip() for d in raw if isinstance(d, (str, int, float)) and str(d).strip()]

    async def build(self, question: str, correct: str, siblings: Sequence[str], sentences: Sequence[str],
                    excerpt: str = "", language: Optional[DetectedLanguage] = None,
                    model_distractors: Sequence[str] = ()) -> Optional[OptionSet]:
        """Four shuffled options, or None when three valid distractors cannot be found."""
        raw = [(s, "sibling") for s in siblings]
        raw += [(s, "quiz") for s in model_distractors]
        raw += [(s, "sentence") for s in self.sentence_candidates(correct, sentences)]
        picked = self.rank(question, correct, raw, sentences)

        used_fallback = False
        if len(picked) < DISTRACTOR_COUNT:
            used_fallback = True
            generated = await self.generate_fallback(
                question, correct, excerpt, DISTRACTOR_COUNT - len(picked), language,
            )
            extra = self.rank(question, correct, [(g, "fallback") for g in generated], sentences,
                              exclude=[c.text for c in picked])
            picked += extra

        if len(picked) < DISTRACTOR_COUNT:
            logger.info("question_skipped", question=question[:80], distractors=len(picked),
                        used_fallback=used_fallback)
            return None

        option_set = assemble_options(correct, [c.text for c in picked[:DISTRACTOR_COUNT]], self.rng)
        option_set.used_fallback = used_fallback
        return option_set
