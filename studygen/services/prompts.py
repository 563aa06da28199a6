"""
Prompt construction for flashcard, quiz and distractor generation.

Every prompt carries the same core rules (SOURCE only, no questions about the
document itself, reply in the source language); retries append stricter
instructions instead of rewording the base prompt.
"""
import json
from typing import Dict, Optional

from studygen.services.difficulty import BANDS
from studygen.services.language import DetectedLanguage
from studygen.services.llm import Prompt


# -------------------- FEW-SHOT EXAMPLES --------------------

FEW_SHOT_FLASHCARDS = {
    "easy": [
        {"question": "What organelle produces most of a cell's ATP?", "answer": "The mitochondria.", "difficulty": "easy"},
        {"question": "What gas do plants absorb during photosynthesis?", "answer": "Carbon dioxide.", "difficulty": "easy"},
    ],
    "medium": [
        {
            "question": "Why is the mitochondrion called the powerhouse of the cell?",
            "answer": "Because it carries out cellular respiration, converting nutrients into ATP, "
                      "the molecule cells use as their main energy currency.",
            "difficulty": "medium",
        },
    ],
    "hard": [
        {
            "question": "Explain how the electron transport chain produces ATP.",
            "answer": "Electrons from NADH and FADH2 pass through protein complexes in the inner mitochondrial "
                      "membrane. The energy released pumps protons into the intermembrane space, building a "
                      "gradient. Protons flow back through ATP synthase, and that flow drives the phosphorylation "
                      "of ADP into ATP. Oxygen accepts the electrons at the end of the chain and forms water.",
            "difficulty": "hard",
        },
    ],
}

FEW_SHOT_QUIZ = [
    {
        "question": "Which organelle is known as the powerhouse of the cell?",
        "options": ["Ribosome", "Mitochondrion", "Golgi apparatus", "Lysosome"],
        "correctIndex": 1,
        "explanation": "The mitochondrion produces most of the cell's ATP.",
    }
]


# -------------------- SHARED RULES --------------------

CORE_RULES = """RULES:
1. Use ONLY facts, concepts, definitions and information stated in the SOURCE. If unsure, omit the item.
2. Never ask about the document itself (its title, author, chapters, page numbers or formatting).
3. Every question must be answerable from the SOURCE alone and be self-contained.
4. Questions, answers, options and explanations must be in the SAME language as the SOURCE."""

STRICT_GROUNDING = (
    "IMPORTANT: the previous attempt contained items that are not supported by the SOURCE. "
    "Only include items directly supported by SOURCE; reuse its exact key terms."
)

STRICT_LENGTH = (
    "IMPORTANT: the previous attempt ignored the answer length rules. "
    "Strictly follow the length rules for every difficulty; count words and sentences before answering."
)


def _band_rules() -> str:
    lines = ["ANSWER LENGTH RULES:"]
    for name, band in BANDS.items():
        plural = "sentence" if band.max_sentences == 1 else "sentences"
        lines.append(f"- {name}: {band.min_words}-{band.max_words} words, at most {band.max_sentences} {plural}")
    return "\n".join(lines)


def _distribution(desired: Dict[str, int]) -> str:
    parts = [f"{n} {name}" for name, n in desired.items() if n > 0]
    return ", ".join(parts)


def _language_line(language: DetectedLanguage) -> str:
    return f"REPLY IN: {language.name}"


def _extra(strict_grounding: bool, strict_length: bool) -> str:
    extra = []
    if strict_grounding:
        extra.append(STRICT_GROUNDING)
    if strict_length:
        extra.append(STRICT_LENGTH)
    return ("\n\n" + "\n".join(extra)) if extra else ""


# -------------------- BUILDERS --------------------

def build_flashcard_prompt(excerpt: str, title: str, desired: Dict[str, int], language: DetectedLanguage,
                           strict_grounding: bool = False, strict_length: bool = False) -> Prompt:
    total = sum(desired.values())
    examples = [ex for name, n in desired.items() if n > 0 for ex in FEW_SHOT_FLASHCARDS[name]]
    system = (
        f"You are an expert educator creating {total} study flashcards from the SOURCE.\n"
        f"Difficulty mix: {_distribution(desired)}.\n\n"
        f"{CORE_RULES}\n"
        "5. Label each card easy, medium or hard according to the length of its answer.\n\n"
        f"{_band_rules()}\n\n"
        f"EXAMPLES (format and length only, not content):\n{json.dumps(examples, ensure_ascii=False, indent=2)}\n\n"
        f"{_language_line(language)}"
        f"{_extra(strict_grounding, strict_length)}"
    )
    user = f'Document title: "{title}"\n\nSOURCE:\n\n{excerpt}'
    return Prompt(system=system, user=user)


def build_quiz_prompt(excerpt: str, title: str, count: int, language: DetectedLanguage,
                      strict_grounding: bool = False) -> Prompt:
    system = (
        f"You are creating {count} multiple-choice quiz questions (4 options each) about the SOURCE.\n\n"
        f"{CORE_RULES}\n"
        "5. Each question has exactly 4 options and one correct index (0-3).\n"
        "6. The three wrong options must be plausible but clearly NOT correct according to the SOURCE.\n"
        "7. Do not use 'All of the above' or 'None of the above'.\n\n"
        f"EXAMPLE (format only):\n{json.dumps(FEW_SHOT_QUIZ, ensure_ascii=False, indent=2)}\n\n"
        f"{_language_line(language)}"
        f"{_extra(strict_grounding, False)}"
    )
    user = f'Document title: "{title}"\n\nSOURCE:\n\n{excerpt}'
    return Prompt(system=system, user=user)


def build_distractor_prompt(question: str, correct_answer: str, excerpt: str, needed: int,
                            language: Optional[DetectedLanguage] = None) -> Prompt:
    system = (
        f"You write {needed + 2} wrong answer options (distractors) for one multiple-choice question.\n\n"
        "RULES:\n"
        "1. Each distractor must be plausible for someone who studied the SOURCE, but NOT a correct answer.\n"
        "2. Never restate or paraphrase the correct answer.\n"
        "3. Match the correct answer's length and style.\n"
        "4. Use the same language as the question."
        + (f"\n\n{_language_line(language)}" if language else "")
    )
    user = f"QUESTION: {question}\nCORRECT ANSWER: {correct_answer}\n\nSOURCE:\n\n{excerpt}"
    return Prompt(system=system, user=user)
