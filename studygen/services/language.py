import re
from dataclasses import dataclass
from typing import Dict, List, Protocol


@dataclass
class DetectedLanguage:
    code: str
    name: str
    confidence: float


class LanguageDetector(Protocol):
    def detect(self, text: str) -> DetectedLanguage:
        ...


LANGUAGE_NAMES = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "pt": "Portuguese",
    "it": "Italian",
}

FUNCTION_WORDS: Dict[str, List[str]] = {
    "en": ["the", "and", "is", "in", "to", "of", "a", "that"],
    "es": ["de", "la", "que", "el", "en", "y", "los", "se"],
    "fr": ["de", "la", "et", "les", "des", "le", "est", "en"],
    "de": ["der", "die", "und", "in", "zu", "den", "das", "ist"],
    "pt": ["de", "que", "e", "o", "a", "do", "da", "em"],
    "it": ["di", "e", "il", "la", "che", "in", "a", "per"],
}


class StopwordLanguageDetector:
    """Counts whole-word hits of a few function words per language.

    Confidence is the winner's share of all hits. Ties keep the earlier
    language, and no hits at all means English with zero confidence.
    """

    default_code = "en"

    def __init__(self, words: Dict[str, List[str]] = None):
        words = words or FUNCTION_WORDS
        self._patterns = {
            code: [re.compile(r"\b%s\b" % re.escape(w)) for w in ws] for code, ws in words.items()
        }

    def detect(self, text: str) -> DetectedLanguage:
        lower = (text or "").lower()
        counts = {}
        for code, patterns in self._patterns.items():
            counts[code] = sum(len(p.findall(lower)) for p in patterns)
        total = sum(counts.values())

        best, best_count = self.default_code, 0
        for code, n in counts.items():
            if n > best_count:
                best, best_count = code, n

        confidence = best_count / total if total else 0.0
        return DetectedLanguage(code=best, name=LANGUAGE_NAMES.get(best, best), confidence=confidence)
