import re
from typing import Iterable, List, Set


# -------------------- TOKENS --------------------

NON_WORD_RE = re.compile(r"[^\w\s]|_")
WHITESPACE_RE = re.compile(r"\s+")
SENT_SPLIT = re.compile(r"(?<=[.?!])\s+")
HAS_WORD_RE = re.compile(r"\w")

STOPWORDS = frozenset("""
the and is in to of a that it on for as with was were be by an this which or are from at but not have has had
""".split())


def tokenize(text: str) -> List[str]:
    """Lowercase alphanumeric tokens (any script)."""
    if not text:
        return []
    return NON_WORD_RE.sub(" ", text.lower()).split()


def content_tokens(text: str, min_len: int = 3) -> List[str]:
    return [t for t in tokenize(text) if len(t) >= min_len]


def keyword_tokens(text: str) -> List[str]:
    """Tokens that can carry topical meaning: longer than two chars and not a stopword."""
    return [t for t in tokenize(text) if len(t) > 2 and t not in STOPWORDS]


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    set_a: Set[str] = set(a)
    set_b: Set[str] = set(b)
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def text_jaccard(a: str, b: str) -> float:
    return jaccard(tokenize(a), tokenize(b))


# -------------------- SENTENCES --------------------

def collapse_whitespace(text: str) -> str:
    return WHITESPACE_RE.sub(" ", text or "").strip()


def split_sentences(text: str) -> List[str]:
    text = collapse_whitespace(text)
    if not text:
        return []
    return [s.strip() for s in SENT_SPLIT.split(text) if HAS_WORD_RE.search(s)]


def word_count(text: str) -> int:
    return len((text or "").split())


def sentence_count(text: str) -> int:
    return len(split_sentences(text))


def normalize_for_compare(text: str) -> str:
    return " ".join(tokenize(text))
