"""
Chunking and keyword-relevance selection.

Pages are cut into overlapping windows, each window is scored by how many
of its tokens belong to the keyword profile of the requested pages, and the
best windows are packed into a fixed character budget. When the profile
carries no signal the selector samples evenly instead.
"""
from collections import Counter
from dataclasses import dataclass
from typing import List, Optional, Sequence

import structlog

from studygen.config import PipelineConfig
from studygen.services.pages import Page
from studygen.services.text_utils import keyword_tokens, tokenize

logger = structlog.get_logger()


@dataclass
class Chunk:
    id: str
    text: str
    page_from: int
    page_to: int
    char_start: int
    char_end: int
    score: int = 0


@dataclass
class ChunkSelection:
    chunks: List[Chunk]
    keywords: List[str]
    mode: str  # "relevance" | "even_sampling"

    @property
    def total_chars(self) -> int:
        return sum(len(c.text) for c in self.chunks)


# -------------------- CHUNKING --------------------

def chunk_pages(pages: Sequence[Page], chunk_size: int = 2200, overlap: int = 300) -> List[Chunk]:
    """Window every page independently so chunks never straddle a page."""
    chunks: List[Chunk] = []
    step = max(1, chunk_size - overlap)
    for page in pages:
        text = page.text
        start = 0
        while start < len(text):
            end = min(start + chunk_size, len(text))
            piece = text[start:end]
            if piece.strip():
                chunks.append(Chunk(
                    id=f"c{len(chunks)}",
                    text=piece.strip(),
                    page_from=page.number,
                    page_to=page.number,
                    char_start=page.char_start + start,
                    char_end=page.char_start + end,
                ))
            if end == len(text):
                break
            start += step
    return chunks


# -------------------- KEYWORDS --------------------

def keyword_profile(text: str, top_k: int = 60, min_frequency: int = 2) -> List[str]:
    """Most frequent content tokens; tokens seen fewer than ``min_frequency`` times carry no signal."""
    counts = Counter(keyword_tokens(text))
    # Counter.most_common keeps first-seen order for equal counts
    return [word for word, n in counts.most_common() if n >= min_frequency][:top_k]


def score_chunks(chunks: List[Chunk], keywords: Sequence[str]) -> List[Chunk]:
    kw = set(keywords)
    for c in chunks:
        c.score = sum(1 for t in tokenize(c.text) if t in kw) if kw else 0
    return sorted(chunks, key=lambda c: c.score, reverse=True)


# -------------------- SELECTION --------------------

def select_top_chunks(chunks: Sequence[Chunk], max_chars: int) -> List[Chunk]:
    selected: List[Chunk] = []
    used = 0
    for c in chunks:
        if used + len(c.text) > max_chars:
            continue
        selected.append(c)
        used += len(c.text)
        if used >= max_chars:
            break
    return selected


def _page_at(pages: Sequence[Page], offset: int) -> int:
    for page in pages:
        if page.char_start <= offset < page.char_end:
            return page.number
    # offsets between pages (separators) belong to the next page
    for page in pages:
        if offset < page.char_start:
            return page.number
    return pages[-1].number


def sample_evenly(pages: Sequence[Page], max_chars: int, sample_size: int) -> List[Chunk]:
    """Evenly spaced windows over the pages' text, first at the start and last at the end."""
    if not pages:
        return []
    joined = "".join(p.text for p in pages)
    offsets = []
    pos = 0
    for p in pages:
        offsets.append((pos, p))
        pos += len(p.text)

    def to_document(local: int) -> int:
        for base, p in reversed(offsets):
            if local >= base:
                return p.char_start + (local - base)
        return pages[0].char_start

    size = min(sample_size, max_chars)
    length = len(joined)
    if length <= size:
        starts = [0]
        size = length
    else:
        num = min(max(1, max_chars // size), -(-length // size))
        if num == 1:
            starts = [0]
        else:
            starts = [round(i * (length - size) / (num - 1)) for i in range(num)]

    chunks: List[Chunk] = []
    for i, s in enumerate(starts):
        piece = joined[s:s + size]
        if not piece.strip():
            continue
        doc_start = to_document(s)
        doc_end = to_document(max(s, s + len(piece) - 1)) + 1
        chunks.append(Chunk(
            id=f"f{i}",
            text=piece,
            page_from=_page_at(pages, doc_start),
            page_to=_page_at(pages, doc_end - 1),
            char_start=doc_start,
            char_end=doc_end,
        ))
    return chunks


def select_relevant_chunks(pages: Sequence[Page], config: PipelineConfig,
                           keywords: Optional[List[str]] = None) -> ChunkSelection:
    """Chunk the given pages and keep the most keyword-dense chunks within budget."""
    profile_text = "\n".join(p.text for p in pages)
    if keywords is None:
        keywords = keyword_profile(profile_text, config.keyword_top_k, config.keyword_min_frequency)
    chunks = chunk_pages(pages, config.chunk_size, config.chunk_overlap)
    scored = score_chunks(chunks, keywords)
    total_score = sum(c.score for c in scored)

    if total_score == 0:
        selected = sample_evenly(pages, config.max_content_chars, config.fallback_sample_size)
        mode = "even_sampling"
    else:
        selected = select_top_chunks(scored, config.max_content_chars)
        mode = "relevance"

    logger.info(
        "chunks_selected",
        mode=mode,
        pages=len(pages),
        candidate_chunks=len(chunks),
        selected_chunks=len(selected),
        selected_chars=sum(len(c.text) for c in selected),
        keywords=len(keywords),
    )
    return ChunkSelection(chunks=selected, keywords=list(keywords), mode=mode)


def build_excerpt(chunks: Sequence[Chunk]) -> str:
    ordered = sorted(chunks, key=lambda c: c.char_start)
    return "\n\n".join(c.text for c in ordered)
