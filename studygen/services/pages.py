import math
import re
from dataclasses import dataclass
from typing import List, Optional

from studygen.config import PipelineConfig


PAGE_MARKER_RE = re.compile(r"(?im)^[ \t]*page[ \t]+\d+\b")


@dataclass
class Page:
    number: int
    text: str
    char_start: int

    @property
    def char_end(self) -> int:
        return self.char_start + len(self.text)


def _split_at(text: str, cuts: List[int]) -> List[Page]:
    bounds = [0] + cuts + [len(text)]
    pages = []
    for start, end in zip(bounds, bounds[1:]):
        if end > start:
            pages.append(Page(number=len(pages) + 1, text=text[start:end], char_start=start))
    return pages


def segment_pages(text: str, config: PipelineConfig) -> List[Page]:
    """Split extracted text into 1-based pages.

    Form feeds win, then lines starting with "Page N", then fixed-size
    estimates of ``chars_per_page`` characters. Blank form-feed pages
    (image-only pages of a parsed PDF) keep their number.
    """
    if not text:
        return []

    if "\f" in text:
        pages = []
        pos = 0
        for part in text.split("\f"):
            pages.append(Page(number=len(pages) + 1, text=part, char_start=pos))
            pos += len(part) + 1
        if any(p.text.strip() for p in pages):
            return pages

    markers = [m.start() for m in PAGE_MARKER_RE.finditer(text)]
    cuts = [m for m in markers if m > 0]
    if cuts:
        pages = _split_at(text, cuts)
        if len(pages) > 1:
            return pages

    size = config.chars_per_page
    count = math.ceil(len(text) / size)
    return [Page(number=i + 1, text=text[i * size:(i + 1) * size], char_start=i * size) for i in range(count)]


def select_pages(pages: List[Page], start_page: Optional[int] = None, end_page: Optional[int] = None) -> List[Page]:
    if not pages or (start_page is None and end_page is None):
        return list(pages)
    total = len(pages)
    start = min(max(start_page or 1, 1), total)
    end = min(max(end_page or total, 1), total)
    if start > end:
        start, end = end, start
    return pages[start - 1:end]
