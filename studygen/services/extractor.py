"""
Best-effort text recovery from uploaded documents.

Plain-text uploads are decoded and cleaned. Binary uploads (PDFs and other
opaque formats) go through a chain of increasingly expensive strategies:
a zero-cost regex scan of the raw bytes, a real PDF parser, and finally an
optional document reader (OCR or a model that reads the file directly).
"""
import base64
import codecs
import io
import re
from dataclasses import dataclass
from typing import Optional, Protocol

import structlog
from pypdf import PdfReader

from studygen.config import PipelineConfig
from studygen.services.errors import ExtractionError
from studygen.services.logging import log_performance

logger = structlog.get_logger()

PDF_SIGNATURE = b"%PDF-"

SCANNED_MESSAGE = (
    "Could not extract readable text from this document; it is likely scanned. "
    "Enable OCR or upload a text-based document."
)
UNREADABLE_MESSAGE = "Document is unreadable: it is empty or could not be downloaded."
NO_TEXT_MESSAGE = "Extraction produced no usable text. Upload a document with selectable text."


class TextClassifier(Protocol):
    def is_binary(self, data: bytes) -> bool:
        ...


class DocumentReader(Protocol):
    """OCR-style collaborator: base64 document in, best-effort text (or "") out."""

    async def read_document(self, data_b64: str, mime_type: str = "application/pdf") -> str:
        ...


@dataclass
class ExtractionResult:
    text: str
    method: str
    is_binary: bool = False


# -------------------- BINARY DETECTION --------------------

class HeuristicTextClassifier:
    """PDF signature or too many non-printable bytes in a leading sample.

    Bytes above 126 are only counted as non-printable when the sample is not
    valid UTF-8, so accented prose is not mistaken for binary data.
    """

    def __init__(self, sample_size: int = 1000, max_ratio: float = 0.10):
        self.sample_size = sample_size
        self.max_ratio = max_ratio

    def is_binary(self, data: bytes) -> bool:
        if data[:5] == PDF_SIGNATURE:
            return True
        sample = data[:self.sample_size]
        if not sample:
            return False
        high_is_text = _is_utf8_prefix(sample)
        bad = 0
        for b in sample:
            if b < 32 and b not in (9, 10, 13):
                bad += 1
            elif b > 126 and not high_is_text:
                bad += 1
        return bad / len(sample) > self.max_ratio


def _is_utf8_prefix(sample: bytes) -> bool:
    decoder = codecs.getincrementaldecoder("utf-8")()
    try:
        decoder.decode(sample, final=False)
    except UnicodeDecodeError:
        return False
    return True


# -------------------- PDF RECOVERY --------------------

TJ_STRING_RE = re.compile(r"\(((?:\\.|[^\\)])*)\)\s*Tj")
PRINTABLE_RUN_TEMPLATE = r"[\x20-\x7e]{%d,}"
PDF_STRUCTURE_TOKENS = ("stream", "endobj", "/Type", "/Font", "<<", ">>")
PDF_ESCAPES = {"n": " ", "r": " ", "t": " ", "(": "(", ")": ")", "\\": "\\"}
PDF_ESCAPE_RE = re.compile(r"\\(.)")
WS_RE = re.compile(r"\s+")


def recover_pdf_text_heuristic(data: bytes, min_run: int = 20) -> str:
    """Pull text-show strings and long printable runs out of raw PDF bytes."""
    raw = data.decode("latin-1")
    parts = []
    for m in TJ_STRING_RE.finditer(raw):
        s = PDF_ESCAPE_RE.sub(lambda e: PDF_ESCAPES.get(e.group(1), e.group(1)), m.group(1))
        if s.strip():
            parts.append(s)
    remainder = TJ_STRING_RE.sub(" ", raw)
    for run in re.findall(PRINTABLE_RUN_TEMPLATE % min_run, remainder):
        if any(tok in run for tok in PDF_STRUCTURE_TOKENS):
            continue
        parts.append(run)
    return WS_RE.sub(" ", " ".join(parts)).strip()


def extract_text_from_pdf(data: bytes) -> str:
    """Extract text with pypdf; pages are separated by form feeds."""
    try:
        reader = PdfReader(io.BytesIO(data))
        if getattr(reader, "is_encrypted", False):
            reader.decrypt("")
        pages = [(page.extract_text() or "").strip() for page in reader.pages]
    except Exception as e:
        logger.warning("pdf_parser_failed", error=str(e), error_type=type(e).__name__)
        return ""
    # blank pages stay as empty slots so page numbers match the PDF
    return "\f".join(pages).strip(" \n")


# -------------------- PLAIN TEXT --------------------

CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0e-\x1f\x7f]")
HSPACE_RE = re.compile(r"[ \t\u00a0]+")
SPACE_AROUND_NL_RE = re.compile(r" *([\n\f]) *")
MANY_NL_RE = re.compile(r"\n{3,}")
SHORT_WORD_RE = re.compile(r"(?<!\S)\w{1,2}(?!\S)")


def decode_bytes(data: bytes) -> str:
    if data.startswith(codecs.BOM_UTF8):
        data = data[len(codecs.BOM_UTF8):]
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def clean_text(raw_text: str, drop_short_words: bool = False) -> str:
    """Strip control characters and collapse whitespace, keeping line and page breaks.

    Leading and trailing form feeds are kept: they stand for blank pages.
    """
    text = raw_text.replace("\r\n", "\n").replace("\r", "\n")
    text = CONTROL_RE.sub(" ", text)
    if drop_short_words:
        text = SHORT_WORD_RE.sub(" ", text)
    text = HSPACE_RE.sub(" ", text)
    text = SPACE_AROUND_NL_RE.sub(r"\1", text)
    text = MANY_NL_RE.sub("\n\n", text)
    return text.strip(" \n")


def _content_length(text: str) -> int:
    return len(text.strip())


# -------------------- EXTRACTOR --------------------

class TextExtractor:
    def __init__(self, config: PipelineConfig, reader: Optional[DocumentReader] = None,
                 classifier: Optional[TextClassifier] = None):
        self.config = config
        self.reader = reader
        self.classifier = classifier or HeuristicTextClassifier(
            config.binary_sample_size, config.binary_nonprintable_ratio
        )

    @log_performance("extraction")
    async def extract(self, data: Optional[bytes], cached_content: Optional[str] = None) -> ExtractionResult:
        min_len = self.config.min_text_length
        if cached_content and len(cached_content.strip()) >= min_len:
            return ExtractionResult(text=cached_content, method="cache")
        if not data:
            raise ExtractionError(UNREADABLE_MESSAGE)

        if self.classifier.is_binary(data):
            result = await self._extract_binary(data)
        else:
            text = clean_text(decode_bytes(data), self.config.drop_short_words)
            result = ExtractionResult(text=text, method="text")
            if _content_length(text) < min_len:
                logger.warning("extraction_failed", method="text", length=len(text))
                raise ExtractionError(NO_TEXT_MESSAGE, metrics={"length": len(text)})

        logger.info("document_extracted", method=result.method, is_binary=result.is_binary,
                    length=len(result.text))
        return result

    async def _extract_binary(self, data: bytes) -> ExtractionResult:
        min_len = self.config.min_text_length
        text = recover_pdf_text_heuristic(data, self.config.heuristic_min_run)
        method = "pdf_heuristic"

        # the parser keeps real page breaks, so it wins whenever it recovers enough text
        if data[:5] == PDF_SIGNATURE:
            parsed = clean_text(extract_text_from_pdf(data))
            if _content_length(parsed) >= min_len or _content_length(parsed) > _content_length(text):
                text, method = parsed, "pdf_parser"

        if _content_length(text) < min_len and self.reader is not None:
            mime = "application/pdf" if data[:5] == PDF_SIGNATURE else "application/octet-stream"
            read = await self.reader.read_document(base64.b64encode(data).decode("ascii"), mime)
            read = clean_text(read or "")
            if _content_length(read) > _content_length(text):
                text, method = read, "document_reader"

        if _content_length(text) < min_len:
            logger.warning("extraction_failed", method=method, length=len(text),
                           reader_configured=self.reader is not None)
            raise ExtractionError(SCANNED_MESSAGE, metrics={"length": len(text), "method": method})
        return ExtractionResult(text=text, method=method, is_binary=True)
