import os
import uuid
from pathlib import Path
from typing import Optional

import structlog

from studygen.config import get_settings
from studygen.services.errors import ExtractionError
from studygen.services.extractor import UNREADABLE_MESSAGE

logger = structlog.get_logger()

SAFE_CHARS = "-_."


def _safe_name(filename: str) -> str:
    base = os.path.basename(filename or "document")
    cleaned = "".join(c if c.isalnum() or c in SAFE_CHARS else "_" for c in base)
    return cleaned or "document"


class FileStorage:
    """Uploaded documents on the local filesystem, addressed by relative path."""

    def __init__(self, root: str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def save(self, user_id: str, filename: str, data: bytes) -> str:
        relative = Path(_safe_name(str(user_id))) / f"{uuid.uuid4().hex}_{_safe_name(filename)}"
        target = self.root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.info("document_stored", path=str(relative), size=len(data))
        return relative.as_posix()

    def load(self, file_path: str) -> bytes:
        target = (self.root / file_path).resolve()
        if self.root.resolve() not in target.parents:
            raise ExtractionError("Document is unreadable: invalid storage path.")
        try:
            return target.read_bytes()
        except OSError as e:
            logger.error("document_download_failed", path=file_path, error=str(e))
            raise ExtractionError(UNREADABLE_MESSAGE)


_storage: Optional[FileStorage] = None


def get_storage() -> FileStorage:
    global _storage
    if _storage is None:
        _storage = FileStorage(get_settings().storage_dir)
    return _storage
