from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from sqlmodel import Session
import structlog

from studygen.auth import get_current_user_id
from studygen.config import PipelineConfig, get_config
from studygen.db import get_session
from studygen.middleware.rate_limit import upload_limit
from studygen.services.errors import ExtractionError, InvalidRequestError
from studygen.services.extractor import TextExtractor
from studygen.services.llm import get_document_reader
from studygen.services.repository import StudyRepository
from studygen.services.storage import FileStorage, get_storage

logger = structlog.get_logger()

router = APIRouter(prefix="/documents", tags=["documents"])


@router.post("/upload")
@upload_limit()
async def upload_document(
    request: Request,
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
    storage: FileStorage = Depends(get_storage),
    reader=Depends(get_document_reader),
    config: PipelineConfig = Depends(get_config),
):
    content = await file.read()
    if not content:
        raise InvalidRequestError("Uploaded file is empty")

    repository = StudyRepository(session)
    file_path = storage.save(user_id, file.filename or "document", content)
    document = repository.create_document(
        user_id, title or file.filename or "Untitled document", file_path, file.content_type,
    )

    # extraction is cached now when possible; generation retries it and reports the error
    extraction = {"extracted": False, "chars": 0, "method": None}
    try:
        result = await TextExtractor(config, reader=reader).extract(content)
    except ExtractionError as e:
        logger.warning("upload_extraction_failed", document_id=document.id, error=e.message)
        extraction["error"] = e.message
    else:
        repository.cache_content(document, result.text, result.method)
        extraction.update(extracted=True, chars=len(result.text), method=result.method)

    return {"success": True, "documentId": document.id, "title": document.title, **extraction}
