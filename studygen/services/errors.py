"""
Typed failures raised by the generation pipeline.

Every error carries the stage that produced it, the HTTP status the API
should answer with, and the intermediate metrics that were known when it
was raised (support rate, counts, ...).
"""
from typing import Any, Dict, Optional


class PipelineError(Exception):
    status_code = 500
    default_stage = "pipeline"

    def __init__(self, message: str, stage: Optional[str] = None, metrics: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage or self.default_stage
        self.metrics = metrics or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}


class AuthenticationError(PipelineError):
    status_code = 401
    default_stage = "auth"


class DocumentNotFoundError(PipelineError):
    status_code = 404
    default_stage = "document"


class InvalidRequestError(PipelineError):
    status_code = 400
    default_stage = "request"


class ExtractionError(PipelineError):
    status_code = 422
    default_stage = "extraction"


class GenerationError(PipelineError):
    status_code = 502
    default_stage = "generation"


class GroundingError(PipelineError):
    status_code = 422
    default_stage = "grounding"


class NormalizationError(PipelineError):
    status_code = 422
    default_stage = "normalization"
