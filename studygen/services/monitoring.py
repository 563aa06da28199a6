"""
Health checks and monitoring with Prometheus metrics
"""
import os
import time

import structlog
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from studygen.config import get_settings
from studygen.db import engine
from studygen.models import Document

logger = structlog.get_logger()

# Prometheus metrics
REQUEST_COUNT = Counter('http_requests_total', 'Total HTTP requests', ['method', 'endpoint', 'status'])
REQUEST_DURATION = Histogram('http_request_duration_seconds', 'HTTP request duration', ['method', 'endpoint'])
AI_GENERATION_REQUESTS = Counter('ai_generation_requests_total', 'Total AI generation requests', ['type', 'status'])
GENERATED_ITEMS = Counter('generated_items_total', 'Study items persisted after validation', ['type'])
PIPELINE_FAILURES = Counter('pipeline_failures_total', 'Generation requests rejected by a pipeline stage', ['stage'])


class HealthChecker:
    def __init__(self):
        self.start_time = time.time()

    def check_database(self) -> dict:
        """Count stored documents to prove the database answers"""
        try:
            with Session(engine) as session:
                documents = session.exec(select(func.count()).select_from(Document)).one()
        except SQLAlchemyError as e:
            logger.error("database_health_check_failed", error=str(e))
            return {"status": "unhealthy", "message": f"Database connection failed: {e}"}
        return {"status": "healthy", "message": "Database connection successful", "documents_count": documents}

    def check_storage(self) -> dict:
        storage_dir = get_settings().storage_dir
        if os.path.isdir(storage_dir) and os.access(storage_dir, os.W_OK):
            return {"status": "healthy", "message": "Document storage is writable"}
        if not os.path.exists(storage_dir):
            # created on the first upload
            return {"status": "healthy", "message": "Document storage not created yet"}
        logger.error("storage_health_check_failed", path=storage_dir)
        return {"status": "unhealthy", "message": f"Document storage is not writable: {storage_dir}"}

    def check_generation(self) -> dict:
        """Configuration only; the model is never called from a health check"""
        settings = get_settings()
        if not settings.openai_api_key:
            return {"status": "degraded", "message": "OPENAI_API_KEY is not set; generation requests will fail"}
        return {"status": "healthy", "message": f"Generation model {settings.generation_model} configured"}

    def get_health_status(self) -> dict:
        checks = {
            "database": self.check_database(),
            "storage": self.check_storage(),
            "generation": self.check_generation(),
        }
        unhealthy_checks = [name for name, check in checks.items() if check["status"] == "unhealthy"]
        return {
            "status": "healthy" if not unhealthy_checks else "unhealthy",
            "timestamp": time.time(),
            "uptime_seconds": time.time() - self.start_time,
            "checks": checks,
            "unhealthy_components": unhealthy_checks,
        }


health_checker = HealthChecker()


def get_metrics():
    """Get Prometheus metrics"""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
