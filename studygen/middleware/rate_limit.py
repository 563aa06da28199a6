"""
Rate limiting middleware using slowapi
"""
import os

from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request
from fastapi.responses import JSONResponse
import structlog

logger = structlog.get_logger()

RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "1").lower() in ("1", "true", "yes")
AI_GENERATION_RATE_LIMIT = os.getenv("AI_GENERATION_RATE_LIMIT", "5/minute")
UPLOAD_RATE_LIMIT = os.getenv("UPLOAD_RATE_LIMIT", "30/minute")

# Create limiter instance
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["1000/hour", "100/minute"],
    enabled=RATE_LIMIT_ENABLED,
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Answer with the same {"error": ...} body as every other failure"""
    client = request.client.host if request.client else "unknown"
    logger.warning("rate_limit_exceeded", client=client, path=request.url.path, limit=str(exc.detail))
    return JSONResponse(
        status_code=429,
        content={"error": f"Rate limit exceeded: {exc.detail}. Please try again later."},
    )


def ai_generation_limit():
    """Rate limit for AI generation endpoints"""
    return limiter.limit(AI_GENERATION_RATE_LIMIT)


def upload_limit():
    """Rate limit for document uploads"""
    return limiter.limit(UPLOAD_RATE_LIMIT)
