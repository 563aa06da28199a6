from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
import time
import uuid
import structlog

from studygen.db import init_db
from studygen.routers import documents as documents_router
from studygen.routers import generation as generation_router
from studygen.services.errors import PipelineError
from studygen.services.logging import configure_logging, log_api_request
from studygen.services.monitoring import health_checker, get_metrics, REQUEST_COUNT, REQUEST_DURATION
from studygen.middleware.rate_limit import limiter, rate_limit_exceeded_handler

# Configure logging
configure_logging()
logger = structlog.get_logger()

app = FastAPI(
    title="studygen",
    description="Grounded flashcard and quiz generation from uploaded study documents",
    version="1.0.0"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    logger.warning(
        "request_failed",
        path=request.url.path,
        stage=exc.stage,
        status_code=exc.status_code,
        error=exc.message,
        **exc.metrics,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}"
        for err in exc.errors()
    )
    logger.warning("request_invalid", path=request.url.path, error=problems)
    return JSONResponse(status_code=400, content={"error": f"Invalid request: {problems}"})


def _endpoint_label(request: Request) -> str:
    # route template keeps /quizzes/{quiz_id} as one series
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


# ----------------- Request logging & metrics -----------------
@app.middleware("http")
async def track_requests(request: Request, call_next):
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=uuid.uuid4().hex[:12])
    start_time = time.time()
    log_api_request(request)

    response = await call_next(request)

    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    endpoint = _endpoint_label(request)
    REQUEST_COUNT.labels(method=request.method, endpoint=endpoint, status=response.status_code).inc()
    REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(process_time)

    log_api_request(request, response.status_code, process_time)
    return response

# ----------------- Health & Monitoring Endpoints -----------------
@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return health_checker.get_health_status()

@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint"""
    return get_metrics()


# ----------------- Startup -----------------
@app.on_event("startup")
def on_startup():
    init_db()


# ----------------- Routers -----------------
app.include_router(documents_router.router)
app.include_router(generation_router.router)
