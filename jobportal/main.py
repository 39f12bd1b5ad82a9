import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from jobportal.api.router import api_router
from jobportal.core.config import settings
from jobportal.core.errors import ConflictError, NotFoundError, TransientStoreError, ValidationError
from jobportal.db.session import create_schema, engine
from jobportal.jobs.scheduler import start_scheduler
from jobportal.middleware.internal_guard import InternalGuardMiddleware
from jobportal.middleware.logging import RequestLoggingMiddleware
from jobportal.middleware.rate_limit import RateLimitMiddleware

logging.basicConfig(level=logging.INFO)
logging.getLogger("apscheduler").setLevel(logging.WARNING)
logging.getLogger("apscheduler.scheduler").setLevel(logging.WARNING)

logger = logging.getLogger("jp.app")

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    RateLimitMiddleware,
    limit=settings.apply_rate_limit_per_min,
    window_seconds=settings.apply_rate_limit_window_seconds,
)
app.add_middleware(
    InternalGuardMiddleware,
    api_key=settings.admin_api_key,
    allow_localhost=settings.admin_api_allow_localhost,
)
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(ValidationError)
async def _validation_error(_request: Request, exc: ValidationError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": exc.message})


@app.exception_handler(NotFoundError)
async def _not_found(_request: Request, exc: NotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": exc.message or "Not found"})


@app.exception_handler(ConflictError)
async def _conflict(_request: Request, exc: ConflictError):
    logger.warning("unresolved_conflict", extra={"error": exc.message, "constraint": exc.constraint})
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": "Please try again."})


@app.exception_handler(TransientStoreError)
async def _transient(_request: Request, exc: TransientStoreError):
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": exc.message})


@app.get("/health")
async def health_check():
    return {"status": "ok", "environment": settings.environment}


app.include_router(api_router)


@app.on_event("startup")
async def _startup_jobs() -> None:
    if settings.auto_create_schema:
        await create_schema(engine)
    app.state.scheduler = start_scheduler()


@app.on_event("shutdown")
async def _shutdown_jobs() -> None:
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler:
        scheduler.shutdown()
