import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Import all models to ensure they're registered with SQLAlchemy Base
from . import models  # noqa: F401
from .database import Base, engine
from .domain.calendar_sync.errors import TherapistNotFound, UpstreamUnavailable
from .domain.calendar_sync.router import router as calendar_sync_router
from .domain.calendar_sync.router import webhook_router as calendar_webhook_router
from .routes.status_automation import router as status_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")
            raise

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="LV Notas API", version="1.0.0", lifespan=lifespan)


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={"error": "Invalid request", "details": jsonable_errors(exc)},
    )


@app.exception_handler(UpstreamUnavailable)
async def upstream_exception_handler(request: Request, exc: UpstreamUnavailable):
    logger.error(f"❌ Upstream failure on {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"error": "Calendar provider unavailable", "details": str(exc)})


@app.exception_handler(TherapistNotFound)
async def therapist_not_found_handler(request: Request, exc: TherapistNotFound):
    return JSONResponse(status_code=404, content={"error": "Therapist not found", "details": str(exc)})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    try:
        response = await call_next(request)
        return response
    except Exception as e:
        logger.error(f"{request.method} {request.url.path} - Error: {str(e)}")
        raise


# CORS Configuration
ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:8081,http://localhost:19006,http://localhost:3000",
).split(",")

logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Routes
app.include_router(calendar_webhook_router)
app.include_router(calendar_sync_router)
app.include_router(status_router)


@app.get("/")
def root():
    return {"message": "LV Notas API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}


@app.get("/health/redis")
async def redis_health_check():
    """Check Redis connectivity for monitoring"""
    from .rate_limiter import get_redis_client

    redis_client = get_redis_client()
    if redis_client is None:
        return {"status": "healthy", "redis": {"connected": False, "mode": "memory"}}

    start_time = time.time()
    try:
        redis_client.ping()
    except Exception as e:
        return {"status": "unhealthy", "redis": {"connected": False, "error": str(e)}}

    response_time = (time.time() - start_time) * 1000
    return {"status": "healthy", "redis": {"connected": True, "response_time_ms": round(response_time, 2)}}
