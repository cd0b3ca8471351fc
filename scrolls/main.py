"""
Main FastAPI application
Quiz-taking core of the Scrolls of Wisdom platform
"""
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import logging
import time

from scrolls.config import settings
from scrolls.database import engine, init_db
from scrolls.api import student_quizzes, educator_quizzes
from scrolls.utils.rate_limiter import rate_limiter

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Quiz attempts, enrollments, reassignments and asynchronous question replacement",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def rate_limit_middleware(request: Request, call_next):
    """Throttle per gateway user (or per address when anonymous)"""
    if not rate_limiter.is_exempt(request.url.path):
        try:
            await rate_limiter.check_rate_limit(request)
        except HTTPException as e:
            return JSONResponse(status_code=e.status_code, content=e.detail, headers=e.headers)

    return await call_next(request)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every request with caller and timing"""
    started = time.time()
    response = await call_next(request)
    elapsed = time.time() - started

    caller = request.headers.get("x-user-id", "anonymous")
    logger.info(
        f"{request.method} {request.url.path} [{caller}] - "
        f"Status: {response.status_code} - "
        f"Duration: {elapsed:.3f}s"
    )
    return response


# ─── Error bodies ──────────────────────────────────────────────────────────────

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {str(exc)}", exc_info=True)

    content = {
        "error": "internal_server_error",
        "message": "An unexpected error occurred. Please try again later.",
    }
    if settings.DEBUG:
        content["detail"] = str(exc)
    return JSONResponse(status_code=500, content=content)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """QuizError details are already {error, message, ...}; plain strings get wrapped"""
    if isinstance(exc.detail, dict):
        content = exc.detail
    else:
        content = {"error": "http_error", "message": exc.detail, "status_code": exc.status_code}

    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "message": "Request validation failed",
            "details": jsonable_encoder(exc.errors())
        }
    )


# ─── Service endpoints ─────────────────────────────────────────────────────────

@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring

    Reports degraded (still 200) when the database does not answer, so the
    load balancer can tell a slow dependency from a dead process.
    """
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        logger.warning(f"Health check: database unreachable: {str(e)}")
        database = "unreachable"

    return {
        "status": "healthy" if database == "ok" else "degraded",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "database": database,
        "jobStore": settings.JOB_STORE_BACKEND,
        "timestamp": time.time()
    }


@app.get("/")
async def root():
    return {
        "message": "Scrolls of Wisdom Quiz Core API",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "health": "/health"
    }


app.include_router(student_quizzes.router)
app.include_router(educator_quizzes.router)


@app.on_event("startup")
async def startup_event():
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    try:
        init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {str(e)}")
        raise

    if not settings.QUIZ_GENERATION_WEBHOOK_URL:
        logger.warning("QUIZ_GENERATION_WEBHOOK_URL is not set; question replacement will fail")
    logger.info(f"Application startup complete (job store: {settings.JOB_STORE_BACKEND})")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down application")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "scrolls.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
