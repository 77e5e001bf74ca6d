"""
FastAPI Main Application

Code violation lead intake and enrichment REST API.
"""
from datetime import datetime, timezone
from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import text

from src import __version__
from src.codeleads.api.dependencies import get_db
from src.codeleads.api.schemas import HealthCheck
from src.codeleads.api.routers import credits, enrichment, events, properties, uploads
from src.codeleads.exceptions import (
    CodeLeadsError,
    ConsentRequiredError,
    InsufficientCreditsError,
    InvalidTransitionError,
    LedgerContentionError,
    NotFoundError,
    RunLimitExceededError,
    ValidationError,
)
from src.codeleads.utils.logger import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)

ERROR_STATUS_CODES = {
    ValidationError: 400,
    InsufficientCreditsError: 402,
    ConsentRequiredError: 403,
    NotFoundError: 404,
    InvalidTransitionError: 409,
    LedgerContentionError: 409,
    RunLimitExceededError: 429,
}

# Create FastAPI app
app = FastAPI(
    title="Code Leads API",
    description="Upload code violation lists, track ingestion, and skip trace owner contacts on credits",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(uploads.router)
app.include_router(enrichment.router)
app.include_router(events.router)
app.include_router(credits.router)
app.include_router(properties.router)


def status_code_for(exc: CodeLeadsError) -> int:
    for error_type in type(exc).__mro__:
        if error_type in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[error_type]
    return 500


@app.exception_handler(CodeLeadsError)
async def codeleads_error_handler(request: Request, exc: CodeLeadsError):
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.message, details=exc.details)
    else:
        logger.info("request_rejected", path=request.url.path, status_code=status_code, error=exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": exc.message, "context": exc.details},
    )


@app.get("/health", response_model=HealthCheck, tags=["health"])
def health_check(db: Session = Depends(get_db)):
    """
    Health check endpoint.

    Returns:
        Health status with database connectivity check
    """
    try:
        db.execute(text("SELECT 1"))
        database_status = "connected"
    except Exception as e:
        database_status = f"error: {str(e)}"

    return HealthCheck(
        status="healthy" if database_status == "connected" else "degraded",
        version=__version__,
        database=database_status,
        timestamp=datetime.now(timezone.utc),
    )


@app.get("/", tags=["root"])
def root():
    """API information."""
    return {
        "name": "Code Leads API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.codeleads.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
