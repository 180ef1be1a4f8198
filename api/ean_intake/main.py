# ean_intake/main.py
# EAN Intake - supplier file pipeline + EAN variant catalog
from __future__ import annotations
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ean_intake import __version__
from ean_intake.settings import settings
from ean_intake.database import init_db, close_db, check_db_health
from ean_intake.errors import IntakeError

from ean_intake.routers.uploads import router as uploads_router
from ean_intake.routers.queue import router as queue_router
from ean_intake.routers.sessions import router as sessions_router
from ean_intake.routers.activation import router as activation_router
from ean_intake.routers.catalog import router as catalog_router
from ean_intake.routers.storage import router as storage_router

# ---------------------------------------------------------
# Logging setup
# ---------------------------------------------------------
from ean_intake.logging_setup import setup_logging
setup_logging(settings)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------
# Lifespan: Database init/cleanup
# ---------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    await init_db()
    logger.info("Database initialised")
    yield
    await close_db()
    logger.info("Database closed")


# ---------------------------------------------------------
# FastAPI app + CORS
# ---------------------------------------------------------
app = FastAPI(
    title="EAN Intake API",
    version=__version__,
    description="Supplier file ingestion, EAN validation and catalog activation",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)


@app.exception_handler(IntakeError)
async def intake_error_handler(request: Request, exc: IntakeError):
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.code, "message": exc.message, **exc.details},
    )


app.include_router(uploads_router)
app.include_router(queue_router)
app.include_router(sessions_router)
app.include_router(activation_router)
app.include_router(catalog_router)
app.include_router(storage_router)


@app.get("/health")
async def health():
    """Health check endpoint with database status."""
    result = {"status": "ok", "version": __version__}
    db_health = await check_db_health()
    result["database"] = db_health
    if db_health.get("status") != "healthy":
        result["status"] = "degraded"
    return result
