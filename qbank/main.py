"""
FastAPI application entry point.

Creates the import pipeline tables on startup, registers the admin import
routers and drains the background import queue on shutdown.
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.dependencies import get_import_queue
from .api.routers import import_history, imports
from .core.config import settings
from .core.logging_config import configure_logging

# Ensure logging is configured before the application starts serving requests.
configure_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup, wait for running imports on shutdown."""
    if os.getenv("SKIP_DB_INIT") == "1":
        logger.info("SKIP_DB_INIT=1 detected; skipping database bootstrap during startup")
    else:
        from .db.schema import create_question_bank_tables

        try:
            create_question_bank_tables()
        except Exception:
            logger.exception("Failed to initialize question bank tables")
            raise  # Refuse to serve with a broken schema

    yield

    logger.info("Waiting for %d running imports before shutdown", get_import_queue().pending())
    get_import_queue().shutdown(wait_for_jobs=True)


app = FastAPI(
    title="Question Bank Import API",
    version="1.0.0",
    description="CSV question imports for the exam question bank: parse, deduplicate, map topics, write in batches",
    lifespan=lifespan,
)

allowed_origins = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(imports.router)
app.include_router(import_history.router)


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "service": "qbank-import",
    }
