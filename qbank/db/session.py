import logging
import os

from sqlalchemy import create_engine, text
from sqlalchemy.engine.url import make_url

from qbank.core.config import settings

logger = logging.getLogger(__name__)

_engine = None


def _engine_options(database_url: str) -> dict:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        # Import jobs run on worker threads, not the thread that opened the connection.
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return {"pool_pre_ping": True}


def _report_connection_failure(exc: Exception) -> None:
    """Log the connection settings (password masked) when the database is unreachable."""
    logger.warning("Could not connect to database: %s", exc)
    try:
        url = make_url(settings.database_url)
    except Exception as parse_error:  # pragma: no cover
        logger.warning("Unable to parse DATABASE_URL (%s)", parse_error)
        return

    logger.warning(
        "Database settings: dialect=%s host=%s port=%s database=%s user=%s SKIP_DB_INIT=%r",
        url.get_backend_name(),
        url.host or "localhost",
        url.port or "(default)",
        url.database,
        url.username,
        os.getenv("SKIP_DB_INIT"),
    )


def get_engine():
    global _engine
    if _engine is None:
        options = _engine_options(settings.database_url)
        try:
            _engine = create_engine(settings.database_url, **options)
            # Test connection eagerly so failures surface immediately.
            with _engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            _report_connection_failure(e)
            # Create the engine anyway so callers can proceed (may still fail later).
            _engine = create_engine(settings.database_url, **options)
    return _engine


def reset_engine() -> None:
    """Dispose the cached engine so the next call picks up a new DATABASE_URL."""
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None
