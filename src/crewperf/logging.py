import logging
import sys
from contextvars import ContextVar, Token
from typing import Optional

from crewperf.config import settings

# Reconciliation session id, the correlation key threaded through every stage
session_id_ctx: ContextVar[Optional[str]] = ContextVar("session_id", default=None)

def get_session_id() -> str:
    """Return the active session id, or '-' outside of a reconciliation."""
    return session_id_ctx.get() or "-"

def bind_session_id(session_id: Optional[str]) -> Token:
    """Attach a session id to every log record emitted from this context."""
    return session_id_ctx.set(session_id)

def reset_session_id(token: Token):
    session_id_ctx.reset(token)

class SessionIDFilter(logging.Filter):
    """Injects session_id into log records."""
    def filter(self, record):
        record.session_id = get_session_id()
        return True

def configure_logging(level: str = "INFO"):
    """Configures the root logger with a standard format including session_id."""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers to avoid duplication
    if logger.handlers:
        logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | [%(session_id)s] | %(name)s:%(funcName)s:%(lineno)d - %(message)s"
    )
    handler.setFormatter(formatter)

    handler.addFilter(SessionIDFilter())

    logger.addHandler(handler)

    # Silence noisy libraries if needed
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

# Initialize logging on import with configured settings
configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger("crewperf")
