"""Logging setup with a conversation-session correlation ID.

Every record carries ``session_id`` so a single client's journey through
the booking conversation can be followed across services:

    set_session_id("7f1c...")
    logger.info("Slots offered")  # -> ... [session=7f1c...] Slots offered
"""

import logging
from contextvars import ContextVar

_session_id: ContextVar[str] = ContextVar("session_id", default="-")

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s [session=%(session_id)s] %(message)s"


def set_session_id(session_id: str) -> None:
    """Set the correlation ID for the current async context."""
    _session_id.set(session_id)


def get_session_id() -> str:
    return _session_id.get()


class SessionIdFilter(logging.Filter):
    """Injects session_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = _session_id.get()  # type: ignore[attr-defined]
        return True


def configure_logging(level: str = "INFO") -> None:
    """Install the root handler once; safe to call repeatedly."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in root.handlers:
        if any(isinstance(f, SessionIdFilter) for f in handler.filters):
            return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    handler.addFilter(SessionIdFilter())
    root.addHandler(handler)
