import contextvars
import logging
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional

LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(correlation_id)s] %(message)s"

_correlation_id: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="-")


class CorrelationIdFilter(logging.Filter):
    """Stamps every record with the id of the analysis run that produced it."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = current_correlation_id()
        return True


def current_correlation_id() -> str:
    return _correlation_id.get()


def new_correlation_id() -> str:
    return uuid.uuid4().hex[:12]


@contextmanager
def correlation_scope(correlation_id: Optional[str] = None) -> Iterator[str]:
    token = _correlation_id.set(correlation_id or new_correlation_id())
    try:
        yield _correlation_id.get()
    finally:
        _correlation_id.reset(token)


def configure_logging(filename: Optional[str] = "debug.log", level: str = "DEBUG") -> None:
    handler: logging.Handler
    if filename:
        handler = logging.FileHandler(filename, mode="w", encoding="utf-8")
    else:
        handler = logging.StreamHandler()
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logging.basicConfig(level=getattr(logging, level.upper(), logging.DEBUG), handlers=[handler], force=True)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
