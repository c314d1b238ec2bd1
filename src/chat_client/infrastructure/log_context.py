from __future__ import annotations

import logging
from contextvars import ContextVar

connection_id_ctx: ContextVar[str] = ContextVar("connection_id", default="-")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [conn=%(connection_id)s]: %(message)s"


class ConnectionIdFilter(logging.Filter):
    """Stamps each record with the id of the connection attempt it belongs to."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.connection_id = connection_id_ctx.get()
        return True


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler()
    handler.addFilter(ConnectionIdFilter())
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[handler])
