import logging
import sys
import time
from typing import Optional

from fastapi import FastAPI, Request

DEFAULT_FORMAT = "[%(asctime)s] %(levelname)s: %(name)s: %(message)s"

access_logger = logging.getLogger("marketplace.access")


def default_formatter(fmt: Optional[str] = None) -> logging.Formatter:
    """Returns a logging formatter with a default format if none is specified."""
    return logging.Formatter(fmt or DEFAULT_FORMAT)


def setup_logging(level: str = "INFO", fmt: Optional[str] = None) -> logging.Logger:
    """Configure the root logger with a single stream handler.

    Safe to call more than once: existing handlers on the root logger are
    replaced rather than stacked.
    """
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(default_formatter(fmt))
    root.addHandler(handler)

    # uvicorn's own access log duplicates the request middleware below
    logging.getLogger("uvicorn.access").propagate = False
    return root


def add_request_logging(app: FastAPI) -> None:
    """Log one line per request: method, path, status and duration."""

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        access_logger.info(
            "%s %s %s %.1fms", request.method, request.url.path, response.status_code, elapsed_ms
        )
        return response
