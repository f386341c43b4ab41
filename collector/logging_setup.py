"""Logging configuration and per-request correlation ids."""

from __future__ import annotations

import logging
import sys
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from .config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
REQUEST_ID_HEADER = "X-Request-ID"


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger and align uvicorn's loggers with it.

    Existing handlers (installed by uvicorn or pytest) are left in place.
    """
    resolved = getattr(logging, (level or settings.log_level).upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(resolved)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(resolved)


def get_correlation_id(request: Request) -> str | None:
    return getattr(request.state, "correlation_id", None)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assigns a correlation id to each request and logs its outcome.

    An incoming ``X-Request-ID`` is reused; otherwise one is generated. The id
    is exposed on ``request.state.correlation_id`` and echoed on the response.
    """

    def __init__(self, app) -> None:
        super().__init__(app)
        self.logger = logging.getLogger("collector.http")

    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.correlation_id = request_id
        start = time.time()
        method = request.method
        path = request.url.path

        try:
            response = await call_next(request)
        except Exception:
            self.logger.exception(
                "request error %s %s time_ms=%s rid=%s",
                method,
                path,
                int((time.time() - start) * 1000),
                request_id,
            )
            raise

        response.headers[REQUEST_ID_HEADER] = request_id
        self.logger.info(
            "request end %s %s status=%s time_ms=%s rid=%s",
            method,
            path,
            response.status_code,
            int((time.time() - start) * 1000),
            request_id,
        )
        return response
