"""
Request timing and correlation ids.

Every response carries ``X-Request-ID`` (echoed from the caller or
generated) and ``X-Request-Duration-Ms``. Approval decisions and project
writes are logged at INFO with their ids; reads only at DEBUG unless slow.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 1000

_WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def _log_level(method: str, status: int, duration_ms: float) -> int:
    if status >= 500:
        return logging.ERROR
    if duration_ms > SLOW_REQUEST_MS:
        return logging.WARNING
    if method in _WRITE_METHODS:
        return logging.INFO
    return logging.DEBUG


def init_request_timing(app: Flask):
    @app.before_request
    def _begin():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _finish(response):
        started = getattr(g, "request_start", None)
        if started is None:
            return response

        duration_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"

        if request.path.startswith("/api/v1/health"):
            return response

        ids = request.view_args or {}
        logger.log(
            _log_level(request.method, response.status_code, duration_ms),
            "%s %s -> %d",
            request.method, request.path, response.status_code,
            extra={
                "method": request.method,
                "path": request.path,
                "status": response.status_code,
                "duration_ms": duration_ms,
                "remote_addr": request.remote_addr,
                "project_id": ids.get("pid"),
                "approval_id": ids.get("aid"),
            },
        )
        return response
