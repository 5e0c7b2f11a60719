"""
Request id and duration tracking.

Each request gets ``g.request_id`` (the caller's X-Request-ID when it is
sane, otherwise a fresh one) which RequestContextFilter attaches to every
log record. Responses carry X-Request-ID and X-Request-Duration-Ms.
Health probes are not logged.
"""

import logging
import re
import time
import uuid

from flask import Flask, current_app, g, request

logger = logging.getLogger(__name__)

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def _incoming_request_id() -> str:
    supplied = request.headers.get("X-Request-ID", "")
    if _REQUEST_ID_RE.match(supplied):
        return supplied
    return uuid.uuid4().hex[:12]


def init_request_timing(app: Flask):
    app.config.setdefault("SLOW_REQUEST_MS", 1000)

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = _incoming_request_id()

    @app.after_request
    def _finish(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"

        if request.blueprint == "health":
            return response

        if response.status_code >= 500:
            log = logger.error
        elif duration_ms > current_app.config["SLOW_REQUEST_MS"]:
            log = logger.warning
        else:
            log = logger.debug
        log(
            "%s %s -> %d in %.0fms",
            request.method, request.path, response.status_code, duration_ms,
            extra={
                "method": request.method,
                "path": request.path,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 1),
            },
        )
        return response
