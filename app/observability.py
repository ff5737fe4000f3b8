from __future__ import annotations

import json
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("app.request")
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
logger.setLevel(logging.INFO)
logger.propagate = False

REQUEST_ID_HEADER = "X-Request-Id"


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def request_context(request: Request) -> dict:
    """Identifiers worth attaching to any log line emitted while serving ``request``."""
    return {
        "request_id": getattr(request.state, "request_id", None),
        "method": request.method,
        "path": request.url.path,
        # set by the auth dependency once the bearer token is decoded
        "principal": getattr(request.state, "principal_id", None),
    }


def _emit(level: int, payload: dict, *, exc_info: bool = False) -> None:
    logger.log(level, json.dumps(payload, ensure_ascii=True, default=str), exc_info=exc_info)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One JSON line per request, tagged with a request id echoed back to the caller."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request.state.request_id = request.headers.get(REQUEST_ID_HEADER.lower()) or uuid.uuid4().hex
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            _emit(logging.ERROR, self._payload(request, started, 500), exc_info=True)
            raise

        status = response.status_code
        level = logging.INFO
        if status >= 500:
            level = logging.ERROR
        elif status >= 400:
            level = logging.WARNING
        _emit(level, self._payload(request, started, status))
        response.headers[REQUEST_ID_HEADER] = request.state.request_id
        return response

    @staticmethod
    def _payload(request: Request, started: float, status: int) -> dict:
        payload = {"event": "http_request", **request_context(request)}
        payload.update(
            status=status,
            duration_ms=int((time.perf_counter() - started) * 1000),
            client_ip=_client_ip(request),
        )
        return payload
