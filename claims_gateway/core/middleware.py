"""Access logging, attributed to the acting organization.

Front-ends forward the caller's organization in ``X-User-Org`` and may pass an
``X-Request-ID`` of their own; when they do, that id is reused so one request
can be followed across the UI gateway and this service.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("claims_gateway.access")

_MAX_REQUEST_ID_LEN = 64


def _request_id(request: Request) -> str:
    inbound = (request.headers.get("x-request-id") or "").strip()
    if inbound:
        return inbound[:_MAX_REQUEST_ID_LEN]
    return uuid.uuid4().hex[:12]


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = _request_id(request)
        request.state.request_id = request_id
        org = request.headers.get("x-user-org") or "-"

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers["X-Request-ID"] = request_id

        # Ledger failures surface as 502; keep them visible at the default level.
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level,
            "%s %s -> %d in %.1fms org=%s req=%s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            org,
            request_id,
        )
        return response
