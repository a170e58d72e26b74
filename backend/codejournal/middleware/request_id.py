"""
Code Journal Backend — Request ID Middleware
=============================================

What:  Assigns each request an ID, exposes it to loggers and handlers, and
       returns it in the `X-Request-ID` response header.
How:   A client-supplied `X-Request-ID` is reused; otherwise a short UUID is
       generated. The value lives in a ContextVar (one per request task) and
       in `request.state.request_id`.
Who:   Error handlers in main.py echo it as `request_id` in error bodies.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── Context Variable ──────────────────────────────────────────────────────
# Coroutine-local: concurrent requests on one event loop each see their own ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())[:8]

        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = rid
        return response
