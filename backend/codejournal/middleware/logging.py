"""
Code Journal Backend — Access Log Middleware
=============================================

What:  One access log line per request, naming who made it: the journal user
       behind the bearer token, or the peer group of a federation call.
How:   The bearer token is only decoded here (signature and expiry), never
       resolved against the database; an undecodable token is logged as `-`
       and rejected later by the caller dependency. Level follows the status
       (5xx ERROR, 4xx WARNING, otherwise INFO).

Never logged:
    request bodies (passwords, file contents), the Authorization header and
    X-FOREIGNJOURNAL-SECURITY-TOKEN
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from codejournal.middleware.request_id import request_id_var
from codejournal.middleware.security_token import GROUP_HEADER, PROTECTED_PREFIX
from codejournal.security import verify_token

logger = logging.getLogger("codejournal.access")

QUIET_PATHS = frozenset({"/health", "/docs", "/redoc", "/openapi.json"})


def describe_caller(request: Request) -> str:
    """`user:<global id>`, `peer:<group>` or `-`."""
    if request.url.path.startswith(PROTECTED_PREFIX):
        return f"peer:{request.headers.get(GROUP_HEADER, '?')}"
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        return "-"
    payload = verify_token(token)
    if not payload or not payload.get("sub"):
        return "-"
    return f"user:{payload['sub']}"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        caller = describe_caller(request)
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000

        status = response.status_code
        if status >= 500:
            level = logging.ERROR
        elif status >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO

        rid = request_id_var.get("")
        logger.log(
            level,
            "%s %s %d %.1fms [%s] %s",
            request.method,
            request.url.path,
            status,
            duration_ms,
            rid,
            caller,
            extra={"request_id": rid, "caller": caller, "status": status},
        )
        return response
