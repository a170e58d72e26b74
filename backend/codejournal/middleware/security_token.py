"""
Code Journal Backend — Foreign Journal Token Middleware
========================================================

What:  Guards the `/federation` endpoints that peer journals call.
How:   The request must carry `X-FOREIGNJOURNAL-SECURITY-TOKEN` matching a row
       of the `servers` table. When `X-FOREIGNJOURNAL-GROUP` is also sent, the
       token must belong to that group. Anything else gets a 401 JSON body in
       the same shape as the application's error responses.
"""

import logging
from typing import Optional

from sqlalchemy import select
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from codejournal import database
from codejournal.middleware.request_id import request_id_var
from codejournal.models import Server

logger = logging.getLogger(__name__)

TOKEN_HEADER = "X-FOREIGNJOURNAL-SECURITY-TOKEN"
GROUP_HEADER = "X-FOREIGNJOURNAL-GROUP"
PROTECTED_PREFIX = "/federation"


async def token_is_valid(token: str, group: Optional[int]) -> bool:
    async with database.async_session_factory() as session:
        query = select(Server.group_number).where(
            Server.token == token, Server.deleted_at.is_(None)
        )
        if group is not None:
            query = query.where(Server.group_number == group)
        result = await session.execute(query)
        return result.first() is not None


def _unauthorized(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={
            "error": "unauthorized",
            "message": message,
            "details": {},
            "request_id": request_id_var.get(""),
        },
    )


class ForeignJournalTokenMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if not request.url.path.startswith(PROTECTED_PREFIX):
            return await call_next(request)

        token = request.headers.get(TOKEN_HEADER)
        if not token:
            logger.warning("Federation request without security token from %s",
                           getattr(request.client, "host", "unknown"))
            return _unauthorized("Missing foreign journal security token")

        group: Optional[int] = None
        raw_group = request.headers.get(GROUP_HEADER)
        if raw_group is not None:
            if not raw_group.strip().isdigit():
                return _unauthorized("Malformed foreign journal group")
            group = int(raw_group)

        if not await token_is_valid(token, group):
            logger.warning("Rejected federation request: unknown token (group=%s)", group)
            return _unauthorized("Invalid foreign journal security token")

        return await call_next(request)
