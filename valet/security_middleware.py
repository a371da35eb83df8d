"""
Security middleware: response headers, portal origin checks and the
row-level security context for PostgreSQL sessions.
"""

import logging
from typing import Callable

from fastapi import Request, Response
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.base import BaseHTTPMiddleware

from . import config
from .exceptions import Forbidden

logger = logging.getLogger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add security headers to all responses.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        return response


async def require_allowed_origin(request: Request) -> None:
    """
    Reject browser requests from origins outside the allow-list.

    Requests without an Origin header (server-to-server, curl) pass through;
    bearer auth still applies to them.
    """
    origin = request.headers.get("origin")
    if origin and origin not in config.ALLOWED_ORIGINS:
        logger.warning(f"🚫 Rejected request from disallowed origin: {origin}")
        raise Forbidden("Origin not allowed")


async def set_rls_context(db: AsyncSession, user_id: str) -> None:
    """
    Set the RLS context for a database session (PostgreSQL only).

    Policies on actions/items compare user_id to current_setting('app.current_user_id').
    """
    try:
        await db.execute(
            text("SELECT set_config('app.current_user_id', :user_id, false)"),
            {"user_id": str(user_id)},
        )
        logger.debug(f"RLS context set for user_id={user_id}")
    except Exception as e:
        logger.error(f"Failed to set RLS context for user_id={user_id}: {e}")
        raise
