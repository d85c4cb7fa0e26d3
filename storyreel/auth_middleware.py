"""
Shared-secret authentication middleware for administrative routes.

All /admin/* endpoints require a valid X-Admin-Secret header matching the
ADMIN_SHARED_SECRET environment variable. Everything else is public.
"""

import os
import secrets

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware


class AdminAuthMiddleware(BaseHTTPMiddleware):
    """Reject unauthenticated requests to /admin/* endpoints."""

    PROTECTED_PREFIX = "/admin"

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith(self.PROTECTED_PREFIX):
            return await call_next(request)

        admin_secret = os.environ.get("ADMIN_SHARED_SECRET", "")
        if not admin_secret:
            # In development without the secret set, allow all traffic
            if os.environ.get("ENVIRONMENT", "development") == "development":
                return await call_next(request)
            return JSONResponse(
                {"error": "Misconfigured", "message": "ADMIN_SHARED_SECRET not configured"},
                status_code=500,
            )

        # Constant-time compare
        provided = request.headers.get("X-Admin-Secret", "")
        if not secrets.compare_digest(provided, admin_secret):
            return JSONResponse(
                {"error": "Unauthorized", "message": "Invalid or missing admin secret"},
                status_code=401,
            )

        return await call_next(request)
