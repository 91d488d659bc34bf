"""
Authentication middleware for role-based route protection.
"""

import logging
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from commission_engine.auth.jwt import get_token_from_cookie, verify_token

logger = logging.getLogger(__name__)

# Route prefix -> role required
PROTECTED_PREFIXES = {
    "/api/organizer": "organizer",
    "/api/agent": "agent",
}


class AuthMiddleware(BaseHTTPMiddleware):
    """
    Rejects unauthenticated or wrong-role calls before they reach a router.

    - /api/organizer/* requires the organizer role
    - /api/agent/* requires the agent role

    Everything else (health, auth, sale ingest) is left to the route's own
    dependencies.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        path = request.url.path

        required_role = None
        for prefix, role in PROTECTED_PREFIXES.items():
            if path == prefix or path.startswith(prefix + "/"):
                required_role = role
                break

        if required_role is None:
            return await call_next(request)

        token = get_token_from_cookie(request)
        payload = verify_token(token) if token else None

        if not payload:
            return JSONResponse({"detail": "Not authenticated"}, status_code=401)

        if payload.get("role") != required_role:
            logger.warning(
                f"User {payload.get('user_id')} ({payload.get('role')}) denied access to {path}"
            )
            return JSONResponse({"detail": f"{required_role.capitalize()} access required"}, status_code=403)

        return await call_next(request)
