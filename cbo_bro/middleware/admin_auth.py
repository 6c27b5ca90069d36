"""Bearer token middleware for the admin API"""

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from cbo_bro.core.config import logger
from cbo_bro.core.dependencies import get_admin_auth_service, get_whitelist_service
from cbo_bro.core.errors import AdminAuthError

ADMIN_PREFIX = "/api/admin"
PUBLIC_ADMIN_PATHS = ("/api/admin/auth",)


class AdminAuthMiddleware(BaseHTTPMiddleware):
    """
    Guards /api/admin/* with an admin JWT.

    Services are resolved through the app's dependency overrides, so tests
    can swap them the same way they do for route dependencies.
    """

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not path.startswith(ADMIN_PREFIX) or path in PUBLIC_ADMIN_PATHS:
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            logger.warning(f"[admin] Missing token for {path}")
            return JSONResponse(status_code=401, content={"error": "No token provided"})

        overrides = request.app.dependency_overrides
        auth_service = overrides.get(get_admin_auth_service, get_admin_auth_service)()
        whitelist = overrides.get(get_whitelist_service, get_whitelist_service)()

        try:
            payload = auth_service.decode_token(auth_header[7:])
        except AdminAuthError as e:
            return JSONResponse(status_code=401, content={"error": e.message})

        if not whitelist.is_admin(payload["userId"]):
            logger.warning(f"[admin] User {payload['userId']} is not an admin")
            return JSONResponse(status_code=403, content={"error": "Admin access required"})

        request.state.admin = payload
        logger.debug(f"[admin] Token accepted: user={payload['userId']}")
        return await call_next(request)
