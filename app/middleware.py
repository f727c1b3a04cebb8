import logging
import time
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .core.request_context import current_client_ip, current_request_id

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
# Routes that set or read session cookies
SESSION_PATH_PREFIXES = ("/auth", "/admin")


class SecurityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        headers = response.headers
        headers.setdefault("X-Content-Type-Options", "nosniff")
        headers.setdefault("X-Frame-Options", "DENY")
        headers.setdefault("Referrer-Policy", "no-referrer")
        if request.url.scheme == "https":
            headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
        if request.url.path.startswith(SESSION_PATH_PREFIXES):
            headers["Cache-Control"] = "no-store"
            headers["Pragma"] = "no-cache"
        return response


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag every request with an id, bind it for audit entries and log the outcome."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        client_ip = request.client.host if request.client else None
        request.state.request_id = request_id

        id_token = current_request_id.set(request_id)
        ip_token = current_client_ip.set(client_ip)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            current_request_id.reset(id_token)
            current_client_ip.reset(ip_token)

        elapsed_ms = (time.perf_counter() - started) * 1000
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level,
            f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} "
            f"({elapsed_ms:.1f}ms, client={client_ip or 'unknown'})"
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Last-resort handler: anything that escapes a route becomes a JSON 500."""

    def __init__(self, app: ASGIApp, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            request_id = getattr(request.state, "request_id", None)
            logger.error(f"[{request_id}] Unhandled error on {request.url.path}: {e}", exc_info=True)
            error = f"Internal server error: {e}" if self.debug else "Internal server error"
            return JSONResponse(status_code=500, content={"success": False, "error": error})
