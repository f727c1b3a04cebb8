from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from typing import Any, Dict, Optional


class APIException(HTTPException):
    def __init__(self, status_code: int, detail: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(status_code=status_code, detail=detail)
        self.extra = extra or {}


class ValidationError(APIException):
    """Malformed or missing input. Raised before any store access."""

    def __init__(self, detail: str = "Invalid request"):
        super().__init__(status_code=400, detail=detail)


class AuthenticationError(APIException):
    def __init__(self, detail: str = "Invalid credentials"):
        super().__init__(status_code=401, detail=detail)


class AuthorizationError(APIException):
    """Role mismatch. Only raised after the session has been signed out."""

    def __init__(self, detail: str = "Access denied"):
        super().__init__(status_code=403, detail=detail)


class MfaRequiredError(APIException):
    def __init__(self, factor_id: Optional[str] = None):
        super().__init__(
            status_code=403,
            detail="Multi-factor authentication required",
            extra={"mfa_required": True, "factor_id": factor_id},
        )


class NotFoundError(APIException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=404, detail=detail)


class ExpiredOrInvalidToken(APIException):
    def __init__(self, detail: str = "Invalid or expired token"):
        super().__init__(status_code=400, detail=detail)


class InternalError(APIException):
    def __init__(self, detail: str = "Internal server error"):
        super().__init__(status_code=500, detail=detail)


class StorageDegraded(Exception):
    """A store is unreachable, timed out, or lacks its atomic primitive.

    Internal signal only: the rate limiter fails open on it, everything else
    converts it to InternalError.
    """


class StoreError(Exception):
    """Unexpected failure inside a store or identity-provider adapter."""


class EmailDeliveryError(Exception):
    pass


def create_error_response(error_message: str, extra: Optional[Dict[str, Any]] = None) -> dict:
    """Create a standardized error response"""
    body = {"success": False, "error": error_message}
    if extra:
        body.update(extra)
    return body


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Custom exception handler for HTTPException"""
    extra = getattr(exc, "extra", None)
    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(str(exc.detail), extra),
        headers=getattr(exc, "headers", None),
    )


def _describe_validation_error(err: Dict[str, Any]) -> str:
    loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
    field = ".".join(loc) or "request"
    if err.get("type") == "missing":
        return f"{field} is required"
    msg = str(err.get("msg", "Invalid value"))
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    return msg


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = _describe_validation_error(errors[0]) if errors else "Invalid request"
    return JSONResponse(status_code=400, content=create_error_response(message))
