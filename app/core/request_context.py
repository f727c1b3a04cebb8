from contextvars import ContextVar
from typing import Optional

# Set by RequestContextMiddleware for the lifetime of one request
current_request_id: ContextVar[Optional[str]] = ContextVar("current_request_id", default=None)
current_client_ip: ContextVar[Optional[str]] = ContextVar("current_client_ip", default=None)
