import json
import logging
from typing import Optional, Dict, Any

from ...application.ports.audit_logger import AuditLogger
from ...core.request_context import current_client_ip, current_request_id
from ...utils import hash_identifier, utcnow


class StdAuditLogger(AuditLogger):
    """Writes one JSON line per security-relevant event to the ``app.audit`` logger.

    Request id and client address default to whatever the current request
    bound, so services never have to thread them through.
    """

    def __init__(self, logger_name: str = "app.audit") -> None:
        self._logger = logging.getLogger(logger_name)

    def log(self, action: str, identifier: str, user_id: Optional[str] = None, request_id: Optional[str] = None, ip_address: Optional[str] = None, success: bool = True, details: Optional[Dict[str, Any]] = None) -> None:
        entry = {
            "at": utcnow().isoformat(),
            "event": action,
            "outcome": "success" if success else "failure",
            # emails never reach the log in clear text
            "subject": hash_identifier(identifier.lower()) if identifier else None,
            "actor": user_id,
            "request_id": request_id or current_request_id.get(),
            "client_ip": ip_address or current_client_ip.get(),
        }
        if details:
            entry["details"] = details
        level = logging.INFO if success else logging.WARNING
        self._logger.log(level, f"AUDIT {json.dumps(entry, default=str, sort_keys=True)}")
