from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Protocol


class Role(str, Enum):
    ADMIN = "admin"
    VENDOR = "vendor"
    CUSTOMER = "customer"


@dataclass
class RoleRecord:
    user_id: str
    email: str
    full_name: Optional[str]
    role: str
    email_verified: bool


class ProfileRepository(Protocol):
    """Service-level profile access.

    Reads here bypass the caller's own access scope; callers must only use it
    to resolve roles and accounts before trusting anything the caller claims.
    """

    def get_role_record(self, user_id: str) -> Optional[RoleRecord]:
        ...

    def get_by_email(self, email: str) -> Optional[RoleRecord]:
        ...

    def create(self, user_id: str, email: str, full_name: Optional[str], role: str) -> RoleRecord:
        ...

    def mark_email_verified(self, email: str) -> None:
        ...

    def list_all(self) -> List[RoleRecord]:
        ...

    def set_role(self, user_id: str, role: str) -> Optional[RoleRecord]:
        ...
