"""Caller identity.

Authentication happens upstream (gateway / auth proxy); it forwards the
authenticated user's id and role in request headers.
"""
import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException

ROLE_PARTICIPANT = "participant"
ROLE_ORGANIZER = "organizer"
ROLE_ADMIN = "admin"
ROLES = (ROLE_PARTICIPANT, ROLE_ORGANIZER, ROLE_ADMIN)


@dataclass(frozen=True)
class CurrentUser:
    id: uuid.UUID
    role: str = ROLE_PARTICIPANT

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_organizer(self) -> bool:
        return self.role in (ROLE_ORGANIZER, ROLE_ADMIN)


async def get_current_user(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> CurrentUser:
    """FastAPI dependency resolving the caller from X-User-Id / X-User-Role."""
    if not x_user_id:
        raise HTTPException(401, "Missing X-User-Id header")
    try:
        user_id = uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(401, "X-User-Id must be a UUID")
    role = (x_user_role or ROLE_PARTICIPANT).strip().lower()
    if role not in ROLES:
        raise HTTPException(401, f"Unknown role '{role}'")
    return CurrentUser(id=user_id, role=role)
