# app/core/permissions.py
"""Caller permission checks for the enrollment endpoints.

Authentication happens in front of this service; the gateway forwards the
caller's id and granted permissions as headers.
"""
from dataclasses import dataclass, field
from typing import FrozenSet, Optional
from fastapi import Depends, Header, HTTPException

ENROLLMENT_READ = "enrollment:read"
ENROLLMENT_WRITE = "enrollment:write"


@dataclass(frozen=True)
class Actor:
    id: Optional[str]
    permissions: FrozenSet[str] = field(default_factory=frozenset)

    def can(self, permission: str) -> bool:
        return permission in self.permissions or "*" in self.permissions


async def get_current_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_permissions: str = Header(""),
) -> Actor:
    permissions = frozenset(p.strip() for p in x_actor_permissions.split(",") if p.strip())
    return Actor(id=x_actor_id, permissions=permissions)


def require_permission(permission: str):
    """FastAPI dependency factory rejecting callers without `permission`"""
    async def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not actor.can(permission):
            raise HTTPException(
                status_code=403,
                detail={"error": "Forbidden", "message": f"Missing permission '{permission}'"}
            )
        return actor
    return dependency
