"""Shared dependencies: bearer JWT verification and role checks.

Tokens are minted by the identity provider; this service only verifies
them and reads the ``sub`` (actor id) and ``role`` claims.
"""
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from session_attendance.config import settings
from session_attendance.rbac import ADMIN_ROLES, MARKING_ROLES, has_any_role

security = HTTPBearer(auto_error=False)


class Actor(BaseModel):
    id: str
    roles: list[str]

    @property
    def is_admin(self) -> bool:
        return has_any_role(self.roles, ADMIN_ROLES)


async def get_current_actor(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Actor:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = jwt.decode(
            credentials.credentials, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm]
        )
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    actor_id = payload.get("sub")
    if not actor_id or payload.get("type", "access") != "access":
        raise HTTPException(status_code=401, detail="Invalid token")
    role = payload.get("role") or []
    roles = [role] if isinstance(role, str) else list(role)
    return Actor(id=str(actor_id), roles=roles)


def require_roles(*allowed: str):
    async def checker(actor: Annotated[Actor, Depends(get_current_actor)]):
        if not has_any_role(actor.roles, allowed):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return actor

    return checker


# Type aliases for route injection
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
InstructorOrAdmin = Annotated[Actor, Depends(require_roles(*MARKING_ROLES))]
