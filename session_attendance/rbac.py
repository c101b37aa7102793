"""Actor roles as issued by the identity provider, and who may do what."""
from __future__ import annotations

from enum import Enum
from typing import Iterable


class ActorRole(str, Enum):
    SUPER_ADMIN = "super-admin"
    ADMIN = "admin"
    INSTRUCTOR = "instructor"
    STUDENT = "student"
    PARENT = "parent"


ADMIN_ROLES: frozenset[str] = frozenset({ActorRole.ADMIN.value, ActorRole.SUPER_ADMIN.value})

# May open sessions, mark records and finalize.
MARKING_ROLES: frozenset[str] = ADMIN_ROLES | {ActorRole.INSTRUCTOR.value}


def has_any_role(roles: Iterable[str], allowed: Iterable[str]) -> bool:
    return bool(set(roles) & set(allowed))


def can_view_instructor_data(actor_id: str, roles: Iterable[str], instructor_id: str) -> bool:
    """Instructors see their own reports; admins see everyone's."""
    return actor_id == instructor_id or has_any_role(roles, ADMIN_ROLES)
