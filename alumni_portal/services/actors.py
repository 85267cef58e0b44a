from dataclasses import dataclass
from enum import Enum

from sqlalchemy.orm import Session

from alumni_portal.errors import Forbidden
from alumni_portal.models import PROFILE_STATIC, AlumniProfile, User


class ProfileState(str, Enum):
    STATIC = "static"
    CLAIMED_PENDING = "claimed_pending"
    CLAIMED_VERIFIED = "claimed_verified"


def profile_state(profile: AlumniProfile) -> ProfileState:
    if profile.profile_type == PROFILE_STATIC:
        return ProfileState.STATIC
    if profile.is_verified:
        return ProfileState.CLAIMED_VERIFIED
    return ProfileState.CLAIMED_PENDING


@dataclass(frozen=True)
class Student:
    user_id: int
    role = "student"


@dataclass(frozen=True)
class Alumni:
    user_id: int
    state: ProfileState | None
    role = "alumni"


@dataclass(frozen=True)
class Admin:
    user_id: int
    role = "admin"


Actor = Student | Alumni | Admin


def resolve_actor(db: Session, user: User) -> Actor:
    """Build the actor for ``user`` from the store, reading profile state now."""
    if user.role == "student":
        return Student(user_id=user.id)
    if user.role == "admin":
        return Admin(user_id=user.id)
    if user.role == "alumni":
        profile = db.get(AlumniProfile, user.id)
        return Alumni(user_id=user.id, state=profile_state(profile) if profile else None)
    raise Forbidden(f"Unknown role {user.role!r}")


def require_student(actor: Actor) -> Student:
    if not isinstance(actor, Student):
        raise Forbidden("Only students can perform this action.")
    return actor


def require_alumni(actor: Actor) -> Alumni:
    if not isinstance(actor, Alumni):
        raise Forbidden("Only alumni can perform this action.")
    return actor


def require_admin(actor: Actor) -> Admin:
    if not isinstance(actor, Admin):
        raise Forbidden("Only administrators can perform this action.")
    return actor
