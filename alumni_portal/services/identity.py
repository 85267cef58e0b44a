import time

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from alumni_portal.database import transaction
from alumni_portal.errors import Conflict, Forbidden, NotFound, ValidationFailed
from alumni_portal.models import (
    ROLE_ADMIN,
    ROLE_ALUMNI,
    ROLE_STUDENT,
    InteractionRequest,
    Message,
    StudentProfile,
    User,
)
from alumni_portal.observability import get_logger
from alumni_portal.services.actors import Actor, require_admin, require_student
from alumni_portal.services.security import hash_password, validate_password_policy, verify_password
from alumni_portal.services.validation import (
    clean_text,
    normalise_email,
    validate_registration,
    validate_student_update,
)

logger = get_logger(__name__)

VALID_ROLES = {ROLE_STUDENT, ROLE_ALUMNI, ROLE_ADMIN}


def find_user_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(func.lower(User.email) == normalise_email(email)).first()


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFound("User not found.")
    return user


def _validated_registration(payload: dict, role: str) -> dict:
    result = validate_registration(payload, role)
    errors = list(result.errors)
    ok, err = validate_password_policy(result.data["password"])
    if not ok:
        errors.append(err)
    if errors:
        raise ValidationFailed("Invalid registration data.", errors)
    return result.data


def _create_user(db: Session, data: dict, role: str) -> User:
    if find_user_by_email(db, data["email"]):
        raise Conflict("User with this email already exists.")
    user = User(
        name=data["name"],
        email=data["email"],
        password_hash=hash_password(data["password"]),
        role=role,
        failed_attempts=0,
        locked_until=0,
    )
    db.add(user)
    db.flush()
    return user


def register_student(db: Session, payload: dict) -> User:
    data = _validated_registration(payload, ROLE_STUDENT)
    with transaction(db):
        user = _create_user(db, data, ROLE_STUDENT)
        db.add(
            StudentProfile(
                id=user.id,
                course=data["course"],
                department=data["department"],
                year_of_study=data["year_of_study"],
            )
        )
    logger.info("student_registered", user_id=user.id)
    return user


def register_admin(db: Session, actor: Actor, payload: dict) -> User:
    require_admin(actor)
    data = _validated_registration(payload, ROLE_ADMIN)
    with transaction(db):
        user = _create_user(db, data, ROLE_ADMIN)
    logger.info("admin_registered", user_id=user.id, created_by=actor.user_id)
    return user


def authenticate(
    db: Session, email: str, password: str, max_failures: int = 5, lockout_seconds: int = 900
) -> User | None:
    """Return the user for valid credentials, None otherwise.

    Accounts are locked for ``lockout_seconds`` after ``max_failures``
    consecutive bad passwords. Profiles provisioned by CSV never match.
    """
    user = find_user_by_email(db, email)
    if not user:
        return None
    now = int(time.time())
    if user.locked_until and user.locked_until > now:
        logger.info("login_denied", user_id=user.id, reason="locked")
        return None

    if verify_password(password, user.password_hash):
        user.failed_attempts = 0
        user.locked_until = 0
        db.commit()
        return user

    user.failed_attempts = (user.failed_attempts or 0) + 1
    if user.failed_attempts >= max_failures:
        user.locked_until = now + lockout_seconds
        user.failed_attempts = 0
        logger.warning("account_locked", user_id=user.id, until=user.locked_until)
    db.commit()
    return None


def update_name(db: Session, user_id: int, name: str) -> User:
    user = get_user(db, user_id)
    cleaned = clean_text(name)
    if len(cleaned) < 2:
        raise ValidationFailed("Invalid profile data.", ["Name must be at least 2 characters"])
    user.name = cleaned
    db.commit()
    return user


def get_student_profile(db: Session, actor: Actor) -> dict:
    require_student(actor)
    user = get_user(db, actor.user_id)
    student = user.student_profile
    if not student:
        raise NotFound("Student profile not found.")
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "course": student.course,
        "department": student.department,
        "year_of_study": student.year_of_study,
    }


def update_student_profile(db: Session, actor: Actor, payload: dict) -> dict:
    require_student(actor)
    result = validate_student_update(payload)
    name = clean_text(payload.get("name")) if payload.get("name") is not None else None
    if name is not None and len(name) < 2:
        result.errors.append("Name must be at least 2 characters")
    if not result.is_valid:
        raise ValidationFailed("Invalid profile data.", result.errors)
    student = db.get(StudentProfile, actor.user_id)
    if not student:
        raise NotFound("Student profile not found.")
    for key, value in result.data.items():
        setattr(student, key, value)
    if name is not None:
        student.user.name = name
    db.commit()
    return get_student_profile(db, actor)


def list_users(db: Session, role: str | None = None, page: int = 1, limit: int = 20) -> list[User]:
    if role and role not in VALID_ROLES:
        raise ValidationFailed("Invalid role filter.", [f"Role must be one of {sorted(VALID_ROLES)}"])
    query = db.query(User)
    if role:
        query = query.filter(User.role == role)
    return query.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit).all()


def delete_user(db: Session, actor: Actor, user_id: int) -> None:
    """Delete a user and everything that references it."""
    require_admin(actor)
    if user_id == actor.user_id:
        raise Forbidden("Administrators cannot delete their own account.")
    user = get_user(db, user_id)
    with transaction(db):
        db.query(Message).filter(or_(Message.sender_id == user_id, Message.receiver_id == user_id)).delete(
            synchronize_session=False
        )
        db.query(InteractionRequest).filter(
            or_(InteractionRequest.student_id == user_id, InteractionRequest.alumni_id == user_id)
        ).delete(synchronize_session=False)
        db.delete(user)
    logger.info("user_deleted", user_id=user_id, deleted_by=actor.user_id)
