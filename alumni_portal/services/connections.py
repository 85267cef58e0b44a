from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from alumni_portal.errors import Conflict, Forbidden, NotFound, ValidationFailed
from alumni_portal.models import (
    REQUEST_ACCEPTED,
    REQUEST_PENDING,
    REQUEST_REJECTED,
    AlumniProfile,
    InteractionRequest,
    StudentProfile,
    User,
)
from alumni_portal.observability import get_logger
from alumni_portal.services.actors import (
    Actor,
    Admin,
    Alumni,
    ProfileState,
    Student,
    profile_state,
    require_admin,
    require_alumni,
    require_student,
)

logger = get_logger(__name__)

DECISIONS = {REQUEST_ACCEPTED, REQUEST_REJECTED}


def request_connection(db: Session, actor: Actor, alumni_id: int) -> InteractionRequest:
    student = require_student(actor)
    profile = db.get(AlumniProfile, alumni_id)
    if not profile:
        raise NotFound("Alumni not found.")
    if not profile.is_verified:
        raise Forbidden("Cannot send request to unverified alumni.")

    existing = (
        db.query(InteractionRequest)
        .filter(InteractionRequest.student_id == student.user_id, InteractionRequest.alumni_id == alumni_id)
        .first()
    )
    if existing:
        raise Conflict("Request already sent to this alumni.")

    row = InteractionRequest(student_id=student.user_id, alumni_id=alumni_id, status=REQUEST_PENDING)
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Request already sent to this alumni.") from None
    db.refresh(row)
    logger.info("request_created", request_id=row.id, student_id=student.user_id, alumni_id=alumni_id)
    return row


def respond(db: Session, actor: Actor, request_id: int, decision: str) -> InteractionRequest:
    alumni = require_alumni(actor)
    decision = (decision or "").strip().lower()
    if decision not in DECISIONS:
        raise ValidationFailed("Invalid status.", [f"Status must be one of {sorted(DECISIONS)}"])

    row = db.get(InteractionRequest, request_id)
    if not row:
        raise NotFound("Request not found.")
    if row.alumni_id != alumni.user_id:
        raise Forbidden("You are not authorized to respond to this request.")
    if not _is_verified_alumni(db, alumni.user_id):
        raise Forbidden("Your profile must be verified before you can answer requests.")
    if row.status != REQUEST_PENDING:
        raise Conflict(f"Request has already been {row.status}.")

    row.status = decision
    db.commit()
    db.refresh(row)
    logger.info("request_answered", request_id=row.id, status=decision)
    return row


def _is_verified_alumni(db: Session, alumni_id: int) -> bool:
    profile = db.get(AlumniProfile, alumni_id)
    return profile is not None and profile_state(profile) == ProfileState.CLAIMED_VERIFIED


def _pair_request(db: Session, user_a: int, user_b: int) -> InteractionRequest | None:
    return (
        db.query(InteractionRequest)
        .filter(
            or_(
                and_(InteractionRequest.student_id == user_a, InteractionRequest.alumni_id == user_b),
                and_(InteractionRequest.student_id == user_b, InteractionRequest.alumni_id == user_a),
            )
        )
        .first()
    )


def check_connection(db: Session, user_a: int, user_b: int) -> str | None:
    """Status of the request between two users in either direction, or None."""
    row = _pair_request(db, user_a, user_b)
    return row.status if row else None


def is_connected(db: Session, user_a: int, user_b: int) -> bool:
    """An accepted request whose alumni side is still a verified claimed profile."""
    row = _pair_request(db, user_a, user_b)
    if not row or row.status != REQUEST_ACCEPTED:
        return False
    return _is_verified_alumni(db, row.alumni_id)


def requests_for_student(db: Session, actor: Actor) -> list[dict]:
    student = require_student(actor)
    rows = (
        db.query(InteractionRequest, User, AlumniProfile)
        .join(User, InteractionRequest.alumni_id == User.id)
        .outerjoin(AlumniProfile, AlumniProfile.id == User.id)
        .filter(InteractionRequest.student_id == student.user_id)
        .order_by(InteractionRequest.created_at.desc(), InteractionRequest.id.desc())
        .all()
    )
    return [
        {
            **req.to_dict(),
            "alumni_name": user.name,
            "company": profile.company if profile else None,
            "position": profile.position if profile else None,
            "domain": profile.domain if profile else None,
        }
        for req, user, profile in rows
    ]


def requests_for_alumni(db: Session, actor: Actor) -> list[dict]:
    alumni = require_alumni(actor)
    rows = (
        db.query(InteractionRequest, User, StudentProfile)
        .join(User, InteractionRequest.student_id == User.id)
        .outerjoin(StudentProfile, StudentProfile.id == User.id)
        .filter(InteractionRequest.alumni_id == alumni.user_id)
        .order_by(InteractionRequest.created_at.desc(), InteractionRequest.id.desc())
        .all()
    )
    return [
        {
            **req.to_dict(),
            "student_name": user.name,
            "student_email": user.email,
            "course": student.course if student else None,
            "year_of_study": student.year_of_study if student else None,
        }
        for req, user, student in rows
    ]


def accepted_connections(db: Session, actor: Actor) -> list[dict]:
    """Accepted connections of the caller, described from the other side."""
    if isinstance(actor, Student):
        own_col, other_col = InteractionRequest.student_id, InteractionRequest.alumni_id
    elif isinstance(actor, Alumni):
        own_col, other_col = InteractionRequest.alumni_id, InteractionRequest.student_id
    else:
        raise Forbidden("Only students and alumni have connections.")

    other = aliased(User)
    rows = (
        db.query(InteractionRequest, other)
        .join(other, other_col == other.id)
        .filter(own_col == actor.user_id, InteractionRequest.status == REQUEST_ACCEPTED)
        .order_by(InteractionRequest.created_at.desc(), InteractionRequest.id.desc())
        .all()
    )
    return [
        {
            "request_id": req.id,
            "user_id": user.id,
            "name": user.name,
            "email": user.email,
            "role": user.role,
            "connected_since": req.created_at,
        }
        for req, user in rows
    ]


def delete_request(db: Session, actor: Actor, request_id: int) -> None:
    admin: Admin = require_admin(actor)
    row = db.get(InteractionRequest, request_id)
    if not row:
        raise NotFound("Request not found.")
    db.delete(row)
    db.commit()
    logger.info("request_deleted", request_id=request_id, deleted_by=admin.user_id)
