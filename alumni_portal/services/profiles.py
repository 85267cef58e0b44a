"""
Alumni profile lifecycle.

A profile moves through three states:

    STATIC --claim--> CLAIMED_PENDING --approve--> CLAIMED_VERIFIED
                            |
                            +--reject--> STATIC

Static profiles come from the CSV importer and are institution-asserted, so
they are created verified for directory display. Claiming hands the profile to
whoever proves the email by setting a password; only an admin approval makes a
claimed profile verified, and only a verified owner may edit it.
"""

from datetime import timedelta

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from alumni_portal.database import transaction
from alumni_portal.errors import Conflict, Forbidden, NotFound, ValidationFailed
from alumni_portal.models import PROFILE_CLAIMED, PROFILE_STATIC, AlumniProfile, User, utcnow
from alumni_portal.observability import get_logger
from alumni_portal.services.actors import (
    Actor,
    Admin,
    Alumni,
    ProfileState,
    profile_state,
    require_admin,
)
from alumni_portal.services.security import UNUSABLE_PASSWORD, hash_password, validate_password_policy
from alumni_portal.services.validation import clean_text, normalise_email, validate_profile_update, validate_search_filters

logger = get_logger(__name__)

PUBLIC_STATIC_FIELDS = ("id", "name", "batch", "course", "company", "domain", "profile_type", "last_updated")
IMPORT_FIELDS = ("course", "department", "batch", "company", "position", "domain", "experience", "location")


def profile_view(profile: AlumniProfile, user: User) -> dict:
    """Composite read model: identity fields from the user plus the profile."""
    return {
        "id": profile.id,
        "name": user.name,
        "email": user.email,
        "course": profile.course,
        "department": profile.department,
        "batch": profile.batch,
        "company": profile.company,
        "position": profile.position,
        "domain": profile.domain,
        "experience": profile.experience,
        "location": profile.location,
        "bio": profile.bio,
        "profile_type": profile.profile_type,
        "is_verified": profile.is_verified,
        "state": profile_state(profile).value,
        "last_updated": profile.last_updated,
    }


def redact_static(view: dict) -> dict:
    return {key: view[key] for key in PUBLIC_STATIC_FIELDS}


def _joined(db: Session):
    return db.query(AlumniProfile, User).join(User, AlumniProfile.id == User.id)


def find_profile_by_email(db: Session, email: str) -> AlumniProfile | None:
    return (
        db.query(AlumniProfile)
        .join(User, AlumniProfile.id == User.id)
        .filter(func.lower(User.email) == normalise_email(email))
        .first()
    )


def get_profile(db: Session, profile_id: int) -> AlumniProfile:
    profile = db.get(AlumniProfile, profile_id)
    if not profile:
        raise NotFound("Alumni profile not found.")
    return profile


def get_profile_view(db: Session, profile_id: int) -> dict:
    profile = get_profile(db, profile_id)
    return profile_view(profile, profile.user)


def claim(db: Session, email: str, new_password: str) -> AlumniProfile:
    ok, err = validate_password_policy(new_password)
    if not ok:
        raise ValidationFailed("Invalid claim data.", [err])
    profile = find_profile_by_email(db, email)
    if not profile:
        raise NotFound("No alumni profile found with this email. Please contact admin.")
    if profile.profile_type == PROFILE_CLAIMED:
        raise Conflict("This profile has already been claimed.")

    with transaction(db):
        profile.user.password_hash = hash_password(new_password)
        profile.user.failed_attempts = 0
        profile.user.locked_until = 0
        profile.profile_type = PROFILE_CLAIMED
        profile.is_verified = False
    logger.info("profile_claimed", profile_id=profile.id)
    return profile


def _require_pending_claim(profile: AlumniProfile):
    if profile_state(profile) != ProfileState.CLAIMED_PENDING:
        raise Conflict("This profile has no pending claim.")


def list_pending_claims(db: Session) -> list[dict]:
    rows = (
        _joined(db)
        .filter(AlumniProfile.profile_type == PROFILE_CLAIMED, AlumniProfile.is_verified.is_(False))
        .order_by(AlumniProfile.last_updated.asc(), AlumniProfile.id.asc())
        .all()
    )
    return [profile_view(profile, user) for profile, user in rows]


def approve(db: Session, actor: Actor, profile_id: int) -> AlumniProfile:
    require_admin(actor)
    profile = get_profile(db, profile_id)
    _require_pending_claim(profile)
    profile.is_verified = True
    profile.last_updated = utcnow()
    db.commit()
    logger.info("claim_approved", profile_id=profile_id, admin_id=actor.user_id)
    return profile


def reject(db: Session, actor: Actor, profile_id: int) -> AlumniProfile:
    """Return a pending claim to the unclaimed pool.

    The email stays claimable by anyone who can reach it; there is no lockout
    and the previous claimant is not notified.
    """
    require_admin(actor)
    profile = get_profile(db, profile_id)
    _require_pending_claim(profile)
    with transaction(db):
        profile.profile_type = PROFILE_STATIC
        profile.is_verified = False
        profile.user.password_hash = UNUSABLE_PASSWORD
    logger.info("claim_rejected", profile_id=profile_id, admin_id=actor.user_id)
    return profile


def update_profile(db: Session, actor: Actor, profile_id: int, fields: dict) -> AlumniProfile:
    """Self-service edit by the owning alumnus of a claimed, verified profile."""
    if isinstance(actor, Admin):
        raise Forbidden("Administrators update profiles through CSV import.")
    if not isinstance(actor, Alumni) or actor.user_id != profile_id:
        raise Forbidden("You are not authorized to update this profile.")
    profile = get_profile(db, profile_id)
    if profile_state(profile) != ProfileState.CLAIMED_VERIFIED:
        raise Forbidden("You are not authorized to update this profile. Please wait for admin verification.")

    result = validate_profile_update(fields)
    name = clean_text(fields.get("name")) if fields.get("name") is not None else None
    if name is not None and len(name) < 2:
        result.errors.append("Name must be at least 2 characters")
    if not result.is_valid:
        raise ValidationFailed("Invalid profile data.", result.errors)
    for key, value in result.data.items():
        setattr(profile, key, value)
    if name is not None:
        profile.user.name = name
    profile.last_updated = utcnow()
    db.commit()
    logger.info("profile_updated", profile_id=profile_id, fields=sorted(result.data))
    return profile


def apply_import_update(profile: AlumniProfile, record: dict) -> AlumniProfile:
    """Overwrite a static profile from a validated CSV record.

    The caller owns the transaction. Bio is only replaced by a non-empty value.
    """
    if profile.profile_type != PROFILE_STATIC:
        raise Forbidden("Bulk import cannot modify a claimed profile.")
    for key in IMPORT_FIELDS:
        setattr(profile, key, record.get(key))
    if record.get("bio"):
        profile.bio = record["bio"]
    profile.last_updated = utcnow()
    return profile


def get_stale_profiles(db: Session, days_old: int = 365) -> list[dict]:
    if days_old < 0:
        raise ValidationFailed("Invalid threshold.", ["daysOld must be a non-negative number"])
    cutoff = utcnow() - timedelta(days=days_old)
    rows = (
        _joined(db)
        .filter(AlumniProfile.last_updated < cutoff)
        .order_by(AlumniProfile.last_updated.asc(), AlumniProfile.id.asc())
        .all()
    )
    return [profile_view(profile, user) for profile, user in rows]


def directory(db: Session, actor: Actor, raw_filters: dict, default_limit: int = 50) -> list[dict]:
    """List verified profiles matching the filters, most recently updated first.

    Non-admin viewers only see the public subset of static profiles.
    """
    result = validate_search_filters(raw_filters, default_limit=default_limit)
    if not result.is_valid:
        raise ValidationFailed("Invalid search filters.", result.errors)
    filters = result.data

    query = _joined(db).filter(AlumniProfile.is_verified.is_(True))
    if "batch" in filters:
        query = query.filter(AlumniProfile.batch == filters["batch"])
    for key in ("company", "domain", "course"):
        if key in filters:
            query = query.filter(func.lower(getattr(AlumniProfile, key)).contains(filters[key].lower(), autoescape=True))
    if "experience_min" in filters:
        query = query.filter(AlumniProfile.experience >= filters["experience_min"])
    if "experience_max" in filters:
        query = query.filter(AlumniProfile.experience <= filters["experience_max"])
    if "search" in filters:
        needle = filters["search"].lower()
        query = query.filter(
            or_(
                func.lower(User.name).contains(needle, autoescape=True),
                func.lower(AlumniProfile.company).contains(needle, autoescape=True),
                func.lower(AlumniProfile.domain).contains(needle, autoescape=True),
            )
        )

    rows = (
        query.order_by(AlumniProfile.last_updated.desc(), AlumniProfile.id.desc())
        .offset(filters["offset"])
        .limit(filters["limit"])
        .all()
    )
    views = [profile_view(profile, user) for profile, user in rows]
    if isinstance(actor, Admin):
        return views
    return [redact_static(v) if v["profile_type"] == PROFILE_STATIC else v for v in views]
