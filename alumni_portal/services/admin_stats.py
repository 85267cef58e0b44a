from datetime import timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from alumni_portal.models import (
    PROFILE_CLAIMED,
    REQUEST_ACCEPTED,
    ROLE_ADMIN,
    ROLE_ALUMNI,
    ROLE_STUDENT,
    AlumniProfile,
    CSVUpload,
    InteractionRequest,
    Message,
    User,
    as_utc,
    utcnow,
)
from alumni_portal.services.actors import Actor, require_admin

RECENT_ACTIVITY_DAYS = 7
RECENT_ACTIVITY_LIMIT = 20
UPLOAD_WINDOW_DAYS = 30
MONTHS_IN_ROLLUP = 12


def _count(query) -> int:
    return query.scalar() or 0


def recent_activity(db: Session, days: int = RECENT_ACTIVITY_DAYS, limit: int = RECENT_ACTIVITY_LIMIT) -> list[dict]:
    cutoff = utcnow() - timedelta(days=days)
    events = []

    for user in db.query(User).filter(User.created_at >= cutoff).all():
        events.append({"type": "registration", "name": user.name, "role": user.role, "timestamp": as_utc(user.created_at)})

    claims = (
        db.query(AlumniProfile, User)
        .join(User, AlumniProfile.id == User.id)
        .filter(AlumniProfile.profile_type == PROFILE_CLAIMED, AlumniProfile.last_updated >= cutoff)
        .all()
    )
    for profile, user in claims:
        events.append(
            {"type": "claim", "name": user.name, "verified": profile.is_verified, "timestamp": as_utc(profile.last_updated)}
        )

    for upload in db.query(CSVUpload).filter(CSVUpload.uploaded_at >= cutoff).all():
        events.append(
            {
                "type": "csv_upload",
                "name": upload.filename,
                "records_count": upload.records_count,
                "timestamp": as_utc(upload.uploaded_at),
            }
        )

    events.sort(key=lambda e: e["timestamp"], reverse=True)
    return events[:limit]


def dashboard_stats(db: Session, actor: Actor) -> dict:
    require_admin(actor)
    since = utcnow() - timedelta(days=UPLOAD_WINDOW_DAYS)
    users_by_role = dict(db.query(User.role, func.count(User.id)).group_by(User.role).all())
    claimed = db.query(func.count(AlumniProfile.id)).filter(AlumniProfile.profile_type == PROFILE_CLAIMED)

    return {
        "total_users": sum(users_by_role.values()),
        "total_alumni": users_by_role.get(ROLE_ALUMNI, 0),
        "total_students": users_by_role.get(ROLE_STUDENT, 0),
        "total_admins": users_by_role.get(ROLE_ADMIN, 0),
        "claimed_profiles": _count(claimed),
        "verified_profiles": _count(claimed.filter(AlumniProfile.is_verified.is_(True))),
        "pending_verifications": _count(claimed.filter(AlumniProfile.is_verified.is_(False))),
        "total_interactions": _count(db.query(func.count(InteractionRequest.id))),
        "accepted_interactions": _count(
            db.query(func.count(InteractionRequest.id)).filter(InteractionRequest.status == REQUEST_ACCEPTED)
        ),
        "total_messages": _count(db.query(func.count(Message.id))),
        "recent_uploads": _count(db.query(func.count(CSVUpload.id)).filter(CSVUpload.uploaded_at >= since)),
        "recent_activity": recent_activity(db),
    }


def upload_history(db: Session, actor: Actor, page: int = 1, limit: int = 20) -> dict:
    require_admin(actor)
    total = _count(db.query(func.count(CSVUpload.id)))
    rows = (
        db.query(CSVUpload, User.name)
        .outerjoin(User, CSVUpload.admin_id == User.id)
        .order_by(CSVUpload.uploaded_at.desc(), CSVUpload.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "uploads": [{**upload.to_dict(), "admin_name": admin_name} for upload, admin_name in rows],
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit,
    }


def upload_statistics(db: Session, actor: Actor) -> dict:
    require_admin(actor)
    now = utcnow()
    since = now - timedelta(days=UPLOAD_WINDOW_DAYS)
    total_uploads, total_records = db.query(func.count(CSVUpload.id), func.sum(CSVUpload.records_count)).one()
    recent_uploads, recent_records = (
        db.query(func.count(CSVUpload.id), func.sum(CSVUpload.records_count))
        .filter(CSVUpload.uploaded_at >= since)
        .one()
    )

    # Bucketed in Python; month formatting is backend specific in SQL.
    monthly: dict[str, dict] = {}
    window_start = now - timedelta(days=31 * MONTHS_IN_ROLLUP)
    for upload in db.query(CSVUpload).filter(CSVUpload.uploaded_at >= window_start).all():
        month = upload.uploaded_at.strftime("%Y-%m")
        bucket = monthly.setdefault(month, {"month": month, "uploads": 0, "records": 0})
        bucket["uploads"] += 1
        bucket["records"] += upload.records_count or 0

    return {
        "total_uploads": total_uploads or 0,
        "total_records": total_records or 0,
        "recent_uploads": recent_uploads or 0,
        "recent_records": recent_records or 0,
        "monthly": sorted(monthly.values(), key=lambda b: b["month"], reverse=True)[:MONTHS_IN_ROLLUP],
    }
