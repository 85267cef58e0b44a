from pathlib import Path

from sqlalchemy.orm import Session

from alumni_portal.models import ROLE_ADMIN, User
from alumni_portal.observability import get_logger
from alumni_portal.services.identity import find_user_by_email
from alumni_portal.services.security import hash_password
from alumni_portal.services.validation import normalise_email

logger = get_logger(__name__)


def seed_file_path() -> Path:
    return Path(__file__).resolve().parents[2] / "data" / "seed" / "alumni.csv"


def ensure_default_admin(db: Session, name: str, email: str, password: str) -> bool:
    """Create the first administrator if no admin account exists yet."""
    if db.query(User).filter(User.role == ROLE_ADMIN).first():
        return False
    if find_user_by_email(db, email):
        logger.warning("bootstrap_admin_email_taken", email=normalise_email(email))
        return False
    db.add(
        User(
            name=name,
            email=normalise_email(email),
            role=ROLE_ADMIN,
            password_hash=hash_password(password),
            failed_attempts=0,
            locked_until=0,
        )
    )
    db.commit()
    logger.info("bootstrap_admin_created", email=normalise_email(email))
    return True
