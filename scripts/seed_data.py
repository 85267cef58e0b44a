import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from alumni_portal import settings
from alumni_portal.database import Database
from alumni_portal.models import ROLE_ADMIN, User
from alumni_portal.services.actors import Admin
from alumni_portal.services.bootstrap import ensure_default_admin, seed_file_path
from alumni_portal.services.csv_import import import_alumni_csv
from alumni_portal.services.identity import find_user_by_email, register_student

DEMO_STUDENT_EMAIL = os.getenv("DEMO_STUDENT_EMAIL", "student@alumni.local")
DEMO_STUDENT_PASSWORD = os.getenv("DEMO_STUDENT_PASSWORD", "student123")


def seed(database_url: str | None = None, reset: bool = True) -> dict:
    database = Database(database_url or settings.DATABASE_URL)
    if reset:
        database.drop_all()
    database.create_all()
    db = database.session()
    try:
        ensure_default_admin(db, settings.ADMIN_NAME, settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD)
        admin_user = db.query(User).filter(User.role == ROLE_ADMIN).order_by(User.id.asc()).first()
        source = seed_file_path()
        summary = import_alumni_csv(db, Admin(user_id=admin_user.id), source.name, source.read_bytes())

        if not find_user_by_email(db, DEMO_STUDENT_EMAIL):
            register_student(
                db,
                {
                    "name": "Demo Student",
                    "email": DEMO_STUDENT_EMAIL,
                    "password": DEMO_STUDENT_PASSWORD,
                    "course": "B.Tech",
                    "department": "Computer Science",
                    "year_of_study": 3,
                },
            )
        return summary.to_dict()
    finally:
        db.close()
        database.dispose()


if __name__ == "__main__":
    result = seed()
    print(
        f"Seeded {result['newRecords']} new and {result['updatedRecords']} updated alumni profiles, "
        f"plus admin {settings.ADMIN_EMAIL} and student {DEMO_STUDENT_EMAIL}."
    )
