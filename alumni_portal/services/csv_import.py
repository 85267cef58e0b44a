import csv
import io
from dataclasses import asdict, dataclass, field

from sqlalchemy.orm import Session

from alumni_portal.database import transaction
from alumni_portal.errors import ValidationFailed
from alumni_portal.models import PROFILE_CLAIMED, PROFILE_STATIC, ROLE_ALUMNI, AlumniProfile, CSVUpload, User
from alumni_portal.observability import get_logger
from alumni_portal.services.actors import Actor, require_admin
from alumni_portal.services.identity import find_user_by_email
from alumni_portal.services.profiles import apply_import_update, find_profile_by_email
from alumni_portal.services.security import UNUSABLE_PASSWORD
from alumni_portal.services.validation import validate_alumni_record

logger = get_logger(__name__)

CSV_COLUMNS = (
    "name",
    "email",
    "course",
    "department",
    "batch",
    "company",
    "position",
    "domain",
    "experience",
    "location",
    "bio",
)
REQUIRED_COLUMNS = ("name", "email", "course", "department", "batch")


@dataclass
class RowError:
    row: int
    errors: list[str]
    data: dict


@dataclass
class ParseResult:
    records: list[tuple[int, dict]] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)
    total_rows: int = 0
    missing_columns: list[str] = field(default_factory=list)

    @property
    def valid_rows(self) -> int:
        return len(self.records)

    @property
    def invalid_rows(self) -> int:
        return len(self.errors)


@dataclass
class ImportSummary:
    total_rows: int
    valid_rows: int
    invalid_rows: int
    new_records: int = 0
    updated_records: int = 0
    skipped_records: int = 0
    errors: list[RowError] = field(default_factory=list)
    upload_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "totalRows": self.total_rows,
            "validRows": self.valid_rows,
            "invalidRows": self.invalid_rows,
            "newRecords": self.new_records,
            "updatedRecords": self.updated_records,
            "skippedRecords": self.skipped_records,
            "errors": [asdict(e) for e in self.errors],
            "uploadId": self.upload_id,
        }


def _decode(content: bytes | str) -> str:
    if isinstance(content, str):
        return content
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        return ""


def parse_csv(content: bytes | str) -> ParseResult:
    """Parse and validate every row; invalid rows are collected, not raised."""
    result = ParseResult()
    text = _decode(content)
    if not text.strip():
        return result

    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        return result
    reader.fieldnames = [(name or "").strip().lower() for name in reader.fieldnames]
    result.missing_columns = [c for c in REQUIRED_COLUMNS if c not in reader.fieldnames]

    for raw in reader:
        row = {key: (value or "").strip() for key, value in raw.items() if key in CSV_COLUMNS}
        if not any(row.values()):
            continue
        result.total_rows += 1
        validation = validate_alumni_record(row)
        if validation.is_valid:
            result.records.append((result.total_rows, validation.data))
        else:
            result.errors.append(RowError(row=result.total_rows, errors=validation.errors, data=row))

    if result.errors:
        logger.warning("csv_rows_invalid", invalid=len(result.errors), total=result.total_rows)
    return result


def _create_static_profile(db: Session, record: dict) -> AlumniProfile:
    user = User(
        name=record["name"],
        email=record["email"],
        password_hash=UNUSABLE_PASSWORD,
        role=ROLE_ALUMNI,
        failed_attempts=0,
        locked_until=0,
    )
    db.add(user)
    db.flush()
    profile = AlumniProfile(
        id=user.id,
        course=record["course"],
        department=record["department"],
        batch=record["batch"],
        company=record["company"],
        position=record["position"],
        domain=record["domain"],
        experience=record["experience"],
        location=record["location"],
        bio=record["bio"] or "",
        profile_type=PROFILE_STATIC,
        is_verified=True,
    )
    db.add(profile)
    db.flush()
    return profile


def reconcile(db: Session, records: list[tuple[int, dict]], summary: ImportSummary) -> None:
    """Create, update or skip one profile per record. Caller owns the transaction."""
    for row_number, record in records:
        profile = find_profile_by_email(db, record["email"])
        if profile is None:
            if find_user_by_email(db, record["email"]):
                summary.skipped_records += 1
                summary.errors.append(
                    RowError(
                        row=row_number,
                        errors=["Email belongs to an existing non-alumni account"],
                        data={"email": record["email"]},
                    )
                )
                continue
            _create_static_profile(db, record)
            summary.new_records += 1
        elif profile.profile_type == PROFILE_CLAIMED:
            summary.skipped_records += 1
        else:
            apply_import_update(profile, record)
            db.flush()
            summary.updated_records += 1


def import_alumni_csv(db: Session, actor: Actor, filename: str, content: bytes | str) -> ImportSummary:
    require_admin(actor)
    parsed = parse_csv(content)
    if parsed.total_rows == 0:
        raise ValidationFailed("CSV is empty or invalid.")
    if parsed.missing_columns:
        raise ValidationFailed("CSV is missing required columns.", parsed.missing_columns)
    if parsed.valid_rows == 0:
        raise ValidationFailed("No valid records found in CSV.", [asdict(e) for e in parsed.errors])

    summary = ImportSummary(
        total_rows=parsed.total_rows,
        valid_rows=parsed.valid_rows,
        invalid_rows=parsed.invalid_rows,
        errors=list(parsed.errors),
    )
    with transaction(db):
        reconcile(db, parsed.records, summary)
        upload = CSVUpload(
            admin_id=actor.user_id,
            filename=(filename or "upload.csv")[:255],
            records_count=summary.new_records + summary.updated_records,
        )
        db.add(upload)
        db.flush()
        summary.upload_id = upload.id

    logger.info(
        "csv_import_completed",
        upload_id=summary.upload_id,
        admin_id=actor.user_id,
        total=summary.total_rows,
        new=summary.new_records,
        updated=summary.updated_records,
        skipped=summary.skipped_records,
        invalid=summary.invalid_rows,
    )
    return summary
