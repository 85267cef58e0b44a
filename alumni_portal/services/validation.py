"""
Input validation shared by the CSV importer, registration, profile edits,
messaging and directory search.

Every function is pure: it takes raw values (strings from a CSV row, decoded
JSON) and returns cleaned data together with a list of human-readable errors.
Callers decide whether an error list aborts the operation or is accumulated.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_BATCH_YEAR = 1950
BATCH_YEARS_AHEAD = 10
MAX_EXPERIENCE = 50
MAX_BIO_LENGTH = 1000
MAX_MESSAGE_LENGTH = 1000
MAX_TEXT_LENGTH = 120
MAX_DIRECTORY_LIMIT = 100

ALUMNI_TEXT_FIELDS = ("course", "department", "company", "position", "domain", "location")
ALUMNI_FIELDS = ("course", "department", "batch", "company", "position", "domain", "experience", "location", "bio")


@dataclass
class ValidationResult:
    data: dict
    errors: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def max_batch_year() -> int:
    return datetime.now(timezone.utc).year + BATCH_YEARS_AHEAD


def clean_text(value) -> str:
    if value is None:
        return ""
    cleaned = str(value).strip()
    return cleaned.replace("\x00", "")


def normalise_email(value) -> str:
    return clean_text(value).lower()


def is_valid_email(value: str) -> bool:
    return bool(value) and len(value) <= 180 and bool(EMAIL_RE.fullmatch(value))


def parse_int(value) -> int | None:
    """Return an int for int-like input, None for blank, raise ValueError otherwise."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError("not a whole number")
        return int(value)
    text = clean_text(value)
    if not text:
        return None
    return int(text)


def _optional_text(data: dict, key: str, errors: list[str], label: str):
    value = data.get(key)
    if value and len(value) < 2:
        errors.append(f"{label} must be at least 2 characters if provided")
    elif value and len(value) > MAX_TEXT_LENGTH:
        errors.append(f"{label} must be at most {MAX_TEXT_LENGTH} characters")


def _check_batch(value, errors: list[str]):
    message = f"Batch must be a valid year between {MIN_BATCH_YEAR} and {max_batch_year()}"
    try:
        batch = parse_int(value)
    except ValueError:
        errors.append(message)
        return None
    if batch is None or not MIN_BATCH_YEAR <= batch <= max_batch_year():
        errors.append(message)
    return batch


def _check_experience(value, errors: list[str]):
    try:
        experience = parse_int(value)
    except ValueError:
        errors.append(f"Experience must be a number between 0 and {MAX_EXPERIENCE} years if provided")
        return None
    if experience is not None and (experience < 0 or experience > MAX_EXPERIENCE):
        errors.append(f"Experience must be a number between 0 and {MAX_EXPERIENCE} years if provided")
    return experience


def clean_alumni_record(raw: dict) -> dict:
    return {
        "name": clean_text(raw.get("name")),
        "email": normalise_email(raw.get("email")),
        "course": clean_text(raw.get("course")),
        "department": clean_text(raw.get("department")),
        "batch": raw.get("batch"),
        "company": clean_text(raw.get("company")) or None,
        "position": clean_text(raw.get("position")) or None,
        "domain": clean_text(raw.get("domain")) or None,
        "experience": raw.get("experience"),
        "location": clean_text(raw.get("location")) or None,
        "bio": clean_text(raw.get("bio")),
    }


def validate_alumni_record(raw: dict) -> ValidationResult:
    data = clean_alumni_record(raw)
    errors: list[str] = []

    if len(data["name"]) < 2:
        errors.append("Name is required and must be at least 2 characters")
    elif len(data["name"]) > MAX_TEXT_LENGTH:
        errors.append(f"Name must be at most {MAX_TEXT_LENGTH} characters")

    if not data["email"]:
        errors.append("Email is required")
    elif not is_valid_email(data["email"]):
        errors.append("Email format is invalid")

    if len(data["course"]) < 2:
        errors.append("Course is required and must be at least 2 characters")
    if len(data["department"]) < 2:
        errors.append("Department is required and must be at least 2 characters")

    data["batch"] = _check_batch(data["batch"], errors)

    _optional_text(data, "company", errors, "Company name")
    _optional_text(data, "position", errors, "Position")
    _optional_text(data, "domain", errors, "Domain")
    _optional_text(data, "location", errors, "Location")

    data["experience"] = _check_experience(data["experience"], errors)

    if len(data["bio"]) > MAX_BIO_LENGTH:
        errors.append(f"Bio must be at most {MAX_BIO_LENGTH} characters")

    return ValidationResult(data=data, errors=errors)


def validate_registration(payload: dict, role: str) -> ValidationResult:
    errors: list[str] = []
    data = {
        "name": clean_text(payload.get("name")),
        "email": normalise_email(payload.get("email")),
        "password": payload.get("password") or "",
    }
    if len(data["name"]) < 2:
        errors.append("Name is required and must be at least 2 characters")
    if not is_valid_email(data["email"]):
        errors.append("Valid email is required")

    if role == "student":
        data["course"] = clean_text(payload.get("course"))
        data["department"] = clean_text(payload.get("department"))
        if len(data["course"]) < 2:
            errors.append("Course is required for students")
        if len(data["department"]) < 2:
            errors.append("Department is required for students")
        try:
            data["year_of_study"] = parse_int(payload.get("year_of_study"))
        except ValueError:
            data["year_of_study"] = None
        if data["year_of_study"] is None or not 1 <= data["year_of_study"] <= 10:
            errors.append("Year of study must be a number between 1 and 10")

    return ValidationResult(data=data, errors=errors)


def validate_profile_update(payload: dict) -> ValidationResult:
    """Validate the subset of alumni fields present in ``payload``.

    Keys that are absent or None are left out of the cleaned data so callers
    only touch what was sent.
    """
    errors: list[str] = []
    data: dict = {}

    for key in ALUMNI_TEXT_FIELDS:
        if payload.get(key) is None:
            continue
        data[key] = clean_text(payload[key])

    for key, label in (("course", "Course"), ("department", "Department")):
        if key in data and len(data[key]) < 2:
            errors.append(f"{label} must be at least 2 characters")
    for key, label in (("company", "Company name"), ("position", "Position"), ("domain", "Domain"), ("location", "Location")):
        if key in data:
            _optional_text(data, key, errors, label)
            data[key] = data[key] or None

    if payload.get("batch") is not None:
        data["batch"] = _check_batch(payload["batch"], errors)
    if "experience" in payload:
        data["experience"] = _check_experience(payload.get("experience"), errors)
    if payload.get("bio") is not None:
        data["bio"] = clean_text(payload["bio"])
        if len(data["bio"]) > MAX_BIO_LENGTH:
            errors.append(f"Bio must be at most {MAX_BIO_LENGTH} characters")

    return ValidationResult(data=data, errors=errors)


def validate_student_update(payload: dict) -> ValidationResult:
    errors: list[str] = []
    data: dict = {}
    for key, label in (("course", "Course"), ("department", "Department")):
        if payload.get(key) is None:
            continue
        data[key] = clean_text(payload[key])
        if len(data[key]) < 2:
            errors.append(f"{label} must be at least 2 characters")
    if payload.get("year_of_study") is not None:
        try:
            year = parse_int(payload["year_of_study"])
        except ValueError:
            year = None
        if year is None or not 1 <= year <= 10:
            errors.append("Year of study must be a number between 1 and 10")
        data["year_of_study"] = year
    return ValidationResult(data=data, errors=errors)


def validate_message(body) -> ValidationResult:
    text = clean_text(body)
    errors: list[str] = []
    if not text:
        errors.append("Message content is required")
    elif len(text) > MAX_MESSAGE_LENGTH:
        errors.append(f"Message must be at most {MAX_MESSAGE_LENGTH} characters")
    return ValidationResult(data={"message": text}, errors=errors)


def validate_search_filters(filters: dict, default_limit: int = 50) -> ValidationResult:
    errors: list[str] = []
    data: dict = {"limit": default_limit, "offset": 0}

    def _int(key: str):
        try:
            return parse_int(filters.get(key))
        except ValueError:
            return "invalid"

    batch = _int("batch")
    if batch == "invalid" or (batch is not None and not MIN_BATCH_YEAR <= batch <= max_batch_year()):
        errors.append("Batch must be a valid year")
    elif batch is not None:
        data["batch"] = batch

    for key, label in (("experience_min", "Minimum experience"), ("experience_max", "Maximum experience")):
        value = _int(key)
        if value == "invalid" or (value is not None and value < 0):
            errors.append(f"{label} must be a non-negative number")
        elif value is not None:
            data[key] = value

    if "experience_min" in data and "experience_max" in data and data["experience_min"] > data["experience_max"]:
        errors.append("Minimum experience cannot be greater than maximum experience")

    limit = _int("limit")
    if limit == "invalid" or (limit is not None and not 1 <= limit <= MAX_DIRECTORY_LIMIT):
        errors.append(f"Limit must be a number between 1 and {MAX_DIRECTORY_LIMIT}")
    elif limit is not None:
        data["limit"] = limit

    offset = _int("offset")
    if offset == "invalid" or (offset is not None and offset < 0):
        errors.append("Offset must be a non-negative number")
    elif offset is not None:
        data["offset"] = offset

    for key in ("company", "domain", "course", "search"):
        value = clean_text(filters.get(key))
        if value:
            data[key] = value[:MAX_TEXT_LENGTH]

    return ValidationResult(data=data, errors=errors)
