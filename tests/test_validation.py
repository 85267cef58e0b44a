import pytest

from alumni_portal.services.validation import (
    MAX_MESSAGE_LENGTH,
    max_batch_year,
    parse_int,
    validate_alumni_record,
    validate_message,
    validate_profile_update,
    validate_registration,
    validate_search_filters,
)


def test_alumni_record_is_normalised():
    result = validate_alumni_record(
        {
            "name": "  John Doe ",
            "email": "John.Doe@Example.COM ",
            "course": "B.Tech",
            "department": "CSE",
            "batch": "2015",
            "experience": "7",
            "company": "",
        }
    )
    assert result.is_valid
    assert result.data["email"] == "john.doe@example.com"
    assert result.data["name"] == "John Doe"
    assert result.data["batch"] == 2015
    assert result.data["experience"] == 7
    assert result.data["company"] is None
    assert result.data["bio"] == ""


def test_alumni_record_collects_every_error():
    result = validate_alumni_record(
        {"name": "J", "email": "not-an-email", "course": "B", "department": "", "batch": "1900", "experience": "60"}
    )
    assert not result.is_valid
    joined = " | ".join(result.errors)
    assert "Name is required" in joined
    assert "Email format is invalid" in joined
    assert "Course is required" in joined
    assert "Department is required" in joined
    assert "Batch must be a valid year" in joined
    assert "Experience must be a number" in joined


def test_batch_bounds_follow_current_year():
    base = {"name": "Jane", "email": "jane@example.com", "course": "MBA", "department": "Management"}
    assert validate_alumni_record({**base, "batch": str(max_batch_year())}).is_valid
    assert not validate_alumni_record({**base, "batch": str(max_batch_year() + 1)}).is_valid
    assert validate_alumni_record({**base, "batch": "1950"}).is_valid
    assert not validate_alumni_record({**base, "batch": "abc"}).is_valid
    assert not validate_alumni_record(base).is_valid


def test_optional_fields_must_be_meaningful_when_present():
    result = validate_alumni_record(
        {
            "name": "Jane",
            "email": "jane@example.com",
            "course": "MBA",
            "department": "Management",
            "batch": "2010",
            "company": "X",
            "bio": "b" * 1001,
        }
    )
    assert any("Company name" in e for e in result.errors)
    assert any("Bio must be at most" in e for e in result.errors)


def test_parse_int_rejects_garbage():
    assert parse_int(" 12 ") == 12
    assert parse_int("") is None
    assert parse_int(3.0) == 3
    with pytest.raises(ValueError):
        parse_int("12abc")
    with pytest.raises(ValueError):
        parse_int(2.5)
    with pytest.raises(ValueError):
        parse_int(True)


def test_profile_update_only_returns_supplied_fields():
    result = validate_profile_update({"company": " Acme ", "bio": None})
    assert result.is_valid
    assert result.data == {"company": "Acme"}

    cleared = validate_profile_update({"experience": None})
    assert cleared.is_valid
    assert cleared.data == {"experience": None}

    bad = validate_profile_update({"batch": "1800", "course": "x"})
    assert len(bad.errors) == 2


def test_student_registration_requires_academic_fields():
    result = validate_registration({"name": "Sam", "email": "sam@example.com", "password": "x"}, "student")
    assert "Course is required for students" in result.errors
    assert "Department is required for students" in result.errors
    assert any("Year of study" in e for e in result.errors)

    admin = validate_registration({"name": "Ann", "email": "ann@example.com", "password": "x"}, "admin")
    assert admin.is_valid


def test_message_body_rules():
    assert validate_message("  hello  ").data["message"] == "hello"
    assert validate_message("   ").errors == ["Message content is required"]
    assert not validate_message("x" * (MAX_MESSAGE_LENGTH + 1)).is_valid
    assert validate_message("x" * MAX_MESSAGE_LENGTH).is_valid


def test_search_filters_defaults_and_bounds():
    result = validate_search_filters({})
    assert result.data == {"limit": 50, "offset": 0}

    result = validate_search_filters({"limit": "500", "offset": "-1"})
    assert len(result.errors) == 2

    result = validate_search_filters({"experience_min": "5", "experience_max": "2"})
    assert "Minimum experience cannot be greater than maximum experience" in result.errors

    result = validate_search_filters({"batch": "2015", "company": " goo ", "limit": "10"})
    assert result.is_valid
    assert result.data["batch"] == 2015
    assert result.data["company"] == "goo"
    assert result.data["limit"] == 10
