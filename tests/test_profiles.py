from datetime import timedelta

import pytest

from alumni_portal.errors import Conflict, Forbidden, NotFound, ValidationFailed
from alumni_portal.models import PROFILE_CLAIMED, PROFILE_STATIC, as_utc, utcnow
from alumni_portal.services.actors import Alumni, ProfileState, profile_state, resolve_actor
from alumni_portal.services.profiles import (
    PUBLIC_STATIC_FIELDS,
    apply_import_update,
    approve,
    claim,
    directory,
    get_stale_profiles,
    list_pending_claims,
    reject,
    update_profile,
)
from alumni_portal.services.security import UNUSABLE_PASSWORD, verify_password
from tests.factories import PASSWORD, _db, alumni_row, make_admin, make_static_alumni, make_student, make_verified_alumni


def test_static_profile_is_verified_and_cannot_log_in():
    db = _db()
    admin = make_admin(db)
    profile = make_static_alumni(db, admin, "john@example.com")
    assert profile.profile_type == PROFILE_STATIC
    assert profile.is_verified is True
    assert profile.user.password_hash == UNUSABLE_PASSWORD
    assert profile_state(profile) == ProfileState.STATIC


def test_claim_moves_profile_to_pending():
    db = _db()
    admin = make_admin(db)
    make_static_alumni(db, admin, "john@example.com")

    profile = claim(db, "JOHN@example.com", PASSWORD)
    assert profile.profile_type == PROFILE_CLAIMED
    assert profile.is_verified is False
    assert profile_state(profile) == ProfileState.CLAIMED_PENDING
    assert verify_password(PASSWORD, profile.user.password_hash)
    assert [p["id"] for p in list_pending_claims(db)] == [profile.id]


def test_claim_errors():
    db = _db()
    admin = make_admin(db)
    make_static_alumni(db, admin, "john@example.com")

    with pytest.raises(NotFound):
        claim(db, "nobody@example.com", PASSWORD)
    with pytest.raises(ValidationFailed):
        claim(db, "john@example.com", "123")

    claim(db, "john@example.com", PASSWORD)
    with pytest.raises(Conflict):
        claim(db, "john@example.com", "another-password")


def test_reclaim_after_approval_is_conflict():
    db = _db()
    admin = make_admin(db)
    make_verified_alumni(db, admin, "john@example.com")
    with pytest.raises(Conflict):
        claim(db, "john@example.com", "hijack-attempt")


def test_approve_requires_pending_claim_and_admin():
    db = _db()
    admin = make_admin(db)
    student = make_student(db)
    profile = make_static_alumni(db, admin, "john@example.com")

    with pytest.raises(Conflict):
        approve(db, admin, profile.id)
    with pytest.raises(NotFound):
        approve(db, admin, 9999)

    claim(db, "john@example.com", PASSWORD)
    with pytest.raises(Forbidden):
        approve(db, student, profile.id)

    approved = approve(db, admin, profile.id)
    assert profile_state(approved) == ProfileState.CLAIMED_VERIFIED
    assert list_pending_claims(db) == []
    with pytest.raises(Conflict):
        approve(db, admin, profile.id)


def test_reject_returns_profile_to_unclaimed_pool():
    db = _db()
    admin = make_admin(db)
    profile = make_static_alumni(db, admin, "john@example.com")
    claim(db, "john@example.com", PASSWORD)

    rejected = reject(db, admin, profile.id)
    assert rejected.profile_type == PROFILE_STATIC
    assert rejected.is_verified is False
    assert rejected.user.password_hash == UNUSABLE_PASSWORD
    assert not verify_password(PASSWORD, rejected.user.password_hash)

    with pytest.raises(Conflict):
        reject(db, admin, profile.id)

    again = claim(db, "john@example.com", "fresh-password")
    assert profile_state(again) == ProfileState.CLAIMED_PENDING


def test_only_verified_owner_can_edit_profile():
    db = _db()
    admin = make_admin(db)
    profile = make_static_alumni(db, admin, "john@example.com")
    claim(db, "john@example.com", PASSWORD)
    pending = resolve_actor(db, profile.user)

    with pytest.raises(Forbidden):
        update_profile(db, pending, profile.id, {"company": "Acme"})

    approve(db, admin, profile.id)
    owner = resolve_actor(db, profile.user)
    other = make_verified_alumni(db, admin, "jane@example.com", name="Jane Roe")

    with pytest.raises(Forbidden):
        update_profile(db, other, profile.id, {"company": "Acme"})
    with pytest.raises(Forbidden):
        update_profile(db, admin, profile.id, {"company": "Acme"})
    with pytest.raises(ValidationFailed):
        update_profile(db, owner, profile.id, {"batch": "1700"})

    before = profile.last_updated
    updated = update_profile(db, owner, profile.id, {"company": "Acme", "name": "John Q. Doe"})
    assert updated.company == "Acme"
    assert updated.position == "Engineer"
    assert updated.user.name == "John Q. Doe"
    assert as_utc(updated.last_updated) >= as_utc(before)


def test_import_update_never_touches_claimed_profile():
    db = _db()
    admin = make_admin(db)
    profile = make_static_alumni(db, admin, "john@example.com")
    claim(db, "john@example.com", PASSWORD)
    with pytest.raises(Forbidden):
        apply_import_update(profile, alumni_row("john@example.com", company="Other"))


def test_stale_profiles_oldest_first():
    db = _db()
    admin = make_admin(db)
    old = make_static_alumni(db, admin, "old@example.com", name="Old Timer")
    older = make_static_alumni(db, admin, "older@example.com", name="Older Timer")
    make_static_alumni(db, admin, "fresh@example.com", name="Fresh Face")
    old.last_updated = utcnow() - timedelta(days=400)
    older.last_updated = utcnow() - timedelta(days=800)
    db.commit()

    stale = get_stale_profiles(db, 365)
    assert [p["email"] for p in stale] == ["older@example.com", "old@example.com"]
    assert len(get_stale_profiles(db, 500)) == 1
    with pytest.raises(ValidationFailed):
        get_stale_profiles(db, -1)


def test_directory_lists_verified_profiles_and_redacts_static_ones():
    db = _db()
    admin = make_admin(db)
    student = make_student(db)
    make_static_alumni(db, admin, "static@example.com", name="Static Person", company="Initech")
    make_verified_alumni(db, admin, "claimed@example.com", name="Claimed Person", company="Globex")
    make_static_alumni(db, admin, "pending@example.com", name="Pending Person")
    claim(db, "pending@example.com", PASSWORD)

    rows = directory(db, student, {})
    by_name = {r["name"]: r for r in rows}
    assert set(by_name) == {"Static Person", "Claimed Person"}
    assert set(by_name["Static Person"]) == set(PUBLIC_STATIC_FIELDS)
    assert by_name["Claimed Person"]["email"] == "claimed@example.com"
    assert "password_hash" not in by_name["Claimed Person"]

    admin_rows = directory(db, admin, {})
    assert all("email" in r for r in admin_rows)


def test_directory_filters():
    db = _db()
    admin = make_admin(db)
    student = make_student(db)
    make_static_alumni(db, admin, "a@example.com", name="Alice Alpha", company="Google", batch="2012", experience="10")
    make_static_alumni(db, admin, "b@example.com", name="Bob Beta", company="Goldman Sachs", domain="Finance", experience="3")
    make_static_alumni(db, admin, "c@example.com", name="Cara Gamma", company="100% Pure", experience="")

    assert {r["name"] for r in directory(db, student, {"company": "GO"})} == {"Alice Alpha", "Bob Beta"}
    assert [r["name"] for r in directory(db, student, {"batch": "2012"})] == ["Alice Alpha"]
    assert [r["name"] for r in directory(db, student, {"experience_min": "5"})] == ["Alice Alpha"]
    assert [r["name"] for r in directory(db, student, {"search": "finance"})] == ["Bob Beta"]
    assert [r["name"] for r in directory(db, student, {"search": "cara"})] == ["Cara Gamma"]
    assert [r["name"] for r in directory(db, student, {"company": "%"})] == ["Cara Gamma"]
    assert len(directory(db, student, {"limit": "1"})) == 1
    with pytest.raises(ValidationFailed):
        directory(db, student, {"limit": "0"})


def test_directory_orders_by_last_update():
    db = _db()
    admin = make_admin(db)
    student = make_student(db)
    first = make_static_alumni(db, admin, "first@example.com", name="First One")
    make_static_alumni(db, admin, "second@example.com", name="Second One")
    first.last_updated = utcnow() + timedelta(minutes=5)
    db.commit()
    assert [r["name"] for r in directory(db, student, {})] == ["First One", "Second One"]


def test_alumni_actor_reflects_current_state():
    db = _db()
    admin = make_admin(db)
    profile = make_static_alumni(db, admin, "john@example.com")
    claim(db, "john@example.com", PASSWORD)
    assert resolve_actor(db, profile.user) == Alumni(user_id=profile.id, state=ProfileState.CLAIMED_PENDING)
    approve(db, admin, profile.id)
    assert resolve_actor(db, profile.user).state == ProfileState.CLAIMED_VERIFIED
