import pytest

from alumni_portal.errors import Conflict, Forbidden, NotFound, ValidationFailed
from alumni_portal.models import InteractionRequest
from alumni_portal.services.connections import (
    accepted_connections,
    check_connection,
    delete_request,
    is_connected,
    request_connection,
    requests_for_alumni,
    requests_for_student,
    respond,
)
from alumni_portal.services.actors import resolve_actor
from alumni_portal.services.profiles import approve, claim, reject
from tests.factories import PASSWORD, _db, make_admin, make_static_alumni, make_student, make_verified_alumni


def test_request_to_unverified_alumni_is_forbidden_until_approved():
    db = _db()
    admin = make_admin(db)
    student = make_student(db)
    profile = make_static_alumni(db, admin, "john@example.com")
    claim(db, "john@example.com", PASSWORD)

    with pytest.raises(Forbidden):
        request_connection(db, student, profile.id)
    assert db.query(InteractionRequest).count() == 0

    approve(db, admin, profile.id)
    row = request_connection(db, student, profile.id)
    assert row.status == "pending"
    assert check_connection(db, student.user_id, profile.id) == "pending"


def test_one_request_per_pair_regardless_of_status():
    db = _db()
    admin = make_admin(db)
    student = make_student(db)
    alumni = make_verified_alumni(db, admin, "john@example.com")

    row = request_connection(db, student, alumni.user_id)
    with pytest.raises(Conflict):
        request_connection(db, student, alumni.user_id)

    respond(db, alumni, row.id, "rejected")
    with pytest.raises(Conflict):
        request_connection(db, student, alumni.user_id)
    assert db.query(InteractionRequest).count() == 1


def test_request_guards():
    db = _db()
    admin = make_admin(db)
    student = make_student(db)
    alumni = make_verified_alumni(db, admin, "john@example.com")

    with pytest.raises(NotFound):
        request_connection(db, student, 4242)
    with pytest.raises(NotFound):
        request_connection(db, student, admin.user_id)
    with pytest.raises(Forbidden):
        request_connection(db, alumni, alumni.user_id)
    with pytest.raises(Forbidden):
        request_connection(db, admin, alumni.user_id)


def test_respond_rules():
    db = _db()
    admin = make_admin(db)
    student = make_student(db)
    alumni = make_verified_alumni(db, admin, "john@example.com")
    other = make_verified_alumni(db, admin, "jane@example.com", name="Jane Roe")
    row = request_connection(db, student, alumni.user_id)

    with pytest.raises(NotFound):
        respond(db, alumni, 9999, "accepted")
    with pytest.raises(ValidationFailed):
        respond(db, alumni, row.id, "maybe")
    with pytest.raises(Forbidden):
        respond(db, other, row.id, "accepted")
    with pytest.raises(Forbidden):
        respond(db, student, row.id, "accepted")

    accepted = respond(db, alumni, row.id, " Accepted ")
    assert accepted.status == "accepted"
    with pytest.raises(Conflict):
        respond(db, alumni, row.id, "rejected")


def test_check_connection_is_symmetric():
    db = _db()
    admin = make_admin(db)
    student = make_student(db)
    alumni = make_verified_alumni(db, admin, "john@example.com")

    assert check_connection(db, student.user_id, alumni.user_id) is None
    row = request_connection(db, student, alumni.user_id)
    respond(db, alumni, row.id, "accepted")
    assert check_connection(db, student.user_id, alumni.user_id) == "accepted"
    assert check_connection(db, alumni.user_id, student.user_id) == "accepted"


def test_read_models_join_counterpart_details():
    db = _db()
    admin = make_admin(db)
    student = make_student(db, name="Sam Student")
    alumni = make_verified_alumni(db, admin, "john@example.com", company="Google", position="SRE")
    row = request_connection(db, student, alumni.user_id)

    sent = requests_for_student(db, student)
    assert sent[0]["alumni_name"] == "John Doe"
    assert sent[0]["company"] == "Google"
    assert sent[0]["position"] == "SRE"

    received = requests_for_alumni(db, alumni)
    assert received[0]["student_name"] == "Sam Student"
    assert received[0]["year_of_study"] == 2
    assert received[0]["id"] == row.id

    assert accepted_connections(db, student) == []
    respond(db, alumni, row.id, "accepted")
    assert [c["name"] for c in accepted_connections(db, student)] == ["John Doe"]
    assert [c["user_id"] for c in accepted_connections(db, alumni)] == [student.user_id]
    with pytest.raises(Forbidden):
        accepted_connections(db, admin)


def test_admin_can_revoke_a_connection():
    db = _db()
    admin = make_admin(db)
    student = make_student(db)
    alumni = make_verified_alumni(db, admin, "john@example.com")
    row = request_connection(db, student, alumni.user_id)
    respond(db, alumni, row.id, "accepted")

    with pytest.raises(Forbidden):
        delete_request(db, student, row.id)
    delete_request(db, admin, row.id)
    assert check_connection(db, student.user_id, alumni.user_id) is None
    with pytest.raises(NotFound):
        delete_request(db, admin, row.id)


def test_pending_claimant_cannot_answer_requests_made_to_static_profile():
    db = _db()
    admin = make_admin(db)
    student = make_student(db)
    profile = make_static_alumni(db, admin, "john@example.com")
    row = request_connection(db, student, profile.id)

    claim(db, "john@example.com", PASSWORD)
    claimant = resolve_actor(db, profile.user)
    with pytest.raises(Forbidden):
        respond(db, claimant, row.id, "accepted")
    assert check_connection(db, student.user_id, profile.id) == "pending"

    approve(db, admin, profile.id)
    owner = resolve_actor(db, profile.user)
    assert respond(db, owner, row.id, "accepted").status == "accepted"


def test_rejected_claim_drops_connection_of_the_profile():
    db = _db()
    admin = make_admin(db)
    student = make_student(db)
    profile = make_static_alumni(db, admin, "john@example.com")
    row = request_connection(db, student, profile.id)
    claim(db, "john@example.com", PASSWORD)
    row.status = "accepted"
    db.commit()
    assert not is_connected(db, student.user_id, profile.id)

    reject(db, admin, profile.id)
    assert check_connection(db, student.user_id, profile.id) == "accepted"
    assert not is_connected(db, profile.id, student.user_id)
