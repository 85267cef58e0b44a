import pytest

from alumni_portal.errors import Forbidden, NotFound, ValidationFailed
from alumni_portal.services import messaging
from alumni_portal.services.connections import delete_request, request_connection, respond
from alumni_portal.services.actors import resolve_actor
from alumni_portal.services.profiles import approve, claim, reject
from tests.factories import PASSWORD, _db, make_admin, make_static_alumni, make_student, make_verified_alumni


def _pair(db, decision: str | None = "accepted"):
    admin = make_admin(db)
    student = make_student(db)
    alumni = make_verified_alumni(db, admin, "john@example.com")
    row = request_connection(db, student, alumni.user_id)
    if decision:
        respond(db, alumni, row.id, decision)
    return admin, student, alumni, row


def test_accept_send_unread_mark_read():
    db = _db()
    _, student, alumni, _ = _pair(db)

    msg = messaging.send(db, student, alumni.user_id, "Hello!")
    assert msg.read_status is False
    assert messaging.unread_count(db, alumni) == 1
    assert messaging.unread_count(db, student) == 0

    messaging.mark_read(db, alumni, msg.id)
    assert messaging.unread_count(db, alumni) == 0


def test_messaging_forbidden_without_accepted_connection():
    db = _db()
    _, student, alumni, _ = _pair(db, decision="rejected")
    with pytest.raises(Forbidden):
        messaging.send(db, student, alumni.user_id, "Hi")
    with pytest.raises(Forbidden):
        messaging.send(db, alumni, student.user_id, "Hi")
    with pytest.raises(Forbidden):
        messaging.get_conversation(db, student, alumni.user_id)


def test_pending_request_does_not_open_messaging():
    db = _db()
    _, student, alumni, _ = _pair(db, decision=None)
    with pytest.raises(Forbidden):
        messaging.send(db, student, alumni.user_id, "Hi")


def test_send_validation():
    db = _db()
    _, student, alumni, _ = _pair(db)
    with pytest.raises(ValidationFailed):
        messaging.send(db, student, alumni.user_id, "   ")
    with pytest.raises(ValidationFailed):
        messaging.send(db, student, student.user_id, "me")
    with pytest.raises(NotFound):
        messaging.send(db, student, 9999, "ghost")


def test_conversation_is_chronological_and_paginated():
    db = _db()
    _, student, alumni, _ = _pair(db)
    for i in range(5):
        sender, receiver = (student, alumni) if i % 2 == 0 else (alumni, student)
        messaging.send(db, sender, receiver.user_id, f"m{i}")

    full = messaging.get_conversation(db, alumni, student.user_id)
    assert [m.message for m in full] == ["m0", "m1", "m2", "m3", "m4"]
    page2 = messaging.get_conversation(db, student, alumni.user_id, page=2, page_size=2)
    assert [m.message for m in page2] == ["m2", "m3"]


def test_list_conversations_reports_unread_for_caller():
    db = _db()
    _, student, alumni, _ = _pair(db)
    messaging.send(db, student, alumni.user_id, "first")
    messaging.send(db, student, alumni.user_id, "second")
    messaging.send(db, alumni, student.user_id, "reply")

    [conv] = messaging.list_conversations(db, alumni)
    assert conv["other_user_id"] == student.user_id
    assert conv["other_user_name"] == "Sam Student"
    assert conv["unread_count"] == 2
    assert conv["last_message"] == "reply"

    [conv] = messaging.list_conversations(db, student)
    assert conv["unread_count"] == 1
    assert conv["other_user_name"] == "John Doe"


def test_mark_read_rules():
    db = _db()
    _, student, alumni, _ = _pair(db)
    msg = messaging.send(db, student, alumni.user_id, "hi")
    with pytest.raises(Forbidden):
        messaging.mark_read(db, student, msg.id)
    with pytest.raises(NotFound):
        messaging.mark_read(db, alumni, 9999)

    messaging.send(db, student, alumni.user_id, "again")
    assert messaging.mark_conversation_read(db, alumni, student.user_id) == 2
    assert messaging.mark_conversation_read(db, alumni, student.user_id) == 0


def test_delete_message_sender_only():
    db = _db()
    _, student, alumni, _ = _pair(db)
    msg = messaging.send(db, student, alumni.user_id, "oops")
    with pytest.raises(Forbidden):
        messaging.delete_message(db, alumni, msg.id)
    messaging.delete_message(db, student, msg.id)
    assert messaging.get_conversation(db, student, alumni.user_id) == []
    with pytest.raises(NotFound):
        messaging.delete_message(db, student, msg.id)


def test_delete_conversation_by_either_party():
    db = _db()
    _, student, alumni, _ = _pair(db)
    messaging.send(db, student, alumni.user_id, "a")
    messaging.send(db, alumni, student.user_id, "b")
    assert messaging.delete_conversation(db, alumni, student.user_id) == 2
    assert messaging.list_conversations(db, student) == []


def test_revoked_connection_closes_conversation():
    db = _db()
    admin, student, alumni, row = _pair(db)
    messaging.send(db, student, alumni.user_id, "hello")
    delete_request(db, admin, row.id)
    with pytest.raises(Forbidden):
        messaging.get_conversation(db, student, alumni.user_id)
    with pytest.raises(Forbidden):
        messaging.mark_conversation_read(db, alumni, student.user_id)


def test_unverified_alumni_side_closes_conversation():
    db = _db()
    admin = make_admin(db)
    student = make_student(db)
    profile = make_static_alumni(db, admin, "john@example.com")
    row = request_connection(db, student, profile.id)
    claim(db, "john@example.com", PASSWORD)
    claimant = resolve_actor(db, profile.user)
    row.status = "accepted"
    db.commit()

    with pytest.raises(Forbidden):
        messaging.send(db, claimant, student.user_id, "hello")
    with pytest.raises(Forbidden):
        messaging.send(db, student, profile.id, "hello")

    reject(db, admin, profile.id)
    with pytest.raises(Forbidden):
        messaging.get_conversation(db, student, profile.id)
    with pytest.raises(Forbidden):
        messaging.get_conversation(db, claimant, student.user_id)

    claim(db, "john@example.com", "another-pass")
    approve(db, admin, profile.id)
    owner = resolve_actor(db, profile.user)
    assert messaging.send(db, owner, student.user_id, "hello").read_status is False


def test_get_conversation_reflects_mark_read():
    db = _db()
    _, student, alumni, _ = _pair(db)
    messaging.send(db, student, alumni.user_id, "one")
    messaging.send(db, student, alumni.user_id, "two")
    messaging.get_conversation(db, alumni, student.user_id)

    assert messaging.mark_conversation_read(db, alumni, student.user_id) == 2
    assert [m.read_status for m in messaging.get_conversation(db, alumni, student.user_id)] == [True, True]


def test_list_conversations_last_message_per_counterpart():
    db = _db()
    admin, student, alumni, _ = _pair(db)
    other = make_verified_alumni(db, admin, "jane@example.com", name="Jane Roe")
    respond(db, other, request_connection(db, student, other.user_id).id, "accepted")

    messaging.send(db, student, alumni.user_id, "to john")
    messaging.send(db, student, other.user_id, "to jane")
    messaging.send(db, other, student.user_id, "from jane")
    messaging.send(db, alumni, student.user_id, "from john")

    by_name = {c["other_user_name"]: c for c in messaging.list_conversations(db, student)}
    assert by_name["John Doe"]["last_message"] == "from john"
    assert by_name["Jane Roe"]["last_message"] == "from jane"
    assert by_name["John Doe"]["unread_count"] == 1
