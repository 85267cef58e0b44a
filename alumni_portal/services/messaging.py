"""
Direct messages between a student and an alumnus.

Every operation that names a pair of users re-checks the connection at call
time, so deleting or rejecting a request cuts the conversation off at once.
"""

from sqlalchemy import and_, case, func, or_
from sqlalchemy.orm import Session

from alumni_portal.errors import Forbidden, NotFound, ValidationFailed
from alumni_portal.models import Message, User
from alumni_portal.observability import get_logger
from alumni_portal.services.actors import Actor
from alumni_portal.services.connections import is_connected
from alumni_portal.services.validation import validate_message

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100


def _require_connection(db: Session, user_a: int, user_b: int):
    if not is_connected(db, user_a, user_b):
        raise Forbidden("You can only message users you have an accepted connection with.")


def _pair_filter(user_a: int, user_b: int):
    return or_(
        and_(Message.sender_id == user_a, Message.receiver_id == user_b),
        and_(Message.sender_id == user_b, Message.receiver_id == user_a),
    )


def send(db: Session, actor: Actor, receiver_id: int, body) -> Message:
    result = validate_message(body)
    if not result.is_valid:
        raise ValidationFailed("Invalid message.", result.errors)
    if receiver_id == actor.user_id:
        raise ValidationFailed("Invalid message.", ["Cannot send a message to yourself"])
    if not db.get(User, receiver_id):
        raise NotFound("Receiver not found.")
    _require_connection(db, actor.user_id, receiver_id)

    row = Message(sender_id=actor.user_id, receiver_id=receiver_id, message=result.data["message"], read_status=False)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def get_conversation(db: Session, actor: Actor, other_id: int, page: int = 1, page_size: int = 50) -> list[Message]:
    _require_connection(db, actor.user_id, other_id)
    page = max(1, page)
    page_size = max(1, min(page_size, MAX_PAGE_SIZE))
    return (
        db.query(Message)
        .filter(_pair_filter(actor.user_id, other_id))
        .order_by(Message.sent_at.asc(), Message.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )


def list_conversations(db: Session, actor: Actor) -> list[dict]:
    """One row per counterpart: identity, last message time and unread count."""
    uid = actor.user_id
    other_id = case((Message.sender_id == uid, Message.receiver_id), else_=Message.sender_id).label("other_id")
    unread = func.sum(
        case((and_(Message.receiver_id == uid, Message.read_status.is_(False)), 1), else_=0)
    ).label("unread_count")
    last_sent = func.max(Message.sent_at).label("last_message_time")
    last_id = func.max(Message.id).label("last_message_id")

    rows = (
        db.query(other_id, last_sent, last_id, unread)
        .filter(or_(Message.sender_id == uid, Message.receiver_id == uid))
        .group_by(other_id)
        .order_by(last_sent.desc())
        .all()
    )
    if not rows:
        return []
    users = {u.id: u for u in db.query(User).filter(User.id.in_([r.other_id for r in rows])).all()}
    # Ids only grow, so the highest id in a pair is its latest message.
    last_bodies = dict(
        db.query(Message.id, Message.message).filter(Message.id.in_([r.last_message_id for r in rows])).all()
    )

    conversations = []
    for row in rows:
        user = users.get(row.other_id)
        if not user:
            continue
        conversations.append(
            {
                "other_user_id": user.id,
                "other_user_name": user.name,
                "other_user_role": user.role,
                "last_message": last_bodies.get(row.last_message_id, ""),
                "last_message_time": row.last_message_time,
                "unread_count": int(row.unread_count or 0),
            }
        )
    return conversations


def mark_read(db: Session, actor: Actor, message_id: int) -> Message:
    row = db.get(Message, message_id)
    if not row:
        raise NotFound("Message not found.")
    if row.receiver_id != actor.user_id:
        raise Forbidden("Only the receiver can mark a message as read.")
    _require_connection(db, row.sender_id, row.receiver_id)
    row.read_status = True
    db.commit()
    return row


def mark_conversation_read(db: Session, actor: Actor, other_id: int) -> int:
    _require_connection(db, actor.user_id, other_id)
    count = (
        db.query(Message)
        .filter(
            Message.sender_id == other_id,
            Message.receiver_id == actor.user_id,
            Message.read_status.is_(False),
        )
        .update({Message.read_status: True}, synchronize_session="fetch")
    )
    db.commit()
    return count


def unread_count(db: Session, actor: Actor) -> int:
    return (
        db.query(func.count(Message.id))
        .filter(Message.receiver_id == actor.user_id, Message.read_status.is_(False))
        .scalar()
        or 0
    )


def delete_message(db: Session, actor: Actor, message_id: int) -> None:
    row = db.get(Message, message_id)
    if not row:
        raise NotFound("Message not found.")
    if row.sender_id != actor.user_id:
        raise Forbidden("You can only delete messages you sent.")
    _require_connection(db, row.sender_id, row.receiver_id)
    db.delete(row)
    db.commit()


def delete_conversation(db: Session, actor: Actor, other_id: int) -> int:
    _require_connection(db, actor.user_id, other_id)
    count = db.query(Message).filter(_pair_filter(actor.user_id, other_id)).delete(synchronize_session=False)
    db.commit()
    logger.info("conversation_deleted", user_id=actor.user_id, other_id=other_id, deleted=count)
    return count
