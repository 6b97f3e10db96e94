import logging
from sqlmodel import Session, select
from orca.errors import SessionNotFound
from orca.models import ChatSession, Message, Role

logger = logging.getLogger(__name__)


class MessageLog:
    """Messages of one chat session in insertion order.

    Every iteration runs a fresh query, so the log can be walked again and
    always reflects what the store holds at that moment.
    """

    def __init__(self, engine, session_id: int):
        self.engine = engine
        self.session_id = session_id

    def __iter__(self):
        with Session(self.engine) as session:
            messages = session.exec(
                select(Message).where(Message.session_id == self.session_id).order_by(Message.id)
            ).all()
        return iter(messages)


class MessageStore:
    """Append-only log of role-tagged messages per chat session."""

    def __init__(self, engine):
        self.engine = engine

    def append(self, session_id: int, role, content: str) -> Message:
        role = Role(role).value
        with Session(self.engine) as session:
            if session.get(ChatSession, session_id) is None:
                raise SessionNotFound(session_id)
            message = Message(session_id=session_id, role=role, content=content)
            session.add(message)
            session.commit()
            session.refresh(message)
        logger.info(f"Message stored: session_id={session_id}, role={role}, message_id={message.id}, chars={len(content)}")
        return message

    def list_ordered(self, session_id: int) -> MessageLog:
        return MessageLog(self.engine, session_id)
