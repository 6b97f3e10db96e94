import logging
from typing import List, Optional
from sqlmodel import Session, select, delete
from orca.config import DEFAULT_CHAT_TITLE
from orca.errors import Forbidden, SessionNotFound
from orca.models import ChatSession, Message

logger = logging.getLogger(__name__)


class SessionDirectory:
    """Chat sessions and who owns them."""

    def __init__(self, engine):
        self.engine = engine

    def create(self, owner_id: int, title: Optional[str] = None) -> ChatSession:
        with Session(self.engine) as session:
            chat = ChatSession(user_id=owner_id, title=title or DEFAULT_CHAT_TITLE)
            session.add(chat)
            session.commit()
            session.refresh(chat)
        logger.info(f"Chat session created: session_id={chat.id}, owner_id={owner_id}")
        return chat

    def get(self, session_id: int) -> ChatSession:
        with Session(self.engine) as session:
            chat = session.get(ChatSession, session_id)
        if chat is None:
            raise SessionNotFound(session_id)
        return chat

    def authorize(self, session_id: int, caller_id: int) -> bool:
        return self.get(session_id).user_id == caller_id

    def require_owner(self, session_id: int, caller_id: int) -> ChatSession:
        chat = self.get(session_id)
        if chat.user_id != caller_id:
            logger.warning(f"Access denied: session_id={session_id}, caller_id={caller_id}")
            raise Forbidden(session_id, caller_id)
        return chat

    def list_for_owner(self, owner_id: int) -> List[ChatSession]:
        with Session(self.engine) as session:
            return list(session.exec(
                select(ChatSession)
                .where(ChatSession.user_id == owner_id)
                .order_by(ChatSession.created_at.desc(), ChatSession.id.desc())
            ).all())

    def rename(self, session_id: int, title: str) -> ChatSession:
        with Session(self.engine) as session:
            chat = session.get(ChatSession, session_id)
            if chat is None:
                raise SessionNotFound(session_id)
            chat.title = title
            session.add(chat)
            session.commit()
            session.refresh(chat)
        return chat

    def delete(self, session_id: int) -> None:
        with Session(self.engine) as session:
            chat = session.get(ChatSession, session_id)
            if chat is None:
                raise SessionNotFound(session_id)
            session.execute(delete(Message).where(Message.session_id == session_id))
            session.delete(chat)
            session.commit()
        logger.info(f"Chat session and messages deleted: session_id={session_id}")
