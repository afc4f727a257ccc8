"""Conversation document: chats/{chat_id}. Summary fields are denormalized from its messages."""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, JSON
from sqlalchemy.orm import relationship

from app.database import Base

DEFAULT_CHAT_TITLE = "New Learning Session"
ANONYMOUS_OWNER = "anonymous"


class Chat(Base):
    __tablename__ = "chats"

    id = Column(String(36), primary_key=True, default=lambda: uuid.uuid4().hex)
    title = Column(String(255), nullable=False, default=DEFAULT_CHAT_TITLE)
    # Owner: authenticated user id or anonymous pseudo-identity, so no FK to users
    user_id = Column(String(64), nullable=False, default=ANONYMOUS_OWNER, index=True)
    persona = Column(String(16), nullable=True, index=True)  # "socratic" | "feynman"
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    # Last activity; list ordering key
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    message_count = Column(Integer, nullable=False, default=0)
    last_message = Column(String(255), nullable=True)
    learning_context = Column(JSON, nullable=True)

    messages = relationship(
        "ChatMessage",
        back_populates="chat",
        order_by="ChatMessage.created_at",
        lazy="select",
        passive_deletes=True,
    )
