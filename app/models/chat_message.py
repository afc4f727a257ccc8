"""Message document: chats/{chat_id}/messages/{id}. The id is scoped to its chat."""
from datetime import datetime
from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from app.database import Base


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    chat_id = Column(
        String(36),
        ForeignKey("chats.id", ondelete="CASCADE"),
        primary_key=True,
    )
    id = Column(String(64), primary_key=True)
    content = Column(Text, nullable=False)
    is_user = Column(Boolean, nullable=False)
    message_type = Column(String(16), nullable=True)  # question | reflection | encouragement | guidance
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    chat = relationship("Chat", back_populates="messages")
