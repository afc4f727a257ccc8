from app.models.user import User
from app.models.chat import Chat
from app.models.chat_message import ChatMessage

__all__ = ["User", "Chat", "ChatMessage"]
