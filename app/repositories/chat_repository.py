"""
Conversation store: chats/{chat_id} documents and their chats/{chat_id}/messages/{id} documents.
Module functions are sync and take a Session; ConversationStore opens one session per call.

Failure semantics: reads degrade to an empty result (logged), writes propagate.
Message insert and the parent summary update are two separate commits; the stored
message_count may drift under concurrent writers or partial failure.
"""
import logging
import threading
import uuid
from collections import Counter
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import SessionLocal
from app.models.chat import ANONYMOUS_OWNER, DEFAULT_CHAT_TITLE, Chat
from app.models.chat_message import ChatMessage
from app.schemas.chat import Conversation, LearningContext, Message
from app.services.message_feed import MessageFeed, message_feed

logger = logging.getLogger(__name__)

_clock_lock = threading.Lock()
_last_timestamp: datetime | None = None


class ChatNotFoundError(LookupError):
    """Raised by writes that require an existing chat document."""


def server_timestamp() -> datetime:
    """UTC write time, strictly increasing within the process so ascending order is write order."""
    global _last_timestamp
    with _clock_lock:
        now = datetime.utcnow()
        if _last_timestamp is not None and now <= _last_timestamp:
            now = _last_timestamp + timedelta(microseconds=1)
        _last_timestamp = now
        return now


def generate_title(first_message: str, max_length: int = 50) -> str:
    """Chat title from the first user message: unchanged up to max_length, else cut with '...'."""
    clean = first_message.strip()
    if len(clean) <= max_length:
        return clean
    return clean[: max_length - 3] + "..."


# ---- Chat documents ----


def create_chat(db: Session, user_id: str | None = None, persona: str | None = None) -> Chat:
    now = server_timestamp()
    chat = Chat(
        id=uuid.uuid4().hex,
        title=DEFAULT_CHAT_TITLE,
        user_id=user_id or ANONYMOUS_OWNER,
        persona=persona,
        created_at=now,
        updated_at=now,
        message_count=0,
    )
    db.add(chat)
    db.commit()
    db.refresh(chat)
    return chat


def get_chat(db: Session, chat_id: str) -> Chat | None:
    return db.query(Chat).filter(Chat.id == chat_id).first()


def list_chats(
    db: Session,
    user_id: str | None = None,
    persona: str | None = None,
    limit: int = 50,
) -> list[Chat]:
    """Most recently active chats first."""
    q = db.query(Chat)
    if user_id:
        q = q.filter(Chat.user_id == user_id)
    if persona:
        q = q.filter(Chat.persona == persona)
    return q.order_by(desc(Chat.updated_at)).limit(limit).all()


def set_chat_title(db: Session, chat_id: str, title: str) -> None:
    chat = get_chat(db, chat_id)
    if chat is None:
        raise ChatNotFoundError(chat_id)
    chat.title = title
    db.commit()


def bump_chat_summary(db: Session, chat_id: str, content: str, preview_length: int = 100) -> None:
    """Re-read the chat and advance its counter and preview. No-op when the chat is gone."""
    chat = get_chat(db, chat_id)
    if chat is None:
        return
    chat.message_count = (chat.message_count or 0) + 1
    chat.last_message = content[:preview_length]
    chat.updated_at = server_timestamp()
    db.commit()


def delete_chat(db: Session, chat_id: str) -> None:
    db.query(Chat).filter(Chat.id == chat_id).delete(synchronize_session=False)
    db.commit()


def set_learning_context(db: Session, chat_id: str, context: dict) -> None:
    """Replace the whole learning_context sub-object; nested fields are never merged."""
    chat = get_chat(db, chat_id)
    if chat is None:
        raise ChatNotFoundError(chat_id)
    chat.learning_context = context
    db.commit()


# ---- Message documents ----


def upsert_message(db: Session, chat_id: str, message: Message) -> ChatMessage:
    """Write the message at its own id: a second write with the same id overwrites."""
    row = (
        db.query(ChatMessage)
        .filter(ChatMessage.chat_id == chat_id, ChatMessage.id == message.id)
        .first()
    )
    if row is None:
        row = ChatMessage(chat_id=chat_id, id=message.id)
        db.add(row)
    row.content = message.content
    row.is_user = message.is_user
    row.message_type = message.message_type.value if message.message_type else None
    row.created_at = server_timestamp()
    db.commit()
    db.refresh(row)
    return row


def get_messages(db: Session, chat_id: str) -> list[ChatMessage]:
    return (
        db.query(ChatMessage)
        .filter(ChatMessage.chat_id == chat_id)
        .order_by(ChatMessage.created_at)
        .all()
    )


def delete_messages(db: Session, chat_id: str) -> int:
    """Delete message documents one by one; stops at the first failure. Returns how many went."""
    ids = [r[0] for r in db.query(ChatMessage.id).filter(ChatMessage.chat_id == chat_id).all()]
    deleted = 0
    for message_id in ids:
        db.query(ChatMessage).filter(
            ChatMessage.chat_id == chat_id,
            ChatMessage.id == message_id,
        ).delete(synchronize_session=False)
        db.commit()
        deleted += 1
    return deleted


# ---- Mapping ----


def _to_message(row: ChatMessage) -> Message:
    return Message(
        id=row.id,
        content=row.content,
        is_user=row.is_user,
        message_type=row.message_type,
        timestamp=row.created_at,
    )


def _to_conversation(chat: Chat) -> Conversation:
    context = None
    if chat.learning_context:
        context = LearningContext.model_validate(chat.learning_context)
    return Conversation(
        id=chat.id,
        title=chat.title,
        user_id=chat.user_id,
        persona=chat.persona,
        created_at=chat.created_at,
        updated_at=chat.updated_at,
        message_count=chat.message_count or 0,
        last_message=chat.last_message,
        learning_context=context,
    )


class ConversationStore:
    """
    Adapter between conversation/message operations and the database.
    One short-lived session per operation, so calls are safe from executor threads.
    Writes publish the chat's full ordered message list to live subscribers.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        feed: MessageFeed | None = None,
    ):
        settings = get_settings()
        self._session_factory = session_factory or SessionLocal
        self._feed = feed or message_feed
        self._list_limit = settings.chat_list_limit
        self._preview_length = settings.last_message_preview_length
        self._title_max_length = settings.title_max_length

    # -- conversations --

    def create_conversation(self, owner_id: str | None = None, persona: str | None = None) -> str:
        with self._session_factory() as db:
            return create_chat(db, owner_id, persona).id

    def list_conversations(
        self,
        owner_id: str | None = None,
        persona: str | None = None,
    ) -> list[Conversation]:
        try:
            with self._session_factory() as db:
                rows = list_chats(db, owner_id, persona, self._list_limit)
                return [_to_conversation(c) for c in rows]
        except SQLAlchemyError as e:
            logger.warning("Error fetching chat history for %s: %s", owner_id, e)
            return []

    def get_conversation(self, chat_id: str) -> Conversation | None:
        try:
            with self._session_factory() as db:
                chat = get_chat(db, chat_id)
                return _to_conversation(chat) if chat else None
        except SQLAlchemyError as e:
            logger.warning("Error fetching chat %s: %s", chat_id, e)
            return None

    def update_title(self, chat_id: str, title: str) -> None:
        with self._session_factory() as db:
            set_chat_title(db, chat_id, title)

    def delete_conversation(self, chat_id: str) -> None:
        """Chat document first, then its messages; an interruption can leave orphans behind."""
        with self._session_factory() as db:
            delete_chat(db, chat_id)
            deleted = delete_messages(db, chat_id)
        logger.info("Deleted chat %s (%d messages)", chat_id, deleted)
        self._feed.publish(chat_id, [])

    def generate_title(self, first_message: str) -> str:
        return generate_title(first_message, self._title_max_length)

    # -- messages --

    def append_message(self, chat_id: str, message: Message) -> None:
        with self._session_factory() as db:
            upsert_message(db, chat_id, message)
            bump_chat_summary(db, chat_id, message.content, self._preview_length)
        self._notify(chat_id)

    def list_messages(self, chat_id: str) -> list[Message]:
        try:
            with self._session_factory() as db:
                return [_to_message(r) for r in get_messages(db, chat_id)]
        except SQLAlchemyError as e:
            logger.warning("Error fetching messages for chat %s: %s", chat_id, e)
            return []

    def subscribe_messages(
        self,
        chat_id: str,
        on_update: Callable[[list[Message]], None],
    ) -> Callable[[], None]:
        """
        Register a live listener; it gets the current list right away and then the
        full ordered list after every change. Returns the unsubscribe handle.
        """
        unsubscribe = self._feed.subscribe(chat_id, on_update)
        messages = self._load_for_feed(chat_id)
        if messages is not None:
            try:
                on_update(messages)
            except Exception as e:
                logger.warning("Message listener failed for chat %s: %s", chat_id, e)
        return unsubscribe

    def _load_for_feed(self, chat_id: str) -> list[Message] | None:
        try:
            with self._session_factory() as db:
                return [_to_message(r) for r in get_messages(db, chat_id)]
        except SQLAlchemyError as e:
            logger.warning("Error in message subscription for chat %s: %s", chat_id, e)
            return None

    def _notify(self, chat_id: str) -> None:
        if not self._feed.has_listeners(chat_id):
            return
        messages = self._load_for_feed(chat_id)
        if messages is not None:
            self._feed.publish(chat_id, messages)

    # -- learning context --

    def save_learning_context(self, chat_id: str, context: LearningContext) -> None:
        stamped = context.model_copy(update={"updated_at": server_timestamp()})
        with self._session_factory() as db:
            set_learning_context(db, chat_id, stamped.model_dump(mode="json", by_alias=True))

    def get_learning_context(self, chat_id: str) -> LearningContext | None:
        try:
            with self._session_factory() as db:
                chat = get_chat(db, chat_id)
                if chat is None or not chat.learning_context:
                    return None
                return LearningContext.model_validate(chat.learning_context)
        except SQLAlchemyError as e:
            logger.warning("Error fetching learning context for chat %s: %s", chat_id, e)
            return None

    # -- stats --

    def get_chat_stats(self, owner_id: str | None = None) -> dict:
        """Totals plus the five most common learning-context topics."""
        try:
            with self._session_factory() as db:
                q = db.query(Chat)
                if owner_id:
                    q = q.filter(Chat.user_id == owner_id)
                chats = q.all()
                topics: Counter = Counter()
                total_messages = 0
                for chat in chats:
                    total_messages += chat.message_count or 0
                    topic = (chat.learning_context or {}).get("topic")
                    if topic:
                        topics[topic] += 1
                return {
                    "total_chats": len(chats),
                    "total_messages": total_messages,
                    "popular_topics": [
                        {"topic": t, "count": n} for t, n in topics.most_common(5)
                    ],
                }
        except SQLAlchemyError as e:
            logger.warning("Error fetching chat stats: %s", e)
            return {"total_chats": 0, "total_messages": 0, "popular_topics": []}
