import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from app.models.chat import DEFAULT_CHAT_TITLE
from app.models.chat_message import ChatMessage
from app.repositories.chat_repository import ChatNotFoundError, ConversationStore, generate_title
from app.schemas.chat import LearningContext, Message, MessageType, UserLevel


def _msg(message_id, content, is_user=True, message_type=None):
    return Message(id=message_id, content=content, is_user=is_user, message_type=message_type)


def _broken_session():
    raise OperationalError("SELECT 1", {}, Exception("database is down"))


# ---- generate_title ----


def test_generate_title_keeps_short_text():
    assert generate_title("I want to learn about recursion") == "I want to learn about recursion"
    assert generate_title("x" * 50) == "x" * 50


def test_generate_title_truncates_long_text():
    text = "Can you help me understand how closures capture variables in loops?"
    title = generate_title(text)
    assert len(title) == 50
    assert title == text[:47] + "..."


def test_generate_title_strips_whitespace():
    assert generate_title("   recursion  \n") == "recursion"


# ---- conversations ----


def test_create_conversation_defaults(store):
    chat_id = store.create_conversation("user-1", "socratic")
    conversation = store.get_conversation(chat_id)
    assert conversation.title == DEFAULT_CHAT_TITLE
    assert conversation.user_id == "user-1"
    assert conversation.persona == "socratic"
    assert conversation.message_count == 0
    assert conversation.last_message is None
    assert conversation.learning_context is None


def test_create_conversation_without_owner_is_anonymous(store):
    chat_id = store.create_conversation()
    assert store.get_conversation(chat_id).user_id == "anonymous"


def test_list_conversations_most_recent_activity_first(store):
    first = store.create_conversation("u")
    second = store.create_conversation("u")
    store.create_conversation("someone-else")
    store.append_message(first, _msg("m1", "bump the older chat"))

    chats = store.list_conversations("u")
    assert [c.id for c in chats] == [first, second]


def test_list_conversations_without_owner_returns_all(store):
    store.create_conversation("a")
    store.create_conversation("b")
    assert len(store.list_conversations()) == 2


def test_list_conversations_filters_persona(store):
    socratic = store.create_conversation("u", "socratic")
    store.create_conversation("u", "feynman")
    assert [c.id for c in store.list_conversations("u", "socratic")] == [socratic]


def test_list_conversations_caps_at_fifty(store):
    for _ in range(52):
        store.create_conversation("u")
    assert len(store.list_conversations("u")) == 50


def test_update_title(store):
    chat_id = store.create_conversation("u")
    store.update_title(chat_id, "Recursion")
    assert store.get_conversation(chat_id).title == "Recursion"


def test_update_title_of_missing_chat_raises(store):
    with pytest.raises(ChatNotFoundError):
        store.update_title("missing", "Recursion")


# ---- messages ----


def test_append_message_lands_last_and_updates_summary(store):
    chat_id = store.create_conversation("u")
    store.append_message(chat_id, _msg("m1", "What is recursion?"))
    store.append_message(chat_id, _msg("m2", "What do you think?", False, MessageType.QUESTION))
    store.append_message(chat_id, _msg("m3", "A function calling itself"))

    messages = store.list_messages(chat_id)
    assert [m.id for m in messages] == ["m1", "m2", "m3"]
    assert messages[1].is_user is False
    assert messages[1].message_type == MessageType.QUESTION
    assert messages[0].timestamp < messages[1].timestamp < messages[2].timestamp

    conversation = store.get_conversation(chat_id)
    assert conversation.message_count == 3
    assert conversation.last_message == "A function calling itself"


def test_last_message_preview_is_first_hundred_chars(store):
    chat_id = store.create_conversation("u")
    store.append_message(chat_id, _msg("m1", "y" * 250))
    assert store.get_conversation(chat_id).last_message == "y" * 100


def test_append_same_message_id_overwrites(store, session_factory):
    chat_id = store.create_conversation("u")
    store.append_message(chat_id, _msg("m1", "first draft"))
    store.append_message(chat_id, _msg("m1", "second draft"))

    messages = store.list_messages(chat_id)
    assert len(messages) == 1
    assert messages[0].content == "second draft"
    with session_factory() as db:
        assert db.query(ChatMessage).filter(ChatMessage.chat_id == chat_id).count() == 1
    # The stored counter is not reconciled with the message documents
    assert store.get_conversation(chat_id).message_count == 2


def test_same_message_id_in_two_chats_are_separate_documents(store):
    a = store.create_conversation("u")
    b = store.create_conversation("u")
    store.append_message(a, _msg("m1", "in a"))
    store.append_message(b, _msg("m1", "in b"))
    assert store.list_messages(a)[0].content == "in a"
    assert store.list_messages(b)[0].content == "in b"


def test_delete_conversation_removes_chat_and_messages(store, session_factory):
    chat_id = store.create_conversation("u")
    for i in range(3):
        store.append_message(chat_id, _msg(f"m{i}", f"message {i}"))

    store.delete_conversation(chat_id)

    assert store.get_conversation(chat_id) is None
    assert store.list_messages(chat_id) == []
    with session_factory() as db:
        assert db.query(ChatMessage).filter(ChatMessage.chat_id == chat_id).count() == 0


def test_delete_conversation_leaves_other_chats(store):
    keep = store.create_conversation("u")
    drop = store.create_conversation("u")
    store.append_message(keep, _msg("k1", "keep me"))
    store.append_message(drop, _msg("d1", "drop me"))
    store.delete_conversation(drop)
    assert [m.id for m in store.list_messages(keep)] == ["k1"]


# ---- live subscription ----


def test_subscribe_messages_pushes_full_ordered_list(store):
    chat_id = store.create_conversation("u")
    updates = []
    unsubscribe = store.subscribe_messages(chat_id, updates.append)

    store.append_message(chat_id, _msg("m1", "one"))
    store.append_message(chat_id, _msg("m2", "two"))

    assert [[m.id for m in batch] for batch in updates] == [[], ["m1"], ["m1", "m2"]]

    unsubscribe()
    store.append_message(chat_id, _msg("m3", "three"))
    assert len(updates) == 3
    unsubscribe()  # second call is a no-op


def test_subscribe_messages_is_per_chat(store):
    a = store.create_conversation("u")
    b = store.create_conversation("u")
    updates = []
    store.subscribe_messages(a, updates.append)
    store.append_message(b, _msg("m1", "elsewhere"))
    assert updates == [[]]


def test_failing_listener_does_not_break_writes(store):
    chat_id = store.create_conversation("u")

    def listener(messages):
        raise RuntimeError("listener bug")

    store.subscribe_messages(chat_id, listener)
    store.append_message(chat_id, _msg("m1", "still saved"))
    assert [m.id for m in store.list_messages(chat_id)] == ["m1"]


def test_delete_notifies_subscribers_with_empty_list(store):
    chat_id = store.create_conversation("u")
    store.append_message(chat_id, _msg("m1", "one"))
    updates = []
    store.subscribe_messages(chat_id, updates.append)
    store.delete_conversation(chat_id)
    assert updates[-1] == []


# ---- learning context ----


def test_learning_context_roundtrip_is_stamped(store):
    chat_id = store.create_conversation("u", "socratic")
    store.save_learning_context(
        chat_id,
        LearningContext(
            topic="Python",
            user_level=UserLevel.INTERMEDIATE,
            previous_questions=["q1"],
            user_insights=["i1"],
            current_focus="Python",
        ),
    )
    context = store.get_learning_context(chat_id)
    assert context.topic == "Python"
    assert context.user_level == UserLevel.INTERMEDIATE
    assert context.previous_questions == ["q1"]
    assert context.updated_at is not None
    assert store.get_conversation(chat_id).learning_context.topic == "Python"


def test_save_learning_context_overwrites_whole_object(store):
    chat_id = store.create_conversation("u", "socratic")
    store.save_learning_context(
        chat_id,
        LearningContext(topic="Python", previous_questions=["a", "b"], user_insights=["c"]),
    )
    store.save_learning_context(chat_id, LearningContext(topic="React"))

    context = store.get_learning_context(chat_id)
    assert context.topic == "React"
    assert context.previous_questions == []
    assert context.user_insights == []


def test_get_learning_context_missing(store):
    chat_id = store.create_conversation("u")
    assert store.get_learning_context(chat_id) is None
    assert store.get_learning_context("missing") is None


def test_save_learning_context_for_missing_chat_raises(store):
    with pytest.raises(ChatNotFoundError):
        store.save_learning_context("missing", LearningContext(topic="Python"))


# ---- stats ----


def test_chat_stats(store):
    for topic in ("Python", "Python", "React"):
        chat_id = store.create_conversation("u", "socratic")
        store.append_message(chat_id, _msg("m1", "hello"))
        store.save_learning_context(chat_id, LearningContext(topic=topic))
    store.create_conversation("other")

    stats = store.get_chat_stats("u")
    assert stats["total_chats"] == 3
    assert stats["total_messages"] == 3
    assert stats["popular_topics"] == [
        {"topic": "Python", "count": 2},
        {"topic": "React", "count": 1},
    ]


# ---- failure semantics ----


def test_reads_degrade_to_empty_on_store_failure():
    store = ConversationStore(session_factory=_broken_session)
    assert store.list_conversations("u") == []
    assert store.list_messages("chat") == []
    assert store.get_conversation("chat") is None
    assert store.get_learning_context("chat") is None
    assert store.get_chat_stats("u") == {"total_chats": 0, "total_messages": 0, "popular_topics": []}


def test_writes_propagate_store_failure():
    store = ConversationStore(session_factory=_broken_session)
    with pytest.raises(SQLAlchemyError):
        store.create_conversation("u")
    with pytest.raises(SQLAlchemyError):
        store.append_message("chat", _msg("m1", "lost"))
    with pytest.raises(SQLAlchemyError):
        store.delete_conversation("chat")
