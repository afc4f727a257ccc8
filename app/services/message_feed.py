"""
In-process live feed of chat messages. Observers register per chat and receive the
full ordered message list on every change; registration returns a disposer.
Listener errors are logged and never reach the writer.
"""
import logging
import threading
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Listener = Callable[[list[Any]], None]


class MessageFeed:
    """Observer registry keyed by chat id. Thread-safe: writes come from executor threads."""

    def __init__(self):
        self._listeners: dict[str, list[Listener]] = {}
        self._lock = threading.Lock()

    def subscribe(self, chat_id: str, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.setdefault(chat_id, []).append(listener)

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(chat_id)
                if not listeners or listener not in listeners:
                    return
                listeners.remove(listener)
                if not listeners:
                    del self._listeners[chat_id]

        return unsubscribe

    def has_listeners(self, chat_id: str) -> bool:
        with self._lock:
            return bool(self._listeners.get(chat_id))

    def publish(self, chat_id: str, messages: list[Any]) -> None:
        """Deliver one change batch to every listener of chat_id, in registration order."""
        with self._lock:
            listeners = list(self._listeners.get(chat_id, ()))
        for listener in listeners:
            try:
                listener(messages)
            except Exception as e:
                logger.warning("Message listener failed for chat %s: %s", chat_id, e)


# Process-wide feed shared by every ConversationStore
message_feed = MessageFeed()
