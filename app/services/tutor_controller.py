"""
Per-persona chat controller: UNINITIALIZED -> LOADING_HISTORY -> READY <-> AWAITING_RESPONSE.

- Local message list is updated optimistically; persistence runs as background tasks,
  serialized per controller so writes land in submission order. Failures are logged only.
- One generation attempt per submission; on failure the persona's fallback reply is used.
  A reply without text counts as an answer when the persona has an empty_reply to stand in for it.
- Identity resolution and text generation are injected collaborators.
"""
import asyncio
import enum
import logging
import uuid
from collections.abc import Callable
from datetime import datetime

from app.config import get_settings
from app.models.chat import ANONYMOUS_OWNER, DEFAULT_CHAT_TITLE
from app.repositories.chat_repository import ConversationStore
from app.schemas.chat import LearningContext, Message
from app.services.ai_service import EmptyResponseError, generate_content
from app.services.learning_context import update_learning_context
from app.services.personas import Persona, build_prompt, classify_reply

logger = logging.getLogger(__name__)

Generator = Callable[[str, str], str]
IdentityResolver = Callable[[], str | None]


class ControllerState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    LOADING_HISTORY = "loading_history"
    READY = "ready"
    AWAITING_RESPONSE = "awaiting_response"


def new_message_id() -> str:
    return uuid.uuid4().hex


class PersonaChatController:
    """Holds the active conversation of one persona and drives a tutoring exchange."""

    def __init__(
        self,
        persona: Persona,
        store: ConversationStore,
        generate: Generator = generate_content,
        identity: IdentityResolver | None = None,
        model: str | None = None,
    ):
        settings = get_settings()
        self.persona = persona
        self.model = model or settings.gemini_model
        self._store = store
        self._generate = generate
        self._identity = identity
        self._questions_window = settings.previous_questions_window
        self._insights_window = settings.user_insights_window

        self.state = ControllerState.UNINITIALIZED
        self.owner_id: str | None = None
        self.chat_id: str | None = None
        self.title = DEFAULT_CHAT_TITLE
        self.messages: list[Message] = []
        self.learning_context: LearningContext | None = None

        self._persist_lock = asyncio.Lock()
        self._pending: set[asyncio.Task] = set()

    async def _call(self, fn, *args):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, lambda: fn(*args))

    # ---- Lifecycle ----

    def _resolve_owner(self) -> str:
        owner_id = self._identity() if self._identity else None
        return owner_id or ANONYMOUS_OWNER

    async def mount(self) -> None:
        """Resolve the owner, then open the most recent chat of this persona or start one."""
        self.state = ControllerState.LOADING_HISTORY
        try:
            self.owner_id = self._resolve_owner()
            chats = await self._call(self._store.list_conversations, self.owner_id, self.persona.key)
            if chats:
                await self._load(chats[0].id)
            else:
                await self._start_new()
        except Exception:
            self.state = ControllerState.UNINITIALIZED
            raise
        self.state = ControllerState.READY

    async def switch_conversation(self, chat_id: str) -> None:
        """Replace all local state with the stored state of chat_id."""
        if self.owner_id is None:
            self.owner_id = self._resolve_owner()
        self.state = ControllerState.LOADING_HISTORY
        await self._load(chat_id)
        self.state = ControllerState.READY

    async def new_conversation(self) -> str:
        """
        Start an empty chat and make it active. If creating it fails the error
        propagates and the controller stays on its previous chat (READY), or
        UNINITIALIZED when it had none.
        """
        if self.owner_id is None:
            self.owner_id = self._resolve_owner()
        self.state = ControllerState.LOADING_HISTORY
        try:
            await self._start_new()
        finally:
            self.state = ControllerState.READY if self.chat_id else ControllerState.UNINITIALIZED
        return self.chat_id

    async def delete_conversation(self, chat_id: str) -> None:
        """Delete a chat; deleting the active one reopens the next most recent chat."""
        await self._call(self._store.delete_conversation, chat_id)
        if chat_id == self.chat_id:
            await self.mount()

    async def _load(self, chat_id: str) -> None:
        conversation = await self._call(self._store.get_conversation, chat_id)
        messages = await self._call(self._store.list_messages, chat_id)
        context = None
        if self.persona.uses_learning_context:
            context = await self._call(self._store.get_learning_context, chat_id)
        self.chat_id = chat_id
        self.title = conversation.title if conversation else DEFAULT_CHAT_TITLE
        self.messages = messages
        self.learning_context = context

    async def _start_new(self) -> None:
        chat_id = await self._call(self._store.create_conversation, self.owner_id, self.persona.key)
        self.chat_id = chat_id
        self.title = DEFAULT_CHAT_TITLE
        self.messages = []
        self.learning_context = None

    # ---- Exchange ----

    async def submit(self, text: str) -> Message | None:
        """
        Run one exchange and return the assistant message. Blank input is ignored.
        Only valid in READY; the controller is back in READY when this returns.
        """
        if self.state is not ControllerState.READY:
            raise RuntimeError(f"Cannot submit while {self.state.value}")
        if not text.strip():
            return None

        chat_id = self.chat_id
        history = list(self.messages)
        is_first = not history

        user_message = Message(
            id=new_message_id(),
            content=text,
            is_user=True,
            timestamp=datetime.utcnow(),
        )
        self.messages.append(user_message)
        self._persist(self._store.append_message, chat_id, user_message)
        if is_first:
            self.title = self._store.generate_title(text)
            self._persist(self._store.update_title, chat_id, self.title)

        self.state = ControllerState.AWAITING_RESPONSE
        try:
            prompt = build_prompt(self.persona, history, text, self.learning_context)
            generated = False
            reply_text = None
            try:
                reply_text = await self._call(self._generate, self.model, prompt)
            except EmptyResponseError as e:
                logger.warning("No reply text for %s chat %s: %s", self.persona.key, chat_id, e)
                reply_text = ""
            except Exception:
                logger.exception("Generation failed for %s chat %s", self.persona.key, chat_id)
            if reply_text is not None and not reply_text.strip():
                reply_text = self.persona.empty_reply

            if reply_text is None:
                reply = Message(
                    id=new_message_id(),
                    content=self.persona.fallback_message,
                    is_user=False,
                    timestamp=datetime.utcnow(),
                    message_type=self.persona.fallback_type,
                )
            else:
                reply = Message(
                    id=new_message_id(),
                    content=reply_text,
                    is_user=False,
                    timestamp=datetime.utcnow(),
                    message_type=classify_reply(reply_text),
                )
                generated = True
            self.messages.append(reply)
            self._persist(self._store.append_message, chat_id, reply)

            if generated and self.persona.uses_learning_context:
                self.learning_context = update_learning_context(
                    self.learning_context,
                    text,
                    self._questions_window,
                    self._insights_window,
                )
                self._persist(self._store.save_learning_context, chat_id, self.learning_context)
            return reply
        finally:
            self.state = ControllerState.READY

    # ---- Background persistence ----

    def _persist(self, fn, *args) -> None:
        task = asyncio.ensure_future(self._write(fn, *args))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, fn, *args) -> None:
        async with self._persist_lock:
            try:
                await self._call(fn, *args)
            except Exception as e:
                logger.warning("%s failed for chat %s: %s", getattr(fn, "__name__", fn), args[0], e)

    async def wait_persisted(self) -> None:
        """Wait until every scheduled write has finished (successfully or not)."""
        while self._pending:
            await asyncio.gather(*list(self._pending))
