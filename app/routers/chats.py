"""
Chat history endpoints (sidebar + message list).
- GET /api/chats: recent chats of the caller (optional ?persona=)
- POST /api/chats: start a new chat
- GET /api/chats/stats: totals and popular topics of the caller
- GET|PATCH|DELETE /api/chats/{chat_id}
- GET /api/chats/{chat_id}/messages: ordered messages
- GET /api/chats/{chat_id}/messages/stream: live message list (SSE)
- GET|PUT /api/chats/{chat_id}/learning-context
Ownership: chat.user_id must equal the caller's owner id (user id or anonymous cookie id).
"""
import asyncio
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.exc import SQLAlchemyError

from app.auth import resolve_owner_id
from app.repositories.chat_repository import ConversationStore
from app.schemas.chat import (
    ChatCreateRequest,
    ChatRenameRequest,
    ChatStatsResponse,
    Conversation,
    LearningContext,
    Message,
)
from app.services.personas import PERSONAS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chats", tags=["chats"])


def get_conversation_store() -> ConversationStore:
    return ConversationStore()


def get_owned_conversation(
    chat_id: str,
    owner_id: str = Depends(resolve_owner_id),
    store: ConversationStore = Depends(get_conversation_store),
) -> Conversation:
    conversation = store.get_conversation(chat_id)
    if conversation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")
    if conversation.user_id != owner_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your chat")
    return conversation


def _write_failed(action: str, e: Exception) -> HTTPException:
    logger.error("Chat %s failed: %s", action, e)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Could not {action} chat. Please try again later.",
    )


@router.get("", response_model=list[Conversation])
def list_chats(
    persona: str | None = None,
    owner_id: str = Depends(resolve_owner_id),
    store: ConversationStore = Depends(get_conversation_store),
):
    """Most recently active chats first (max 50)."""
    return store.list_conversations(owner_id, persona)


@router.post("", response_model=Conversation, status_code=status.HTTP_201_CREATED)
def create_chat(
    body: ChatCreateRequest,
    owner_id: str = Depends(resolve_owner_id),
    store: ConversationStore = Depends(get_conversation_store),
):
    if body.persona and body.persona not in PERSONAS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown persona")
    try:
        chat_id = store.create_conversation(owner_id, body.persona)
    except SQLAlchemyError as e:
        raise _write_failed("create", e) from e
    conversation = store.get_conversation(chat_id)
    if conversation is None:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Chat not readable")
    return conversation


@router.get("/stats", response_model=ChatStatsResponse)
def chat_stats(
    owner_id: str = Depends(resolve_owner_id),
    store: ConversationStore = Depends(get_conversation_store),
):
    return ChatStatsResponse(**store.get_chat_stats(owner_id))


@router.get("/{chat_id}", response_model=Conversation)
def get_chat(conversation: Conversation = Depends(get_owned_conversation)):
    return conversation


@router.patch("/{chat_id}", response_model=Conversation)
def rename_chat(
    body: ChatRenameRequest,
    conversation: Conversation = Depends(get_owned_conversation),
    store: ConversationStore = Depends(get_conversation_store),
):
    try:
        store.update_title(conversation.id, body.title.strip())
    except SQLAlchemyError as e:
        raise _write_failed("rename", e) from e
    return conversation.model_copy(update={"title": body.title.strip()})


@router.delete("/{chat_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_chat(
    conversation: Conversation = Depends(get_owned_conversation),
    store: ConversationStore = Depends(get_conversation_store),
):
    """Deletes the chat, then its messages (not atomic)."""
    try:
        store.delete_conversation(conversation.id)
    except SQLAlchemyError as e:
        raise _write_failed("delete", e) from e


@router.get("/{chat_id}/messages", response_model=list[Message])
def list_messages(
    conversation: Conversation = Depends(get_owned_conversation),
    store: ConversationStore = Depends(get_conversation_store),
):
    return store.list_messages(conversation.id)


def _sse_message(payload) -> str:
    """SSE format: data: {json}\\n\\n"""
    return f"data: {json.dumps(payload)}\n\n"


@router.get("/{chat_id}/messages/stream")
async def stream_messages(
    request: Request,
    conversation: Conversation = Depends(get_owned_conversation),
    store: ConversationStore = Depends(get_conversation_store),
):
    """
    Live message list as Server-Sent Events: one event with the full ordered list
    right away, then one per change. Several writes may arrive as one event.
    """
    loop = asyncio.get_event_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def on_update(messages: list[Message]) -> None:
        payload = [m.model_dump(mode="json") for m in messages]
        loop.call_soon_threadsafe(queue.put_nowait, payload)

    unsubscribe = await loop.run_in_executor(
        None, lambda: store.subscribe_messages(conversation.id, on_update)
    )

    async def events():
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    payload = await asyncio.wait_for(queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue
                # Coalesce whatever else is already queued into the latest list
                while not queue.empty():
                    payload = queue.get_nowait()
                yield _sse_message({"messages": payload})
        finally:
            unsubscribe()

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/{chat_id}/learning-context", response_model=LearningContext | None)
def get_learning_context(
    conversation: Conversation = Depends(get_owned_conversation),
    store: ConversationStore = Depends(get_conversation_store),
):
    return store.get_learning_context(conversation.id)


@router.put("/{chat_id}/learning-context", response_model=LearningContext)
def put_learning_context(
    body: LearningContext,
    conversation: Conversation = Depends(get_owned_conversation),
    store: ConversationStore = Depends(get_conversation_store),
):
    """Replaces the whole learning context of the chat."""
    try:
        store.save_learning_context(conversation.id, body)
    except SQLAlchemyError as e:
        raise _write_failed("save learning context of", e) from e
    return store.get_learning_context(conversation.id) or body
