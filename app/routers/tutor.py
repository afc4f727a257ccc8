"""
Tutor endpoints:
- GET /api/tutor/personas: available teaching personas
- POST /api/tutor/{persona}/messages: one exchange with the persona. Continues chat_id
  (409 when it belongs to another persona),
  or the caller's most recent chat of that persona, or a new chat.
A generation failure is not an HTTP error: the reply is the persona's fallback message.
"""
import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from app.auth import resolve_owner_id
from app.repositories.chat_repository import ConversationStore
from app.routers.chats import get_conversation_store
from app.schemas.chat import TutorRequest, TutorResponse
from app.services.ai_service import generate_content
from app.services.personas import PERSONAS
from app.services.tutor_controller import Generator, PersonaChatController

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tutor", tags=["tutor"])


def get_generator() -> Generator:
    return generate_content


@router.get("/personas")
def list_personas():
    return [
        {"key": p.key, "name": p.display_name, "uses_learning_context": p.uses_learning_context}
        for p in PERSONAS.values()
    ]


@router.post("/{persona_key}/messages", response_model=TutorResponse)
async def send_message(
    persona_key: str,
    body: TutorRequest,
    owner_id: str = Depends(resolve_owner_id),
    store: ConversationStore = Depends(get_conversation_store),
    generate: Generator = Depends(get_generator),
):
    persona = PERSONAS.get(persona_key.lower())
    if persona is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown persona")
    if not body.message.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message is empty")

    controller = PersonaChatController(
        persona,
        store,
        generate=generate,
        identity=lambda: owner_id,
        model=body.model,
    )

    if body.chat_id:
        loop = asyncio.get_event_loop()
        conversation = await loop.run_in_executor(None, lambda: store.get_conversation(body.chat_id))
        if conversation is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")
        if conversation.user_id != owner_id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your chat")
        if conversation.persona and conversation.persona != persona.key:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Chat belongs to the {conversation.persona} persona",
            )
        await controller.switch_conversation(body.chat_id)
    else:
        try:
            await controller.mount()
        except SQLAlchemyError as e:
            logger.error("Could not open a %s chat for %s: %s", persona.key, owner_id, e)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Could not start a chat. Please try again later.",
            ) from e

    reply = await controller.submit(body.message)
    # Writes are fire-and-forget for the exchange itself; flush them before the request ends
    await controller.wait_persisted()

    return TutorResponse(
        chat_id=controller.chat_id,
        title=controller.title,
        messages=controller.messages,
        reply=reply,
        learning_context=controller.learning_context,
    )
