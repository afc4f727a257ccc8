import enum
from datetime import datetime

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class MessageType(str, enum.Enum):
    """Display category of an assistant reply."""
    QUESTION = "question"
    REFLECTION = "reflection"
    ENCOURAGEMENT = "encouragement"
    GUIDANCE = "guidance"


class UserLevel(str, enum.Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


# ---- Documents ----

class LearningContext(BaseModel):
    """
    Advisory tutoring context embedded in a Socratic chat document.
    Stored with camelCase keys (userLevel, previousQuestions, ...); accepts either form.
    """
    topic: str
    user_level: UserLevel = UserLevel.BEGINNER
    previous_questions: list[str] = Field(default_factory=list)
    user_insights: list[str] = Field(default_factory=list)
    current_focus: str = ""
    updated_at: datetime | None = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class Message(BaseModel):
    id: str
    content: str
    is_user: bool
    message_type: MessageType | None = None
    timestamp: datetime | None = None  # assigned by the store on write

    class Config:
        from_attributes = True


class Conversation(BaseModel):
    """Chat summary as listed in the sidebar."""
    id: str
    title: str
    user_id: str
    persona: str | None = None
    created_at: datetime
    updated_at: datetime
    message_count: int = 0
    last_message: str | None = None
    learning_context: LearningContext | None = None

    class Config:
        from_attributes = True


# ---- API ----

class ChatCreateRequest(BaseModel):
    persona: str | None = Field(None, description="socratic | feynman")


class ChatRenameRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)


class TopicCount(BaseModel):
    topic: str
    count: int


class ChatStatsResponse(BaseModel):
    total_chats: int = 0
    total_messages: int = 0
    popular_topics: list[TopicCount] = Field(default_factory=list)


class TutorRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=8000)
    chat_id: str | None = Field(None, description="Continue this chat; empty = most recent or new")
    model: str | None = Field(None, max_length=64, description="Gemini model id; empty = configured default")


class TutorResponse(BaseModel):
    chat_id: str
    title: str
    messages: list[Message]
    reply: Message
    learning_context: LearningContext | None = None
