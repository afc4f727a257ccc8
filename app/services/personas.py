"""
Teaching personas: instruction templates, fallback replies and prompt assembly.
The whole prompt is a single text block: persona framing, prior turns as ROLE: text
lines, then the new user message.
"""
from dataclasses import dataclass

from app.schemas.chat import LearningContext, Message, MessageType


SOCRATIC_INSTRUCTION = """You are a Socratic teacher. Your role is to guide learning through thoughtful questions, not to give direct answers.

CORE PRINCIPLES:
1. Ask probing questions that lead students to discover answers themselves
2. Build on their existing knowledge and responses
3. Encourage critical thinking and self-reflection
4. Be patient and supportive
5. Help them make connections between concepts

TECHNIQUES TO USE:
- Ask "What do you think happens when...?"
- "How might this relate to something you already know?"
- "What patterns do you notice?"
- "What would happen if we changed X?"
- "Can you think of an example where...?"
- "What's your reasoning behind that?"

AVOID:
- Giving direct answers immediately
- Lecturing or explaining everything
- Being condescending
- Moving too fast without checking understanding"""

FEYNMAN_INSTRUCTION = """You are acting as a Feynman Technique coach.
The student (user) is explaining a concept.
Your role:
1. Do NOT explain the concept for them.
2. Listen to their explanation and point out parts that are unclear, missing, or too complex.
3. Ask them to simplify, clarify, or give an example in their own words.
4. Use follow-up questions like: "Can you explain that more simply?" or "What does that mean in everyday terms?"
5. Keep them doing the explaining — only guide them with questions."""

SOCRATIC_OPENING = """This appears to be the start of a learning conversation. First, try to understand:
1. What they want to learn
2. What they already know about the topic
3. Why they're interested in learning this

Then guide them with questions that will help them explore the topic systematically."""


@dataclass(frozen=True)
class Persona:
    key: str
    display_name: str
    instruction: str
    fallback_message: str
    fallback_type: MessageType | None = None
    uses_learning_context: bool = False
    # Reply used when the model answers with no text; None means use fallback_message
    empty_reply: str | None = None


SOCRATIC = Persona(
    key="socratic",
    display_name="Socratic Tutor",
    instruction=SOCRATIC_INSTRUCTION,
    fallback_message=(
        "I'm having trouble connecting right now. While we wait, what do you think "
        "might be a good starting point for exploring this topic?"
    ),
    fallback_type=MessageType.QUESTION,
    empty_reply=(
        "Let me think about how to guide you through this. "
        "What's your initial understanding of this topic?"
    ),
    uses_learning_context=True,
)

FEYNMAN = Persona(
    key="feynman",
    display_name="Feynman Coach",
    instruction=FEYNMAN_INSTRUCTION,
    fallback_message="⚠️ Error: Failed to get a response.",
)

PERSONAS: dict[str, Persona] = {p.key: p for p in (SOCRATIC, FEYNMAN)}


def get_persona(key: str) -> Persona:
    """Raises KeyError for an unknown persona key."""
    return PERSONAS[key.lower()]


# Checked in order; plain case-sensitive substring match on the reply
REPLY_KEYWORDS: list[tuple[MessageType, tuple[str, ...]]] = [
    (MessageType.ENCOURAGEMENT, ("excellent", "good thinking")),
    (MessageType.REFLECTION, ("reflect", "consider")),
    (MessageType.GUIDANCE, ("try", "approach")),
]


def classify_reply(text: str) -> MessageType:
    for message_type, keywords in REPLY_KEYWORDS:
        if any(k in text for k in keywords):
            return message_type
    return MessageType.QUESTION


def render_history(history: list[Message]) -> str:
    return "\n".join(
        f"{'USER' if m.is_user else 'ASSISTANT'}: {m.content}" for m in history
    )


def render_learning_context(context: LearningContext) -> str:
    return (
        "LEARNING CONTEXT:\n"
        f"- Topic: {context.topic}\n"
        f"- User Level: {context.user_level.value}\n"
        f"- Previous Questions Asked: {', '.join(context.previous_questions)}\n"
        f"- User Insights So Far: {', '.join(context.user_insights)}\n"
        f"- Current Focus: {context.current_focus}\n"
        "\n"
        "Build on this context to ask your next guiding question."
    )


def build_prompt(
    persona: Persona,
    history: list[Message],
    user_text: str,
    context: LearningContext | None = None,
) -> str:
    """history holds the turns before user_text; the new message is appended last."""
    parts = [persona.instruction, "\n\nConversation so far:\n", render_history(history)]
    parts.append(f'\n\nUser just said: "{user_text}"\n')
    if persona.uses_learning_context:
        parts.append("\n")
        parts.append(render_learning_context(context) if context else SOCRATIC_OPENING)
        parts.append("\n")
    parts.append("\nYour response:\n")
    return "".join(parts)
