"""
Learning context heuristics for the Socratic tutor.
Topic and level come from keyword matches on the user's own words (never the reply);
the first matching row of each table wins.
"""
import enum

from app.schemas.chat import LearningContext, UserLevel


class Topic(str, enum.Enum):
    GENERAL = "general inquiry"
    JAVASCRIPT = "JavaScript"
    REACT = "React"
    PYTHON = "Python"
    DATABASE_DESIGN = "Database Design"
    ALGORITHMS = "Algorithms"


TOPIC_KEYWORDS: list[tuple[Topic, tuple[str, ...]]] = [
    (Topic.JAVASCRIPT, ("javascript", "js")),
    (Topic.REACT, ("react",)),
    (Topic.PYTHON, ("python",)),
    (Topic.DATABASE_DESIGN, ("database",)),
    (Topic.ALGORITHMS, ("algorithm",)),
]

LEVEL_KEYWORDS: list[tuple[UserLevel, tuple[str, ...]]] = [
    (UserLevel.ADVANCED, ("advanced", "complex")),
    (UserLevel.INTERMEDIATE, ("intermediate", "some experience")),
]


def detect_topic(text: str) -> Topic:
    lowered = text.lower()
    for topic, keywords in TOPIC_KEYWORDS:
        if any(k in lowered for k in keywords):
            return topic
    return Topic.GENERAL


def detect_level(text: str) -> UserLevel:
    lowered = text.lower()
    for level, keywords in LEVEL_KEYWORDS:
        if any(k in lowered for k in keywords):
            return level
    return UserLevel.BEGINNER


def update_learning_context(
    context: LearningContext | None,
    user_text: str,
    questions_window: int = 5,
    insights_window: int = 10,
) -> LearningContext:
    """
    Fold one exchange into the context. A specific topic or a non-default level
    replaces the previous value; generic text keeps what was already known.
    Both history lists keep only their most recent entries.
    """
    topic = detect_topic(user_text)
    level = detect_level(user_text)

    if context is None:
        return LearningContext(
            topic=topic.value,
            user_level=level,
            previous_questions=[user_text][-questions_window:],
            user_insights=[user_text][-insights_window:],
            current_focus=topic.value,
        )

    if topic is not Topic.GENERAL:
        new_topic = topic.value
    else:
        new_topic = context.topic
    new_level = level if level is not UserLevel.BEGINNER else context.user_level
    return LearningContext(
        topic=new_topic,
        user_level=new_level,
        previous_questions=(context.previous_questions + [user_text])[-questions_window:],
        user_insights=(context.user_insights + [user_text])[-insights_window:],
        current_focus=new_topic,
    )
