"""Learning profile document: the single persisted per-user record."""

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class UserLevel(StrEnum):
    """Proficiency levels a learner can be assessed at."""

    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"
    PROFICIENT = "Proficient"


DEFAULT_RECOMMENDATIONS: list[str] = [
    "Take an assessment to determine your starting level.",
    "Start a conversation in the Chat page to practice.",
    "Try the Spelling Game to learn new words.",
]


def new_record_id(prefix: str) -> str:
    """Generate a unique id for an appended record."""
    return f"{prefix}-{uuid.uuid4().hex}"


class DocumentModel(BaseModel):
    """Base for every part of the document; persisted with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RecordModel(DocumentModel):
    """Append-only history entry, immutable once created."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Persona(DocumentModel):
    interests: list[str] = Field(default_factory=list)
    summary: str = "A new English learner."


class LearnerDetails(DocumentModel):
    name: str = "New Learner"
    age: int | None = None
    country: str = ""
    level: UserLevel = UserLevel.BEGINNER
    learning_streak: int = 0
    last_login: datetime = Field(default_factory=datetime.now)
    persona: Persona = Field(default_factory=Persona)


class LearnerSettings(DocumentModel):
    spelling_auto_advance_seconds: float = 3.0


class LearningAbility(DocumentModel):
    """Grammar drill outcomes. corrected_mistakes never exceeds total_mistakes."""

    corrected_mistakes: int = 0
    total_mistakes: int = 0


class Stats(DocumentModel):
    words_learned: int = 0
    grammar_errors_tracked: int = 0
    quizzes_completed: int = 0
    quiz_average_score: int = 0
    learning_ability: LearningAbility = Field(default_factory=LearningAbility)


class VocabularyWord(RecordModel):
    word: str
    definition: str
    example: str
    level: UserLevel = UserLevel.BEGINNER
    added_date: datetime = Field(default_factory=datetime.now)


class GrammarError(RecordModel):
    id: str = Field(default_factory=lambda: new_record_id("err"))
    error: str
    correction: str
    explanation: str
    timestamp: datetime = Field(default_factory=datetime.now)


class AssessmentRecord(RecordModel):
    level: UserLevel
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.now)


class QuizResult(RecordModel):
    topic: str
    score: int
    total: int
    timestamp: datetime = Field(default_factory=datetime.now)


class ChatTurn(RecordModel):
    role: Literal["user", "model"]
    text: str


class PlanTask(DocumentModel):
    id: str = Field(default_factory=lambda: new_record_id("task"))
    type: Literal["quiz", "spelling", "chat_topic"]
    title: str
    description: str
    completed: bool = False


class LearningProfile(DocumentModel):
    """The whole learner document. Replaced wholesale on every mutation."""

    identity: str
    profile: LearnerDetails = Field(default_factory=LearnerDetails)
    settings: LearnerSettings = Field(default_factory=LearnerSettings)
    stats: Stats = Field(default_factory=Stats)
    vocabulary: list[VocabularyWord] = Field(default_factory=list)
    suggested_vocabulary: list[VocabularyWord] = Field(default_factory=list)
    grammar_errors: list[GrammarError] = Field(default_factory=list)
    assessment_history: list[AssessmentRecord] = Field(default_factory=list)
    quiz_history: list[QuizResult] = Field(default_factory=list)
    chat_history: list[ChatTurn] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=lambda: list(DEFAULT_RECOMMENDATIONS))
    learning_plan: list[PlanTask] = Field(default_factory=list)

    def to_document(self) -> dict[str, Any]:
        """JSON-serializable document in the persisted camelCase layout."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "LearningProfile":
        return cls.model_validate(data)

    def has_word(self, word: str) -> bool:
        """Case-insensitive membership test against learned vocabulary."""
        needle = word.strip().lower()
        return any(v.word.strip().lower() == needle for v in self.vocabulary)

    @property
    def user_turn_count(self) -> int:
        return sum(1 for turn in self.chat_history if turn.role == "user")


def default_profile(identity: str) -> LearningProfile:
    """Zero-state document for a newly authenticated learner."""
    return LearningProfile(identity=identity)
