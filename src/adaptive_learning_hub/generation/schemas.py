"""Expected shapes of the model's JSON replies.

A reply that does not validate against its schema is a failed generation;
nothing from it is used.
"""

from typing import Literal

from pydantic import BaseModel, Field, model_validator

from ..models.profile import UserLevel


class Question(BaseModel):
    question: str
    options: list[str] = Field(min_length=2)
    correct_answer: str

    @model_validator(mode="after")
    def _answer_is_an_option(self) -> "Question":
        if self.correct_answer not in self.options:
            raise ValueError("correct_answer must be one of the options")
        return self


class QuestionSet(BaseModel):
    questions: list[Question]


class AssessmentAnalysis(BaseModel):
    level: UserLevel
    strengths: list[str]
    weaknesses: list[str]
    recommendations: list[str]


class WordCard(BaseModel):
    word: str = Field(min_length=1)
    definition: str
    example: str


class WordList(BaseModel):
    words: list[WordCard]


class MemoryCard(BaseModel):
    category: Literal["Grammar", "Vocabulary"]
    challenge: str
    answer: str = Field(min_length=1)
    hint: str


class MemoryCardDeck(BaseModel):
    cards: list[MemoryCard]


class Correction(BaseModel):
    error: str
    correction: str
    explanation: str


class ChatReply(BaseModel):
    response: str = Field(min_length=1)
    corrections: list[Correction] = Field(default_factory=list)


class PersonaDraft(BaseModel):
    interests: list[str]
    summary: str


class PersonaUpdate(BaseModel):
    persona: PersonaDraft
    recommendations: list[str]


class PlanTaskDraft(BaseModel):
    type: Literal["quiz", "spelling", "chat_topic"]
    title: str
    description: str


class LearningPlanDraft(BaseModel):
    tasks: list[PlanTaskDraft]
