"""LLM-backed generation capabilities (questions, words, analysis, chat, coaching)."""

import base64
import json
import re
from collections.abc import Mapping, Sequence
from typing import TypeVar

import structlog
from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, ValidationError

from ..models.profile import (
    AssessmentRecord,
    ChatTurn,
    GrammarError,
    LearningProfile,
    UserLevel,
    VocabularyWord,
)
from . import prompts
from .schemas import (
    AssessmentAnalysis,
    ChatReply,
    LearningPlanDraft,
    MemoryCard,
    MemoryCardDeck,
    PersonaUpdate,
    PlanTaskDraft,
    Question,
    QuestionSet,
    WordCard,
    WordList,
)

logger = structlog.get_logger()

SchemaT = TypeVar("SchemaT", bound=BaseModel)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")

RECENT_ITEMS = 5
RECENT_CHAT_MESSAGES = 10


class GenerationError(Exception):
    """A generation call failed or returned an unusable reply."""


class GenerationConfigError(GenerationError):
    """Generation is not configured (no API key)."""


def _strip_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip()).strip()


class GenerationClient:
    """One async method per generation capability.

    Every JSON reply is validated against its schema; an invalid reply
    raises GenerationError instead of returning partial data.

    Args:
        api_key: OpenAI API key. None leaves generation unconfigured.
        model: Model for text generation.
        vision_model: Model used to read text from images.
        client: Optional preconfigured AsyncOpenAI client.
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = "gpt-4o-mini",
        vision_model: str = "gpt-4o-mini",
        client: AsyncOpenAI | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.vision_model = vision_model
        self._client = client

    @property
    def configured(self) -> bool:
        return self._client is not None or bool(self.api_key)

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise GenerationConfigError(
                    "API key is not configured. Please set OPENAI_API_KEY."
                )
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def _complete_json(
        self,
        capability: str,
        schema: type[SchemaT],
        messages: list[dict[str, str]],
        temperature: float = 0.7,
    ) -> SchemaT:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                response_format={"type": "json_object"},
            )
        except OpenAIError as e:
            logger.exception("generation_request_failed", capability=capability)
            raise GenerationError(
                "Failed to communicate with the AI. Please check your API key and network connection."
            ) from e

        content = response.choices[0].message.content or ""
        try:
            result = schema.model_validate_json(_strip_fences(content))
        except ValidationError as e:
            logger.warning(
                "generation_invalid_reply",
                capability=capability,
                errors=e.error_count(),
                reply=content[:200],
            )
            raise GenerationError(f"The AI returned an invalid {capability} reply.") from e

        logger.info("generation_complete", capability=capability)
        return result

    async def _prompt_json(self, capability: str, schema: type[SchemaT], prompt: str) -> SchemaT:
        return await self._complete_json(capability, schema, [{"role": "user", "content": prompt}])

    # Assessment

    async def assessment_questions(self, history: Sequence[AssessmentRecord]) -> list[Question]:
        """General test questions, aimed at the last assessment's weaknesses."""
        weakness_hint = ""
        if history and history[-1].weaknesses:
            weakness_hint = prompts.WEAKNESS_HINT.format(weaknesses=", ".join(history[-1].weaknesses))
        prompt = prompts.ASSESSMENT_QUESTIONS_PROMPT.format(weakness_hint=weakness_hint)
        return (await self._prompt_json("assessment_questions", QuestionSet, prompt)).questions

    async def context_questions(self, context: str, level: UserLevel) -> list[Question]:
        prompt = prompts.CONTEXT_QUESTIONS_PROMPT.format(context=context, level=level.value)
        return (await self._prompt_json("context_questions", QuestionSet, prompt)).questions

    async def analyze_assessment(
        self,
        questions: Sequence[Question],
        answers: Mapping[int, str],
    ) -> AssessmentAnalysis:
        answered = [
            {
                "question": q.question,
                "answer": answers.get(i, ""),
                "expected": q.correct_answer,
            }
            for i, q in enumerate(questions)
        ]
        prompt = prompts.ANALYZE_ASSESSMENT_PROMPT.format(answers=json.dumps(answered, ensure_ascii=False))
        return await self._prompt_json("assessment_analysis", AssessmentAnalysis, prompt)

    async def extract_text(self, image: bytes, mime_type: str) -> str:
        """Read the English text in an image."""
        data_url = f"data:{mime_type};base64,{base64.b64encode(image).decode('ascii')}"
        try:
            response = await self.client.chat.completions.create(
                model=self.vision_model,
                messages=[{
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompts.EXTRACT_TEXT_PROMPT},
                        {"type": "image_url", "image_url": {"url": data_url}},
                    ],
                }],
                temperature=0.0,
            )
        except OpenAIError as e:
            logger.exception("generation_request_failed", capability="extract_text")
            raise GenerationError("Failed to process the image. Please try again.") from e
        return (response.choices[0].message.content or "").strip()

    # Vocabulary

    async def spelling_word(self, level: UserLevel) -> WordCard:
        prompt = prompts.SPELLING_WORD_PROMPT.format(level=level.value)
        return await self._prompt_json("spelling_word", WordCard, prompt)

    async def context_vocabulary(self, context: str, level: UserLevel) -> list[WordCard]:
        prompt = prompts.CONTEXT_VOCABULARY_PROMPT.format(context=context, level=level.value)
        return (await self._prompt_json("context_vocabulary", WordList, prompt)).words

    async def memory_cards(
        self,
        errors: Sequence[GrammarError],
        vocabulary: Sequence[VocabularyWord],
    ) -> list[MemoryCard]:
        recent_errors = [
            {"error": e.error, "correction": e.correction, "explanation": e.explanation}
            for e in errors[-RECENT_ITEMS:]
        ]
        recent_vocab = [{"word": v.word, "definition": v.definition} for v in vocabulary[-RECENT_ITEMS:]]
        prompt = prompts.MEMORY_CARDS_PROMPT.format(
            errors=json.dumps(recent_errors, ensure_ascii=False),
            vocabulary=json.dumps(recent_vocab, ensure_ascii=False),
        )
        return (await self._prompt_json("memory_cards", MemoryCardDeck, prompt)).cards

    # Quiz

    async def quiz(self, topic: str) -> list[Question]:
        prompt = prompts.QUIZ_PROMPT.format(topic=topic)
        return (await self._prompt_json("quiz", QuestionSet, prompt)).questions

    # Conversation and coaching

    async def chat_reply(self, history: Sequence[ChatTurn], profile: LearningProfile) -> ChatReply:
        """Tutor reply to the last user turn plus corrections for it."""
        interests = profile.profile.persona.interests
        interests_hint = (
            prompts.INTERESTS_HINT.format(interests=", ".join(interests)) if interests else ""
        )
        system = prompts.CHAT_SYSTEM_PROMPT.format(
            tutor=prompts.TUTOR_NAME,
            level=profile.profile.level.value,
            interests_hint=interests_hint,
        )
        messages = [{"role": "system", "content": system}]
        messages.extend(
            {"role": "assistant" if turn.role == "model" else "user", "content": turn.text}
            for turn in history
        )
        return await self._complete_json("chat_reply", ChatReply, messages)

    async def persona_update(self, profile: LearningProfile) -> PersonaUpdate:
        prompt = prompts.PERSONA_PROMPT.format(
            level=profile.profile.level.value,
            interests=", ".join(profile.profile.persona.interests) or "None specified yet.",
            chat=json.dumps([t.text for t in profile.chat_history[-RECENT_CHAT_MESSAGES:]], ensure_ascii=False),
            errors=json.dumps([e.error for e in profile.grammar_errors[-RECENT_ITEMS:]], ensure_ascii=False),
            vocabulary=json.dumps([v.word for v in profile.vocabulary[-RECENT_ITEMS:]], ensure_ascii=False),
            quiz_topics=json.dumps([q.topic for q in profile.quiz_history[-3:]], ensure_ascii=False),
        )
        return await self._prompt_json("persona_update", PersonaUpdate, prompt)

    async def learning_plan(self, profile: LearningProfile) -> list[PlanTaskDraft]:
        last = profile.assessment_history[-1] if profile.assessment_history else None
        prompt = prompts.LEARNING_PLAN_PROMPT.format(
            level=profile.profile.level.value,
            interests=", ".join(profile.profile.persona.interests) or "General",
            weaknesses=", ".join(last.weaknesses) if last and last.weaknesses else "N/A",
            errors=json.dumps([e.error for e in profile.grammar_errors[-RECENT_ITEMS:]], ensure_ascii=False),
            quizzes=json.dumps(
                [{"topic": q.topic, "score": q.score, "total": q.total} for q in profile.quiz_history[-3:]],
                ensure_ascii=False,
            ),
        )
        return (await self._prompt_json("learning_plan", LearningPlanDraft, prompt)).tasks
