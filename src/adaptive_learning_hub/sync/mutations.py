"""Profile updaters applied through ProfileSynchronizer.mutate.

Each updater receives a private copy of the document, edits it and returns
it. Nothing here touches the store or the network.
"""

import math
from collections.abc import Iterable
from datetime import datetime

from ..generation.schemas import AssessmentAnalysis, Correction, PersonaUpdate, PlanTaskDraft, WordCard
from ..models.profile import (
    AssessmentRecord,
    ChatTurn,
    GrammarError,
    LearningProfile,
    Persona,
    PlanTask,
    QuizResult,
    VocabularyWord,
)


def quiz_average(history: Iterable[QuizResult]) -> int:
    """Rounded percentage average across quiz results (half rounds up)."""
    ratios = [q.score / q.total for q in history if q.total > 0]
    if not ratios:
        return 0
    return math.floor(sum(ratios) / len(ratios) * 100 + 0.5)


def record_quiz_result(
    profile: LearningProfile,
    topic: str,
    score: int,
    total: int,
    *,
    add_interest: bool = True,
) -> LearningProfile:
    profile.quiz_history.append(QuizResult(topic=topic, score=score, total=total))
    profile.stats.quizzes_completed += 1
    profile.stats.quiz_average_score = quiz_average(profile.quiz_history)
    interests = profile.profile.persona.interests
    if add_interest and topic not in interests:
        interests.append(topic)
    return profile


def record_assessment(profile: LearningProfile, analysis: AssessmentAnalysis) -> LearningProfile:
    profile.profile.level = analysis.level
    profile.assessment_history.append(
        AssessmentRecord(
            level=analysis.level,
            strengths=analysis.strengths,
            weaknesses=analysis.weaknesses,
            recommendations=analysis.recommendations,
        )
    )
    return profile


def add_learned_word(profile: LearningProfile, card: WordCard) -> LearningProfile:
    """Append the word once; later matches (any case) change nothing."""
    if profile.has_word(card.word):
        return profile
    profile.vocabulary.append(
        VocabularyWord(
            word=card.word,
            definition=card.definition,
            example=card.example,
            level=profile.profile.level,
        )
    )
    profile.stats.words_learned += 1
    return profile


def queue_suggested_words(profile: LearningProfile, cards: Iterable[WordCard]) -> LearningProfile:
    level = profile.profile.level
    profile.suggested_vocabulary.extend(
        VocabularyWord(word=c.word, definition=c.definition, example=c.example, level=level)
        for c in cards
    )
    return profile


def drop_first_suggested(profile: LearningProfile) -> LearningProfile:
    if profile.suggested_vocabulary:
        profile.suggested_vocabulary = profile.suggested_vocabulary[1:]
    return profile


def remove_suggested_word(profile: LearningProfile, word: str) -> LearningProfile:
    profile.suggested_vocabulary = [v for v in profile.suggested_vocabulary if v.word != word]
    return profile


def apply_grammar_drill(profile: LearningProfile, attempted: int, corrected: int) -> LearningProfile:
    if attempted < 0 or not 0 <= corrected <= attempted:
        raise ValueError(f"Invalid drill outcome: corrected={corrected}, attempted={attempted}")
    ability = profile.stats.learning_ability
    ability.total_mistakes += attempted
    ability.corrected_mistakes += corrected
    return profile


def append_chat_exchange(
    profile: LearningProfile,
    user_text: str,
    reply_text: str,
    corrections: Iterable[Correction],
) -> LearningProfile:
    profile.chat_history.extend([
        ChatTurn(role="user", text=user_text),
        ChatTurn(role="model", text=reply_text),
    ])
    new_errors = [
        GrammarError(error=c.error, correction=c.correction, explanation=c.explanation)
        for c in corrections
    ]
    profile.grammar_errors.extend(new_errors)
    profile.stats.grammar_errors_tracked += len(new_errors)
    return profile


def apply_persona_update(profile: LearningProfile, update: PersonaUpdate) -> LearningProfile:
    profile.profile.persona = Persona(
        interests=list(update.persona.interests),
        summary=update.persona.summary,
    )
    profile.recommendations = list(update.recommendations)
    return profile


def replace_learning_plan(profile: LearningProfile, drafts: Iterable[PlanTaskDraft]) -> LearningProfile:
    profile.learning_plan = [
        PlanTask(type=d.type, title=d.title, description=d.description) for d in drafts
    ]
    return profile


def complete_plan_task(profile: LearningProfile, task_id: str) -> LearningProfile:
    for task in profile.learning_plan:
        if task.id == task_id:
            task.completed = True
    return profile


def record_login(profile: LearningProfile, now: datetime) -> LearningProfile:
    """Track the daily streak: same day keeps it, next day extends it."""
    details = profile.profile
    gap = (now.date() - details.last_login.date()).days
    if details.learning_streak == 0 or gap > 1 or gap < 0:
        details.learning_streak = 1
    elif gap == 1:
        details.learning_streak += 1
    details.last_login = now
    return profile


def update_details(
    profile: LearningProfile,
    *,
    name: str | None = None,
    age: int | None = None,
    country: str | None = None,
) -> LearningProfile:
    if name is not None:
        profile.profile.name = name
    if age is not None:
        profile.profile.age = age
    if country is not None:
        profile.profile.country = country
    return profile


def update_settings(profile: LearningProfile, *, spelling_auto_advance_seconds: float) -> LearningProfile:
    if spelling_auto_advance_seconds < 0:
        raise ValueError("spelling_auto_advance_seconds must not be negative")
    profile.settings.spelling_auto_advance_seconds = spelling_auto_advance_seconds
    return profile
