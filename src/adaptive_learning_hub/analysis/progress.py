"""Progress figures derived from a learning profile."""

import math
from collections import Counter, defaultdict
from datetime import date

from pydantic import BaseModel

from ..models.profile import AssessmentRecord, LearningProfile

# First keyword found in an explanation decides the category.
ERROR_CATEGORIES: list[tuple[str, str]] = [
    ("tense", "Tense"),
    ("punctuation", "Punctuation"),
    ("article", "Article"),
    ("preposition", "Preposition"),
]
OTHER_CATEGORY = "Other"


def _percent(ratio: float) -> int:
    return math.floor(ratio * 100 + 0.5)


class TopicScore(BaseModel):
    topic: str
    average_score: int
    attempts: int


class WordsOnDay(BaseModel):
    day: date
    words_learned: int


class ProgressReport(BaseModel):
    quizzes_completed: int
    quiz_average_score: int
    words_in_dictionary: int
    learning_ability: int
    quiz_by_topic: list[TopicScore]
    error_categories: dict[str, int]
    cumulative_words: list[WordsOnDay]
    last_assessment: AssessmentRecord | None = None


def learning_ability_score(profile: LearningProfile) -> int:
    """Share of revisited mistakes answered correctly; 100 before any drill."""
    ability = profile.stats.learning_ability
    if ability.total_mistakes <= 0:
        return 100
    return _percent(ability.corrected_mistakes / ability.total_mistakes)


def quiz_performance_by_topic(profile: LearningProfile) -> list[TopicScore]:
    ratios: dict[str, list[float]] = defaultdict(list)
    for quiz in profile.quiz_history:
        if quiz.total > 0:
            ratios[quiz.topic].append(quiz.score / quiz.total)
    return [
        TopicScore(topic=topic, average_score=_percent(sum(r) / len(r)), attempts=len(r))
        for topic, r in ratios.items()
    ]


def categorize_error(explanation: str) -> str:
    text = explanation.lower()
    for keyword, category in ERROR_CATEGORIES:
        if keyword in text:
            return category
    return OTHER_CATEGORY


def error_categories(profile: LearningProfile) -> dict[str, int]:
    return dict(Counter(categorize_error(e.explanation) for e in profile.grammar_errors))


def cumulative_words(profile: LearningProfile) -> list[WordsOnDay]:
    """Running total of learned words at the end of each day with additions."""
    per_day = Counter(word.added_date.date() for word in profile.vocabulary)
    total = 0
    points = []
    for day in sorted(per_day):
        total += per_day[day]
        points.append(WordsOnDay(day=day, words_learned=total))
    return points


def build_progress_report(profile: LearningProfile) -> ProgressReport:
    return ProgressReport(
        quizzes_completed=profile.stats.quizzes_completed,
        quiz_average_score=profile.stats.quiz_average_score,
        words_in_dictionary=len(profile.vocabulary),
        learning_ability=learning_ability_score(profile),
        quiz_by_topic=quiz_performance_by_topic(profile),
        error_categories=error_categories(profile),
        cumulative_words=cumulative_words(profile),
        last_assessment=profile.assessment_history[-1] if profile.assessment_history else None,
    )
