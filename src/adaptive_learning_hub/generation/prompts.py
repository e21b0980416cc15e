"""Prompt templates for every generation capability.

Each prompt ends by fixing the JSON shape the reply must have; the shapes
mirror the models in generation/schemas.py.
"""

TUTOR_NAME = "Alex"

ASSESSMENT_QUESTIONS_PROMPT = """\
You are an English proficiency assessment tool. Generate an 8-question \
multiple-choice test to evaluate a learner's general level, from primary \
school to university. Cover vocabulary, reading comprehension and grammar, \
and vary the question formats. {weakness_hint}

Respond ONLY with a JSON object:
{{"questions": [{{"question": "...", "options": ["...", "..."], "correct_answer": "<one of options>"}}]}}
"""

WEAKNESS_HINT = (
    "The learner previously showed weaknesses in: {weaknesses}. "
    "Include questions that test these areas."
)

CONTEXT_QUESTIONS_PROMPT = """\
Based on the text below, generate a 5-question multiple-choice assessment \
for a learner at the "{level}" level. Test vocabulary found in the text, \
comprehension of its main ideas, and one grammatical structure it uses.

Text: \"\"\"{context}\"\"\"

Respond ONLY with a JSON object:
{{"questions": [{{"question": "...", "options": ["...", "..."], "correct_answer": "<one of options>"}}]}}
"""

ANALYZE_ASSESSMENT_PROMPT = """\
Analyze the learner's answers to an English proficiency test. Determine \
their level (Beginner, Intermediate, Advanced or Proficient), list their \
strengths and weaknesses, and give 3 concrete recommendations.

Answers (question -> chosen option, with the expected answer):
{answers}

Respond ONLY with a JSON object:
{{"level": "...", "strengths": ["..."], "weaknesses": ["..."], "recommendations": ["..."]}}
"""

SPELLING_WORD_PROMPT = """\
Provide one moderately challenging English word for a spelling challenge \
for a learner at the "{level}" level. Avoid very simple words such as \
'cat', 'sun' or 'book'. Include a definition and an example sentence.

Respond ONLY with a JSON object:
{{"word": "...", "definition": "...", "example": "..."}}
"""

CONTEXT_VOCABULARY_PROMPT = """\
From the text below, pick 3-5 vocabulary words suitable for a learner at \
the "{level}" level. For each, give a simple definition and the sentence \
from the text where it appears.

Text: \"\"\"{context}\"\"\"

Respond ONLY with a JSON object:
{{"words": [{{"word": "...", "definition": "...", "example": "..."}}]}}
"""

MEMORY_CARDS_PROMPT = """\
Create 5 fill-in-the-blank challenge cards from the learner's recent \
grammar mistakes and learned vocabulary.
- Grammar: a sentence that tempts the learner into their specific mistake; \
the blank takes the correct word or phrase.
- Vocabulary: a sentence missing the learned word, with its definition as hint.

Recent errors: {errors}
Recent vocabulary: {vocabulary}

Respond ONLY with a JSON object:
{{"cards": [{{"category": "Grammar" | "Vocabulary", "challenge": "She _____ to the store.", "answer": "...", "hint": "..."}}]}}
"""

QUIZ_PROMPT = """\
Generate a 5-question multiple-choice quiz about "{topic}". Questions \
should be interesting and test general knowledge and reading comprehension. \
Give 4 options per question.

Respond ONLY with a JSON object:
{{"questions": [{{"question": "...", "options": ["...", "...", "...", "..."], "correct_answer": "<one of options>"}}]}}
"""

CHAT_SYSTEM_PROMPT = """\
You are an AI English tutor named {tutor}. Help a learner at the "{level}" \
level practice English through natural conversation. {interests_hint}
Reply conversationally to their last message, and also check that message \
for grammar, spelling or style errors.

Respond ONLY with a JSON object:
{{"response": "<your reply>", "corrections": [{{"error": "...", "correction": "...", "explanation": "..."}}]}}
If there are no errors, "corrections" must be an empty list.
"""

INTERESTS_HINT = (
    "The learner is interested in {interests}. "
    "Bring these topics into the conversation naturally."
)

PERSONA_PROMPT = """\
You are an AI learning coach. From the learner data below, refine the \
learner's persona (at most 5 interests and a one-sentence summary) and \
write 3 actionable, cross-feature recommendations for their dashboard \
(connect interests to quizzes, target recurring mistakes, combine the \
spelling game with chat practice).

Level: {level}
Known interests: {interests}
Recent chat messages: {chat}
Recent grammar errors: {errors}
Recent vocabulary: {vocabulary}
Recent quiz topics: {quiz_topics}

Respond ONLY with a JSON object:
{{"persona": {{"interests": ["..."], "summary": "..."}}, "recommendations": ["...", "...", "..."]}}
"""

LEARNING_PLAN_PROMPT = """\
You are an AI learning coach. Create a personalized learning plan of 5 \
actionable tasks for this learner.

Level: {level}
Interests: {interests}
Recent assessment weaknesses: {weaknesses}
Recent grammar errors: {errors}
Recent quiz results: {quizzes}

Task types: "quiz" (title names a topic), "spelling" (title is the word, \
description its definition), "chat_topic" (title is a conversation topic).

Respond ONLY with a JSON object:
{{"tasks": [{{"type": "quiz" | "spelling" | "chat_topic", "title": "...", "description": "..."}}]}}
"""

EXTRACT_TEXT_PROMPT = "Extract all English text from the image. Reply with the text only."
