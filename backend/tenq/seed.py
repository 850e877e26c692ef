"""Development seeding.

Quiz authoring and publishing belong to the content pipeline; this only
writes an already-valid published quiz so a local server has something to
serve, and is reused by the test suite.
"""
from datetime import timedelta

from tenq import db
from tenq.constants import CHOICES_PER_QUESTION, MAX_QUESTIONS_PER_QUIZ
from tenq.models import Quiz, Question, QuestionAnswer, QuizQuestion
from tenq.utils import utcnow

DEMO_QUESTIONS = [
    ('What is the capital of Australia?', ['Sydney', 'Canberra', 'Melbourne', 'Perth'], 1),
    ('How many sides does a hexagon have?', ['5', '6', '7', '8'], 1),
    ('Which planet is known as the Red Planet?', ['Venus', 'Jupiter', 'Mars', 'Mercury'], 2),
    ('What is the chemical symbol for gold?', ['Au', 'Ag', 'Gd', 'Go'], 0),
    ('Who wrote "Pride and Prejudice"?', ['Charlotte Bronte', 'Mary Shelley', 'George Eliot', 'Jane Austen'], 3),
    ('What is the largest ocean on Earth?', ['Atlantic', 'Pacific', 'Indian', 'Arctic'], 1),
    ('In which year did the Berlin Wall fall?', ['1987', '1991', '1989', '1985'], 2),
    ('What is the square root of 144?', ['12', '14', '11', '16'], 0),
    ('Which element has atomic number 1?', ['Helium', 'Oxygen', 'Carbon', 'Hydrogen'], 3),
    ('What is the longest river in South America?', ['Orinoco', 'Amazon', 'Parana', 'Madeira'], 1),
]


def create_quiz(questions, release_at=None, status='published'):
    """Write a quiz from ``[(prompt, [four answer bodies], correct_position), ...]``."""
    if len(questions) != MAX_QUESTIONS_PER_QUIZ:
        raise ValueError(f'a quiz has exactly {MAX_QUESTIONS_PER_QUIZ} questions')
    quiz = Quiz(release_at=release_at or utcnow() - timedelta(minutes=1), status=status)
    db.session.add(quiz)
    for order_index, (prompt, bodies, correct_position) in enumerate(questions, start=1):
        if len(bodies) != CHOICES_PER_QUESTION or not 0 <= correct_position < CHOICES_PER_QUESTION:
            raise ValueError(f'question {order_index} needs {CHOICES_PER_QUESTION} answers and one correct')
        question = Question(prompt=prompt)
        db.session.add(question)
        for sort_index, body in enumerate(bodies):
            db.session.add(QuestionAnswer(
                question=question,
                body=body,
                sort_index=sort_index,
                is_correct=(sort_index == correct_position),
            ))
        db.session.add(QuizQuestion(quiz=quiz, question=question, order_index=order_index))
    db.session.commit()
    return quiz


def seed_demo_quiz(release_at=None):
    return create_quiz(DEMO_QUESTIONS, release_at=release_at)
