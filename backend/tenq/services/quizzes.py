"""Read side of quiz content.

Quizzes are authored and published elsewhere; once published they are
immutable. The correct-answer lookup lives here so that it is only
reachable from server code: nothing returned by ``get_question_at`` carries
correctness.
"""
from typing import List, Optional, Tuple

from tenq.models import Quiz, QuizQuestion, QuestionAnswer
from tenq.utils import utcnow


class QuizProvider:

    def get_current_quiz(self, now=None) -> Optional[Quiz]:
        """Latest published quiz whose release time has passed."""
        now = now or utcnow()
        return (
            Quiz.query.filter(Quiz.status == 'published', Quiz.release_at <= now)
            .order_by(Quiz.release_at.desc())
            .first()
        )

    def get_quiz(self, quiz_id) -> Optional[Quiz]:
        if not quiz_id:
            return None
        quiz = Quiz.query.filter_by(id=quiz_id).first()
        return quiz if quiz is not None and quiz.is_published else None

    def get_question_at(self, quiz_id, index) -> Optional[dict]:
        link = QuizQuestion.query.filter_by(quiz_id=quiz_id, order_index=index).first()
        if not link:
            return None
        question = link.question
        return {
            'question_id': question.id,
            'order_index': link.order_index,
            'prompt': question.prompt,
            'answers': [a.to_public_dict() for a in question.answers],
        }

    def get_question_index(self, quiz_id, question_id) -> Optional[int]:
        link = QuizQuestion.query.filter_by(quiz_id=quiz_id, question_id=question_id).first()
        return link.order_index if link else None

    def get_question_id_at(self, quiz_id, index) -> Optional[str]:
        link = QuizQuestion.query.filter_by(quiz_id=quiz_id, order_index=index).first()
        return link.question_id if link else None

    def get_question_order(self, quiz_id) -> List[Tuple[int, str]]:
        links = (
            QuizQuestion.query.filter_by(quiz_id=quiz_id)
            .order_by(QuizQuestion.order_index)
            .all()
        )
        return [(link.order_index, link.question_id) for link in links]

    def get_correct_answer(self, quiz_id, question_id) -> Optional[str]:
        if self.get_question_index(quiz_id, question_id) is None:
            return None
        correct = QuestionAnswer.query.filter_by(question_id=question_id, is_correct=True).first()
        return correct.id if correct else None


quiz_provider = QuizProvider()
