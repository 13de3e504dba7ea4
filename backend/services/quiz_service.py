# backend/services/quiz_service.py

import asyncio
from typing import List

from backend.agents.quiz import create_initial_quiz_state, finalize_quiz_questions, run_quiz_workflow
from backend.agents.quiz.nodes import CONCEPT_CHUNK_LIMIT, build_context_text
from backend.ports.document_retriever import DocumentRetriever
from backend.schemas.quiz import (
    AttemptAnswer,
    AttemptSummaryResponse,
    CreateAttemptResponse,
    Question,
    QuestionForTaking,
    Quiz,
    QuizAttempt,
    QuizSummary,
    SubmitAnswerResponse,
)
from backend.services.chat_service import conversation_key
from backend.services.errors import (
    AttemptCompletedError,
    AttemptNotFoundError,
    ConversationNotFoundError,
    InvalidAnswerError,
    NoSourceContentError,
    NoSourcesError,
    QuestionNotFoundError,
    QuizNotFoundError,
    ServiceError,
)
from backend.storage import RecordStore
from backend.utils.logger import get_logger

logger = get_logger(__name__)

MIN_QUESTIONS = 1
MAX_QUESTIONS = 20


def quiz_key(quiz_id: str) -> str:
    return f"quiz:{quiz_id}"


def attempt_key(attempt_id: str) -> str:
    return f"attempt:{attempt_id}"


def _score(correct_count: int, total: int) -> int:
    if total == 0:
        return 0
    return round(correct_count / total * 100)


class QuizService:
    """
    Quiz generation from a conversation's sources, plus attempts and scoring.
    """

    def __init__(self, store: RecordStore, retriever: DocumentRetriever):
        self.store = store
        self.retriever = retriever

    async def generate_quiz(self, conversation_id: str, num_questions: int) -> str:
        if not MIN_QUESTIONS <= num_questions <= MAX_QUESTIONS:
            raise ServiceError(f"num_questions must be between {MIN_QUESTIONS} and {MAX_QUESTIONS}")

        conversation = self.store.get(conversation_key(conversation_id))
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)

        source_ids = list(conversation.get("source_ids") or [])
        if not source_ids:
            raise NoSourcesError()

        chunks = await asyncio.to_thread(self.retriever.get_source_chunks, source_ids, CONCEPT_CHUNK_LIMIT)
        if not chunks:
            raise NoSourceContentError()
        logger.info("Retrieved %s chunks from %s sources for quiz generation", len(chunks), len(source_ids))

        chunk_dicts = [chunk.to_dict() for chunk in chunks]
        state = create_initial_quiz_state(
            conversation_id=conversation_id,
            source_ids=source_ids,
            num_questions=num_questions,
            chunks=chunk_dicts,
            context_text=build_context_text(chunk_dicts),
        )
        final_state = await run_quiz_workflow(state)
        questions = finalize_quiz_questions(final_state)

        quiz = Quiz(conversation_id=conversation_id, questions=[Question(**question) for question in questions])
        self.store.save(quiz_key(quiz.id), quiz.model_dump())
        logger.info("Quiz created: %s (%s questions)", quiz.id, len(quiz.questions))
        return quiz.id

    def get_quiz(self, quiz_id: str) -> Quiz:
        record = self.store.get(quiz_key(quiz_id))
        if record is None:
            raise QuizNotFoundError(quiz_id)
        return Quiz(**record)

    def get_quizzes_for_conversation(self, conversation_id: str) -> List[QuizSummary]:
        quizzes = [
            Quiz(**record)
            for record in self.store.list_by_prefix("quiz:")
            if record.get("conversation_id") == conversation_id
        ]
        quizzes.sort(key=lambda quiz: quiz.created_at, reverse=True)
        return [
            QuizSummary(id=quiz.id, created_at=quiz.created_at, question_count=len(quiz.questions))
            for quiz in quizzes
        ]

    # --- Attempts ---

    def create_attempt(self, quiz_id: str) -> CreateAttemptResponse:
        quiz = self.get_quiz(quiz_id)
        attempt = QuizAttempt(quiz_id=quiz.id)
        self.store.save(attempt_key(attempt.id), attempt.model_dump())

        questions = [
            QuestionForTaking(id=q.id, type=q.type, question=q.question, options=q.options)
            for q in quiz.questions
        ]
        logger.info("Attempt created: %s (%s questions)", attempt.id, len(questions))
        return CreateAttemptResponse(attempt_id=attempt.id, questions=questions, total=len(questions))

    def _get_attempt(self, attempt_id: str) -> QuizAttempt:
        record = self.store.get(attempt_key(attempt_id))
        if record is None:
            raise AttemptNotFoundError(attempt_id)
        return QuizAttempt(**record)

    def submit_answer(self, attempt_id: str, question_id: str, selected_index: int) -> SubmitAnswerResponse:
        attempt = self._get_attempt(attempt_id)
        if attempt.status == "completed":
            raise AttemptCompletedError()

        quiz = self.get_quiz(attempt.quiz_id)
        question = next((q for q in quiz.questions if q.id == question_id), None)
        if question is None:
            raise QuestionNotFoundError(question_id)

        # Answering the same question again returns the first result
        existing = next((a for a in attempt.answers if a.question_id == question_id), None)
        if existing is not None:
            return self._build_response(existing, attempt.answers, len(quiz.questions))

        if selected_index < 0 or selected_index >= len(question.options):
            raise InvalidAnswerError()

        answer = AttemptAnswer(
            question_id=question_id,
            selected_index=selected_index,
            correct=selected_index == question.correct_index,
            correct_index=question.correct_index,
        )
        attempt.answers.append(answer)

        total = len(quiz.questions)
        if len(attempt.answers) == total:
            attempt.score = _score(sum(1 for a in attempt.answers if a.correct), total)
            attempt.status = "completed"
        self.store.save(attempt_key(attempt.id), attempt.model_dump())

        logger.info("Answer saved: %s, completed=%s", "correct" if answer.correct else "incorrect", attempt.status == "completed")
        return self._build_response(answer, attempt.answers, total)

    @staticmethod
    def _build_response(answer: AttemptAnswer, answers: List[AttemptAnswer], total: int) -> SubmitAnswerResponse:
        response = SubmitAnswerResponse(correct=answer.correct, correct_index=answer.correct_index)
        if len(answers) == total:
            correct_count = sum(1 for a in answers if a.correct)
            response.is_last = True
            response.score = _score(correct_count, total)
            response.correct_count = correct_count
            response.wrong_count = len(answers) - correct_count
            response.total = total
        return response

    def get_attempt_summary(self, attempt_id: str) -> AttemptSummaryResponse:
        attempt = self._get_attempt(attempt_id)
        record = self.store.get(quiz_key(attempt.quiz_id))
        total = len(record.get("questions", [])) if record else 0
        correct_count = sum(1 for a in attempt.answers if a.correct)

        return AttemptSummaryResponse(
            score=attempt.score or 0,
            correct_count=correct_count,
            wrong_count=len(attempt.answers) - correct_count,
            total=total,
            status=attempt.status,
            answers=attempt.answers,
        )
