# backend/schemas/quiz.py

import uuid
from pydantic import BaseModel, Field
from typing import List, Literal, Optional

from backend.schemas.chat import utc_now_iso

QuestionType = Literal["multiple_choice", "true_false"]
BloomLevel = Literal["recall", "understand", "apply", "analyze"]
AttemptStatus = Literal["in_progress", "completed"]


class Question(BaseModel):
    """Single quiz question (stored with the quiz)"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: QuestionType = "multiple_choice"
    question: str = Field(..., description="Question text")
    options: List[str] = Field(..., description="4 options for multiple_choice, [True, False] for true_false")
    correct_index: int = Field(..., description="0-based index into options", ge=0)
    concept: str = Field("General", description="Concept this question tests")
    difficulty: Optional[BloomLevel] = Field(None, description="Cognitive level of the question")


class QuestionForTaking(BaseModel):
    """Question shape sent to the client (no correct_index, no concept)"""
    id: str
    type: QuestionType
    question: str
    options: List[str]


class Quiz(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    conversation_id: str
    questions: List[Question]
    created_at: str = Field(default_factory=utc_now_iso)


class QuizSummary(BaseModel):
    id: str
    created_at: str
    question_count: int


class AttemptAnswer(BaseModel):
    question_id: str
    selected_index: int
    correct: bool
    correct_index: int


class QuizAttempt(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    quiz_id: str
    answers: List[AttemptAnswer] = Field(default_factory=list)
    score: Optional[int] = None
    status: AttemptStatus = "in_progress"
    created_at: str = Field(default_factory=utc_now_iso)


# --- API Request/Response ---

class GenerateQuizRequest(BaseModel):
    conversation_id: str = Field(..., description="Conversation whose sources the quiz covers")
    num_questions: int = Field(5, description="Number of questions", ge=1, le=20)


class GenerateQuizResponse(BaseModel):
    quiz_id: str


class CreateAttemptResponse(BaseModel):
    attempt_id: str
    questions: List[QuestionForTaking]
    total: int


class SubmitAnswerRequest(BaseModel):
    question_id: str
    selected_index: int


class SubmitAnswerResponse(BaseModel):
    correct: bool
    correct_index: int
    # Set when this was the last question
    is_last: Optional[bool] = None
    score: Optional[int] = None
    correct_count: Optional[int] = None
    wrong_count: Optional[int] = None
    total: Optional[int] = None


class AttemptSummaryResponse(BaseModel):
    score: int
    correct_count: int
    wrong_count: int
    total: int
    status: AttemptStatus
    answers: List[AttemptAnswer]
