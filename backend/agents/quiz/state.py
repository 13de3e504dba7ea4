from typing import TypedDict, List, Dict, Any, Sequence
import time

QUESTION_TYPE_MULTIPLE_CHOICE = "multiple_choice"
QUESTION_TYPE_TRUE_FALSE = "true_false"

DIFFICULTY_LEVELS = ("recall", "understand", "apply", "analyze")

# Over-generate so that after validation at least num_questions remain
OVER_GENERATE_COUNT = 3
MAX_RETRIES = 2


class QuizGenerationState(TypedDict, total=False):
    """
    Represents the state of one quiz generation run.
    """
    # Inputs
    conversation_id: str
    source_ids: List[str]
    num_questions: int
    chunks: List[Dict[str, Any]]  # RetrievedChunk dicts in source order
    context_text: str  # same text for generator and validator

    # Generation
    concepts: List[str]
    questions: List[Dict[str, Any]]  # latest batch only
    validation_results: List[Dict[str, Any]]

    # Accumulation across retries
    accumulated_valid: List[Dict[str, Any]]
    deficit: int
    needs_regeneration: bool
    retry_count: int
    started_at: float


def compute_deficit(num_questions: int, valid_count: int) -> int:
    return max(0, num_questions + OVER_GENERATE_COUNT - valid_count)


def create_initial_quiz_state(
    conversation_id: str,
    source_ids: Sequence[str],
    num_questions: int,
    chunks: Sequence[Dict[str, Any]],
    context_text: str,
) -> QuizGenerationState:
    return QuizGenerationState(
        conversation_id=conversation_id,
        source_ids=list(source_ids),
        num_questions=num_questions,
        chunks=list(chunks),
        context_text=context_text,
        concepts=[],
        questions=[],
        validation_results=[],
        accumulated_valid=[],
        deficit=compute_deficit(num_questions, 0),
        needs_regeneration=False,
        retry_count=0,
        started_at=time.time(),
    )
