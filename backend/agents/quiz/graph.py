# backend/agents/quiz/graph.py

from typing import Any, Dict, List, cast

from langsmith import traceable

from backend.core.graph_executor import END, GraphDefinition, compile_graph, run
from backend.services.errors import InsufficientQuestionsError
from backend.utils.logger import get_logger

# Internal imports
from .state import QuizGenerationState
from .nodes import question_generator_node, validator_node

logger = get_logger(__name__)


def route_after_validator(state: Dict[str, Any]) -> str:
    if state.get("needs_regeneration"):
        logger.info("Regenerating deficit questions (attempt %s)", state.get("retry_count"))
        return "question_generator"

    total_valid = len(state.get("accumulated_valid") or [])
    if total_valid == 0:
        logger.warning("No valid questions generated after all attempts")
    else:
        logger.info("Quiz generation complete: %s valid questions", total_valid)
    return END


# Define the graph
QUIZ_GRAPH_DEFINITION = GraphDefinition(
    name="quiz_generation",
    start="question_generator",
    nodes={
        "question_generator": question_generator_node,
        "validator": validator_node,
    },
    edges={
        "question_generator": "validator",
        "validator": route_after_validator,
    },
)

compiled_quiz_app = compile_graph(QUIZ_GRAPH_DEFINITION, QuizGenerationState)


@traceable(name="quiz_generation_run", run_type="chain")
async def run_quiz_workflow(state: QuizGenerationState) -> QuizGenerationState:
    logger.info(
        "Quiz generation started: conversation=%s, sources=%s, requested=%s",
        state.get("conversation_id"), len(state.get("source_ids") or []), state.get("num_questions"),
    )
    final_state = await run(compiled_quiz_app, cast(Dict[str, Any], state))
    return cast(QuizGenerationState, final_state)


def finalize_quiz_questions(state: QuizGenerationState) -> List[Dict[str, Any]]:
    """First num_questions accumulated questions; raises when validation left too few."""
    num_questions = int(state.get("num_questions") or 0)
    accumulated = list(state.get("accumulated_valid") or [])
    if len(accumulated) < num_questions:
        logger.warning("Only %s valid questions after validation (requested %s)", len(accumulated), num_questions)
        raise InsufficientQuestionsError(len(accumulated), num_questions)
    return accumulated[:num_questions]
