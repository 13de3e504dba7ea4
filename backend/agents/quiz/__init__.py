from .graph import compiled_quiz_app, finalize_quiz_questions, run_quiz_workflow
from .state import QuizGenerationState, create_initial_quiz_state

__all__ = [
    "compiled_quiz_app",
    "finalize_quiz_questions",
    "run_quiz_workflow",
    "QuizGenerationState",
    "create_initial_quiz_state",
]
