from .graph import CHAT_GRAPH_DEFINITION, compiled_chat_app, run_chat_workflow
from .state import ConversationState, create_initial_state

__all__ = [
    "CHAT_GRAPH_DEFINITION",
    "compiled_chat_app",
    "run_chat_workflow",
    "ConversationState",
    "create_initial_state",
]
