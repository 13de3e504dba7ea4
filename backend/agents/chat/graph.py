# backend/agents/chat/graph.py

from typing import Any, Dict, cast

from langsmith import traceable

from backend.core.graph_executor import END, GraphDefinition, compile_graph, run

# Internal imports
from .state import ConversationState, QUALITY_POOR, ROUTE_IDENTITY_BLOCK, ROUTE_RETRIEVE
from .nodes import (
    router_node,
    retrieval_node,
    identity_node,
    generator_node,
    quality_node,
)


# --- Conditional edges ---

def route_after_router(state: Dict[str, Any]) -> str:
    decision = state.get("route_decision")
    if decision == ROUTE_RETRIEVE:
        return "retrieval"
    if decision == ROUTE_IDENTITY_BLOCK:
        return "identity"
    # direct_answer / clarify go straight to the generator
    return "generator"


def route_after_generator(state: Dict[str, Any]) -> str:
    if state.get("is_first_message"):
        return END
    return "quality"


def route_after_quality(state: Dict[str, Any]) -> str:
    if state.get("response_quality") == QUALITY_POOR:
        return "generator"
    return END


# Define the graph
CHAT_GRAPH_DEFINITION = GraphDefinition(
    name="chat",
    start="router",
    nodes={
        "router": router_node,
        "retrieval": retrieval_node,
        "identity": identity_node,
        "generator": generator_node,
        "quality": quality_node,
    },
    edges={
        "router": route_after_router,
        "retrieval": "generator",
        "identity": END,
        "generator": route_after_generator,
        "quality": route_after_quality,
    },
)

compiled_chat_app = compile_graph(CHAT_GRAPH_DEFINITION, ConversationState)


@traceable(name="chat_workflow_run", run_type="chain")
async def run_chat_workflow(state: ConversationState) -> ConversationState:
    """Run the answer workflow to completion and return the final state."""
    final_state = await run(compiled_chat_app, cast(Dict[str, Any], state))
    return cast(ConversationState, final_state)
