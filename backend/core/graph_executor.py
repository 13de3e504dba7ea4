"""
Graph executor for the chat and quiz workflows.

A GraphDefinition names a start node, the step function of every node and a
successor rule per node: either a fixed node name (or END) or a predicate
over the merged state. compile_graph turns a definition into a LangGraph
StateGraph, which does the actual stepping:

    1. start at definition.start with the initial state
    2. call the step, merge its patch (patch keys overwrite)
    3. resolve the successor against the post-merge state
    4. repeat until the successor is END

The executor never catches step exceptions; steps degrade external failures
into state values themselves.
"""
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Mapping, Tuple, Type, Union

from langgraph.graph import StateGraph, END

from backend.utils.logger import get_logger

logger = get_logger(__name__)

StepFunction = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]
Predicate = Callable[[Dict[str, Any]], str]
Successor = Union[str, Predicate]

# Every graph here terminates within a handful of steps; this only guards
# against a miswired definition looping forever.
RECURSION_LIMIT = 25

__all__ = [
    "END",
    "GraphDefinition",
    "GraphDefinitionError",
    "compile_graph",
    "resolve_successor",
    "run",
    "run_streaming",
]


class GraphDefinitionError(ValueError):
    """Raised when a graph definition references unknown nodes."""


@dataclass(frozen=True)
class GraphDefinition:
    name: str
    start: str
    nodes: Mapping[str, StepFunction]
    edges: Mapping[str, Successor] = field(default_factory=dict)

    def validate(self) -> None:
        if self.start not in self.nodes:
            raise GraphDefinitionError(f"{self.name}: start node '{self.start}' is not defined")

        for node_name in self.nodes:
            if node_name not in self.edges:
                raise GraphDefinitionError(f"{self.name}: node '{node_name}' has no successor rule")

        for node_name, successor in self.edges.items():
            if node_name not in self.nodes:
                raise GraphDefinitionError(f"{self.name}: edge from unknown node '{node_name}'")
            if isinstance(successor, str) and successor != END and successor not in self.nodes:
                raise GraphDefinitionError(
                    f"{self.name}: edge '{node_name}' -> '{successor}' targets an unknown node"
                )


def resolve_successor(definition: GraphDefinition, node_name: str, state: Mapping[str, Any]) -> str:
    """Next node after node_name for an already merged state (END when the run is over)."""
    successor = definition.edges[node_name]
    if callable(successor):
        return successor(dict(state))
    return successor


def compile_graph(definition: GraphDefinition, state_schema: Type[Any]):
    """Build and compile the LangGraph StateGraph for a definition."""
    definition.validate()

    workflow = StateGraph(state_schema)
    for node_name, step in definition.nodes.items():
        workflow.add_node(node_name, step)

    workflow.set_entry_point(definition.start)

    for node_name, successor in definition.edges.items():
        if callable(successor):
            workflow.add_conditional_edges(node_name, successor)
        else:
            workflow.add_edge(node_name, successor)

    logger.debug("Compiled graph %s (%s nodes)", definition.name, len(definition.nodes))
    return workflow.compile()


async def run(graph, initial_state: Mapping[str, Any]) -> Dict[str, Any]:
    """Run a compiled graph to completion and return the final merged state."""
    final_state = await graph.ainvoke(dict(initial_state), config={"recursion_limit": RECURSION_LIMIT})
    return dict(final_state)


async def run_streaming(graph, initial_state: Mapping[str, Any]) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
    """
    Run a compiled graph and yield (node_name, patch) after each step.

    Patches arrive in execution order. A consumer that needs the running
    state folds them with backend.core.state.merge_state.
    """
    async for update in graph.astream(
        dict(initial_state),
        stream_mode="updates",
        config={"recursion_limit": RECURSION_LIMIT},
    ):
        for node_name, patch in update.items():
            yield node_name, dict(patch or {})
