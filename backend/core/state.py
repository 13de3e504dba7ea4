"""
State record helpers shared by every workflow.

A workflow state is a plain mapping that is never mutated in place: a step
receives the current state and returns a partial patch, and the executor
produces the next state with merge_state.
"""
from typing import Any, Dict, Mapping, Optional


def merge_state(state: Mapping[str, Any], patch: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Return a new state with the patch applied.

    Patch fields overwrite, unspecified fields persist. Neither argument is
    modified, so the pre-merge and post-merge states never alias each other
    at the top level.
    """
    merged = dict(state)
    if patch:
        merged.update(patch)
    return merged
