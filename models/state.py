"""
State definitions for the shoe advisor graph.
"""
from typing import Annotated, Any, Dict, List, Sequence, TypedDict, Union

from langchain_core.documents import Document
from langchain_core.messages import AnyMessage
from langgraph.graph.message import add_messages


def add_queries(existing: Sequence[str], new: Union[str, Sequence[str]]) -> List[str]:
    """
    Append generated search queries to the existing list.

    Args:
        existing: Queries recorded so far
        new: A single query or a batch of queries

    Returns:
        The combined list of queries
    """
    if isinstance(new, str):
        return list(existing or []) + [new]
    return list(existing or []) + list(new or [])


class InputState(TypedDict):
    """The caller-facing slice of the state: just the conversation."""
    messages: Annotated[List[AnyMessage], add_messages]


class ConversationState(InputState):
    """
    Represents the state of the shoe advisor graph.
    Carries everything the nodes exchange during one run.
    """
    # Search queries generated so far, append-only
    queries: Annotated[List[str], add_queries]

    # Replaced on every run
    relevant_shoes: List[Dict[str, Any]]  # Structured matches from the shoe database
    retrieved_docs: List[Document]  # Documents from the vector store
