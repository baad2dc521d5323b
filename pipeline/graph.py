"""
Graph structure for the LangGraph shoe advisor pipeline.
"""
import logging

from langgraph.graph import END, StateGraph

from models.state import ConversationState
from pipeline.query_generation import generate_query
from pipeline.response_generation import respond
from pipeline.retrieval import retrieve
from pipeline.routing import should_lookup_shoe, should_retrieve_docs
from pipeline.shoe_data import fetch_shoe_data

logger = logging.getLogger(__name__)


def build_graph(routed: bool = False):
    """
    Create the LangGraph for the shoe advisor.

    Args:
        routed: Let classifiers decide whether the shoe lookup and the
            document retrieval run at all

    Returns:
        Compiled graph
    """
    graph = StateGraph(ConversationState)

    # Add all nodes
    graph.add_node("fetch_shoe_data", fetch_shoe_data)
    graph.add_node("generate_query", generate_query)
    graph.add_node("retrieve", retrieve)
    graph.add_node("respond", respond)

    graph.add_edge("generate_query", "retrieve")
    graph.add_edge("retrieve", "respond")
    graph.add_edge("respond", END)

    if routed:
        graph.set_conditional_entry_point(
            should_lookup_shoe,
            {"fetch_shoe_data": "fetch_shoe_data", "generate_query": "generate_query"}
        )
        graph.add_conditional_edges(
            "fetch_shoe_data",
            should_retrieve_docs,
            {"generate_query": "generate_query", "respond": "respond"}
        )
    else:
        graph.set_entry_point("fetch_shoe_data")
        graph.add_edge("fetch_shoe_data", "generate_query")

    logger.info(f"Shoe advisor graph built (routed={routed})")
    return graph.compile()
