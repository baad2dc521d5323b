"""
Routing decisions for the advisor graph.
"""
import logging

from langchain_core.runnables import RunnableConfig

from models.configuration import ensure_configuration
from models.state import ConversationState
from utils.formatting import format_shoe_data
from utils.llm import get_message_text, load_chat_model, safe_llm_call
from utils.prompts import DOC_RETRIEVAL_ROUTING_PROMPT, SHOE_LOOKUP_ROUTING_PROMPT

logger = logging.getLogger(__name__)


def is_yes(answer: str) -> bool:
    """Only a clear YES counts; anything else takes the cheaper path."""
    return answer.strip().strip(".!\"'`*").upper() == "YES"


async def _classify(prompt, configuration, inputs) -> str:
    """Ask the query model a YES/NO question; an unavailable model answers NO."""
    try:
        model = load_chat_model(configuration.query_model)
    except Exception as e:
        logger.error(f"Routing model unavailable: {str(e)}")
        return "NO"
    return await safe_llm_call(prompt | model, inputs, default_response="NO")


async def should_lookup_shoe(state: ConversationState, config: RunnableConfig) -> str:
    """Decide between the shoe database lookup and going straight to query generation."""
    messages = state.get("messages") or []
    if not messages or messages[-1].type != "human":
        return "generate_query"

    configuration = ensure_configuration(config)
    answer = await _classify(SHOE_LOOKUP_ROUTING_PROMPT, configuration, {"messages": messages})

    route = "fetch_shoe_data" if is_yes(answer) else "generate_query"
    logger.info(f"Shoe lookup routing answered '{answer.strip()}', going to {route}")
    return route


async def should_retrieve_docs(state: ConversationState, config: RunnableConfig) -> str:
    """Decide whether review documents are still needed after the shoe lookup."""
    messages = state.get("messages") or []
    if not messages or messages[-1].type != "human":
        return "respond"

    configuration = ensure_configuration(config)
    answer = await _classify(
        DOC_RETRIEVAL_ROUTING_PROMPT,
        configuration,
        {
            "query": get_message_text(messages[-1]),
            "shoes": format_shoe_data(state.get("relevant_shoes") or []),
        }
    )

    route = "generate_query" if is_yes(answer) else "respond"
    logger.info(f"Document routing answered '{answer.strip()}', going to {route}")
    return route
