"""
Search query generation component for the advisor pipeline.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from langchain_core.messages import SystemMessage
from langchain_core.runnables import RunnableConfig

from models.conditions import SearchQuery
from models.configuration import ensure_configuration
from models.state import ConversationState
from utils.formatting import format_shoe_data, render_template
from utils.llm import last_human_text, load_chat_model

logger = logging.getLogger(__name__)


async def generate_query(state: ConversationState, config: RunnableConfig) -> Dict[str, Any]:
    """
    Formulate the next document search query from the conversation.

    Falls back to the latest user message when the model call fails.

    Args:
        state: The current conversation state
        config: Runnable config carrying configuration overrides

    Returns:
        State update appending one query
    """
    messages = state.get("messages") or []
    if not messages:
        logger.info("No messages found, no query generated")
        return {"queries": []}

    configuration = ensure_configuration(config)
    human_input = last_human_text(messages)
    previous = [human_input] if len(messages) == 1 else list(state.get("queries") or [])

    system_message = render_template(
        configuration.query_system_prompt_template,
        queries="\n- ".join(previous),
        system_time=datetime.now(timezone.utc).isoformat(),
        shoes=format_shoe_data(state.get("relevant_shoes") or []),
    )

    try:
        model = load_chat_model(configuration.query_model).with_structured_output(SearchQuery)
        generated = await model.ainvoke([SystemMessage(content=system_message), *messages])
        query = generated.query if isinstance(generated, SearchQuery) else SearchQuery.model_validate(generated).query
    except Exception as e:
        logger.error(f"Query generation failed: {str(e)}")
        query = ""

    query = query.strip() or human_input
    logger.info(f"Generated search query: '{query}'")
    return {"queries": [query]}
