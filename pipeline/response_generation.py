"""
Response generation component for the advisor pipeline.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from langchain_core.documents import Document
from langchain_core.messages import AIMessage, SystemMessage
from langchain_core.runnables import RunnableConfig

from models.configuration import ensure_configuration
from models.state import ConversationState
from utils.errors import ConfigurationError
from utils.formatting import format_docs, format_shoe_data, render_template
from utils.llm import load_chat_model

logger = logging.getLogger(__name__)


async def respond(state: ConversationState, config: RunnableConfig) -> Dict[str, Any]:
    """
    Compose the answer from matched shoes and retrieved documents.

    Always appends exactly one assistant message; a failed model call
    produces a plain summary instead.

    Args:
        state: The current conversation state
        config: Runnable config carrying configuration overrides

    Returns:
        State update with the new assistant message
    """
    configuration = ensure_configuration(config)
    messages = state.get("messages") or []
    shoes = state.get("relevant_shoes") or []
    docs = state.get("retrieved_docs") or []

    logger.info(f"Building response from {len(shoes)} shoes and {len(docs)} documents")

    system_message = render_template(
        configuration.response_system_prompt_template,
        retrieved_docs=format_docs(docs),
        system_time=datetime.now(timezone.utc).isoformat(),
        shoes=format_shoe_data(shoes),
    )

    try:
        model = load_chat_model(configuration.response_model)
        response = await model.with_config(tags=["respond"]).ainvoke(
            [SystemMessage(content=system_message), *messages]
        )
        if not isinstance(response, AIMessage):
            response = AIMessage(content=str(getattr(response, "content", response)))
    except ConfigurationError:
        raise
    except Exception as e:
        logger.error(f"Error generating response: {str(e)}")
        response = AIMessage(content=_generate_fallback_response(shoes, docs))

    return {"messages": [response]}


def _generate_fallback_response(shoes: List[Dict[str, Any]], docs: List[Document]) -> str:
    """
    Generate a simple answer when the model is unavailable.

    Args:
        shoes: Matched shoes
        docs: Retrieved documents

    Returns:
        Markdown summary of what was found
    """
    if not shoes and not docs:
        return "I couldn't find any shoes or reviews matching your question. Could you try rephrasing it?"

    response = ""
    if shoes:
        response += "Here are some shoes that match your question:\n\n"
        for i, shoe in enumerate(shoes, 1):
            drop = shoe.get("drop_mm")
            drop_text = f" ({drop:g}mm drop)" if drop is not None else ""
            response += f"{i}. **{shoe.get('brand', '')} {shoe.get('model', '')}**{drop_text}\n"

    sources = []
    for doc in docs:
        source = (doc.metadata or {}).get("source")
        if source and source not in sources:
            sources.append(source)
    if sources:
        response += "\nThese reviews may help:\n\n"
        response += "".join(f"- {source}\n" for source in sources)

    return response.strip()
