"""
Document retrieval component for the advisor pipeline.
"""
import logging
from typing import Any, Dict

from langchain_core.runnables import RunnableConfig

from models.configuration import ensure_configuration
from models.state import ConversationState
from utils.llm import last_human_text
from vectordb.retriever import retrieve_documents
from vectordb.vector_store import get_vector_store

logger = logging.getLogger(__name__)


async def retrieve(state: ConversationState, config: RunnableConfig) -> Dict[str, Any]:
    """
    Retrieve documents for the most recent search query.

    A store that was never ingested raises StoreUnavailable; it is not
    masked as an empty result.

    Args:
        state: The current conversation state
        config: Runnable config carrying configuration overrides

    Returns:
        State update replacing retrieved_docs
    """
    queries = state.get("queries") or []
    query = queries[-1] if queries else last_human_text(state.get("messages") or [])
    if not query:
        logger.warning("No query available for retrieval")
        return {"retrieved_docs": []}

    configuration = ensure_configuration(config)
    store = await get_vector_store(configuration)
    docs = await retrieve_documents(store, query, configuration)
    return {"retrieved_docs": docs}
