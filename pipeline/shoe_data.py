"""
Structured shoe lookup component for the advisor pipeline.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from langchain_core.language_models import BaseChatModel
from langchain_core.runnables import RunnableConfig
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from data.shoes import ShoeDatabase, shoe_to_dict
from models.conditions import ShoeSearchConditions
from models.configuration import Configuration, ensure_configuration
from models.state import ConversationState
from pipeline.query_builder import MAX_RESULTS, ShoeQuery, build_query, execute, keyword_fallback_query
from utils.errors import ConfigurationError, TranslationFailure
from utils.llm import get_message_text, load_chat_model
from utils.prompts import SHOE_CONDITIONS_PROMPT

logger = logging.getLogger(__name__)


async def translate(text: str, model: BaseChatModel) -> ShoeSearchConditions:
    """
    Ask the model for structured search conditions and validate them.

    Args:
        text: The user's request
        model: Chat model supporting structured output

    Returns:
        Validated ShoeSearchConditions

    Raises:
        TranslationFailure: If the call fails or the output does not fit the schema
    """
    chain = SHOE_CONDITIONS_PROMPT | model.with_structured_output(ShoeSearchConditions)
    try:
        result = await chain.ainvoke({"query": text})
    except Exception as e:
        raise TranslationFailure(f"Structured output call failed: {str(e)}") from e

    if isinstance(result, ShoeSearchConditions):
        return result
    if result is None:
        raise TranslationFailure("Model returned no search conditions")
    try:
        return ShoeSearchConditions.model_validate(result)
    except ValidationError as e:
        raise TranslationFailure(f"Unusable search conditions: {str(e)}") from e


def _open_database(configuration: Configuration) -> Tuple[ShoeDatabase, bool]:
    """Return the database handle and whether this call owns it."""
    if configuration.shoe_database is not None:
        return configuration.shoe_database, False
    return ShoeDatabase(configuration.database_url), True


def _query_model(configuration: Configuration) -> BaseChatModel:
    try:
        return load_chat_model(configuration.query_model)
    except ConfigurationError:
        raise
    except Exception as e:
        raise TranslationFailure(f"Query model unavailable: {str(e)}") from e


def _run_query(database: ShoeDatabase, query: ShoeQuery, limit: Optional[int]) -> List[Dict[str, Any]]:
    with database.session() as session:
        return [shoe_to_dict(shoe) for shoe in execute(session, query, limit)]


async def fetch_shoe_data(state: ConversationState, config: RunnableConfig) -> Dict[str, Any]:
    """
    Look up shoes matching the latest user message.

    Only user-authored turns trigger a lookup. Translation failures fall
    back to keyword matching; database errors yield no shoes.

    Args:
        state: The current conversation state
        config: Runnable config carrying configuration overrides

    Returns:
        State update replacing relevant_shoes
    """
    messages = state.get("messages") or []
    if not messages or messages[-1].type != "human":
        logger.info("Last message is not from the user, skipping shoe lookup")
        return {"relevant_shoes": []}

    configuration = ensure_configuration(config)
    text = get_message_text(messages[-1])
    logger.info(f"Fetching shoe data for user message: '{text}'")

    try:
        conditions = await translate(text, _query_model(configuration))
        logger.info(f"Search conditions: {conditions.model_dump(exclude_defaults=True)}")
        query, limit = build_query(conditions, configuration.drop_strategy), conditions.limit
    except TranslationFailure as e:
        logger.warning(f"{str(e)}; falling back to keyword search")
        query, limit = keyword_fallback_query(text), MAX_RESULTS

    database, owned = _open_database(configuration)
    try:
        shoes = await asyncio.to_thread(_run_query, database, query, limit)
    except SQLAlchemyError as e:
        logger.error(f"Shoe database query failed: {str(e)}")
        shoes = []
    finally:
        if owned:
            database.dispose()

    if shoes:
        logger.info(f"Found {len(shoes)} relevant shoes: {[shoe['model'] for shoe in shoes]}")
    return {"relevant_shoes": shoes}
