"""
LLM setup and utility functions.
"""
import logging
from typing import Any, Dict, Sequence, Tuple

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_openai import ChatOpenAI

from config import LLM_CONFIG
from utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Provider used when a model name carries no "provider/" prefix
DEFAULT_CHAT_PROVIDER = "google_genai"


def split_model_identifier(identifier: str, default_provider: str) -> Tuple[str, str]:
    """
    Split a ``provider/model`` identifier on the first slash.

    Args:
        identifier: Fully specified model name
        default_provider: Provider to assume when no slash is present

    Returns:
        (provider, model) tuple
    """
    if not identifier or not identifier.strip():
        raise ConfigurationError("Model identifier must not be empty")
    provider, sep, model = identifier.strip().partition("/")
    if not sep:
        return default_provider, provider
    if not model:
        raise ConfigurationError(f"Model identifier '{identifier}' has no model name")
    return provider, model


def load_chat_model(identifier: str) -> BaseChatModel:
    """
    Initialize a chat model from a ``provider/model`` name.

    Args:
        identifier: e.g. "google_genai/gemini-2.0-flash-lite" or "openai/gpt-4o-mini"

    Returns:
        Configured chat model instance
    """
    provider, model = split_model_identifier(identifier, DEFAULT_CHAT_PROVIDER)

    if provider == "google_genai":
        kwargs: Dict[str, Any] = {"model": model, "temperature": LLM_CONFIG["temperature"]}
        if LLM_CONFIG["api_key"]:
            kwargs["google_api_key"] = LLM_CONFIG["api_key"]
        return ChatGoogleGenerativeAI(**kwargs)

    if provider == "openai":
        return ChatOpenAI(model=model, temperature=LLM_CONFIG["temperature"])

    raise ConfigurationError(f"Unsupported chat model provider: {provider}")


def get_message_text(message: BaseMessage) -> str:
    """Return the plain text of a message, joining text blocks of multi-part content."""
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts).strip()


async def safe_llm_call(chain, inputs: Any, default_response: str = "") -> str:
    """
    Safely call an LLM chain with error handling.

    Args:
        chain: The LLM chain to call
        inputs: Input values or message list
        default_response: Fallback response if the call fails

    Returns:
        The LLM response text or the default response on failure
    """
    try:
        response = await chain.ainvoke(inputs)
        return get_message_text(response)
    except Exception as e:
        logger.error(f"LLM call failed: {str(e)}")
        return default_response


def last_human_text(messages: Sequence[BaseMessage]) -> str:
    """Text of the most recent user-authored message, or an empty string."""
    for message in reversed(messages or []):
        if message.type == "human":
            return get_message_text(message)
    return ""
