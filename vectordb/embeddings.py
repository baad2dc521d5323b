"""
Embedding provider resolution for document and query vectors.
"""
import logging
from typing import Dict, Optional

from langchain_community.embeddings import HuggingFaceEmbeddings
from langchain_core.embeddings import Embeddings
from langchain_google_genai import GoogleGenerativeAIEmbeddings
from langchain_openai import OpenAIEmbeddings

from config import EMBEDDING_CONFIG
from utils.errors import ConfigurationError
from utils.llm import split_model_identifier

logger = logging.getLogger(__name__)

# Provider used when an identifier has no "provider/" prefix
DEFAULT_EMBEDDING_PROVIDER = "huggingface"

SUPPORTED_PROVIDERS = ("huggingface", "google_genai", "openai")

_embeddings_cache: Dict[str, Embeddings] = {}


def resolve_embeddings(model_identifier: Optional[str] = None) -> Embeddings:
    """
    Resolve a ``provider/model`` identifier to an embeddings instance.

    Instances are cached per identifier so repeated graph runs do not
    reload local models.

    Args:
        model_identifier: e.g. "huggingface/sentence-transformers/all-MiniLM-L6-v2",
            "openai/text-embedding-3-small"; defaults to EMBEDDING_CONFIG["model"]

    Returns:
        A LangChain Embeddings implementation

    Raises:
        ConfigurationError: If the provider is not supported
    """
    identifier = model_identifier or EMBEDDING_CONFIG["model"]
    if identifier in _embeddings_cache:
        return _embeddings_cache[identifier]

    provider, model = split_model_identifier(identifier, DEFAULT_EMBEDDING_PROVIDER)
    if provider not in SUPPORTED_PROVIDERS:
        raise ConfigurationError(f"Unsupported embedding provider: {provider}")

    logger.info(f"Initializing {provider} embeddings with model {model}")
    try:
        if provider == "huggingface":
            embeddings = HuggingFaceEmbeddings(
                model_name=model,
                model_kwargs={'device': EMBEDDING_CONFIG["device"]}
            )
        elif provider == "google_genai":
            kwargs = {"model": model}
            if EMBEDDING_CONFIG["api_key"]:
                kwargs["google_api_key"] = EMBEDDING_CONFIG["api_key"]
            embeddings = GoogleGenerativeAIEmbeddings(**kwargs)
        else:
            embeddings = OpenAIEmbeddings(model=model)
    except Exception as e:
        logger.error(f"Failed to initialize embeddings model: {str(e)}")
        raise

    _embeddings_cache[identifier] = embeddings
    return embeddings
