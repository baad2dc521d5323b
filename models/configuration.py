"""
Per-invocation configuration for the shoe advisor graph.
"""
import logging
from enum import Enum
from typing import Any, Dict, Literal, Optional, Tuple

from langchain_core.runnables import RunnableConfig
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from config import APP_CONFIG, DB_CONFIG, EMBEDDING_CONFIG, LLM_CONFIG, RETRIEVAL_CONFIG, VECTOR_STORE_CONFIG
from utils.errors import ConfigurationError
from utils.prompts import QUERY_SYSTEM_PROMPT_TEMPLATE, RESPONSE_SYSTEM_PROMPT_TEMPLATE

logger = logging.getLogger(__name__)


class RetrieverProvider(str, Enum):
    """Backends available for document retrieval."""
    LOCAL_MEMORY = "local-memory"
    LOCAL_FILE = "local-file"
    QDRANT = "qdrant"


class Configuration(BaseModel):
    """
    Immutable settings snapshot for one graph invocation.

    Built from the ``configurable`` section of a RunnableConfig merged
    onto the defaults from ``config.py``.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, use_enum_values=False)

    user_id: str = Field(default_factory=lambda: APP_CONFIG["user_id"])
    embedding_model: str = Field(default_factory=lambda: EMBEDDING_CONFIG["model"])
    retriever_provider: RetrieverProvider = Field(
        default_factory=lambda: RetrieverProvider(VECTOR_STORE_CONFIG["provider"])
    )
    document_paths: Tuple[str, ...] = ()
    sitemap_urls: Tuple[str, ...] = ()
    search_kwargs: Dict[str, Any] = Field(default_factory=dict)
    recency_weight: float = Field(default_factory=lambda: RETRIEVAL_CONFIG["recency_weight"])

    response_system_prompt_template: str = RESPONSE_SYSTEM_PROMPT_TEMPLATE
    query_system_prompt_template: str = QUERY_SYSTEM_PROMPT_TEMPLATE
    response_model: str = Field(default_factory=lambda: LLM_CONFIG["model"])
    query_model: str = Field(default_factory=lambda: LLM_CONFIG["model"])

    vector_store_dir: str = Field(default_factory=lambda: VECTOR_STORE_CONFIG["base_dir"])
    database_url: str = Field(default_factory=lambda: DB_CONFIG["connection_string"])
    drop_strategy: Literal["expression", "enumerate"] = Field(default_factory=lambda: DB_CONFIG["drop_strategy"])
    shoe_database: Optional[Any] = Field(default=None, exclude=True)
    purge_superseded_chunks: bool = True

    @field_validator("user_id", mode="before")
    @classmethod
    def require_user_id(cls, v):
        if v is None or not str(v).strip():
            raise ValueError("user_id must be a non-empty string")
        return str(v).strip()

    @field_validator("document_paths", "sitemap_urls", mode="before")
    @classmethod
    def split_sources(cls, v):
        if v is None:
            return ()
        if isinstance(v, str):
            return tuple(item.strip() for item in v.split(",") if item.strip())
        return tuple(v)

    @field_validator("recency_weight")
    @classmethod
    def check_recency_weight(cls, v):
        if not 0.0 <= v <= 1.0:
            raise ValueError("recency_weight must be between 0 and 1")
        return v


def ensure_configuration(config: Optional[RunnableConfig] = None) -> Configuration:
    """
    Resolve the configuration for one invocation.

    Args:
        config: Optional RunnableConfig whose ``configurable`` entries override defaults

    Returns:
        A frozen Configuration

    Raises:
        ConfigurationError: If an override is invalid
    """
    configurable = (config or {}).get("configurable") or {}
    overrides = {k: v for k, v in configurable.items() if k in Configuration.model_fields}
    try:
        return Configuration(**overrides)
    except ValidationError as e:
        logger.error(f"Invalid configuration: {str(e)}")
        raise ConfigurationError(str(e)) from e
