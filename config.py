"""
Configuration settings for the shoe advisor.
"""
import os
from typing import Dict, Any
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Relational shoe database (any SQLAlchemy URL whose driver is installed)
DB_CONFIG = {
    "database": os.environ.get("DB_NAME", "shoes"),
    "connection_string": os.environ.get("DATABASE_URL", ""),
    "drop_strategy": os.environ.get("SHOE_DROP_STRATEGY", "expression"),
}

if not DB_CONFIG["connection_string"]:
    DB_CONFIG["connection_string"] = f"sqlite:///data/{DB_CONFIG['database']}.db"

# Vector store config
VECTOR_STORE_CONFIG = {
    "provider": os.environ.get("RETRIEVER_PROVIDER", "local-file"),
    "base_dir": os.environ.get("VECTOR_STORE_DIR", "vector_store"),
    "url": os.environ.get("QDRANT_URL", "http://localhost:6333"),
    "api_key": os.environ.get("QDRANT_API_KEY", ""),
    "collection_prefix": os.environ.get("QDRANT_COLLECTION", "shoe_docs"),
}

# Retrieval tuning
RETRIEVAL_CONFIG = {
    "min_similarity_score": float(os.environ.get("MIN_SIMILARITY_SCORE", "0.3")),
    "k_increment": int(os.environ.get("RETRIEVAL_K_INCREMENT", "2")),
    "max_k": int(os.environ.get("RETRIEVAL_MAX_K", "4")),
    "recency_weight": float(os.environ.get("RECENCY_WEIGHT", "0.3")),
}

# Ingestion constants
INGESTION_CONFIG = {
    "chunk_size": 1000,
    "chunk_overlap": 200,
    "request_timeout": float(os.environ.get("INGESTION_REQUEST_TIMEOUT", "30")),
    "max_sitemap_depth": int(os.environ.get("MAX_SITEMAP_DEPTH", "3")),
    "max_concurrency": int(os.environ.get("INGESTION_MAX_CONCURRENCY", "8")),
}

# LLM configuration
LLM_CONFIG = {
    "model": os.environ.get("LLM_MODEL", "google_genai/gemini-2.0-flash-lite"),
    "temperature": float(os.environ.get("LLM_TEMPERATURE", "0.1")),
    "api_key": os.environ.get("LLM_API_KEY", "")
}

# Embedding configuration
EMBEDDING_CONFIG = {
    "model": os.environ.get("EMBEDDING_MODEL", "huggingface/sentence-transformers/all-MiniLM-L6-v2"),
    "device": os.environ.get("EMBEDDING_DEVICE", "cpu"),
    "api_key": os.environ.get("LLM_API_KEY", "")
}

# Application configuration
APP_CONFIG = {
    "log_level": os.environ.get("LOG_LEVEL", "INFO"),
    "user_id": os.environ.get("DEFAULT_USER_ID", "default"),
}

def get_config() -> Dict[str, Any]:
    """Return the complete configuration dictionary."""
    return {
        "llm": LLM_CONFIG,
        "embedding": EMBEDDING_CONFIG,
        "vector_store": VECTOR_STORE_CONFIG,
        "retrieval": RETRIEVAL_CONFIG,
        "ingestion": INGESTION_CONFIG,
        "db": DB_CONFIG,
        "app": APP_CONFIG
    }
