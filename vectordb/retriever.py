"""
Score-threshold retrieval with recency-aware re-ranking.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from langchain_core.documents import Document

from config import RETRIEVAL_CONFIG
from models.configuration import Configuration
from utils.errors import ConfigurationError
from vectordb.vector_store import ScoredDocument, VectorStoreAdapter

logger = logging.getLogger(__name__)


def _search_params(configuration: Configuration) -> Tuple[float, int, int, Dict[str, Any]]:
    kwargs = configuration.search_kwargs or {}
    min_score = float(kwargs.get("min_similarity_score", RETRIEVAL_CONFIG["min_similarity_score"]))
    k_increment = int(kwargs.get("k_increment", RETRIEVAL_CONFIG["k_increment"]))
    max_k = int(kwargs.get("max_k", RETRIEVAL_CONFIG["max_k"]))
    if k_increment < 1 or max_k < 1:
        raise ConfigurationError("k_increment and max_k must be positive")

    # The partition key always wins over a caller-supplied filter
    search_filter = {**(kwargs.get("filter") or {}), "user_id": configuration.user_id}
    return min_score, k_increment, max_k, search_filter


async def threshold_search(store: VectorStoreAdapter, query: str, min_score: float,
                           k_increment: int, max_k: int,
                           search_filter: Optional[Dict[str, Any]] = None) -> List[ScoredDocument]:
    """
    Similarity search that widens while every candidate clears the threshold.

    Starts with k_increment candidates and grows by k_increment until some
    candidate falls below min_score, the store runs out of documents, or
    max_k is reached.

    Returns:
        At most max_k (document, score) pairs, all scoring at least min_score
    """
    k = min(k_increment, max_k)
    while True:
        candidates = await store.similarity_search(query, k=k, filter=search_filter)
        qualifying = [(doc, score) for doc, score in candidates if score >= min_score]
        exhausted = len(candidates) < k
        if len(qualifying) < len(candidates) or exhausted or k >= max_k:
            break
        k = min(k + k_increment, max_k)

    logger.debug(f"Threshold search settled at k={k} with {len(qualifying)} qualifying documents")
    return qualifying[:max_k]


def document_timestamp(document: Document) -> Optional[float]:
    """Read a numeric timestamp from chunk metadata, parsing last_modified when needed."""
    metadata = document.metadata or {}
    value = metadata.get("last_modified_ts")
    if isinstance(value, (int, float)):
        return float(value)
    raw = metadata.get("last_modified")
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw).replace("Z", "+00:00")).timestamp()
    except ValueError:
        return None


def apply_recency_bias(results: List[ScoredDocument], recency_weight: float) -> List[ScoredDocument]:
    """
    Blend similarity with recency and re-sort.

    Timestamps are normalised over the span of this result set; chunks
    without one count as the oldest. A zero span keeps the input order.

    Args:
        results: (document, similarity) pairs in search order
        recency_weight: Share of the final score taken by recency, in [0, 1]

    Returns:
        (document, blended score) pairs, best first
    """
    if recency_weight <= 0 or len(results) <= 1:
        return results

    timestamps = [document_timestamp(doc) for doc, _ in results]
    known = [ts for ts in timestamps if ts is not None]
    if not known:
        return results

    oldest, newest = min(known), max(known)
    span = newest - oldest
    if span == 0 and len(known) == len(timestamps):
        return results

    blended = []
    for (doc, score), ts in zip(results, timestamps):
        if ts is None:
            recency = 0.0
        elif span == 0:
            recency = 1.0
        else:
            recency = (ts - oldest) / span
        blended.append((doc, score * (1 - recency_weight) + recency * recency_weight))

    # sorted() is stable, so equal scores keep search order
    return sorted(blended, key=lambda pair: pair[1], reverse=True)


async def retrieve_documents(store: VectorStoreAdapter, query: str,
                             configuration: Configuration) -> List[Document]:
    """
    Retrieve documents for a query within the caller's partition.

    Args:
        store: An opened vector store
        query: Search text
        configuration: Resolved configuration (search_kwargs, recency_weight, user_id)

    Returns:
        Matching documents, best first
    """
    min_score, k_increment, max_k, search_filter = _search_params(configuration)
    results = await threshold_search(store, query, min_score, k_increment, max_k, search_filter)

    if configuration.recency_weight > 0:
        results = apply_recency_bias(results, configuration.recency_weight)

    logger.info(f"Retrieved {len(results)} documents for query: {query}")
    return [doc for doc, _ in results]
