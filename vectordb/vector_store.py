"""
Vector store adapters for document retrieval.

Three backends share one interface: an in-process store, a FAISS index
persisted to disk, and a Qdrant collection.
"""
import asyncio
import logging
import os
import re
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from langchain_community.vectorstores import FAISS
from langchain_community.vectorstores.utils import DistanceStrategy
from langchain_core.documents import Document
from langchain_core.embeddings import Embeddings
from langchain_core.vectorstores import InMemoryVectorStore
from qdrant_client import AsyncQdrantClient
from qdrant_client.http import models as qdrant_models

from config import VECTOR_STORE_CONFIG
from models.configuration import Configuration, RetrieverProvider
from utils.errors import ConfigurationError, StoreUnavailable
from vectordb.embeddings import resolve_embeddings
from vectordb.index import IndexManager

logger = logging.getLogger(__name__)

STORE_NOT_FOUND = "Vector store not found. Please run the ingestion first."
STORE_EMPTY = "Vector store is empty. Please run the ingestion first."

ScoredDocument = Tuple[Document, float]

# local-memory stores live for the lifetime of the process
_memory_stores: Dict[str, InMemoryVectorStore] = {}


def _matches(metadata: Dict[str, Any], filter: Optional[Dict[str, Any]]) -> bool:
    if not filter:
        return True
    return all(metadata.get(key) == value for key, value in filter.items())


class VectorStoreAdapter(ABC):
    """Uniform interface over the supported vector store backends."""

    provider: RetrieverProvider

    def __init__(self, index: IndexManager, embeddings: Embeddings):
        self.index = index
        self.embeddings = embeddings

    @property
    def lock(self) -> asyncio.Lock:
        """Lock serialising mutations and persists of this storage location."""
        return self.index.lock

    async def open(self, read_only: bool = False) -> "VectorStoreAdapter":
        """
        Load the existing index at this location or start an empty one.

        A recorded configuration that no longer matches the live one
        discards the existing index.

        Args:
            read_only: Refuse to create anything; raise if the store is missing or empty

        Returns:
            self
        """
        exists = await self._index_exists()

        if read_only:
            if not exists or not self._descriptor_matches():
                raise StoreUnavailable(STORE_NOT_FOUND)
            await self._load()
            if await self.count() == 0:
                raise StoreUnavailable(STORE_EMPTY)
            return self

        self.index.ensure_directory()
        if exists and self._descriptor_matches():
            await self._load()
            logger.info(f"Loaded existing {self.provider.value} index at {self.index.path}")
        else:
            if exists:
                logger.warning(f"Configuration changed for {self.index.path}, rebuilding index")
                await self._discard()
            await self._create()
            logger.info(f"Created new {self.provider.value} index at {self.index.path}")
        self.index.write_descriptor()
        return self

    async def is_empty(self) -> bool:
        return await self.count() == 0

    @abstractmethod
    async def _index_exists(self) -> bool:
        ...

    @abstractmethod
    async def _load(self):
        ...

    @abstractmethod
    async def _create(self):
        ...

    def _descriptor_matches(self) -> bool:
        return self.index.descriptor_matches()

    async def _discard(self):
        self.index.remove_files([])

    @abstractmethod
    async def add_documents(self, documents: List[Document]) -> List[str]:
        """Embed and add documents, returning their ids."""

    @abstractmethod
    async def similarity_search(self, query: str, k: int,
                                filter: Optional[Dict[str, Any]] = None) -> List[ScoredDocument]:
        """Return up to k (document, similarity) pairs, highest similarity first."""

    @abstractmethod
    async def persist(self):
        """Flush the index to its backing storage."""

    @abstractmethod
    async def has_content_hash(self, content_hash: str) -> bool:
        """Check whether any stored chunk carries this content hash."""

    @abstractmethod
    async def delete_by_source(self, source: str, keep_hash: Optional[str] = None) -> int:
        """Delete chunks for a source, except those with keep_hash. Returns the number removed."""

    @abstractmethod
    async def count(self) -> int:
        ...


class _DocstoreAdapter(VectorStoreAdapter):
    """Shared metadata scans for backends that hold documents in process."""

    def _entries(self) -> List[Tuple[str, Dict[str, Any]]]:
        raise NotImplementedError

    async def has_content_hash(self, content_hash: str) -> bool:
        return any(metadata.get("content_hash") == content_hash for _, metadata in self._entries())

    async def delete_by_source(self, source: str, keep_hash: Optional[str] = None) -> int:
        ids = [
            doc_id for doc_id, metadata in self._entries()
            if metadata.get("source") == source and metadata.get("content_hash") != keep_hash
        ]
        if ids:
            self._delete_ids(ids)
            logger.info(f"Removed {len(ids)} superseded chunks for {source}")
        return len(ids)

    def _delete_ids(self, ids: List[str]):
        raise NotImplementedError

    async def count(self) -> int:
        return len(self._entries())


class InMemoryVectorStoreAdapter(_DocstoreAdapter):
    """Process-local store built on LangChain's InMemoryVectorStore."""

    provider = RetrieverProvider.LOCAL_MEMORY

    def __init__(self, index: IndexManager, embeddings: Embeddings):
        super().__init__(index, embeddings)
        self.store: Optional[InMemoryVectorStore] = None

    async def _index_exists(self) -> bool:
        return self.index.path in _memory_stores

    async def _load(self):
        self.store = _memory_stores[self.index.path]

    async def _create(self):
        self.store = InMemoryVectorStore(self.embeddings)
        _memory_stores[self.index.path] = self.store

    async def _discard(self):
        _memory_stores.pop(self.index.path, None)
        self.index.remove_files([])

    def _entries(self) -> List[Tuple[str, Dict[str, Any]]]:
        if self.store is None:
            return []
        return [(doc_id, entry.get("metadata") or {}) for doc_id, entry in self.store.store.items()]

    def _delete_ids(self, ids: List[str]):
        self.store.delete(ids)

    async def add_documents(self, documents: List[Document]) -> List[str]:
        if not documents:
            return []
        ids = [str(uuid.uuid4()) for _ in documents]
        return await self.store.aadd_documents(documents, ids=ids)

    async def similarity_search(self, query: str, k: int,
                                filter: Optional[Dict[str, Any]] = None) -> List[ScoredDocument]:
        if self.store is None or not self.store.store:
            return []
        return await self.store.asimilarity_search_with_score(
            query, k=k, filter=lambda doc: _matches(doc.metadata, filter)
        )

    async def persist(self):
        _memory_stores[self.index.path] = self.store


class FAISSVectorStoreAdapter(_DocstoreAdapter):
    """
    FAISS index persisted to the storage location.

    Vectors are L2-normalised and compared by inner product so scores
    are cosine similarities. The index is created on the first add.
    """

    provider = RetrieverProvider.LOCAL_FILE
    index_name = "index"

    def __init__(self, index: IndexManager, embeddings: Embeddings):
        super().__init__(index, embeddings)
        self.store: Optional[FAISS] = None

    @property
    def index_files(self) -> List[str]:
        return [f"{self.index_name}.faiss", f"{self.index_name}.pkl"]

    async def _index_exists(self) -> bool:
        return all(os.path.exists(os.path.join(self.index.path, name)) for name in self.index_files)

    async def _load(self):
        try:
            self.store = await asyncio.to_thread(
                FAISS.load_local,
                self.index.path,
                self.embeddings,
                index_name=self.index_name,
                allow_dangerous_deserialization=True,
                distance_strategy=DistanceStrategy.MAX_INNER_PRODUCT,
                normalize_L2=True,
            )
        except Exception as e:
            logger.error(f"Failed to load FAISS index at {self.index.path}: {str(e)}")
            raise StoreUnavailable(f"{STORE_NOT_FOUND} ({str(e)})") from e

    async def _create(self):
        self.store = None

    async def _discard(self):
        self.index.remove_files(self.index_files)
        self.store = None

    def _entries(self) -> List[Tuple[str, Dict[str, Any]]]:
        if self.store is None:
            return []
        return [(doc_id, doc.metadata) for doc_id, doc in self.store.docstore._dict.items()]

    def _delete_ids(self, ids: List[str]):
        self.store.delete(ids)

    async def add_documents(self, documents: List[Document]) -> List[str]:
        if not documents:
            return []
        ids = [str(uuid.uuid4()) for _ in documents]
        if self.store is None:
            self.store = await FAISS.afrom_documents(
                documents,
                self.embeddings,
                ids=ids,
                distance_strategy=DistanceStrategy.MAX_INNER_PRODUCT,
                normalize_L2=True,
            )
            return ids
        return await self.store.aadd_documents(documents, ids=ids)

    async def similarity_search(self, query: str, k: int,
                                filter: Optional[Dict[str, Any]] = None) -> List[ScoredDocument]:
        if self.store is None or self.store.index.ntotal == 0:
            return []
        results = await self.store.asimilarity_search_with_score(
            query, k=k, filter=filter or None, fetch_k=max(20, k * 5)
        )
        return [(doc, float(score)) for doc, score in results]

    async def persist(self):
        if self.store is None:
            return
        await asyncio.to_thread(self.store.save_local, self.index.path, self.index_name)


class QdrantVectorStoreAdapter(VectorStoreAdapter):
    """
    Qdrant collection per storage location.

    Payloads carry ``page_content`` and ``metadata`` so chunks can be
    filtered by nested metadata keys. Only the sitemap metadata lives on
    local disk; a host without it re-checks sitemaps and skips pages by
    content hash.
    """

    provider = RetrieverProvider.QDRANT

    def __init__(self, index: IndexManager, embeddings: Embeddings, client: Optional[AsyncQdrantClient] = None):
        super().__init__(index, embeddings)
        self.client = client or AsyncQdrantClient(
            url=VECTOR_STORE_CONFIG["url"],
            api_key=VECTOR_STORE_CONFIG["api_key"] or None
        )
        raw_name = f"{VECTOR_STORE_CONFIG['collection_prefix']}_{index.user_id}_{index.key}"
        self.collection_name = re.sub(r"[^A-Za-z0-9_-]", "_", raw_name)

    @staticmethod
    def _filter(conditions: Optional[Dict[str, Any]], exclude: Optional[Dict[str, Any]] = None):
        must = [
            qdrant_models.FieldCondition(key=f"metadata.{key}", match=qdrant_models.MatchValue(value=value))
            for key, value in (conditions or {}).items()
        ]
        must_not = [
            qdrant_models.FieldCondition(key=f"metadata.{key}", match=qdrant_models.MatchValue(value=value))
            for key, value in (exclude or {}).items()
        ]
        if not must and not must_not:
            return None
        return qdrant_models.Filter(must=must or None, must_not=must_not or None)

    async def _index_exists(self) -> bool:
        return await self.client.collection_exists(self.collection_name)

    async def _load(self):
        logger.info(f"Using existing Qdrant collection: {self.collection_name}")

    async def _create(self):
        # Dimension is only known once the embedding model has run
        dimension = len(await self.embeddings.aembed_query("dimension"))
        await self.client.create_collection(
            collection_name=self.collection_name,
            vectors_config=qdrant_models.VectorParams(
                size=dimension,
                distance=qdrant_models.Distance.COSINE
            )
        )
        logger.info(f"Created Qdrant collection: {self.collection_name}")

    def _descriptor_matches(self) -> bool:
        # Collection name embeds the storage key; no local descriptor needed
        return True

    async def add_documents(self, documents: List[Document]) -> List[str]:
        if not documents:
            return []
        vectors = await self.embeddings.aembed_documents([doc.page_content for doc in documents])
        ids = [str(uuid.uuid4()) for _ in documents]
        points = [
            qdrant_models.PointStruct(
                id=point_id,
                vector=list(vector),
                payload={"page_content": doc.page_content, "metadata": doc.metadata}
            )
            for point_id, vector, doc in zip(ids, vectors, documents)
        ]
        await self.client.upsert(collection_name=self.collection_name, points=points)
        return ids

    async def similarity_search(self, query: str, k: int,
                                filter: Optional[Dict[str, Any]] = None) -> List[ScoredDocument]:
        vector = await self.embeddings.aembed_query(query)
        response = await self.client.query_points(
            collection_name=self.collection_name,
            query=list(vector),
            limit=k,
            query_filter=self._filter(filter),
            with_payload=True
        )
        results = []
        for point in response.points:
            payload = point.payload or {}
            document = Document(
                page_content=payload.get("page_content", ""),
                metadata=payload.get("metadata") or {}
            )
            results.append((document, float(point.score)))
        return results

    async def persist(self):
        # Qdrant writes are durable once upsert returns
        return None

    async def has_content_hash(self, content_hash: str) -> bool:
        result = await self.client.count(
            collection_name=self.collection_name,
            count_filter=self._filter({"content_hash": content_hash}),
            exact=True
        )
        return result.count > 0

    async def delete_by_source(self, source: str, keep_hash: Optional[str] = None) -> int:
        selector = self._filter({"source": source}, {"content_hash": keep_hash} if keep_hash else None)
        stale = await self.client.count(
            collection_name=self.collection_name, count_filter=selector, exact=True
        )
        if stale.count:
            await self.client.delete(
                collection_name=self.collection_name,
                points_selector=qdrant_models.FilterSelector(filter=selector)
            )
            logger.info(f"Removed {stale.count} superseded chunks for {source}")
        return stale.count

    async def count(self) -> int:
        result = await self.client.count(collection_name=self.collection_name, exact=True)
        return result.count


def create_adapter(configuration: Configuration, embeddings: Optional[Embeddings] = None,
                   qdrant_client: Optional[AsyncQdrantClient] = None) -> VectorStoreAdapter:
    """
    Build the adapter selected by configuration.retriever_provider without opening it.

    Args:
        configuration: Resolved configuration
        embeddings: Optional embeddings instance; resolved from configuration when omitted
        qdrant_client: Optional client for the qdrant provider

    Returns:
        An unopened VectorStoreAdapter
    """
    embeddings = embeddings or resolve_embeddings(configuration.embedding_model)
    provider = configuration.retriever_provider

    if provider == RetrieverProvider.LOCAL_MEMORY:
        return InMemoryVectorStoreAdapter(IndexManager(configuration, persistent=False), embeddings)
    if provider == RetrieverProvider.LOCAL_FILE:
        return FAISSVectorStoreAdapter(IndexManager(configuration), embeddings)
    if provider == RetrieverProvider.QDRANT:
        return QdrantVectorStoreAdapter(IndexManager(configuration), embeddings, client=qdrant_client)
    raise ConfigurationError(f"Unsupported retriever provider: {provider}")


async def open_vector_store(configuration: Configuration, embeddings: Optional[Embeddings] = None,
                            qdrant_client: Optional[AsyncQdrantClient] = None) -> VectorStoreAdapter:
    """Open the configured store for ingestion, creating it when needed."""
    adapter = create_adapter(configuration, embeddings, qdrant_client)
    return await adapter.open()


async def get_vector_store(configuration: Configuration, embeddings: Optional[Embeddings] = None,
                           qdrant_client: Optional[AsyncQdrantClient] = None) -> VectorStoreAdapter:
    """
    Open the configured store for retrieval only.

    Raises:
        StoreUnavailable: If the store was never ingested or holds no documents
    """
    adapter = create_adapter(configuration, embeddings, qdrant_client)
    return await adapter.open(read_only=True)
