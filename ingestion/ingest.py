"""
Incremental ingestion of local documents and sitemaps into the vector store.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx
from langchain_core.documents import Document
from langchain_core.embeddings import Embeddings
from qdrant_client import AsyncQdrantClient

from config import INGESTION_CONFIG
from ingestion.sources import (
    SitemapEntry,
    crawl_sitemap,
    enumerate_local_files,
    load_local_document,
    load_url_document,
    url_content_hash,
)
from models.configuration import Configuration
from utils.errors import SourceUnavailable
from vectordb.vector_store import VectorStoreAdapter, open_vector_store

logger = logging.getLogger(__name__)


def _new_report() -> Dict[str, int]:
    return {
        "files_added": 0,
        "urls_added": 0,
        "skipped_unchanged": 0,
        "sitemaps_unchanged": 0,
        "failed": 0,
        "chunks_added": 0,
        "chunks_removed": 0,
    }


async def _store_chunks(store: VectorStoreAdapter, source: str, content_hash: str,
                        documents: List[Document], configuration: Configuration,
                        report: Dict[str, int]) -> bool:
    """
    Add the chunks of one source and persist, holding the location lock.

    Returns:
        False if another task stored the same content hash first
    """
    async with store.lock:
        if await store.has_content_hash(content_hash):
            return False
        if configuration.purge_superseded_chunks:
            report["chunks_removed"] += await store.delete_by_source(source, keep_hash=content_hash)
        await store.add_documents(documents)
        await store.persist()
    report["chunks_added"] += len(documents)
    return True


async def ingest_local_files(store: VectorStoreAdapter, configuration: Configuration,
                             report: Dict[str, int]):
    """Ingest word-processor documents from the configured paths, skipping unchanged files."""
    for path in enumerate_local_files(list(configuration.document_paths)):
        try:
            documents = await asyncio.to_thread(load_local_document, path, configuration.user_id)
        except SourceUnavailable as e:
            logger.error(str(e))
            report["failed"] += 1
            continue

        if not documents:
            logger.warning(f"No text extracted from {path}")
            continue

        content_hash = documents[0].metadata["content_hash"]
        if await store.has_content_hash(content_hash):
            logger.info(f"Skipping unchanged file: {path}")
            report["skipped_unchanged"] += 1
            continue

        if await _store_chunks(store, path, content_hash, documents, configuration, report):
            logger.info(f"Added {len(documents)} chunks from {path}")
            report["files_added"] += 1


async def ingest_url(store: VectorStoreAdapter, client: httpx.AsyncClient, entry: SitemapEntry,
                     configuration: Configuration, report: Dict[str, int],
                     semaphore: Optional[asyncio.Semaphore] = None):
    """
    Ingest one sitemap page unless a chunk with its content hash is already stored.

    Fetch failures are logged and counted, never raised.
    """
    content_hash = url_content_hash(entry.url, entry.last_modified)
    if await store.has_content_hash(content_hash):
        logger.debug(f"Skipping unchanged page: {entry.url}")
        report["skipped_unchanged"] += 1
        return

    try:
        if semaphore is not None:
            async with semaphore:
                documents = await load_url_document(client, entry, configuration.user_id, content_hash)
        else:
            documents = await load_url_document(client, entry, configuration.user_id, content_hash)
    except SourceUnavailable as e:
        logger.error(str(e))
        report["failed"] += 1
        return

    if not documents:
        logger.warning(f"No text extracted from {entry.url}")
        return

    if await _store_chunks(store, entry.url, content_hash, documents, configuration, report):
        logger.info(f"Added {len(documents)} chunks from {entry.url}")
        report["urls_added"] += 1
    else:
        report["skipped_unchanged"] += 1


async def ingest_sitemap(store: VectorStoreAdapter, client: httpx.AsyncClient, sitemap_url: str,
                         configuration: Configuration, report: Dict[str, int]):
    """
    Ingest every page of one sitemap.

    The whole sitemap is skipped when the combined hash of its body and
    every child sitemap body matches the last successful run. The hash is
    recorded only when every child sitemap and every page succeeded.
    """
    crawl = await crawl_sitemap(client, sitemap_url)
    report["failed"] += crawl.failed
    if not crawl.bodies:
        return

    fingerprint = crawl.fingerprint()
    if not crawl.failed and store.index.sitemap_unchanged(sitemap_url, fingerprint):
        logger.info(f"Sitemap unchanged since last ingestion, skipping: {sitemap_url}")
        report["sitemaps_unchanged"] += 1
        return

    entries = crawl.entries
    if not entries:
        return
    logger.info(f"Processing {len(entries)} pages from {sitemap_url}")

    failed_before = report["failed"]
    semaphore = asyncio.Semaphore(INGESTION_CONFIG["max_concurrency"])
    outcomes = await asyncio.gather(
        *(ingest_url(store, client, entry, configuration, report, semaphore) for entry in entries),
        return_exceptions=True
    )
    for entry, outcome in zip(entries, outcomes):
        if isinstance(outcome, Exception):
            logger.error(f"Failed to ingest {entry.url}: {str(outcome)}")
            report["failed"] += 1

    if not crawl.failed and report["failed"] == failed_before:
        store.index.record_sitemap(sitemap_url, fingerprint)
    else:
        logger.warning(f"Parts of {sitemap_url} failed; sitemap will be re-checked next run")


async def ingest_documents(configuration: Configuration, embeddings: Optional[Embeddings] = None,
                           http_client: Optional[httpx.AsyncClient] = None,
                           qdrant_client: Optional[AsyncQdrantClient] = None) -> Dict[str, Any]:
    """
    Ingest all configured local documents and sitemaps.

    Args:
        configuration: Resolved configuration (sources, provider, user_id)
        embeddings: Optional embeddings instance
        http_client: Optional HTTP client; one is created and closed when omitted
        qdrant_client: Optional client for the qdrant provider

    Returns:
        Ingestion report with counters and index statistics
    """
    store = await open_vector_store(configuration, embeddings, qdrant_client)
    report = _new_report()

    if configuration.document_paths:
        await ingest_local_files(store, configuration, report)

    if configuration.sitemap_urls:
        client = http_client or httpx.AsyncClient(timeout=INGESTION_CONFIG["request_timeout"])
        try:
            for sitemap_url in configuration.sitemap_urls:
                await ingest_sitemap(store, client, sitemap_url, configuration, report)
        finally:
            if http_client is None:
                await client.aclose()

    stats = store.index.get_index_stats(await store.count())
    logger.info(f"Ingestion finished: {report}, {stats['document_count']} chunks at {stats['location']}")
    return {**report, "index": stats}
