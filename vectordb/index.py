"""
Storage location management for persisted vector indexes.

A location is derived from the identity-relevant configuration fields and
holds the index files, a ``config.json`` descriptor and, for sitemap-backed
stores, ``sitemap_metadata.json``.
"""
import asyncio
import hashlib
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Tuple

from models.configuration import Configuration, RetrieverProvider

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.json"
SITEMAP_METADATA_FILE = "sitemap_metadata.json"
STORAGE_KEY_LENGTH = 10

# Descriptors and sitemap metadata for stores that never touch disk
_memory_files: Dict[str, Dict[str, Any]] = {}

# One lock per (event loop, location)
_location_locks: Dict[str, Tuple[asyncio.AbstractEventLoop, asyncio.Lock]] = {}


def identity_fields(configuration: Configuration) -> Dict[str, Any]:
    """
    Collect the configuration fields that decide which index a run uses.

    Document paths only count for the file-backed provider.
    """
    fields: Dict[str, Any] = {
        "embedding_model": configuration.embedding_model,
        "sitemap_urls": sorted(configuration.sitemap_urls),
    }
    if configuration.retriever_provider == RetrieverProvider.LOCAL_FILE:
        fields["document_paths"] = sorted(configuration.document_paths)
    return fields


def storage_key(fields: Dict[str, Any]) -> str:
    """Hash a canonical JSON encoding of identity fields to a short hex key."""
    canonical = json.dumps(fields, sort_keys=True, separators=(",", ":"))
    return hashlib.md5(canonical.encode("utf-8")).hexdigest()[:STORAGE_KEY_LENGTH]


def location_lock(path: str) -> asyncio.Lock:
    """Return the lock serialising writes to one storage location on the running loop."""
    loop = asyncio.get_running_loop()
    entry = _location_locks.get(path)
    if entry is None or entry[0] is not loop:
        entry = (loop, asyncio.Lock())
        _location_locks[path] = entry
    return entry[1]


class IndexManager:
    """Manager for one storage location: directory, descriptor and sitemap metadata."""

    def __init__(self, configuration: Configuration, base_dir: Optional[str] = None, persistent: bool = True):
        """
        Initialize the index manager.

        Args:
            configuration: Resolved configuration for this run
            base_dir: Optional base directory overriding configuration.vector_store_dir
            persistent: False keeps the descriptor and sitemap metadata in process memory
        """
        self.fields = identity_fields(configuration)
        self.key = storage_key(self.fields)
        self.user_id = configuration.user_id
        self.base_dir = base_dir or configuration.vector_store_dir
        self.path = os.path.join(self.base_dir, self.user_id, self.key)
        self.persistent = persistent

        logger.debug(f"Index manager initialized for location: {self.path}")

    @property
    def config_path(self) -> str:
        return os.path.join(self.path, CONFIG_FILE)

    @property
    def sitemap_metadata_path(self) -> str:
        return os.path.join(self.path, SITEMAP_METADATA_FILE)

    @property
    def lock(self) -> asyncio.Lock:
        return location_lock(self.path)

    def ensure_directory(self):
        if self.persistent:
            os.makedirs(self.path, exist_ok=True)

    def _read_json(self, path: str) -> Optional[Dict[str, Any]]:
        if not self.persistent:
            data = _memory_files.get(path)
            return dict(data) if data is not None else None
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read {path}: {str(e)}")
            return None
        return data if isinstance(data, dict) else None

    def _write_json(self, path: str, data: Dict[str, Any]):
        if not self.persistent:
            _memory_files[path] = dict(data)
            return
        self.ensure_directory()
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp_path, path)

    def _remove(self, path: str):
        if not self.persistent:
            _memory_files.pop(path, None)
        elif os.path.exists(path):
            os.remove(path)

    def read_descriptor(self) -> Optional[Dict[str, Any]]:
        return self._read_json(self.config_path)

    def write_descriptor(self):
        """Record the identity fields that produced the index at this location."""
        existing = self.read_descriptor()
        created = existing.get("created") if existing and self.descriptor_matches() else None
        self._write_json(self.config_path, {
            **self.fields,
            "created": created or datetime.now(timezone.utc).isoformat(),
        })

    def descriptor_matches(self) -> bool:
        """
        Compare the recorded identity with the live configuration.

        An unreadable or missing descriptor counts as a mismatch.
        """
        descriptor = self.read_descriptor()
        if not descriptor:
            return False
        recorded = {k: v for k, v in descriptor.items() if k != "created"}
        return storage_key(recorded) == self.key

    def remove_files(self, names: Iterable[str]):
        """Delete index files at this location, together with the sitemap metadata."""
        for name in list(names) + [SITEMAP_METADATA_FILE]:
            path = os.path.join(self.path, name)
            try:
                self._remove(path)
            except OSError as e:
                logger.warning(f"Could not delete {path}: {str(e)}")

    def load_sitemap_metadata(self) -> Dict[str, Dict[str, str]]:
        return self._read_json(self.sitemap_metadata_path) or {}

    def sitemap_unchanged(self, sitemap_url: str, body_hash: str) -> bool:
        entry = self.load_sitemap_metadata().get(sitemap_url)
        return bool(entry) and entry.get("last_modified") == body_hash

    def record_sitemap(self, sitemap_url: str, body_hash: str):
        """Remember the hash of a sitemap body after a successful ingestion run."""
        metadata = self.load_sitemap_metadata()
        metadata[sitemap_url] = {
            "last_modified": body_hash,
            "last_ingestion_date": datetime.now(timezone.utc).isoformat(),
        }
        self._write_json(self.sitemap_metadata_path, metadata)

    def get_index_stats(self, document_count: int) -> Dict[str, Any]:
        """
        Get statistics about the location.

        Args:
            document_count: Number of chunks currently stored

        Returns:
            Dictionary with location statistics
        """
        descriptor = self.read_descriptor() or {}
        return {
            "storage_key": self.key,
            "location": self.path,
            "user_id": self.user_id,
            "created": descriptor.get("created"),
            "document_count": document_count,
            "sitemaps": len(self.load_sitemap_metadata()),
        }
