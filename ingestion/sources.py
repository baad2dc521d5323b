"""
Source enumeration, fetching and chunking for document ingestion.
"""
import hashlib
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import docx
import httpx
from bs4 import BeautifulSoup
from langchain_core.documents import Document
from langchain_text_splitters import RecursiveCharacterTextSplitter

from config import INGESTION_CONFIG
from utils.errors import SourceUnavailable

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".docx",)

text_splitter = RecursiveCharacterTextSplitter(
    chunk_size=INGESTION_CONFIG["chunk_size"],
    chunk_overlap=INGESTION_CONFIG["chunk_overlap"]
)


@dataclass(frozen=True)
class SitemapEntry:
    """One page listed in a sitemap."""
    url: str
    last_modified: Optional[str] = None


def md5_hex(data) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.md5(data).hexdigest()


def url_content_hash(url: str, last_modified: Optional[str] = None) -> str:
    """Fingerprint a sitemap page; a new lastmod gives a new hash."""
    return md5_hex(f"{url}:{last_modified}" if last_modified else url)


def title_from_locator(locator: str) -> str:
    """Last non-empty path or URL segment, falling back to the host."""
    parsed = urlparse(locator)
    path = parsed.path if parsed.scheme in ("http", "https") else locator
    segments = [s for s in path.replace("\\", "/").split("/") if s]
    if segments:
        return segments[-1]
    return parsed.netloc or locator


def parse_timestamp(value: Optional[str]) -> Optional[float]:
    """Parse a W3C datetime as used by sitemap lastmod into epoch seconds."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00")).timestamp()
    except ValueError:
        logger.debug(f"Unparseable lastmod value: {value}")
        return None


def looks_like_html(url: str, content: str) -> bool:
    path = urlparse(url).path.lower()
    if path.endswith((".html", ".htm")):
        return True
    head = content.lstrip()[:512].lower()
    return head.startswith("<!doctype html") or "<html" in head


def html_to_text(html: str) -> str:
    """Convert an HTML page to plain text, dropping scripts and styles."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    lines = (line.strip() for line in soup.get_text(separator="\n").splitlines())
    return "\n".join(line for line in lines if line)


def split_text(text: str, metadata: Dict[str, Any]) -> List[Document]:
    """Chunk text with overlap; every chunk gets its own copy of the metadata."""
    return [
        Document(page_content=chunk, metadata=dict(metadata))
        for chunk in text_splitter.split_text(text)
        if chunk.strip()
    ]


def enumerate_local_files(paths: List[str]) -> List[str]:
    """
    Expand files and directories into supported document files.

    Directories are listed one level deep. Missing paths and unsupported
    files are logged and skipped.

    Args:
        paths: File or directory paths

    Returns:
        Sorted, de-duplicated list of supported files
    """
    found = []
    for path in paths:
        if not os.path.exists(path):
            logger.error(f"Document path does not exist: {path}")
            continue
        if os.path.isdir(path):
            try:
                names = sorted(os.listdir(path))
            except OSError as e:
                logger.error(f"Cannot read directory {path}: {str(e)}")
                continue
            candidates = [os.path.join(path, name) for name in names
                          if os.path.isfile(os.path.join(path, name))]
        else:
            candidates = [path]

        for candidate in candidates:
            if candidate.lower().endswith(SUPPORTED_EXTENSIONS):
                found.append(candidate)
            else:
                logger.warning(f"Skipping unsupported file: {candidate}")
    return sorted(set(found))


def extract_docx_text(path: str) -> str:
    document = docx.Document(path)
    paragraphs = [p.text for p in document.paragraphs if p.text.strip()]
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                paragraphs.append(" | ".join(cells))
    return "\n".join(paragraphs)


def load_local_document(path: str, user_id: str) -> List[Document]:
    """
    Read a word-processor document and chunk it.

    Raises:
        SourceUnavailable: If the file cannot be read or parsed
    """
    try:
        with open(path, "rb") as f:
            raw = f.read()
        text = extract_docx_text(path)
    except Exception as e:
        raise SourceUnavailable(path, str(e)) from e

    metadata = {
        "source": path,
        "title": os.path.splitext(os.path.basename(path))[0],
        "user_id": user_id,
        "content_hash": md5_hex(raw),
    }
    return split_text(text, metadata)


async def fetch_text(client: httpx.AsyncClient, url: str) -> str:
    """
    Fetch a URL as text.

    Raises:
        SourceUnavailable: On transport errors or a non-200 status
    """
    try:
        response = await client.get(url, follow_redirects=True)
    except httpx.HTTPError as e:
        raise SourceUnavailable(url, str(e)) from e
    if response.status_code != 200:
        raise SourceUnavailable(url, f"HTTP {response.status_code}")
    return response.text


def parse_sitemap(xml: str) -> Dict[str, List]:
    """
    Parse a sitemap body.

    Returns:
        {"urls": [SitemapEntry, ...], "sitemaps": [child sitemap URL, ...]}
    """
    soup = BeautifulSoup(xml, "xml")
    if soup.find("sitemapindex") is not None:
        children = []
        for node in soup.find_all("sitemap"):
            loc = node.find("loc")
            if loc is not None and loc.get_text(strip=True):
                children.append(loc.get_text(strip=True))
        return {"urls": [], "sitemaps": children}

    entries = []
    for node in soup.find_all("url"):
        loc = node.find("loc")
        if loc is None or not loc.get_text(strip=True):
            continue
        lastmod = node.find("lastmod")
        entries.append(SitemapEntry(
            url=loc.get_text(strip=True),
            last_modified=lastmod.get_text(strip=True) if lastmod is not None else None
        ))
    return {"urls": entries, "sitemaps": []}


@dataclass
class SitemapCrawl:
    """Pages of a sitemap tree with the bodies they were read from."""
    entries: List[SitemapEntry] = field(default_factory=list)
    bodies: List[str] = field(default_factory=list)
    failed: int = 0

    def fingerprint(self) -> str:
        """Hash over the index body and every child body, in crawl order."""
        return md5_hex("\n".join(self.bodies))


async def crawl_sitemap(client: httpx.AsyncClient, sitemap_url: str, body: Optional[str] = None,
                        depth: int = 0) -> SitemapCrawl:
    """
    Read a sitemap, following sitemap indexes.

    Unreachable children are counted in ``failed`` and contribute no pages.

    Args:
        client: HTTP client
        sitemap_url: Sitemap location
        body: Already fetched body of sitemap_url, if any
        depth: Current nesting level of sitemap indexes

    Returns:
        SitemapCrawl with pages de-duplicated by URL
    """
    crawl = SitemapCrawl()
    if body is None:
        try:
            body = await fetch_text(client, sitemap_url)
        except SourceUnavailable as e:
            logger.error(str(e))
            crawl.failed += 1
            return crawl

    crawl.bodies.append(body)
    parsed = parse_sitemap(body)
    entries = list(parsed["urls"])

    if parsed["sitemaps"]:
        if depth >= INGESTION_CONFIG["max_sitemap_depth"]:
            logger.warning(f"Sitemap nesting too deep at {sitemap_url}, not following children")
        else:
            for child in parsed["sitemaps"]:
                child_crawl = await crawl_sitemap(client, child, depth=depth + 1)
                entries.extend(child_crawl.entries)
                crawl.bodies.extend(child_crawl.bodies)
                crawl.failed += child_crawl.failed

    if not entries:
        logger.warning(f"No pages found in sitemap {sitemap_url}")

    seen = set()
    for entry in entries:
        if entry.url not in seen:
            seen.add(entry.url)
            crawl.entries.append(entry)
    return crawl


async def enumerate_sitemap(client: httpx.AsyncClient, sitemap_url: str, body: Optional[str] = None,
                            depth: int = 0) -> List[SitemapEntry]:
    """List the pages of a sitemap, following sitemap indexes, in document order."""
    crawl = await crawl_sitemap(client, sitemap_url, body=body, depth=depth)
    return crawl.entries


async def load_url_document(client: httpx.AsyncClient, entry: SitemapEntry, user_id: str,
                            content_hash: Optional[str] = None) -> List[Document]:
    """
    Fetch one sitemap page and chunk it.

    Raises:
        SourceUnavailable: If the page cannot be fetched
    """
    content = await fetch_text(client, entry.url)
    if looks_like_html(entry.url, content):
        content = html_to_text(content)

    metadata: Dict[str, Any] = {
        "source": entry.url,
        "title": title_from_locator(entry.url),
        "user_id": user_id,
        "content_hash": content_hash or url_content_hash(entry.url, entry.last_modified),
    }
    if entry.last_modified:
        metadata["last_modified"] = entry.last_modified
        timestamp = parse_timestamp(entry.last_modified)
        if timestamp is not None:
            metadata["last_modified_ts"] = timestamp
    return split_text(content, metadata)
