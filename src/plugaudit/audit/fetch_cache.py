"""Conditional fetch cache.

Maps a logical relative path (``packages/<id>/package.json``,
``community-plugins.json``) to the freshness value last seen on the remote
host and decides whether a download is needed. The header-only check is the
source of truth; metadata is persisted after every change so an interrupted
run never leaves the cache claiming more than the check confirmed.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import httpx
from pydantic import ValidationError

from plugaudit.audit.errors import AcquisitionFailure, StructuralFailure
from plugaudit.audit.models import FetchCacheEntry
from plugaudit.audit.store import write_bytes_atomic, write_json_atomic

logger = logging.getLogger(__name__)

_MISSING_STATUSES = (404, 410)


class RemoteFileMissing(AcquisitionFailure):
    """The remote host reports that the resource does not exist."""


@dataclass
class RemoteStatus:
    """Result of a header-only check."""

    exists: bool
    last_modified: str | None = None
    size: int | None = None


class SyncResult(Enum):
    """What :meth:`FetchCache.sync` did with a resource."""

    FRESH = "fresh"  # Local copy matches the remote, nothing downloaded
    DOWNLOADED = "downloaded"
    MISSING = "missing"  # Remote reports the resource absent


def _freshness(headers: httpx.Headers) -> str | None:
    # Raw file hosts often omit Last-Modified but always send an ETag
    return headers.get("last-modified") or headers.get("etag")


def _content_length(headers: httpx.Headers) -> int | None:
    value = headers.get("content-length")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class FetchCache:
    """Freshness metadata for downloaded resources, persisted as JSON."""

    def __init__(
        self,
        metadata_path: Path,
        client: httpx.AsyncClient,
        entries: dict[str, FetchCacheEntry] | None = None,
    ) -> None:
        self.metadata_path = Path(metadata_path)
        self._client = client
        self._entries: dict[str, FetchCacheEntry] = dict(entries or {})
        self._lock = asyncio.Lock()

    @classmethod
    def load(cls, metadata_path: Path, client: httpx.AsyncClient) -> FetchCache:
        """Load metadata from disk; an unreadable file starts an empty cache."""
        entries: dict[str, FetchCacheEntry] = {}
        try:
            raw = json.loads(Path(metadata_path).read_text(encoding="utf-8"))
            entries = {key: FetchCacheEntry.model_validate(value) for key, value in raw.items()}
        except FileNotFoundError:
            pass
        except (OSError, ValueError, AttributeError, ValidationError) as e:
            logger.warning("Discarding unreadable cache metadata %s: %s", metadata_path, e)
        return cls(metadata_path, client, entries)

    def get(self, path: str) -> FetchCacheEntry | None:
        return self._entries.get(path)

    @property
    def entries(self) -> dict[str, FetchCacheEntry]:
        return dict(self._entries)

    def should_fetch(self, path: str, remote_last_modified: str | None) -> bool:
        """Return True unless the cached freshness value equals the remote one."""
        entry = self._entries.get(path)
        if entry is None or entry.last_modified is None:
            return True
        if remote_last_modified is None:
            return True
        return entry.last_modified != remote_last_modified

    async def record_fetch(
        self, path: str, remote_last_modified: str | None, size: int | None
    ) -> None:
        async with self._lock:
            self._entries[path] = FetchCacheEntry(last_modified=remote_last_modified, size=size)
            self._save()

    async def forget(self, path: str) -> None:
        async with self._lock:
            if self._entries.pop(path, None) is not None:
                self._save()

    async def check_remote(self, url: str, path: str | None = None) -> RemoteStatus:
        """Check ``url`` with a HEAD request.

        A missing resource is not an error: the returned status says so and the
        cache entry for ``path`` (if any) is dropped.

        Raises:
            httpx.HTTPError: On transport errors or unexpected status codes
        """
        response = await self._client.head(url, follow_redirects=True)
        if response.status_code in _MISSING_STATUSES:
            logger.debug("HEAD %s: not found", url)
            if path is not None:
                await self.forget(path)
            return RemoteStatus(exists=False)
        response.raise_for_status()

        status = RemoteStatus(
            exists=True,
            last_modified=_freshness(response.headers),
            size=_content_length(response.headers),
        )
        logger.debug("HEAD %s: last_modified=%s size=%s", url, status.last_modified, status.size)
        return status

    async def download(self, url: str, path: str, dest: Path, remote: RemoteStatus) -> int:
        """Download ``url`` into ``dest`` and record its freshness.

        Returns:
            Number of bytes written

        Raises:
            RemoteFileMissing: If the host answers 404
            httpx.HTTPError: On transport errors or other bad statuses
        """
        response = await self._client.get(url, follow_redirects=True)
        if response.status_code in _MISSING_STATUSES:
            await self.forget(path)
            raise RemoteFileMissing(f"File not found: {url}")
        response.raise_for_status()

        body = response.content
        write_bytes_atomic(dest, body)
        await self.record_fetch(path, remote.last_modified or _freshness(response.headers), len(body))
        return len(body)

    async def sync(self, url: str, path: str, dest: Path) -> SyncResult:
        """Bring ``dest`` up to date with ``url``, downloading only when stale.

        Raises:
            httpx.HTTPError: On transport errors or unexpected status codes
            StructuralFailure: If the cache metadata cannot be written
        """
        remote = await self.check_remote(url, path)
        if not remote.exists:
            return SyncResult.MISSING
        if dest.exists() and not self.should_fetch(path, remote.last_modified):
            logger.debug("%s is fresh, skipping download", path)
            return SyncResult.FRESH
        try:
            await self.download(url, path, dest, remote)
        except RemoteFileMissing:
            return SyncResult.MISSING
        return SyncResult.DOWNLOADED

    def _save(self) -> None:
        try:
            write_json_atomic(
                self.metadata_path,
                {key: entry.to_json() for key, entry in sorted(self._entries.items())},
            )
        except OSError as e:
            raise StructuralFailure(f"Cannot write cache metadata {self.metadata_path}: {e}") from e
