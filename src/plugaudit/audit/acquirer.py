"""Manifest and lockfile acquisition for one plugin.

Files land in the plugin's working directory (``packages/<id>/``). A cached
copy is reused as-is while the repository is unchanged; otherwise the
conditional fetch cache decides whether the remote copy must be downloaded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import httpx

from plugaudit.audit.fetch_cache import FetchCache, SyncResult
from plugaudit.audit.github import raw_file_url
from plugaudit.audit.models import PluginRecord
from plugaudit.audit.runner import LOCKFILE_FILE, MANIFEST_FILE, AuditRunner
from plugaudit.audit.store import CacheStore

logger = logging.getLogger(__name__)


@dataclass
class AcquisitionResult:
    """What ended up in the working directory."""

    primary_ok: bool
    lockfile_ok: bool
    lockfile_synthesized: bool = False
    reason: str | None = None
    stale: bool = False  # Some file could not be checked against the repository


@dataclass
class _FileStatus:
    ok: bool
    reason: str | None = None
    stale: bool = False


class ManifestAcquirer:
    """Fetches ``package.json`` (mandatory) and ``package-lock.json`` (optional)."""

    def __init__(
        self,
        store: CacheStore,
        fetch_cache: FetchCache,
        runner: AuditRunner,
        raw_url: str = "https://raw.githubusercontent.com",
    ):
        self.store = store
        self.fetch_cache = fetch_cache
        self.runner = runner
        self.raw_url = raw_url

    def working_dir(self, plugin: PluginRecord) -> Path:
        return self.store.package_dir(plugin.id)

    def has_cached_manifest(self, plugin: PluginRecord) -> bool:
        return (self.working_dir(plugin) / MANIFEST_FILE).is_file()

    async def acquire(self, plugin: PluginRecord, branch: str, changed: bool) -> AcquisitionResult:
        """Populate the plugin's working directory.

        Args:
            plugin: Plugin with a known ``repo``
            branch: Resolved default branch
            changed: Whether the repository was pushed since the last audit

        Returns:
            AcquisitionResult; ``primary_ok`` False means the plugin cannot be audited

        Raises:
            AcquisitionFailure: If the plugin id cannot be used as a directory name
            StructuralFailure: If the cache metadata cannot be written
            OSError: If the working directory cannot be written
        """
        workdir = self.working_dir(plugin)
        workdir.mkdir(parents=True, exist_ok=True)

        primary = await self._acquire_file(plugin, branch, changed, MANIFEST_FILE, workdir)
        if not primary.ok:
            return AcquisitionResult(primary_ok=False, lockfile_ok=False, reason=primary.reason)

        lockfile = await self._acquire_file(plugin, branch, changed, LOCKFILE_FILE, workdir)
        if lockfile.ok:
            return AcquisitionResult(
                primary_ok=True, lockfile_ok=True, stale=primary.stale or lockfile.stale
            )

        logger.info("[%s] No %s available, synthesizing one", plugin.id, LOCKFILE_FILE)
        synthesized = await self.runner.synthesize_lockfile(plugin.id, workdir)
        return AcquisitionResult(
            primary_ok=True,
            lockfile_ok=synthesized,
            lockfile_synthesized=synthesized,
            reason=lockfile.reason,
            stale=primary.stale or lockfile.stale,
        )

    async def _acquire_file(
        self,
        plugin: PluginRecord,
        branch: str,
        changed: bool,
        file_name: str,
        workdir: Path,
    ) -> _FileStatus:
        dest = workdir / file_name
        if dest.is_file() and not changed:
            logger.debug("[%s] Using cached %s", plugin.id, file_name)
            return _FileStatus(ok=True)

        if not plugin.repo:
            return _FileStatus(ok=False, reason="No repository")
        url = raw_file_url(self.raw_url, plugin.repo, branch, file_name)
        key = self.store.relative_key(plugin.id, file_name)
        try:
            result = await self.fetch_cache.sync(url, key, dest)
        except httpx.HTTPError as e:
            if dest.is_file():
                logger.warning(
                    "[%s] Error downloading %s (%s), using cached copy", plugin.id, file_name, e
                )
                return _FileStatus(ok=True, stale=True)
            logger.warning("[%s] Error downloading %s: %s", plugin.id, file_name, e)
            return _FileStatus(
                ok=False, reason=f"Error downloading {file_name}: {e}", stale=True
            )

        if result is SyncResult.MISSING:
            # The repository no longer has this file
            dest.unlink(missing_ok=True)
            logger.debug("[%s] %s not found in repository", plugin.id, file_name)
            return _FileStatus(ok=False, reason=f"Missing {file_name} in {plugin.repo}@{branch}")

        logger.debug("[%s] %s %s", plugin.id, file_name, result.value)
        return _FileStatus(ok=True)
