"""Community registry snapshot and installed-manifest building."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import httpx
from pydantic import BaseModel, ValidationError

from plugaudit.audit.errors import StructuralFailure
from plugaudit.audit.fetch_cache import FetchCache, SyncResult
from plugaudit.audit.models import PluginRecord
from plugaudit.audit.store import REGISTRY_FILE, CacheStore, read_local_manifest

logger = logging.getLogger(__name__)


class RegistryEntry(BaseModel):
    """One plugin as listed in the community registry."""

    id: str
    name: str = ""
    author: str = ""
    description: str = ""
    repo: str | None = None


def reuse_cached_manifest(
    installed_ids: list[str], cached: list[PluginRecord] | None
) -> list[PluginRecord] | None:
    """Cached records for ``installed_ids``, or None if any id is missing.

    Records of plugins that are no longer installed are dropped.
    """
    if not cached:
        return None
    by_id = {record.id: record for record in cached}
    if not all(plugin_id in by_id for plugin_id in installed_ids):
        return None
    return [by_id[plugin_id] for plugin_id in installed_ids]


def merge_records(
    installed_ids: list[str],
    registry: list[RegistryEntry],
    prior: list[PluginRecord] | None,
    plugins_dir: Path,
) -> list[PluginRecord]:
    """Build one record per installed id, in installed-list order.

    Registry data wins for descriptive fields. The watermark and branch of a
    prior record carry over while it still points at the same repository.
    Ids unknown to the registry fall back to the plugin's local manifest and
    have no repository.
    """
    registry_by_id = {entry.id: entry for entry in registry}
    prior_by_id = {record.id: record for record in prior or []}
    records: list[PluginRecord] = []
    local_only = 0

    for plugin_id in installed_ids:
        entry = registry_by_id.get(plugin_id)
        if entry is not None:
            record = PluginRecord(
                id=plugin_id,
                name=entry.name or plugin_id,
                author=entry.author,
                description=entry.description,
                repo=entry.repo or None,
            )
            previous = prior_by_id.get(plugin_id)
            if previous is not None and previous.repo == record.repo:
                record.default_branch = previous.default_branch
                record.support_link = previous.support_link
                record.last_updated = previous.last_updated
            records.append(record)
            continue

        local_only += 1
        local = read_local_manifest(plugins_dir, plugin_id) or {}
        records.append(
            PluginRecord(
                id=plugin_id,
                name=str(local.get("name") or plugin_id),
                author=str(local.get("author") or ""),
                description=str(local.get("description") or ""),
            )
        )

    if local_only:
        logger.info("Added %d local plugins without online repository", local_only)
    return records


class PluginRegistry:
    """Obtains the registry snapshot through the fetch cache."""

    def __init__(self, store: CacheStore, fetch_cache: FetchCache, url: str):
        self.store = store
        self.fetch_cache = fetch_cache
        self.url = url

    async def load(self) -> list[RegistryEntry]:
        """Return the registry, downloading it only when the remote copy changed.

        Raises:
            StructuralFailure: If no usable snapshot is available at all
        """
        path = self.store.registry_path
        try:
            result = await self.fetch_cache.sync(self.url, REGISTRY_FILE, path)
        except httpx.HTTPError as e:
            if not path.is_file():
                raise StructuralFailure(f"Could not download plugin registry: {e}") from e
            logger.warning("Could not refresh plugin registry (%s), using cached copy", e)
        except OSError as e:
            raise StructuralFailure(f"Cannot write plugin registry snapshot {path}: {e}") from e
        else:
            if result is SyncResult.MISSING and not path.is_file():
                raise StructuralFailure(f"Plugin registry not found at {self.url}")
            logger.debug("Plugin registry %s", result.value)

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            await self.fetch_cache.forget(REGISTRY_FILE)
            raise StructuralFailure(f"Plugin registry is not valid JSON: {e}") from e
        if not isinstance(raw, list):
            await self.fetch_cache.forget(REGISTRY_FILE)
            raise StructuralFailure("Plugin registry is not a JSON array")

        entries = []
        for item in raw:
            try:
                entries.append(RegistryEntry.model_validate(item))
            except ValidationError:
                logger.debug("Skipping malformed registry entry: %r", item)
        logger.debug("Parsed registry with %d plugins", len(entries))
        return entries
