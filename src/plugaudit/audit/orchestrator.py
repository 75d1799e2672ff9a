"""Audit orchestration: the end-to-end run over every installed plugin.

State machine::

    IDLE -> RESOLVING_INSTALLED_LIST -> BUILDING_MANIFEST -> ACQUIRING_FILES
         -> RUNNING_AUDITS -> PERSISTING -> DONE
    (any state) -> FAILED

Per-plugin problems never leave their plugin: they become that plugin's
:class:`~plugaudit.audit.models.AuditOutcome`. Only a
:class:`~plugaudit.audit.errors.StructuralFailure` (or cancellation) ends the
run early. Plugins are processed by a bounded pool of workers pulling from a
queue; the shared documents (cache metadata, installed manifest, outcome list)
are written by one owner at a time.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Protocol, TypeVar

import httpx

from plugaudit.audit.acquirer import ManifestAcquirer
from plugaudit.audit.aggregator import fold, summarize
from plugaudit.audit.errors import (
    AcquisitionFailure,
    RepositoryResolutionFailure,
    StructuralFailure,
)
from plugaudit.audit.fetch_cache import FetchCache
from plugaudit.audit.github import RepositoryResolver
from plugaudit.audit.models import AuditOutcome, AuditSummary, PluginRecord
from plugaudit.audit.registry import PluginRegistry, merge_records, reuse_cached_manifest
from plugaudit.audit.runner import AuditRunner
from plugaudit.audit.store import CacheStore, read_installed_plugins, utc_now
from plugaudit.config.schema import PlugauditConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

NO_PLUGINS_MESSAGE = "No plugins installed."
CANCELLED_MESSAGE = "Audit cancelled"


class RunState(Enum):
    """Orchestrator states."""

    IDLE = "idle"
    RESOLVING_INSTALLED_LIST = "resolving_installed_list"
    BUILDING_MANIFEST = "building_manifest"
    ACQUIRING_FILES = "acquiring_files"
    RUNNING_AUDITS = "running_audits"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


class ProgressSink(Protocol):
    """Receives progress updates. Purely observational."""

    def __call__(
        self, percent: float, message: str, summary: AuditSummary | None = None
    ) -> None: ...


@dataclass
class RunContext:
    """Everything a run needs from its caller."""

    config: PlugauditConfig
    progress: ProgressSink | None = None
    cancel_event: asyncio.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


@dataclass
class RunResult:
    """Outcome of a run. Persisting it beyond the cache directory is the caller's job."""

    state: RunState
    message: str
    started_at: datetime
    finished_at: datetime
    plugins: list[PluginRecord] = field(default_factory=list)
    outcomes: list[AuditOutcome] = field(default_factory=list)
    summary: AuditSummary | None = None
    log: str = ""
    error: str | None = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.state is RunState.DONE


@dataclass
class _Acquired:
    """Acquisition result for one plugin: a working directory or a final outcome."""

    workdir: Path | None = None
    outcome: AuditOutcome | None = None


class _Cancelled(Exception):
    pass


def describe_summary(summary: AuditSummary) -> str:
    """One-line human readable summary."""
    parts = [
        (summary.critical, "critical"),
        (summary.high, "high"),
        (summary.moderate, "moderate"),
        (summary.low, "low"),
        (summary.info, "info"),
        (summary.no_issues, "without issues"),
        (summary.failed_download, "not downloaded"),
        (summary.audit_incomplete, "audit incomplete"),
        (summary.no_repo, "without repository"),
    ]
    detail = ", ".join(f"{count} {label}" for count, label in parts if count)
    return f"Audited {summary.total} plugins: {detail}" if detail else "Audited 0 plugins"


async def run_pool(
    items: list[T],
    handler: Callable[[T], Awaitable[R]],
    workers: int,
    cancel_event: asyncio.Event | None = None,
    on_done: Callable[[int, list[R | None]], None] | None = None,
) -> list[R | None]:
    """Run ``handler`` over ``items`` with at most ``workers`` in flight.

    Results keep the input order. Items not started because ``cancel_event``
    was set are left as None. An exception from ``handler`` cancels the other
    workers and propagates.
    """
    queue: asyncio.Queue[tuple[int, T]] = asyncio.Queue()
    for index, item in enumerate(items):
        queue.put_nowait((index, item))
    results: list[R | None] = [None] * len(items)
    completed = 0

    async def worker() -> None:
        nonlocal completed
        while not queue.empty():
            if cancel_event is not None and cancel_event.is_set():
                return
            index, item = queue.get_nowait()
            results[index] = await handler(item)
            completed += 1
            if on_done is not None:
                on_done(completed, results)

    tasks = [
        asyncio.create_task(worker()) for _ in range(max(1, min(workers, len(items))))
    ]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        # One failed worker stops the others before the error propagates
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    return results


class AuditOrchestrator:
    """Sequences manifest building, acquisition, auditing and persistence."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        runner: AuditRunner | None = None,
    ):
        """Initialize orchestrator.

        Args:
            client: HTTP client to use. If None, one is created per run from the config.
            runner: Audit runner. If None, one is created per run from the config.
        """
        self._client = client
        self._runner = runner
        self.state = RunState.IDLE
        self._last_percent = 0.0

    async def run(self, context: RunContext) -> RunResult:
        """Audit every installed plugin.

        Never raises for run-level failures: they are reported through the
        progress sink and the returned :class:`RunResult`.
        """
        started_at = utc_now()
        self.state = RunState.IDLE
        self._last_percent = 0.0

        client = self._client
        owns_client = client is None
        if client is None:
            client = httpx.AsyncClient(
                timeout=context.config.network.timeout,
                headers={"User-Agent": context.config.github.user_agent},
            )

        try:
            result = await self._run(context, client, started_at)
        except StructuralFailure as e:
            logger.error("Audit failed: %s", e)
            self._transition(RunState.FAILED)
            message = f"Error: {e}"
            self._report(context, 100, message)
            result = RunResult(
                state=RunState.FAILED,
                message=message,
                started_at=started_at,
                finished_at=utc_now(),
                error=str(e),
            )
        except _Cancelled:
            logger.warning("Audit cancelled")
            self._transition(RunState.FAILED)
            self._report(context, 100, CANCELLED_MESSAGE)
            result = RunResult(
                state=RunState.FAILED,
                message=CANCELLED_MESSAGE,
                started_at=started_at,
                finished_at=utc_now(),
                error=CANCELLED_MESSAGE,
                cancelled=True,
            )
        finally:
            if owns_client:
                await client.aclose()

        return result

    async def _run(
        self, context: RunContext, client: httpx.AsyncClient, started_at: datetime
    ) -> RunResult:
        config = context.config
        paths = config.paths

        self._transition(RunState.RESOLVING_INSTALLED_LIST)
        self._report(context, 0, "Reading installed plugins...")
        installed_ids = read_installed_plugins(paths.installed_plugins_path())
        logger.info("Found %d installed plugins", len(installed_ids))

        if not installed_ids:
            self._transition(RunState.DONE)
            self._report(context, 100, NO_PLUGINS_MESSAGE)
            return RunResult(
                state=RunState.DONE,
                message=NO_PLUGINS_MESSAGE,
                started_at=started_at,
                finished_at=utc_now(),
                summary=AuditSummary(),
            )

        store = CacheStore(paths.cache_dir_path())
        store.ensure()
        fetch_cache = FetchCache.load(store.metadata_path, client)
        runner = self._runner or AuditRunner(
            command=config.audit.command,
            lockfile_command=config.audit.lockfile_command,
            timeout=config.audit.timeout,
        )

        self._transition(RunState.BUILDING_MANIFEST)
        cached = store.load_manifest()
        plugins = reuse_cached_manifest(installed_ids, cached)
        if plugins is None:
            self._report(context, 5, "Downloading plugin manifest...")
            registry = PluginRegistry(store, fetch_cache, config.registry.url)
            entries = await registry.load()
            self._report(context, 10, "Filtering manifest...")
            plugins = merge_records(installed_ids, entries, cached, paths.plugins_dir_path())
        else:
            logger.debug("Using cached manifest with %d entries", len(plugins))

        self._transition(RunState.ACQUIRING_FILES)
        self._report(context, 15, "Downloading plugin files...")
        acquirer = ManifestAcquirer(store, fetch_cache, runner, raw_url=config.github.raw_url)
        resolver = RepositoryResolver(client, api_url=config.github.api_url, token=config.github.token)
        total = len(plugins)

        def acquired_progress(done: int, _results: list[_Acquired | None]) -> None:
            self._report(context, 15 + done / total * 40, f"Downloaded {done}/{total} plugin files")

        acquired = await run_pool(
            plugins,
            lambda plugin: self._acquire_one(plugin, resolver, acquirer),
            workers=config.network.max_workers,
            cancel_event=context.cancel_event,
            on_done=acquired_progress,
        )

        # Watermarks of completed plugins are valid even if the run stops here
        self._save(store.save_manifest, plugins, "installed manifest")
        if context.cancelled:
            raise _Cancelled()

        self._transition(RunState.RUNNING_AUDITS)
        self._report(context, 55, "Auditing plugins...")
        pairs = list(zip(plugins, acquired))

        def audited_progress(done: int, results: list[AuditOutcome | None]) -> None:
            running = summarize(outcome for outcome in results if outcome is not None)
            self._report(context, 55 + done / total * 40, f"Audited {done}/{total} plugins", running)

        audited = await run_pool(
            pairs,
            lambda pair: self._audit_one(pair[0], pair[1], runner),
            workers=config.audit.workers,
            cancel_event=context.cancel_event,
            on_done=audited_progress,
        )
        if context.cancelled:
            raise _Cancelled()
        outcomes = [outcome for outcome in audited if outcome is not None]

        self._transition(RunState.PERSISTING)
        self._report(context, 95, "Saving audit log...")
        summary, log = fold(outcomes)
        self._save(store.save_outcomes, outcomes, "audit outcomes")
        self._save(store.save_log, log, "audit log")
        logger.info("Saved audit log to %s", store.log_path)

        self._transition(RunState.DONE)
        message = describe_summary(summary)
        self._report(context, 100, message, summary)
        return RunResult(
            state=RunState.DONE,
            message=message,
            started_at=started_at,
            finished_at=utc_now(),
            plugins=plugins,
            outcomes=outcomes,
            summary=summary,
            log=log,
        )

    async def _acquire_one(
        self,
        plugin: PluginRecord,
        resolver: RepositoryResolver,
        acquirer: ManifestAcquirer,
    ) -> _Acquired:
        if not plugin.repo:
            logger.debug("[%s] No repository known, skipping download", plugin.id)
            return _Acquired(outcome=AuditOutcome.no_repository(plugin))

        try:
            try:
                resolution = await resolver.resolve(plugin.repo, plugin.last_updated)
            except RepositoryResolutionFailure as e:
                if acquirer.has_cached_manifest(plugin):
                    logger.warning(
                        "[%s] Repository details failed (%s), auditing cached files", plugin.id, e
                    )
                    return _Acquired(workdir=acquirer.working_dir(plugin))
                logger.warning("[%s] Repository details failed: %s", plugin.id, e)
                return _Acquired(outcome=AuditOutcome.download_failed(plugin, str(e)))

            plugin.default_branch = resolution.branch
            plugin.support_link = resolution.support_link

            result = await acquirer.acquire(
                plugin, resolution.branch, resolution.changed_since_last_audit
            )
            if not result.primary_ok:
                reason = result.reason or "Missing package.json"
                logger.warning("[%s] Failed to process package files: %s", plugin.id, reason)
                return _Acquired(outcome=AuditOutcome.download_failed(plugin, reason))

            if result.stale:
                # Files are an older copy; keep the watermark so the next run retries
                logger.warning(
                    "[%s] Auditing cached package files, repository could not be reached",
                    plugin.id,
                )
            else:
                plugin.last_updated = resolution.pushed_at
                logger.debug("[%s] Package files ok", plugin.id)
            return _Acquired(workdir=acquirer.working_dir(plugin))

        except StructuralFailure:
            raise
        except (AcquisitionFailure, OSError) as e:
            logger.warning("[%s] Failed to process package files: %s", plugin.id, e)
            return _Acquired(outcome=AuditOutcome.download_failed(plugin, str(e)))
        except Exception as e:
            logger.exception("[%s] Unexpected error while downloading", plugin.id)
            return _Acquired(
                outcome=AuditOutcome.download_failed(plugin, f"Unexpected error: {e}")
            )

    async def _audit_one(
        self, plugin: PluginRecord, acquired: _Acquired | None, runner: AuditRunner
    ) -> AuditOutcome:
        if acquired is None:
            return AuditOutcome.download_failed(plugin, "Files not downloaded")
        if acquired.outcome is not None:
            return acquired.outcome
        if acquired.workdir is None:
            return AuditOutcome.download_failed(plugin, "Files not downloaded")

        logger.debug("[%s] Auditing in %s", plugin.id, acquired.workdir)
        try:
            return await runner.audit(plugin, acquired.workdir)
        except Exception as e:
            logger.exception("[%s] Unexpected error while auditing", plugin.id)
            return AuditOutcome.audit_incomplete(
                plugin.id, plugin.display_name, f"Unexpected error: {e}"
            )

    def _save(self, writer: Callable[[T], None], value: T, what: str) -> None:
        try:
            writer(value)
        except OSError as e:
            raise StructuralFailure(f"Cannot write {what}: {e}") from e

    def _transition(self, state: RunState) -> None:
        logger.debug("State %s -> %s", self.state.value, state.value)
        self.state = state

    def _report(
        self,
        context: RunContext,
        percent: float,
        message: str,
        summary: AuditSummary | None = None,
    ) -> None:
        percent = max(self._last_percent, min(100.0, percent))
        self._last_percent = percent
        if context.progress is None:
            return
        try:
            context.progress(percent, message, summary)
        except Exception as e:
            logger.warning("Progress sink raised: %s", e)
