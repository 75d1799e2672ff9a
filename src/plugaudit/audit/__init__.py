"""Audit pipeline for installed plugins.

Resolves each plugin to its repository, fetches its dependency manifest,
runs the audit tool and aggregates the outcomes.
"""

from plugaudit.audit.acquirer import AcquisitionResult, ManifestAcquirer
from plugaudit.audit.aggregator import fold, render_log, summarize
from plugaudit.audit.errors import (
    AcquisitionFailure,
    AuditError,
    AuditToolFailure,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryResolutionFailure,
    StructuralFailure,
    UnexpectedStatusError,
)
from plugaudit.audit.fetch_cache import FetchCache, RemoteStatus, SyncResult
from plugaudit.audit.github import RepositoryResolver, Resolution
from plugaudit.audit.models import (
    AuditOutcome,
    AuditSummary,
    FetchCacheEntry,
    OutcomeKind,
    PluginRecord,
    Severity,
    VulnerableDependency,
)
from plugaudit.audit.orchestrator import (
    AuditOrchestrator,
    ProgressSink,
    RunContext,
    RunResult,
    RunState,
)
from plugaudit.audit.runner import AuditRunner
from plugaudit.audit.store import CacheStore

__all__ = [
    "AcquisitionFailure",
    "AcquisitionResult",
    "AuditError",
    "AuditOrchestrator",
    "AuditOutcome",
    "AuditRunner",
    "AuditSummary",
    "AuditToolFailure",
    "CacheStore",
    "FetchCache",
    "FetchCacheEntry",
    "ManifestAcquirer",
    "OutcomeKind",
    "PluginRecord",
    "ProgressSink",
    "RemoteStatus",
    "RepositoryForbiddenError",
    "RepositoryNotFoundError",
    "RepositoryResolutionFailure",
    "RepositoryResolver",
    "Resolution",
    "RunContext",
    "RunResult",
    "RunState",
    "Severity",
    "StructuralFailure",
    "SyncResult",
    "UnexpectedStatusError",
    "VulnerableDependency",
    "fold",
    "render_log",
    "summarize",
]
