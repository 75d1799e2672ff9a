"""Data model for plugin records, cache metadata and audit outcomes.

``PluginRecord`` and ``FetchCacheEntry`` are persisted as JSON inside the
cache directory and use camelCase keys on disk. Outcomes and summaries are
produced fresh on every run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PluginRecord(BaseModel):
    """One installed plugin.

    ``id`` is the only stable identity. Everything else is advisory and may be
    missing or stale. A record without ``repo`` is never resolved.
    """

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    id: str
    name: str = ""
    author: str = ""
    description: str = ""
    repo: str | None = Field(default=None, description="Source repository as 'owner/name'")
    default_branch: str | None = None
    support_link: str | None = None
    last_updated: int | None = Field(
        default=None, description="Epoch millis of the repository's last push (watermark)"
    )

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class FetchCacheEntry(BaseModel):
    """Freshness metadata for one cached remote resource."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    last_modified: str | None = None
    size: int | None = None

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Severity(str, Enum):
    """Vulnerability severity reported by the audit tool."""

    NONE = "none"
    INFO = "info"
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> Severity | None:
        """Return the matching severity, or None for unknown values."""
        if not isinstance(value, str):
            return None
        try:
            return cls(value.lower())
        except ValueError:
            return None


_SEVERITY_RANK = {
    Severity.NONE: 0,
    Severity.INFO: 1,
    Severity.LOW: 2,
    Severity.MODERATE: 3,
    Severity.HIGH: 4,
    Severity.CRITICAL: 5,
}


class OutcomeKind(Enum):
    """Terminal classification of one plugin in one run."""

    NO_REPOSITORY = "no_repository"
    DOWNLOAD_FAILED = "download_failed"
    AUDIT_INCOMPLETE = "audit_incomplete"
    AUDITED = "audited"


@dataclass
class VulnerableDependency:
    """A dependency the audit tool flagged."""

    name: str
    severity: Severity


@dataclass
class AuditOutcome:
    """Result of auditing one plugin.

    Use the classmethod constructors; each one fills exactly the fields its
    kind carries.
    """

    plugin_id: str
    plugin_name: str
    kind: OutcomeKind
    reason: str | None = None
    severity: Severity | None = None
    raw_output: str | None = None
    dependencies: list[VulnerableDependency] = field(default_factory=list)

    @classmethod
    def no_repository(cls, plugin: PluginRecord) -> AuditOutcome:
        return cls(plugin.id, plugin.display_name, OutcomeKind.NO_REPOSITORY)

    @classmethod
    def download_failed(cls, plugin: PluginRecord, reason: str) -> AuditOutcome:
        return cls(plugin.id, plugin.display_name, OutcomeKind.DOWNLOAD_FAILED, reason=reason)

    @classmethod
    def audit_incomplete(
        cls, plugin_id: str, plugin_name: str, reason: str, raw_output: str | None = None
    ) -> AuditOutcome:
        return cls(
            plugin_id,
            plugin_name,
            OutcomeKind.AUDIT_INCOMPLETE,
            reason=reason,
            raw_output=raw_output,
        )

    @classmethod
    def audited(
        cls,
        plugin_id: str,
        plugin_name: str,
        severity: Severity,
        raw_output: str,
        dependencies: list[VulnerableDependency] | None = None,
    ) -> AuditOutcome:
        return cls(
            plugin_id,
            plugin_name,
            OutcomeKind.AUDITED,
            severity=severity,
            raw_output=raw_output,
            dependencies=list(dependencies or []),
        )

    @property
    def is_failure(self) -> bool:
        return self.kind is not OutcomeKind.AUDITED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.plugin_id,
            "name": self.plugin_name,
            "kind": self.kind.value,
            "reason": self.reason,
            "severity": self.severity.value if self.severity else None,
            "rawOutput": self.raw_output,
            "dependencies": [
                {"name": dep.name, "severity": dep.severity.value} for dep in self.dependencies
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditOutcome:
        severity = data.get("severity")
        return cls(
            plugin_id=data["id"],
            plugin_name=data.get("name") or data["id"],
            kind=OutcomeKind(data["kind"]),
            reason=data.get("reason"),
            severity=Severity(severity) if severity else None,
            raw_output=data.get("rawOutput"),
            dependencies=[
                VulnerableDependency(dep["name"], Severity(dep["severity"]))
                for dep in data.get("dependencies", [])
            ],
        )


@dataclass
class AuditSummary:
    """Per-category plugin counts, derived from a run's outcomes."""

    critical: int = 0
    high: int = 0
    moderate: int = 0
    low: int = 0
    info: int = 0
    no_issues: int = 0
    failed_download: int = 0
    audit_incomplete: int = 0
    no_repo: int = 0

    @property
    def total(self) -> int:
        return sum(self.to_dict().values())

    def record(self, outcome: AuditOutcome) -> None:
        """Increment exactly one counter for ``outcome``."""
        if outcome.kind is OutcomeKind.NO_REPOSITORY:
            self.no_repo += 1
        elif outcome.kind is OutcomeKind.DOWNLOAD_FAILED:
            self.failed_download += 1
        elif outcome.kind is OutcomeKind.AUDIT_INCOMPLETE:
            self.audit_incomplete += 1
        elif outcome.severity is None or outcome.severity is Severity.NONE:
            self.no_issues += 1
        else:
            attr = outcome.severity.value
            setattr(self, attr, getattr(self, attr) + 1)

    def to_dict(self) -> dict[str, int]:
        return {
            "critical": self.critical,
            "high": self.high,
            "moderate": self.moderate,
            "low": self.low,
            "info": self.info,
            "noIssues": self.no_issues,
            "failedDownload": self.failed_download,
            "auditIncomplete": self.audit_incomplete,
            "noRepo": self.no_repo,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditSummary:
        return cls(
            critical=int(data.get("critical", 0)),
            high=int(data.get("high", 0)),
            moderate=int(data.get("moderate", 0)),
            low=int(data.get("low", 0)),
            info=int(data.get("info", 0)),
            no_issues=int(data.get("noIssues", 0)),
            failed_download=int(data.get("failedDownload", 0)),
            audit_incomplete=int(data.get("auditIncomplete", 0)),
            no_repo=int(data.get("noRepo", 0)),
        )
