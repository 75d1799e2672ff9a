"""On-disk layout of the audit cache directory.

::

    <cache_dir>/
        installed-manifest.json   list of PluginRecord
        cache-metadata.json       logical path -> FetchCacheEntry
        community-plugins.json    cached registry snapshot
        audit.log                 human readable log of the last run
        audit-outcomes.json       structured outcomes of the last run
        packages/<id>/            per-plugin working directories

Every document is written whole, through a temporary sibling file and
``os.replace``, so a crash never leaves a half-written file behind.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from plugaudit.audit.errors import AcquisitionFailure, StructuralFailure
from plugaudit.audit.models import AuditOutcome, AuditSummary, PluginRecord

logger = logging.getLogger(__name__)

MANIFEST_FILE = "installed-manifest.json"
METADATA_FILE = "cache-metadata.json"
REGISTRY_FILE = "community-plugins.json"
LOG_FILE = "audit.log"
OUTCOMES_FILE = "audit-outcomes.json"
PACKAGES_DIR = "packages"


def write_bytes_atomic(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` so readers see either the old or the new file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def write_text_atomic(path: Path, text: str) -> None:
    write_bytes_atomic(path, text.encode("utf-8"))


def write_json_atomic(path: Path, data: Any) -> None:
    write_text_atomic(path, json.dumps(data, indent=2))


def read_installed_plugins(path: Path) -> list[str]:
    """Read the installed-plugin list (a JSON array of ids).

    Raises:
        StructuralFailure: If the list is missing, unreadable or malformed
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise StructuralFailure(f"Installed plugin list not found at {path}") from e
    except (OSError, ValueError) as e:
        raise StructuralFailure(f"Cannot read installed plugin list {path}: {e}") from e

    if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
        raise StructuralFailure(f"Installed plugin list {path} is not a JSON array of ids")

    # Duplicates would break the one-outcome-per-plugin partition
    return list(dict.fromkeys(data))


def read_local_manifest(plugins_dir: Path, plugin_id: str) -> dict[str, Any] | None:
    """Read ``<plugins_dir>/<id>/manifest.json``, or None if it is unusable."""
    manifest_path = plugins_dir / plugin_id / "manifest.json"
    try:
        data = json.loads(manifest_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.debug("[%s] No readable local manifest at %s: %s", plugin_id, manifest_path, e)
        return None
    return data if isinstance(data, dict) else None


class CacheStore:
    """Reads and writes the documents of the cache directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root).expanduser()

    @property
    def manifest_path(self) -> Path:
        return self.root / MANIFEST_FILE

    @property
    def metadata_path(self) -> Path:
        return self.root / METADATA_FILE

    @property
    def registry_path(self) -> Path:
        return self.root / REGISTRY_FILE

    @property
    def log_path(self) -> Path:
        return self.root / LOG_FILE

    @property
    def outcomes_path(self) -> Path:
        return self.root / OUTCOMES_FILE

    def ensure(self) -> None:
        """Create the cache directory.

        Raises:
            StructuralFailure: If the directory cannot be created
        """
        try:
            (self.root / PACKAGES_DIR).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StructuralFailure(f"Cannot create cache directory {self.root}: {e}") from e

    def package_dir(self, plugin_id: str) -> Path:
        """Working directory for one plugin.

        Raises:
            AcquisitionFailure: If the id cannot be used as a directory name
        """
        if not plugin_id or plugin_id in (".", "..") or "/" in plugin_id or "\\" in plugin_id:
            raise AcquisitionFailure(f"Plugin id {plugin_id!r} is not a valid directory name")
        return self.root / PACKAGES_DIR / plugin_id

    def relative_key(self, plugin_id: str, file_name: str) -> str:
        """Logical cache-metadata key for a per-plugin file."""
        return f"{PACKAGES_DIR}/{plugin_id}/{file_name}"

    def load_manifest(self) -> list[PluginRecord] | None:
        if not self.manifest_path.exists():
            return None
        try:
            data = json.loads(self.manifest_path.read_text(encoding="utf-8"))
            return [PluginRecord.model_validate(item) for item in data]
        except (OSError, ValueError, TypeError, ValidationError) as e:
            logger.warning("Ignoring unreadable cached manifest %s: %s", self.manifest_path, e)
            return None

    def save_manifest(self, records: list[PluginRecord]) -> None:
        write_json_atomic(self.manifest_path, [record.to_json() for record in records])

    def load_log(self) -> str | None:
        try:
            return self.log_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def save_log(self, text: str) -> None:
        write_text_atomic(self.log_path, text)

    def load_outcomes(self) -> list[AuditOutcome] | None:
        if not self.outcomes_path.exists():
            return None
        try:
            data = json.loads(self.outcomes_path.read_text(encoding="utf-8"))
            return [AuditOutcome.from_dict(item) for item in data]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable outcomes file %s: %s", self.outcomes_path, e)
            return None

    def save_outcomes(self, outcomes: list[AuditOutcome]) -> None:
        write_json_atomic(self.outcomes_path, [outcome.to_dict() for outcome in outcomes])

    def clear(self) -> None:
        """Delete everything in the cache directory and recreate it empty."""
        shutil.rmtree(self.root, ignore_errors=True)
        self.ensure()


@dataclass
class LastRun:
    """What the caller remembers about the previous run."""

    timestamp: datetime
    summary: AuditSummary | None
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "summary": self.summary.to_dict() if self.summary else None,
            "message": self.message,
        }


def save_last_run(path: Path, last_run: LastRun) -> None:
    write_json_atomic(Path(path).expanduser(), last_run.to_dict())


def load_last_run(path: Path) -> LastRun | None:
    path = Path(path).expanduser()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        summary = data.get("summary")
        return LastRun(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            summary=AuditSummary.from_dict(summary) if summary else None,
            message=data.get("message", ""),
        )
    except FileNotFoundError:
        return None
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.warning("Ignoring unreadable state file %s: %s", path, e)
        return None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
