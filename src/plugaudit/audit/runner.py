"""External audit tool invocation and severity classification.

The audit tool (``npm audit --json`` by default) runs as a subprocess inside
a plugin's working directory. Its exit status is not meaningful (npm exits
non-zero whenever it finds vulnerabilities), so classification relies on the
JSON it prints::

    {"vulnerabilities": {"<dependency>": {"severity": "high", ...}, ...}}
    {"error": {"code": "ENOLOCK", "summary": "..."}}
"""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from plugaudit.audit.errors import AuditToolFailure
from plugaudit.audit.models import AuditOutcome, PluginRecord, Severity, VulnerableDependency

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_COMMAND = ("npm", "audit", "--json")
DEFAULT_LOCKFILE_COMMAND = ("npm", "i", "--package-lock-only", "--legacy-peer-deps")
MANIFEST_FILE = "package.json"
LOCKFILE_FILE = "package-lock.json"


@dataclass
class ProcessResult:
    """Captured output of a finished subprocess."""

    returncode: int | None
    stdout: str
    stderr: str


async def run_command(command: Sequence[str], cwd: Path, timeout: float) -> ProcessResult:
    """Run ``command`` in ``cwd`` and capture its output.

    Raises:
        AuditToolFailure: If the process cannot be spawned or times out
    """
    if not command:
        raise AuditToolFailure("No command configured")
    executable = shutil.which(command[0]) or command[0]

    try:
        process = await asyncio.create_subprocess_exec(
            executable,
            *command[1:],
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise AuditToolFailure(f"Could not start {command[0]}: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except TimeoutError:
        process.kill()
        await process.wait()
        raise AuditToolFailure(
            f"{' '.join(command)} timed out after {timeout:g} seconds"
        ) from None

    return ProcessResult(
        returncode=process.returncode,
        stdout=stdout.decode("utf-8", errors="replace") if stdout else "",
        stderr=stderr.decode("utf-8", errors="replace") if stderr else "",
    )


def max_severity(vulnerabilities: dict[str, Any]) -> tuple[Severity, list[VulnerableDependency]]:
    """Highest severity across ``vulnerabilities``.

    Entries with a missing or unknown severity are ignored.

    Returns:
        Tuple of (maximum severity, flagged dependencies in report order)
    """
    worst = Severity.NONE
    flagged: list[VulnerableDependency] = []
    for name, details in vulnerabilities.items():
        severity = Severity.parse(details.get("severity") if isinstance(details, dict) else None)
        if severity is None:
            continue
        flagged.append(VulnerableDependency(name=name, severity=severity))
        if severity.rank > worst.rank:
            worst = severity
    return worst, flagged


def _error_reason(error: Any) -> str:
    if isinstance(error, dict):
        code = error.get("code")
        summary = error.get("summary") or error.get("message")
        parts = [str(part) for part in (code, summary) if part]
        return ": ".join(parts) if parts else json.dumps(error)
    return str(error)


def classify_output(plugin_id: str, plugin_name: str, output: str) -> AuditOutcome:
    """Turn audit tool stdout into an outcome."""
    try:
        report = json.loads(output)
    except ValueError:
        return AuditOutcome.audit_incomplete(
            plugin_id, plugin_name, "Audit output is not valid JSON", raw_output=output
        )

    if not isinstance(report, dict):
        return AuditOutcome.audit_incomplete(
            plugin_id, plugin_name, "Audit output is not a JSON object", raw_output=output
        )
    if report.get("error"):
        return AuditOutcome.audit_incomplete(
            plugin_id,
            plugin_name,
            f"Audit tool reported an error: {_error_reason(report['error'])}",
            raw_output=output,
        )

    vulnerabilities = report.get("vulnerabilities") or {}
    if not isinstance(vulnerabilities, dict):
        return AuditOutcome.audit_incomplete(
            plugin_id, plugin_name, "Audit output has a malformed vulnerabilities field",
            raw_output=output,
        )

    severity, flagged = max_severity(vulnerabilities)
    return AuditOutcome.audited(plugin_id, plugin_name, severity, output, flagged)


class AuditRunner:
    """Runs the audit tool and the lockfile synthesizer for plugin working directories."""

    def __init__(
        self,
        command: Sequence[str] = DEFAULT_AUDIT_COMMAND,
        lockfile_command: Sequence[str] = DEFAULT_LOCKFILE_COMMAND,
        timeout: float = 120.0,
    ):
        self.command = list(command)
        self.lockfile_command = list(lockfile_command)
        self.timeout = timeout

    async def audit(self, plugin: PluginRecord, workdir: Path) -> AuditOutcome:
        """Audit the manifest in ``workdir``.

        A missing working directory means acquisition never completed and is
        reported as a download failure; everything that goes wrong once the
        tool is involved is an incomplete audit.
        """
        if not (workdir / MANIFEST_FILE).is_file():
            return AuditOutcome.download_failed(plugin, "Files not downloaded")

        logger.debug("[%s] Running %s in %s", plugin.id, " ".join(self.command), workdir)
        try:
            result = await run_command(self.command, workdir, self.timeout)
        except AuditToolFailure as e:
            logger.warning("[%s] Audit failed: %s", plugin.id, e)
            return AuditOutcome.audit_incomplete(plugin.id, plugin.display_name, str(e))

        if not result.stdout.strip():
            stderr = result.stderr.strip().splitlines()
            detail = f": {stderr[-1]}" if stderr else ""
            return AuditOutcome.audit_incomplete(
                plugin.id,
                plugin.display_name,
                f"Audit tool produced no output (exit code {result.returncode}){detail}",
            )

        outcome = classify_output(plugin.id, plugin.display_name, result.stdout)
        logger.info(
            "[%s] Audit %s (%s)",
            plugin.id,
            outcome.kind.value,
            outcome.severity.value if outcome.severity else outcome.reason,
        )
        return outcome

    async def synthesize_lockfile(self, plugin_id: str, workdir: Path) -> bool:
        """Resolve a lockfile from ``package.json`` alone. Best effort.

        Returns:
            True if a lockfile exists afterwards
        """
        try:
            result = await run_command(self.lockfile_command, workdir, self.timeout)
        except AuditToolFailure as e:
            logger.warning("[%s] Failed to generate %s: %s", plugin_id, LOCKFILE_FILE, e)
            return False

        if result.returncode != 0 or not (workdir / LOCKFILE_FILE).is_file():
            stderr = result.stderr.strip().splitlines()
            logger.warning(
                "[%s] Failed to generate %s (exit code %s)%s",
                plugin_id,
                LOCKFILE_FILE,
                result.returncode,
                f": {stderr[-1]}" if stderr else "",
            )
            return (workdir / LOCKFILE_FILE).is_file()

        logger.debug("[%s] Generated %s", plugin_id, LOCKFILE_FILE)
        return True
