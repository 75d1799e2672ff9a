"""Tests for the audit runner and severity classification."""

import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from plugaudit.audit.errors import AuditToolFailure
from plugaudit.audit.models import OutcomeKind, PluginRecord, Severity
from plugaudit.audit.runner import (
    AuditRunner,
    ProcessResult,
    classify_output,
    max_severity,
    run_command,
)


def _vulns(**severities: str) -> dict:
    return {name: {"name": name, "severity": severity} for name, severity in severities.items()}


@pytest.fixture
def plugin() -> PluginRecord:
    return PluginRecord(id="demo", name="Demo Plugin", repo="owner/demo")


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    path = tmp_path / "packages" / "demo"
    path.mkdir(parents=True)
    (path / "package.json").write_text("{}")
    return path


class TestMaxSeverity:
    def test_precedence(self):
        severity, flagged = max_severity(_vulns(a="low", b="critical", c="moderate"))

        assert severity is Severity.CRITICAL
        assert [dep.name for dep in flagged] == ["a", "b", "c"]

    def test_empty_is_none(self):
        assert max_severity({})[0] is Severity.NONE

    def test_info_only(self):
        assert max_severity(_vulns(a="info"))[0] is Severity.INFO

    def test_unknown_severity_ignored(self):
        severity, flagged = max_severity({**_vulns(a="low"), "b": {"severity": "bogus"}, "c": 3})

        assert severity is Severity.LOW
        assert [dep.name for dep in flagged] == ["a"]


class TestClassifyOutput:
    def test_audited_with_findings(self):
        output = json.dumps({"vulnerabilities": _vulns(x="high", y="low")})
        outcome = classify_output("demo", "Demo", output)

        assert outcome.kind is OutcomeKind.AUDITED
        assert outcome.severity is Severity.HIGH
        assert outcome.raw_output == output

    def test_no_issues_is_a_positive_result(self):
        outcome = classify_output("demo", "Demo", json.dumps({"vulnerabilities": {}}))

        assert outcome.kind is OutcomeKind.AUDITED
        assert outcome.severity is Severity.NONE

    def test_error_field_is_incomplete(self):
        outcome = classify_output("demo", "Demo", '{"error":"ENOLOCK"}')

        assert outcome.kind is OutcomeKind.AUDIT_INCOMPLETE
        assert outcome.severity is None
        assert "ENOLOCK" in outcome.reason

    def test_structured_error_field(self):
        output = json.dumps({"error": {"code": "ENOLOCK", "summary": "This command requires a lockfile"}})
        outcome = classify_output("demo", "Demo", output)

        assert outcome.kind is OutcomeKind.AUDIT_INCOMPLETE
        assert "ENOLOCK: This command requires a lockfile" in outcome.reason

    def test_unparsable_output(self):
        outcome = classify_output("demo", "Demo", "npm ERR! something broke")

        assert outcome.kind is OutcomeKind.AUDIT_INCOMPLETE
        assert outcome.raw_output == "npm ERR! something broke"

    def test_non_object_output(self):
        assert classify_output("demo", "Demo", "[1, 2]").kind is OutcomeKind.AUDIT_INCOMPLETE

    def test_malformed_vulnerabilities(self):
        outcome = classify_output("demo", "Demo", json.dumps({"vulnerabilities": ["a"]}))
        assert outcome.kind is OutcomeKind.AUDIT_INCOMPLETE


class TestAuditRunner:
    async def test_missing_workdir_is_download_failure(self, plugin, tmp_path):
        outcome = await AuditRunner().audit(plugin, tmp_path / "absent")

        assert outcome.kind is OutcomeKind.DOWNLOAD_FAILED

    async def test_runs_command_in_workdir(self, plugin, workdir):
        output = json.dumps({"vulnerabilities": _vulns(lodash="critical")})
        mock_run = AsyncMock(return_value=ProcessResult(returncode=1, stdout=output, stderr=""))

        with patch("plugaudit.audit.runner.run_command", mock_run):
            outcome = await AuditRunner(timeout=5).audit(plugin, workdir)

        mock_run.assert_awaited_once_with(["npm", "audit", "--json"], workdir, 5)
        assert outcome.kind is OutcomeKind.AUDITED
        assert outcome.severity is Severity.CRITICAL
        assert outcome.plugin_name == "Demo Plugin"

    async def test_spawn_failure_is_incomplete(self, plugin, workdir):
        mock_run = AsyncMock(side_effect=AuditToolFailure("Could not start npm"))

        with patch("plugaudit.audit.runner.run_command", mock_run):
            outcome = await AuditRunner().audit(plugin, workdir)

        assert outcome.kind is OutcomeKind.AUDIT_INCOMPLETE
        assert "Could not start npm" in outcome.reason

    async def test_empty_output_is_incomplete(self, plugin, workdir):
        mock_run = AsyncMock(return_value=ProcessResult(returncode=1, stdout="", stderr="boom\n"))

        with patch("plugaudit.audit.runner.run_command", mock_run):
            outcome = await AuditRunner().audit(plugin, workdir)

        assert outcome.kind is OutcomeKind.AUDIT_INCOMPLETE
        assert "boom" in outcome.reason

    async def test_synthesize_lockfile_success(self, workdir):
        async def fake_run(command, cwd, timeout):
            (cwd / "package-lock.json").write_text("{}")
            return ProcessResult(returncode=0, stdout="", stderr="")

        with patch("plugaudit.audit.runner.run_command", fake_run):
            assert await AuditRunner().synthesize_lockfile("demo", workdir) is True

    async def test_synthesize_lockfile_failure_is_not_fatal(self, workdir):
        mock_run = AsyncMock(return_value=ProcessResult(returncode=1, stdout="", stderr="ERESOLVE"))

        with patch("plugaudit.audit.runner.run_command", mock_run):
            assert await AuditRunner().synthesize_lockfile("demo", workdir) is False

    async def test_synthesize_lockfile_timeout(self, workdir):
        mock_run = AsyncMock(side_effect=AuditToolFailure("timed out"))

        with patch("plugaudit.audit.runner.run_command", mock_run):
            assert await AuditRunner().synthesize_lockfile("demo", workdir) is False


class TestRunCommand:
    async def test_captures_stdout(self, tmp_path):
        result = await run_command([sys.executable, "-c", "print('hello')"], tmp_path, timeout=30)

        assert result.returncode == 0
        assert result.stdout.strip() == "hello"

    async def test_nonzero_exit_still_returns_output(self, tmp_path):
        code = "import sys; print('{}'); sys.exit(1)"
        result = await run_command([sys.executable, "-c", code], tmp_path, timeout=30)

        assert result.returncode == 1
        assert result.stdout.strip() == "{}"

    async def test_runs_in_cwd(self, tmp_path):
        code = "import os; print(os.getcwd())"
        result = await run_command([sys.executable, "-c", code], tmp_path, timeout=30)

        assert Path(result.stdout.strip()).resolve() == tmp_path.resolve()

    async def test_timeout(self, tmp_path):
        code = "import time; time.sleep(10)"
        with pytest.raises(AuditToolFailure, match="timed out"):
            await run_command([sys.executable, "-c", code], tmp_path, timeout=0.2)

    async def test_missing_executable(self, tmp_path):
        with pytest.raises(AuditToolFailure, match="Could not start"):
            await run_command(["definitely-not-a-real-binary-xyz"], tmp_path, timeout=5)

    async def test_empty_command(self, tmp_path):
        with pytest.raises(AuditToolFailure):
            await run_command([], tmp_path, timeout=5)
