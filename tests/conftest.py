"""Pytest configuration and shared fixtures."""

import json
from pathlib import Path

import pytest
import respx

from plugaudit.audit import runner as runner_module
from plugaudit.audit.runner import ProcessResult
from plugaudit.config.schema import PlugauditConfig

CLEAN_AUDIT = json.dumps({"auditReportVersion": 2, "vulnerabilities": {}})


@pytest.fixture
def config(tmp_path: Path) -> PlugauditConfig:
    """Config pointing every path into a temporary directory and every URL at test hosts."""
    vault = tmp_path / "vault"
    (vault / ".obsidian" / "plugins").mkdir(parents=True)

    config = PlugauditConfig()
    config.paths.vault = str(vault)
    config.paths.cache_dir = str(tmp_path / "cache")
    config.paths.state_file = str(tmp_path / "state.json")
    config.github.api_url = "https://api.test"
    config.github.raw_url = "https://raw.test"
    config.registry.url = "https://registry.test/community-plugins.json"
    return config


@pytest.fixture
def write_installed(config: PlugauditConfig):
    """Write the installed-plugin list for the vault in ``config``."""

    def _write(ids: list[str]) -> Path:
        path = config.paths.installed_plugins_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(ids))
        return path

    return _write


@pytest.fixture
def mock_http():
    """respx router that tolerates routes a test never reaches."""
    with respx.mock(assert_all_called=False) as mock:
        yield mock


class FakeNpm:
    """Stands in for the npm subprocess; audit output is looked up by plugin id."""

    def __init__(self) -> None:
        self.outputs: dict[str, str] = {}
        self.calls: list[tuple[list[str], Path]] = []

    async def __call__(self, command, cwd, timeout) -> ProcessResult:
        cwd = Path(cwd)
        self.calls.append((list(command), cwd))
        if "audit" in command:
            return ProcessResult(returncode=1, stdout=self.outputs.get(cwd.name, CLEAN_AUDIT), stderr="")
        (cwd / "package-lock.json").write_text("{}")
        return ProcessResult(returncode=0, stdout="", stderr="")

    def commands_for(self, plugin_id: str) -> list[list[str]]:
        return [command for command, cwd in self.calls if cwd.name == plugin_id]


@pytest.fixture
def fake_npm(monkeypatch) -> FakeNpm:
    fake = FakeNpm()
    monkeypatch.setattr(runner_module, "run_command", fake)
    return fake
