"""Tests for manifest and lockfile acquisition."""

from pathlib import Path

import httpx
import pytest
from httpx import Response

from plugaudit.audit.acquirer import ManifestAcquirer
from plugaudit.audit.fetch_cache import FetchCache
from plugaudit.audit.models import PluginRecord
from plugaudit.audit.runner import AuditRunner
from plugaudit.audit.store import CacheStore

RAW = "https://raw.test"
PACKAGE_URL = f"{RAW}/owner/demo/main/package.json"
LOCK_URL = f"{RAW}/owner/demo/main/package-lock.json"


@pytest.fixture
async def client():
    async with httpx.AsyncClient() as client:
        yield client


@pytest.fixture
def store(tmp_path: Path) -> CacheStore:
    store = CacheStore(tmp_path / "cache")
    store.ensure()
    return store


@pytest.fixture
def plugin() -> PluginRecord:
    return PluginRecord(id="demo", name="Demo", repo="owner/demo")


@pytest.fixture
def acquirer(store, client) -> ManifestAcquirer:
    fetch_cache = FetchCache.load(store.metadata_path, client)
    return ManifestAcquirer(store, fetch_cache, AuditRunner(), raw_url=RAW)


def _serve(mock_http, url: str, body: bytes, etag: str = "e1"):
    mock_http.head(url).mock(return_value=Response(200, headers={"ETag": etag}))
    return mock_http.get(url).mock(return_value=Response(200, content=body))


async def test_downloads_both_files(acquirer, plugin, mock_http, fake_npm):
    _serve(mock_http, PACKAGE_URL, b'{"name": "demo"}')
    _serve(mock_http, LOCK_URL, b'{"lockfileVersion": 3}')

    result = await acquirer.acquire(plugin, "main", changed=True)

    workdir = acquirer.working_dir(plugin)
    assert result.primary_ok and result.lockfile_ok
    assert not result.lockfile_synthesized
    assert (workdir / "package.json").read_bytes() == b'{"name": "demo"}'
    assert (workdir / "package-lock.json").read_bytes() == b'{"lockfileVersion": 3}'
    assert fake_npm.calls == []
    assert not result.stale


async def test_missing_lockfile_is_synthesized(acquirer, plugin, mock_http, fake_npm):
    _serve(mock_http, PACKAGE_URL, b"{}")
    mock_http.head(LOCK_URL).mock(return_value=Response(404))

    result = await acquirer.acquire(plugin, "main", changed=True)

    assert result.primary_ok
    assert result.lockfile_synthesized
    assert fake_npm.commands_for("demo") == [["npm", "i", "--package-lock-only", "--legacy-peer-deps"]]


async def test_missing_primary_file_fails(acquirer, plugin, mock_http, fake_npm):
    mock_http.head(PACKAGE_URL).mock(return_value=Response(404))

    result = await acquirer.acquire(plugin, "main", changed=True)

    assert not result.primary_ok
    assert "package.json" in result.reason
    assert fake_npm.calls == []


async def test_missing_primary_removes_stale_copy(acquirer, plugin, mock_http, fake_npm):
    workdir = acquirer.working_dir(plugin)
    workdir.mkdir(parents=True)
    (workdir / "package.json").write_text("{}")
    mock_http.head(PACKAGE_URL).mock(return_value=Response(404))

    result = await acquirer.acquire(plugin, "main", changed=True)

    assert not result.primary_ok
    assert not (workdir / "package.json").exists()


async def test_unchanged_repository_uses_cached_files(acquirer, plugin, mock_http, fake_npm):
    workdir = acquirer.working_dir(plugin)
    workdir.mkdir(parents=True)
    (workdir / "package.json").write_text("{}")
    (workdir / "package-lock.json").write_text("{}")
    head = mock_http.head(PACKAGE_URL).mock(return_value=Response(200))

    result = await acquirer.acquire(plugin, "main", changed=False)

    assert result.primary_ok and result.lockfile_ok
    assert head.call_count == 0


async def test_changed_repository_with_same_etag_skips_download(acquirer, plugin, mock_http, fake_npm):
    get_package = _serve(mock_http, PACKAGE_URL, b"{}")
    get_lock = _serve(mock_http, LOCK_URL, b"{}")

    await acquirer.acquire(plugin, "main", changed=True)
    await acquirer.acquire(plugin, "main", changed=True)

    assert get_package.call_count == 1
    assert get_lock.call_count == 1


async def test_transport_error_falls_back_to_cached_copy(acquirer, plugin, mock_http, fake_npm):
    workdir = acquirer.working_dir(plugin)
    workdir.mkdir(parents=True)
    (workdir / "package.json").write_text("{}")
    (workdir / "package-lock.json").write_text("{}")
    mock_http.head(PACKAGE_URL).mock(side_effect=httpx.ConnectError("offline"))
    mock_http.head(LOCK_URL).mock(side_effect=httpx.ConnectError("offline"))

    result = await acquirer.acquire(plugin, "main", changed=True)

    assert result.primary_ok and result.lockfile_ok
    assert result.stale


async def test_transport_error_without_copy_fails(acquirer, plugin, mock_http, fake_npm):
    mock_http.head(PACKAGE_URL).mock(side_effect=httpx.ConnectError("offline"))

    result = await acquirer.acquire(plugin, "main", changed=True)

    assert not result.primary_ok
    assert "Error downloading package.json" in result.reason


async def test_transport_error_on_lockfile_marks_result_stale(acquirer, plugin, mock_http, fake_npm):
    _serve(mock_http, PACKAGE_URL, b'{"name": "demo"}')
    mock_http.head(LOCK_URL).mock(side_effect=httpx.ConnectError("offline"))

    result = await acquirer.acquire(plugin, "main", changed=True)

    assert result.primary_ok
    assert result.lockfile_synthesized
    assert result.stale
