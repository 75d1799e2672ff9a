"""Tests for the cache directory layout and atomic writes."""

import json
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from plugaudit.audit.errors import AcquisitionFailure, StructuralFailure
from plugaudit.audit.models import AuditOutcome, AuditSummary, PluginRecord, Severity
from plugaudit.audit.store import (
    CacheStore,
    LastRun,
    load_last_run,
    read_installed_plugins,
    read_local_manifest,
    save_last_run,
    write_text_atomic,
)


class TestAtomicWrites:
    def test_replaces_existing_file(self, tmp_path: Path):
        path = tmp_path / "doc.json"
        path.write_text("old")

        write_text_atomic(path, "new")

        assert path.read_text() == "new"
        assert [p.name for p in tmp_path.iterdir()] == ["doc.json"]

    def test_failure_keeps_old_file(self, tmp_path: Path):
        path = tmp_path / "doc.json"
        path.write_text("old")

        with patch("plugaudit.audit.store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                write_text_atomic(path, "new")

        assert path.read_text() == "old"
        assert [p.name for p in tmp_path.iterdir()] == ["doc.json"]


class TestReadInstalledPlugins:
    def test_reads_ids_in_order(self, tmp_path: Path):
        path = tmp_path / "community-plugins.json"
        path.write_text(json.dumps(["b", "a", "b", "c"]))

        assert read_installed_plugins(path) == ["b", "a", "c"]

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(StructuralFailure, match="not found"):
            read_installed_plugins(tmp_path / "absent.json")

    def test_invalid_json(self, tmp_path: Path):
        path = tmp_path / "community-plugins.json"
        path.write_text("[oops")

        with pytest.raises(StructuralFailure):
            read_installed_plugins(path)

    def test_not_a_list_of_ids(self, tmp_path: Path):
        path = tmp_path / "community-plugins.json"
        path.write_text(json.dumps({"plugins": ["a"]}))

        with pytest.raises(StructuralFailure, match="JSON array"):
            read_installed_plugins(path)


def test_read_local_manifest(tmp_path: Path):
    (tmp_path / "demo").mkdir()
    (tmp_path / "demo" / "manifest.json").write_text(json.dumps({"name": "Demo"}))

    assert read_local_manifest(tmp_path, "demo") == {"name": "Demo"}
    assert read_local_manifest(tmp_path, "missing") is None


class TestCacheStore:
    def test_manifest_round_trip(self, tmp_path: Path):
        store = CacheStore(tmp_path)
        records = [PluginRecord(id="a", repo="o/a", last_updated=1), PluginRecord(id="b")]

        store.save_manifest(records)

        assert store.load_manifest() == records

    def test_unreadable_manifest_is_ignored(self, tmp_path: Path):
        store = CacheStore(tmp_path)
        store.manifest_path.write_text("{broken")

        assert store.load_manifest() is None

    def test_outcomes_round_trip(self, tmp_path: Path):
        store = CacheStore(tmp_path)
        outcomes = [
            AuditOutcome.audited("a", "A", Severity.LOW, "{}"),
            AuditOutcome.no_repository(PluginRecord(id="b")),
        ]

        store.save_outcomes(outcomes)

        assert store.load_outcomes() == outcomes

    def test_missing_documents(self, tmp_path: Path):
        store = CacheStore(tmp_path)

        assert store.load_manifest() is None
        assert store.load_outcomes() is None
        assert store.load_log() is None

    def test_package_dir_rejects_unsafe_ids(self, tmp_path: Path):
        store = CacheStore(tmp_path)

        assert store.package_dir("demo") == tmp_path / "packages" / "demo"
        for bad in ("", "..", "a/b"):
            with pytest.raises(AcquisitionFailure):
                store.package_dir(bad)

    def test_clear(self, tmp_path: Path):
        store = CacheStore(tmp_path / "cache")
        store.ensure()
        store.save_log("log")
        (store.package_dir("demo")).mkdir()

        store.clear()

        assert store.load_log() is None
        assert list((tmp_path / "cache" / "packages").iterdir()) == []


class TestLastRun:
    def test_round_trip(self, tmp_path: Path):
        path = tmp_path / "state.json"
        run = LastRun(
            timestamp=datetime(2024, 5, 1, tzinfo=timezone.utc),
            summary=AuditSummary(high=1, no_issues=2),
            message="Audited 3 plugins",
        )

        save_last_run(path, run)

        assert load_last_run(path) == run

    def test_missing_state(self, tmp_path: Path):
        assert load_last_run(tmp_path / "state.json") is None

    def test_corrupt_state(self, tmp_path: Path):
        path = tmp_path / "state.json"
        path.write_text("nope")

        assert load_last_run(path) is None
