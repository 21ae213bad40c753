"""Tests for configuration loading and the JSON store."""

import json
import multiprocessing
import os
import tempfile
from pathlib import Path

import pytest
import yaml

from modguard.config import CONFIG_ENV_VAR, ModerationConfig, Thresholds, load_config
from modguard.errors import (
    ConflictError,
    DependencyUnavailable,
    NotFoundError,
    StoreCorruption,
    ValidationError,
)
from modguard.models.messaging import Conversation
from modguard.store import ModerationStore


def _write_config(tmpdir: str, data: dict) -> str:
    path = Path(tmpdir) / "modguard.yaml"
    with open(path, "w") as f:
        yaml.dump(data, f)
    return str(path)


# --- Config Tests ---


def test_defaults_without_file(monkeypatch):
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    config = load_config()
    assert config.thresholds.critical == 0.8
    assert config.scan.batch_size == 10
    assert config.retention_days["law_enforcement"] == 180


def test_yaml_overrides_merge_with_defaults():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write_config(
            tmpdir,
            {
                "thresholds": {"critical": 0.9},
                "retention_days": {"legal": 400},
                "log_level": "DEBUG",
            },
        )
        config = load_config(path)
        assert config.thresholds.critical == 0.9
        assert config.thresholds.high == 0.6
        assert config.retention_days["legal"] == 400
        assert config.retention_days["standard"] == 90
        assert config.log_level == "DEBUG"


def test_config_from_environment(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write_config(tmpdir, {"scan": {"batch_size": 3}})
        monkeypatch.setenv(CONFIG_ENV_VAR, path)
        assert load_config().scan.batch_size == 3


def test_unknown_keys_are_rejected():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write_config(tmpdir, {"thresholds": {"critcal": 0.9}})
        with pytest.raises(ValidationError, match="thresholds.critcal"):
            load_config(path)


def test_thresholds_must_be_ordered():
    with pytest.raises(ValidationError):
        ModerationConfig(thresholds=Thresholds(critical=0.5, high=0.6))
    with pytest.raises(ValidationError):
        ModerationConfig(retention_days={"standard": 0})


# --- Store Tests ---


def test_insert_get_and_require():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ModerationStore(tmpdir)
        saved = store.conversations.insert(Conversation(id="c1"))
        assert saved.version == 1
        assert store.conversations.get("c1").conversation_type == "direct"
        assert store.conversations.get("missing") is None
        with pytest.raises(NotFoundError):
            store.conversations.require("missing")


def test_duplicate_insert_conflicts():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ModerationStore(tmpdir)
        store.conversations.insert(Conversation(id="c1"))
        with pytest.raises(ConflictError):
            store.conversations.insert(Conversation(id="c1"))


def test_update_bumps_version_and_checks_expected_version():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ModerationStore(tmpdir)
        store.conversations.insert(Conversation(id="c1"))

        updated = store.conversations.update("c1", lambda c: setattr(c, "name", "ops"))
        assert updated.version == 2
        assert store.conversations.get("c1").name == "ops"

        with pytest.raises(ConflictError):
            store.conversations.update("c1", lambda c: setattr(c, "name", "x"), expected_version=1)
        assert store.conversations.get("c1").name == "ops"


def test_malformed_records_are_skipped():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ModerationStore(tmpdir)
        store.conversations.insert(Conversation(id="c1"))
        path = Path(tmpdir) / "conversations.json"
        raw = json.loads(path.read_text())
        raw.append({"name": "no id"})
        path.write_text(json.dumps(raw))

        assert [c.id for c in store.conversations.find()] == ["c1"]


def test_unreadable_file_raises_store_corruption():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ModerationStore(tmpdir)
        (Path(tmpdir) / "conversations.json").write_text("{not json")
        with pytest.raises(StoreCorruption) as exc_info:
            store.conversations.find()
        assert exc_info.value.http_status == 503


def test_delete():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ModerationStore(tmpdir)
        store.conversations.insert(Conversation(id="c1"))
        assert store.conversations.delete("c1") is True
        assert store.conversations.delete("c1") is False


def _insert_many(base_dir: str, prefix: str, count: int) -> None:
    store = ModerationStore(base_dir)
    for i in range(count):
        store.conversations.insert(Conversation(id=f"{prefix}-{i}"))


@pytest.mark.skipif(
    "fork" not in multiprocessing.get_all_start_methods(), reason="needs fork start method"
)
def test_concurrent_processes_keep_every_write():
    ctx = multiprocessing.get_context("fork")
    with tempfile.TemporaryDirectory() as tmpdir:
        workers = [ctx.Process(target=_insert_many, args=(tmpdir, name, 40)) for name in ("cli", "web")]
        for proc in workers:
            proc.start()
        for proc in workers:
            proc.join(timeout=60)
            assert proc.exitcode == 0

        ids = {c.id for c in ModerationStore(tmpdir).conversations.find()}
        assert len(ids) == 80
        assert not [name for name in os.listdir(tmpdir) if name.endswith(".tmp")]


def test_write_failure_is_reported_as_store_unavailable(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ModerationStore(tmpdir)
        store.conversations.insert(Conversation(id="c1"))

        def _disk_full(src, dst):
            raise OSError(28, "No space left on device")

        monkeypatch.setattr(os, "replace", _disk_full)
        with pytest.raises(DependencyUnavailable) as exc_info:
            store.conversations.insert(Conversation(id="c2"))
        monkeypatch.undo()

        assert exc_info.value.code == "store_unavailable"
        assert [c.id for c in store.conversations.find()] == ["c1"]
        assert not [name for name in os.listdir(tmpdir) if name.endswith(".tmp")]
