"""Tests for the file-backed extension registry."""

import asyncio
import json
import os
import stat
import tempfile
import time
from pathlib import Path

import pytest

from exthub.errors import RegistryCorruptError, RegistryError, RegistryPersistError
from exthub.registry.models import ExtensionRecord, ExtensionType
from exthub.registry.store import RegistryStore


def _record(ext_id: str = "acme/tool", **overrides) -> ExtensionRecord:
    owner, name = ext_id.split("/")
    values = {
        "id": ext_id,
        "type": ExtensionType.PLUGIN,
        "name": name,
        "display_name": name.title(),
        "version": "1.0.0",
        "description": f"Test extension {name}",
        "author": owner,
        "repository_url": f"https://github.com/{ext_id}",
    }
    values.update(overrides)
    return ExtensionRecord(**values)


async def _store(root: Path, **kwargs) -> RegistryStore:
    store = RegistryStore(root / "registry.json", root / "installed", **kwargs)
    await store.initialize()
    return store


def _hold_lock(store: RegistryStore) -> None:
    store.lock_path.write_text(json.dumps({"pid": 99999, "timestamp": int(time.time() * 1000)}))


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_initialize_creates_directories(tmp_path):
    store = RegistryStore(tmp_path / "data" / "registry.json", tmp_path / "ext" / "installed")
    await store.initialize()

    assert (tmp_path / "data").is_dir()
    assert (tmp_path / "ext" / "installed").is_dir()
    assert store.loaded
    assert len(store) == 0


@pytest.mark.asyncio
async def test_initialize_reports_unwritable_location(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")
    store = RegistryStore(blocker / "registry.json", tmp_path / "installed")

    with pytest.raises(RegistryError, match="Failed to create directory"):
        await store.initialize()


@pytest.mark.asyncio
async def test_load_without_directory_is_empty(tmp_path):
    store = RegistryStore(tmp_path / "missing" / "registry.json")
    await store.load()
    assert store.loaded
    assert store.list_all() == []


@pytest.mark.asyncio
async def test_add_persists_across_instances():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        store = await _store(root)
        record = _record(keywords=["review"], permissions=["fs"])
        await store.add(record)

        fresh = await _store(root)
        assert fresh.get("acme/tool") == record
        assert not store.lock_path.exists()


@pytest.mark.asyncio
async def test_file_format(tmp_path):
    store = await _store(tmp_path)
    await store.add(_record(is_installed=True, installed_version="1.0.0"))

    data = json.loads(store.registry_path.read_text())
    assert data["version"] == "1.0.0"
    assert "lastUpdated" in data
    assert data["extensions"][0]["id"] == "acme/tool"
    assert data["extensions"][0]["isInstalled"] is True
    assert data["extensions"][0]["repository"] == "https://github.com/acme/tool"
    assert stat.S_IMODE(os.stat(store.registry_path).st_mode) == 0o600


@pytest.mark.asyncio
async def test_no_temp_files_left_behind(tmp_path):
    store = await _store(tmp_path)
    for i in range(3):
        await store.add(_record(f"acme/tool{i}"))

    leftovers = [p.name for p in tmp_path.iterdir() if ".tmp." in p.name]
    assert leftovers == []


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_add_replaces_same_id_in_place(tmp_path):
    store = await _store(tmp_path)
    for ext_id in ("acme/a", "acme/b", "acme/c"):
        await store.add(_record(ext_id))

    await store.add(_record("acme/a", version="2.0.0"))

    assert [r.id for r in store.list_all()] == ["acme/a", "acme/b", "acme/c"]
    assert store.get("acme/a").version == "2.0.0"


@pytest.mark.asyncio
async def test_add_rejects_non_records(tmp_path):
    store = await _store(tmp_path)
    with pytest.raises(TypeError, match="Invalid extension object"):
        await store.add({"id": "acme/tool"})


@pytest.mark.asyncio
async def test_update(tmp_path):
    store = await _store(tmp_path)
    await store.add(_record())

    updated = await store.update("acme/tool", is_installed=True, installed_version="1.0.0")

    assert updated.is_installed
    assert updated.name == "tool"
    fresh = await _store(tmp_path)
    assert fresh.get("acme/tool").installed_version == "1.0.0"


@pytest.mark.asyncio
async def test_update_unknown_id_returns_none(tmp_path):
    store = await _store(tmp_path)
    assert await store.update("acme/missing", stars=3) is None
    assert not store.registry_path.exists()


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields(tmp_path):
    store = await _store(tmp_path)
    await store.add(_record())

    with pytest.raises(ValueError):
        await store.update("acme/tool", colour="blue")
    with pytest.raises(ValueError):
        await store.update("acme/tool", id="acme/other")


@pytest.mark.asyncio
async def test_remove(tmp_path):
    store = await _store(tmp_path)
    await store.add(_record("acme/a"))
    await store.add(_record("acme/b"))

    assert await store.remove("acme/a") is True
    assert await store.remove("acme/a") is False

    fresh = await _store(tmp_path)
    assert [r.id for r in fresh.list_all()] == ["acme/b"]


@pytest.mark.asyncio
async def test_clear(tmp_path):
    store = await _store(tmp_path)
    await store.add(_record("acme/a"))
    await store.add(_record("acme/b"))

    await store.clear()

    assert len(store) == 0
    fresh = await _store(tmp_path)
    assert len(fresh) == 0


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_installed_queries_and_stats(tmp_path):
    store = await _store(tmp_path)
    await store.add(_record("acme/a", type=ExtensionType.SKILL, is_installed=True, installed_version="1.0.0"))
    await store.add(_record("acme/b", type=ExtensionType.SKILL))
    await store.add(_record("acme/c", type=ExtensionType.AGENT, is_installed=True))

    assert [r.id for r in store.list_installed()] == ["acme/a", "acme/c"]
    assert store.is_installed("acme/a")
    assert not store.is_installed("acme/b")
    assert not store.is_installed("acme/zzz")
    assert "acme/b" in store

    stats = store.stats()
    assert stats.total == 3
    assert stats.installed == 2
    assert stats.by_type == {"plugin": 0, "skill": 2, "command": 0, "agent": 1}


@pytest.mark.asyncio
async def test_check_existing(tmp_path):
    store = await _store(tmp_path)
    await store.add(_record("acme/a", is_installed=True, installed_version="1.2.0", version="1.3.0"))
    await store.add(_record("acme/b"))

    existing = store.check_existing("acme/a")
    assert existing.exists
    assert existing.extension.id == "acme/a"
    assert existing.message == "Extension acme/a is already installed (version 1.2.0)"

    assert store.check_existing("acme/b") is None
    assert store.check_existing("acme/missing") is None


# ---------------------------------------------------------------------------
# Corrupt files
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content,message",
    [
        ("{not json", "not valid JSON"),
        (json.dumps({"extensions": []}), "Invalid registry format"),
        (json.dumps({"version": "1.0.0", "extensions": {}}), "Invalid registry format"),
        (json.dumps({"version": "1.0.0", "extensions": ["x"]}), "Invalid extension entry #0"),
        (json.dumps({"version": "1.0.0", "extensions": [{"id": "a/b", "type": "theme"}]}), "Invalid extension entry #0"),
    ],
)
async def test_corrupt_registry_is_reported(tmp_path, content, message):
    (tmp_path / "registry.json").write_text(content)
    store = RegistryStore(tmp_path / "registry.json", tmp_path / "installed")

    with pytest.raises(RegistryCorruptError, match=message):
        await store.initialize()
    assert not store.lock_path.exists()


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_failed_write_rolls_back(tmp_path, monkeypatch):
    store = await _store(tmp_path)
    await store.add(_record("acme/a"))

    def fail_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("exthub.registry.store.os.replace", fail_replace)

    with pytest.raises(RegistryPersistError, match="Failed to save extension acme/b"):
        await store.add(_record("acme/b"))
    with pytest.raises(RegistryPersistError, match="Failed to update extension acme/a"):
        await store.update("acme/a", version="9.9.9")
    with pytest.raises(RegistryPersistError, match="Failed to remove extension acme/a"):
        await store.remove("acme/a")

    assert [r.id for r in store.list_all()] == ["acme/a"]
    assert store.get("acme/a").version == "1.0.0"
    assert [p.name for p in tmp_path.iterdir() if ".tmp." in p.name] == []
    assert not store.lock_path.exists()

    monkeypatch.undo()
    fresh = await _store(tmp_path)
    assert [r.id for r in fresh.list_all()] == ["acme/a"]


@pytest.mark.asyncio
async def test_failed_clear_rolls_back(tmp_path, monkeypatch):
    store = await _store(tmp_path)
    await store.add(_record("acme/a"))

    def fail_replace(src, dst):
        raise OSError("read-only file system")

    monkeypatch.setattr("exthub.registry.store.os.replace", fail_replace)

    with pytest.raises(RegistryPersistError):
        await store.clear()
    assert len(store) == 1


@pytest.mark.asyncio
async def test_lock_timeout_rolls_back(tmp_path):
    store = await _store(tmp_path, lock_timeout=0.1, poll_interval=0.01)
    _hold_lock(store)

    with pytest.raises(RegistryPersistError):
        await store.add(_record())

    assert store.get("acme/tool") is None
    assert not store.registry_path.exists()


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_concurrent_adds_same_instance(tmp_path):
    store = await _store(tmp_path)
    ids = [f"acme/tool{i}" for i in range(5)]

    await asyncio.gather(*(store.add(_record(ext_id)) for ext_id in ids))

    fresh = await _store(tmp_path)
    assert sorted(r.id for r in fresh.list_all()) == ids


@pytest.mark.asyncio
async def test_separate_instances_keep_each_others_records(tmp_path):
    stores = [await _store(tmp_path) for _ in range(5)]

    await asyncio.gather(
        *(store.add(_record(f"acme/tool{i}")) for i, store in enumerate(stores))
    )

    fresh = await _store(tmp_path)
    assert sorted(r.id for r in fresh.list_all()) == [f"acme/tool{i}" for i in range(5)]


@pytest.mark.asyncio
async def test_remove_does_not_drop_records_added_elsewhere(tmp_path):
    first = await _store(tmp_path)
    second = await _store(tmp_path)

    await first.add(_record("acme/a"))
    await second.add(_record("acme/b"))
    await first.remove("acme/a")

    assert [r.id for r in first.list_all()] == ["acme/b"]
    fresh = await _store(tmp_path)
    assert [r.id for r in fresh.list_all()] == ["acme/b"]


@pytest.mark.asyncio
async def test_saves_requested_during_a_save_are_coalesced(tmp_path):
    store = await _store(tmp_path, poll_interval=0.01)
    writes = []
    write_file = store._write_file

    def counting_write(records):
        writes.append(sorted(records))
        write_file(records)

    store._write_file = counting_write

    # The first save blocks on a foreign lock; later ones only flag a rerun
    _hold_lock(store)
    first = asyncio.create_task(store.add(_record("acme/a")))
    await asyncio.sleep(0.05)
    await store.add(_record("acme/b"))
    await store.add(_record("acme/c"))
    assert writes == []

    store.lock_path.unlink()
    await first

    assert len(writes) == 2
    assert writes[0] == ["acme/a", "acme/b", "acme/c"]
    fresh = await _store(tmp_path)
    assert [r.id for r in fresh.list_all()] == ["acme/a", "acme/b", "acme/c"]


@pytest.mark.asyncio
async def test_failed_rerun_keeps_changes_already_written(tmp_path):
    store = await _store(tmp_path, poll_interval=0.01)
    writes = []
    write_file = store._write_file

    def fail_second_write(records):
        writes.append(sorted(records))
        if len(writes) > 1:
            raise OSError("disk full")
        write_file(records)

    store._write_file = fail_second_write

    _hold_lock(store)
    first = asyncio.create_task(store.add(_record("acme/a")))
    await asyncio.sleep(0.05)
    await store.add(_record("acme/b"))

    store.lock_path.unlink()
    # the first pass wrote both records, so this add succeeded
    await first

    assert len(writes) == 2
    assert [r.id for r in store.list_all()] == ["acme/a", "acme/b"]
    fresh = await _store(tmp_path)
    assert [r.id for r in fresh.list_all()] == ["acme/a", "acme/b"]


@pytest.mark.asyncio
async def test_failed_rerun_after_clear_keeps_registry_empty(tmp_path):
    store = await _store(tmp_path, poll_interval=0.01)
    await store.add(_record("acme/a"))
    writes = []
    write_file = store._write_file

    def fail_second_write(records):
        writes.append(sorted(records))
        if len(writes) > 1:
            raise OSError("disk full")
        write_file(records)

    store._write_file = fail_second_write

    _hold_lock(store)
    clearing = asyncio.create_task(store.clear())
    await asyncio.sleep(0.05)
    await store.save()

    store.lock_path.unlink()
    await clearing

    assert len(store) == 0
    fresh = await _store(tmp_path)
    assert len(fresh) == 0
