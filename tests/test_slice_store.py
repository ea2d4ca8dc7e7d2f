import asyncio
import json
import sys
from types import SimpleNamespace

import pytest

from slice_defaults import SLICE_KEYS, SliceId, default_for
from slice_store import (
    MISSING,
    AnkiAddonConfigBackend,
    JsonDirectoryBackend,
    MemoryBackend,
    SliceStore,
    StorageBackend,
    StorageReadError,
    StorageWriteError,
)


class _BrokenBackend(MemoryBackend):
    async def read(self, key):
        raise StorageReadError("disk on fire")

    async def write(self, key, value):
        raise OSError("read-only filesystem")


class _FakeAddonManager:
    def __init__(self, configs=None):
        self.configs = dict(configs or {})

    def getConfig(self, module):
        return self.configs.get(module)

    def writeConfig(self, module, conf):
        self.configs[module] = conf


@pytest.mark.parametrize("slice_id", list(SliceId))
def test_get_never_written_slice_returns_default(slice_id):
    store = SliceStore(MemoryBackend())
    assert asyncio.run(store.get(slice_id)) == default_for(slice_id)


def test_get_returns_fresh_default_copies():
    store = SliceStore(MemoryBackend())

    first = asyncio.run(store.get(SliceId.DICTIONARIES))
    first[0]["priority"] = 99
    second = asyncio.run(store.get(SliceId.DICTIONARIES))

    assert second[0]["priority"] == 1


def test_set_then_get_returns_written_value():
    store = SliceStore(MemoryBackend())
    entries = [{"id": "1", "text": "apple", "category": "Learning"}]

    asyncio.run(store.set(SliceId.ENTRIES, entries))

    assert asyncio.run(store.get("entries")) == entries


def test_unreadable_slice_falls_back_to_default():
    store = SliceStore(_BrokenBackend())
    assert asyncio.run(store.get(SliceId.ANKI_CONFIG)) == default_for("ankiConfig")


def test_write_failure_raises_storage_write_error():
    store = SliceStore(_BrokenBackend())
    with pytest.raises(StorageWriteError):
        asyncio.run(store.set(SliceId.ENTRIES, []))


def test_unknown_slice_id_raises_key_error():
    store = SliceStore(MemoryBackend())
    with pytest.raises(KeyError):
        asyncio.run(store.get("notASlice"))


def test_base_backend_is_abstract():
    with pytest.raises(NotImplementedError):
        asyncio.run(StorageBackend().read("entries"))


def test_get_many_reads_every_slice():
    backend = MemoryBackend({"entries": [{"id": "x"}]})
    store = SliceStore(backend)

    state = asyncio.run(store.get_many())

    assert list(state) == list(SLICE_KEYS)
    assert state["entries"] == [{"id": "x"}]
    assert state["styles"] == default_for("styles")


def test_seed_defaults_only_writes_absent_slices():
    backend = MemoryBackend({"entries": [{"id": "x"}]})
    store = SliceStore(backend)

    seeded = asyncio.run(store.seed_defaults())

    assert "entries" not in seeded
    assert set(seeded) == set(SLICE_KEYS) - {"entries"}
    assert backend.dump()["entries"] == [{"id": "x"}]
    assert asyncio.run(store.seed_defaults()) == []


def test_json_directory_backend_round_trips_and_is_per_slice(tmp_path):
    backend = JsonDirectoryBackend(tmp_path / "data")
    store = SliceStore(backend)
    scenarios = [{"id": "9", "name": "Reading 漫画", "isActive": True}]

    asyncio.run(store.set(SliceId.SCENARIOS, scenarios))

    path = backend.path_for("scenarios")
    assert path.exists()
    assert json.loads(path.read_text(encoding="utf-8")) == scenarios
    assert not backend.path_for("entries").exists()
    assert not path.with_name("scenarios.json.tmp").exists()
    assert asyncio.run(store.get(SliceId.SCENARIOS)) == scenarios


def test_json_directory_backend_malformed_file_reads_as_default(tmp_path):
    backend = JsonDirectoryBackend(tmp_path)
    (tmp_path / "engines.json").write_text("{not json", encoding="utf-8")
    store = SliceStore(backend)

    assert asyncio.run(backend.contains("engines")) is True
    with pytest.raises(StorageReadError):
        asyncio.run(backend.read("engines"))
    assert asyncio.run(store.get(SliceId.ENGINES)) == default_for("engines")


def test_json_directory_backend_invalid_utf8_reads_as_default(tmp_path):
    (tmp_path / "entries.json").write_bytes(b"\xff\xfe[\x80]")
    store = SliceStore(JsonDirectoryBackend(tmp_path))

    with pytest.raises(StorageReadError):
        asyncio.run(store.backend.read("entries"))
    assert asyncio.run(store.get(SliceId.ENTRIES)) == []
    assert asyncio.run(store.get_many())["entries"] == []


def test_json_directory_backend_missing_file_reads_missing(tmp_path):
    backend = JsonDirectoryBackend(tmp_path)
    assert asyncio.run(backend.read("entries")) is MISSING


def test_anki_backend_stores_each_slice_as_its_own_config_key(monkeypatch):
    manager = _FakeAddonManager({"test": {"ui_state": {"tab": "words"}}})
    monkeypatch.setattr(sys.modules["aqt"], "mw", SimpleNamespace(addonManager=manager))
    store = SliceStore(AnkiAddonConfigBackend("test"))

    assert asyncio.run(store.exists(SliceId.ENTRIES)) is False
    asyncio.run(store.set(SliceId.ENTRIES, [{"id": "a"}]))
    asyncio.run(store.set(SliceId.SCENARIOS, []))

    assert manager.configs["test"] == {
        "ui_state": {"tab": "words"},
        "entries": [{"id": "a"}],
        "scenarios": [],
    }
    assert asyncio.run(store.get(SliceId.ENTRIES)) == [{"id": "a"}]
    assert asyncio.run(store.get(SliceId.STYLES)) == default_for("styles")


def test_anki_backend_without_main_window(monkeypatch):
    monkeypatch.setattr(sys.modules["aqt"], "mw", None)
    store = SliceStore(AnkiAddonConfigBackend())

    assert asyncio.run(store.get(SliceId.ENTRIES)) == []
    with pytest.raises(StorageWriteError):
        asyncio.run(store.set(SliceId.ENTRIES, []))
