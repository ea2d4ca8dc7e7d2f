from __future__ import annotations

# pyright: reportMissingImports=false

import asyncio
import copy
import importlib
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from slice_defaults import SLICE_KEYS, SliceId, get_slice


_LOGGER = logging.getLogger(__name__)


class PersistenceError(RuntimeError):
    pass


class StorageReadError(PersistenceError):
    pass


class StorageWriteError(PersistenceError):
    pass


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


# Returned by backends for keys they do not hold.
MISSING: Any = _Missing()


class StorageBackend:
    """Async key/value medium underneath the slice store.

    `read` returns MISSING for absent keys and raises StorageReadError when a
    key exists but cannot be decoded. `write` replaces the whole value.
    """

    async def read(self, key: str) -> Any:
        raise NotImplementedError

    async def write(self, key: str, value: Any) -> None:
        raise NotImplementedError

    async def contains(self, key: str) -> bool:
        raise NotImplementedError


class MemoryBackend(StorageBackend):
    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(dict(initial or {}))

    async def read(self, key: str) -> Any:
        if key not in self._data:
            return MISSING
        return copy.deepcopy(self._data[key])

    async def write(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def contains(self, key: str) -> bool:
        return key in self._data

    def dump(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)


class JsonDirectoryBackend(StorageBackend):
    """One `<key>.json` file per slice under `directory`."""

    def __init__(self, directory: Union[str, Path]):
        self._dir = Path(directory)

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, key: str) -> Path:
        return self._dir / f"{key}.json"

    async def read(self, key: str) -> Any:
        return await asyncio.to_thread(self._read_sync, key)

    async def write(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._write_sync, key, value)

    async def contains(self, key: str) -> bool:
        return await asyncio.to_thread(self.path_for(key).exists)

    def _read_sync(self, key: str) -> Any:
        path = self.path_for(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return MISSING
        except (OSError, UnicodeDecodeError) as e:
            raise StorageReadError(f"Cannot read {path}: {e}") from e

        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageReadError(f"Malformed JSON in {path}") from e

    def _write_sync(self, key: str, value: Any) -> None:
        path = self.path_for(key)
        tmp = Path(str(path) + ".tmp")

        self._dir.mkdir(parents=True, exist_ok=True)
        tmp.write_text(
            json.dumps(value, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )
        os.replace(tmp, path)


class AnkiAddonConfigBackend(StorageBackend):
    """Stores each slice as its own top-level key of an Anki add-on config.

    Writes merge into the stored config so other slices and any extra keys
    survive. Add-on manager access stays on the calling (main) thread.
    """

    def __init__(self, addon_key: str = "reword"):
        self._addon_key = addon_key

    def _addon_manager(self) -> Any:
        aqt = importlib.import_module("aqt")
        manager = getattr(getattr(aqt, "mw", None), "addonManager", None)
        if manager is None:
            raise PersistenceError("Anki main window is not available")
        return manager

    def _load(self) -> Dict[str, Any]:
        data = self._addon_manager().getConfig(self._addon_key)
        return data if isinstance(data, dict) else {}

    async def read(self, key: str) -> Any:
        try:
            data = self._load()
        except Exception as e:
            raise StorageReadError(
                f"Cannot read Anki add-on config {self._addon_key}"
            ) from e
        if key not in data:
            return MISSING
        return copy.deepcopy(data[key])

    async def write(self, key: str, value: Any) -> None:
        manager = self._addon_manager()
        try:
            existing = manager.getConfig(self._addon_key)
        except Exception:
            existing = None

        data: Dict[str, Any] = dict(existing) if isinstance(existing, dict) else {}
        data[key] = copy.deepcopy(value)
        manager.writeConfig(self._addon_key, data)

    async def contains(self, key: str) -> bool:
        return (await self.read(key)) is not MISSING


class SliceStore:
    """Typed, per-slice view over a storage backend.

    - get never fails with "missing"; it substitutes the slice default.
    - set is all-or-nothing for one slice; there is no cross-slice atomicity.
    """

    def __init__(self, backend: StorageBackend):
        self._backend = backend

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    async def get(self, slice_id: Union[SliceId, str]) -> Any:
        config_slice = get_slice(slice_id)
        try:
            value = await self._backend.read(config_slice.key)
        except StorageReadError as e:
            _LOGGER.warning(
                "Unreadable slice %s, using default: %s", config_slice.key, e
            )
            return config_slice.make_default()

        if value is MISSING:
            return config_slice.make_default()
        return value

    async def set(self, slice_id: Union[SliceId, str], value: Any) -> None:
        config_slice = get_slice(slice_id)
        try:
            await self._backend.write(config_slice.key, value)
        except StorageWriteError:
            raise
        except Exception as e:
            raise StorageWriteError(
                f"Failed to write slice {config_slice.key}: {e}"
            ) from e
        _LOGGER.debug("Wrote slice %s", config_slice.key)

    async def exists(self, slice_id: Union[SliceId, str]) -> bool:
        config_slice = get_slice(slice_id)
        try:
            return await self._backend.contains(config_slice.key)
        except StorageReadError:
            return True

    async def get_many(
        self, slice_ids: Optional[Iterable[Union[SliceId, str]]] = None
    ) -> Dict[str, Any]:
        keys = [get_slice(s).key for s in (SLICE_KEYS if slice_ids is None else slice_ids)]
        values = await asyncio.gather(*(self.get(k) for k in keys))
        return dict(zip(keys, values))

    async def seed_defaults(self) -> List[str]:
        """Write the default for every slice the backend does not hold yet.

        Returns the keys that were seeded. Seed failures are logged; the slice
        still reads as its default.
        """

        present = await asyncio.gather(*(self.exists(k) for k in SLICE_KEYS))
        missing = [k for k, has in zip(SLICE_KEYS, present) if not has]
        results = await asyncio.gather(
            *(self.set(k, get_slice(k).make_default()) for k in missing),
            return_exceptions=True,
        )

        seeded: List[str] = []
        for key, result in zip(missing, results):
            if isinstance(result, BaseException):
                _LOGGER.error("Failed to seed slice %s: %s", key, result)
            else:
                seeded.append(key)
        if seeded:
            _LOGGER.info("Seeded default slices: %s", ", ".join(seeded))
        return seeded
