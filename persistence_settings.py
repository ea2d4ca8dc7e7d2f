"""Configuration of the persistence layer itself.

These settings pick the storage medium and tune autosave. They are not part
of the user's persisted state and never appear in backups.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Union

from slice_store import (
    AnkiAddonConfigBackend,
    JsonDirectoryBackend,
    MemoryBackend,
    SliceStore,
    StorageBackend,
)


_LOGGER = logging.getLogger(__name__)

BACKEND_JSON = "json"
BACKEND_MEMORY = "memory"
BACKEND_ANKI = "anki"
BACKENDS = (BACKEND_JSON, BACKEND_MEMORY, BACKEND_ANKI)


@dataclass
class PersistenceSettings:
    """Settings for the persistence layer.

    - autosave_delay_ms: quiet period after the last mutation before writing.
    - backend: storage medium ("json", "memory" or "anki").
    - storage_dir: directory for the json backend, one file per slice.
    - backup_dir: default directory for exported backups.
    - anki_addon_key: add-on config the anki backend stores slices in.
    """

    autosave_delay_ms: int = 800
    backend: str = BACKEND_JSON
    storage_dir: str = "reword_data"
    backup_dir: str = "."
    anki_addon_key: str = "reword"

    @property
    def autosave_delay_s(self) -> float:
        return self.autosave_delay_ms / 1000.0


def settings_to_dict(settings: PersistenceSettings) -> Dict[str, Any]:
    return asdict(settings)


def dict_to_settings(data: Any) -> PersistenceSettings:
    if not isinstance(data, dict) or not data:
        return PersistenceSettings()

    defaults = PersistenceSettings()

    delay = data.get("autosave_delay_ms", defaults.autosave_delay_ms)
    if isinstance(delay, bool) or not isinstance(delay, (int, float)) or delay < 0:
        delay = defaults.autosave_delay_ms

    backend = str(data.get("backend") or defaults.backend).strip().lower()
    if backend not in BACKENDS:
        _LOGGER.warning("Unknown storage backend %r, using %s", backend, defaults.backend)
        backend = defaults.backend

    return PersistenceSettings(
        autosave_delay_ms=int(delay),
        backend=backend,
        storage_dir=_coerce_str(data.get("storage_dir"), defaults.storage_dir),
        backup_dir=_coerce_str(data.get("backup_dir"), defaults.backup_dir),
        anki_addon_key=_coerce_str(
            data.get("anki_addon_key"), defaults.anki_addon_key
        ),
    )


def load_settings(path: Union[str, Path]) -> PersistenceSettings:
    p = Path(path)
    if not p.exists():
        return PersistenceSettings()

    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except Exception as e:
        _LOGGER.warning("Failed to load settings %s: %s", str(p), e)
        return PersistenceSettings()

    return dict_to_settings(data)


def build_backend(settings: PersistenceSettings) -> StorageBackend:
    if settings.backend == BACKEND_MEMORY:
        return MemoryBackend()
    if settings.backend == BACKEND_ANKI:
        return AnkiAddonConfigBackend(settings.anki_addon_key)
    return JsonDirectoryBackend(settings.storage_dir)


def build_store(settings: PersistenceSettings) -> SliceStore:
    return SliceStore(build_backend(settings))


def _coerce_str(value: Any, default: str) -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default
