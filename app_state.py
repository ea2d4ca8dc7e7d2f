"""Owner of the in-memory application state.

`AppState` holds the single working copy of every slice. Collaborators read
and mutate slices through it; it is the only path from that copy back to
durable storage (via the autosave scheduler or a backup import).
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from autosave import DEFAULT_QUIET_PERIOD_S, AutosaveScheduler
from backup_codec import (
    BackupWriteError,
    build_backup_document,
    parse_backup,
    present_slices,
    read_backup_file,
    write_backup_file,
)
from persistence_settings import PersistenceSettings, build_store
from schema_migrator import MigrationReport, run_startup_migrations
from slice_defaults import SliceId, default_state, get_slice
from slice_store import SliceStore


_LOGGER = logging.getLogger(__name__)


ConfirmImport = Callable[[Mapping[str, Any]], bool]


@dataclass
class ImportResult:
    restored: List[str] = field(default_factory=list)
    entry_count: int = 0
    version: Optional[str] = None
    timestamp: Optional[int] = None


class AppState:
    def __init__(
        self,
        store: SliceStore,
        *,
        autosave_delay_s: float = DEFAULT_QUIET_PERIOD_S,
        backup_dir: Union[str, Path] = ".",
    ):
        self._store = store
        self._slices: Dict[str, Any] = default_state()
        self._loaded = False
        self._backup_dir = Path(backup_dir)
        self.scheduler = AutosaveScheduler(
            store, self._autosave_snapshot, delay_s=autosave_delay_s
        )
        self.migration_report: Optional[MigrationReport] = None

    @classmethod
    def from_settings(cls, settings: PersistenceSettings) -> "AppState":
        return cls(
            build_store(settings),
            autosave_delay_s=settings.autosave_delay_s,
            backup_dir=settings.backup_dir,
        )

    @property
    def store(self) -> SliceStore:
        return self._store

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    async def load(self) -> None:
        """Seed, read and migrate every slice, then publish the state.

        Autosave stays gated until the migrated state is in place.
        """

        with self.scheduler.suspended():
            await self._store.seed_defaults()
            loaded = await self._store.get_many()
            migrated, report = await run_startup_migrations(self._store, loaded)
            self._slices = migrated
            self.migration_report = report
            self._loaded = True

        _LOGGER.info(
            "Loaded %d slice(s), %d migrated", len(self._slices), len(report.changed)
        )

    def _require_loaded(self) -> None:
        if not self._loaded:
            raise RuntimeError("State accessed before load() completed")

    def get(self, slice_id: Union[SliceId, str]) -> Any:
        self._require_loaded()
        return copy.deepcopy(self._slices[get_slice(slice_id).key])

    def set(self, slice_id: Union[SliceId, str], value: Any) -> None:
        self._require_loaded()
        config_slice = get_slice(slice_id)
        if not isinstance(value, config_slice.shape):
            raise TypeError(
                f"{config_slice.key} must be a {config_slice.shape.__name__}, "
                f"got {type(value).__name__}"
            )
        self._slices[config_slice.key] = copy.deepcopy(value)
        self.scheduler.notify_changed()

    def update(self, slice_id: Union[SliceId, str], fn: Callable[[Any], Any]) -> Any:
        new_value = fn(self.get(slice_id))
        self.set(slice_id, new_value)
        return new_value

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(self._slices)

    def _autosave_snapshot(self) -> Mapping[str, Any]:
        # Slices are replaced, never mutated in place.
        return dict(self._slices)

    def export_backup(self, *, now: Optional[float] = None) -> Dict[str, Any]:
        self._require_loaded()
        return build_backup_document(self.snapshot(), now=now)

    async def write_backup(
        self,
        directory: Union[str, Path, None] = None,
        *,
        day: Optional[date] = None,
    ) -> Path:
        document = self.export_backup()
        return await write_backup_file(
            document, self._backup_dir if directory is None else directory, day=day
        )

    async def import_backup(
        self, raw: Union[str, bytes], *, confirm: Optional[ConfirmImport] = None
    ) -> Optional[ImportResult]:
        """Restore the slices a backup document carries.

        Validation happens before anything is touched. Returns None when
        `confirm` declines. Raises BackupFormatError for invalid documents and
        BackupWriteError when persisting restored slices fails; in the latter
        case memory already holds the restored values and an autosave cycle is
        scheduled to retry.
        """

        self._require_loaded()
        document = parse_backup(raw)
        restored = present_slices(document)

        if confirm is not None and not confirm(document):
            _LOGGER.info("Backup import cancelled")
            return None

        with self.scheduler.suspended():
            await self.scheduler.drain()
            for key, value in restored.items():
                self._slices[key] = copy.deepcopy(value)

            keys = list(restored)
            results = await asyncio.gather(
                *(self._store.set(k, self._slices[k]) for k in keys),
                return_exceptions=True,
            )

        failed = [k for k, r in zip(keys, results) if isinstance(r, BaseException)]
        for key, outcome in zip(keys, results):
            if isinstance(outcome, BaseException):
                _LOGGER.error("Failed to persist imported slice %s: %s", key, outcome)

        if failed:
            self.scheduler.notify_changed()
            raise BackupWriteError(
                "Backup restored in memory but not saved: " + ", ".join(failed),
                failed,
            )

        version = document.get("version")
        timestamp = document.get("timestamp")
        result = ImportResult(
            restored=keys,
            entry_count=len(restored[SliceId.ENTRIES.value]),
            version=version if isinstance(version, str) else None,
            timestamp=(
                timestamp
                if isinstance(timestamp, int) and not isinstance(timestamp, bool)
                else None
            ),
        )
        _LOGGER.info(
            "Imported backup: %d slice(s), %d entries", len(keys), result.entry_count
        )
        return result

    async def import_backup_file(
        self, path: Union[str, Path], *, confirm: Optional[ConfirmImport] = None
    ) -> Optional[ImportResult]:
        raw = await read_backup_file(path)
        return await self.import_backup(raw, confirm=confirm)

    async def close(self) -> None:
        await self.scheduler.aclose(flush=True)
