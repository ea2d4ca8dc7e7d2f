"""Whole-state backup documents.

A backup is a single JSON object with one top-level field per slice plus
`timestamp` (epoch milliseconds), `version` and `app`. Import is a partial
merge: only slices present in the document are restored.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from slice_defaults import SLICES, SliceId
from slice_store import PersistenceError


_LOGGER = logging.getLogger(__name__)

BACKUP_FORMAT_VERSION = "3.3.0"
BACKUP_APP_LABEL = "Re-Word ContextLingo"
BACKUP_FILENAME_PREFIX = "reword_backup_"


class BackupFormatError(PersistenceError):
    pass


class BackupWriteError(PersistenceError):
    def __init__(self, message: str, failed_slices: Sequence[str] = ()):
        super().__init__(message)
        self.failed_slices: List[str] = list(failed_slices)


def build_backup_document(
    slices: Mapping[str, Any], *, now: Optional[float] = None
) -> Dict[str, Any]:
    """Snapshot every slice into a backup document.

    `now` is a POSIX timestamp in seconds; defaults to the current time.
    Slices missing from `slices` are omitted rather than defaulted.
    """

    document: Dict[str, Any] = {}
    for config_slice in SLICES:
        if config_slice.key in slices:
            document[config_slice.key] = slices[config_slice.key]

    seconds = time.time() if now is None else float(now)
    document["timestamp"] = int(seconds * 1000)
    document["version"] = BACKUP_FORMAT_VERSION
    document["app"] = BACKUP_APP_LABEL
    return document


def dumps_backup(document: Mapping[str, Any]) -> str:
    return json.dumps(document, indent=2, ensure_ascii=False)


def backup_filename(day: Optional[date] = None) -> str:
    day = day or date.today()
    return f"{BACKUP_FILENAME_PREFIX}{day.isoformat()}.json"


async def write_backup_file(
    document: Mapping[str, Any],
    directory: Union[str, Path],
    *,
    day: Optional[date] = None,
) -> Path:
    path = Path(directory) / backup_filename(day)
    text = dumps_backup(document) + "\n"

    def _write() -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")

    await asyncio.to_thread(_write)
    _LOGGER.info("Exported backup to %s", str(path))
    return path


async def read_backup_file(path: Union[str, Path]) -> str:
    p = Path(path)
    try:
        return await asyncio.to_thread(p.read_text, encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise BackupFormatError(f"Cannot read backup file {p}: {e}") from e


def parse_backup(raw: Union[str, bytes]) -> Dict[str, Any]:
    """Parse and minimally validate a backup document.

    Raises BackupFormatError unless the text is a JSON object holding an
    `entries` list. Other slices are optional, but a present slice must have
    the same container type as its default.
    """

    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise BackupFormatError("Backup file is not UTF-8 text") from e

    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise BackupFormatError("Backup file is not valid JSON") from e

    if not isinstance(data, dict):
        raise BackupFormatError("Backup document must be a JSON object")

    entries = data.get(SliceId.ENTRIES.value)
    if not isinstance(entries, list):
        raise BackupFormatError("Invalid backup file: 'entries' array missing.")

    for config_slice in SLICES:
        value = data.get(config_slice.key)
        if value is None:
            continue
        if not isinstance(value, config_slice.shape):
            raise BackupFormatError(
                f"Invalid backup file: '{config_slice.key}' must be a "
                f"{'list' if config_slice.shape is list else 'object'}."
            )

    return data


def present_slices(document: Mapping[str, Any]) -> Dict[str, Any]:
    """Slices the document actually carries, in backup layout order."""

    return {
        s.key: document[s.key]
        for s in SLICES
        if document.get(s.key) is not None
    }
