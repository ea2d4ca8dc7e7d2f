"""Startup repairs for slices whose stored shape drifted between releases.

Migrations are structural: each step inspects the value it is given and
repairs it only when the expected fields are missing or wrong. Steps are
pure and idempotent; `run_startup_migrations` persists a slice only when a
step actually changed it.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Tuple

from slice_defaults import (
    DEFAULT_ANKI_CONFIG,
    ICIBA_DICTIONARY_ID,
    YOUDAO_DICTIONARY_ID,
    SliceId,
    get_slice,
)
from slice_store import SliceStore, StorageWriteError


_LOGGER = logging.getLogger(__name__)


MigrationStep = Callable[[Any], Any]


def migrate_dictionary_priorities(dictionaries: Any) -> Any:
    """Pin the ICIBA dictionary to priority 1 and Youdao to priority 2.

    Nothing changes when there is no ICIBA entry or it already ranks first.
    """

    if not isinstance(dictionaries, list):
        return dictionaries

    iciba = None
    for d in dictionaries:
        if isinstance(d, dict) and d.get("id") == ICIBA_DICTIONARY_ID:
            iciba = d
            break
    if iciba is None or iciba.get("priority") == 1:
        return dictionaries

    out: List[Any] = []
    for d in dictionaries:
        if isinstance(d, dict) and d.get("id") == ICIBA_DICTIONARY_ID:
            out.append({**d, "priority": 1})
        elif isinstance(d, dict) and d.get("id") == YOUDAO_DICTIONARY_ID:
            out.append({**d, "priority": 2})
        else:
            out.append(d)
    return out


def migrate_anki_config(anki_config: Any) -> Any:
    """Fill in the split "want"/"learning" deck names.

    Older configs had a single `deckName`; it becomes the learning deck when
    `deckNameLearning` is missing. The legacy field itself is left in place.
    """

    if not isinstance(anki_config, dict):
        return anki_config
    if anki_config.get("deckNameWant") and anki_config.get("deckNameLearning"):
        return anki_config

    migrated: Dict[str, Any] = copy.deepcopy(DEFAULT_ANKI_CONFIG)
    migrated.update(anki_config)

    migrated["deckNameWant"] = (
        anki_config.get("deckNameWant") or DEFAULT_ANKI_CONFIG["deckNameWant"]
    )

    legacy_deck = anki_config.get("deckName")
    if isinstance(legacy_deck, str):
        legacy_deck = legacy_deck.strip()
    migrated["deckNameLearning"] = (
        anki_config.get("deckNameLearning")
        or legacy_deck
        or DEFAULT_ANKI_CONFIG["deckNameLearning"]
    )

    if not anki_config.get("syncScope"):
        migrated["syncScope"] = copy.deepcopy(DEFAULT_ANKI_CONFIG["syncScope"])

    return migrated


# Ordered steps per slice. A slice's schema revision is the number of steps
# registered for it; append new steps, never reorder.
MIGRATIONS: Dict[str, Tuple[MigrationStep, ...]] = {
    SliceId.DICTIONARIES.value: (migrate_dictionary_priorities,),
    SliceId.ANKI_CONFIG.value: (migrate_anki_config,),
}


def schema_revision(slice_key: str) -> int:
    return len(MIGRATIONS.get(slice_key, ()))


def migrate_slice(slice_key: str, value: Any) -> Any:
    config_slice = get_slice(slice_key)
    if not isinstance(value, config_slice.shape):
        _LOGGER.warning(
            "Slice %s has unexpected type %s, resetting to default",
            config_slice.key,
            type(value).__name__,
        )
        value = config_slice.make_default()

    for step in MIGRATIONS.get(config_slice.key, ()):
        value = step(value)
    return value


@dataclass
class MigrationReport:
    changed: List[str] = field(default_factory=list)
    persisted: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


async def run_startup_migrations(
    store: SliceStore, state: Mapping[str, Any]
) -> Tuple[Dict[str, Any], MigrationReport]:
    """Migrate the loaded slices and persist the ones that changed.

    Returns the migrated state (a new dict; `state` is not modified) and a
    report. A failed write is logged and reported; the in-memory value stays
    migrated so the next autosave persists it.
    """

    migrated: Dict[str, Any] = dict(state)
    report = MigrationReport()

    for key in MIGRATIONS:
        if key not in migrated:
            continue
        before = migrated[key]
        after = migrate_slice(key, before)
        if after == before:
            continue

        _LOGGER.info("Migrated slice %s", key)
        migrated[key] = after
        report.changed.append(key)
        try:
            await store.set(key, after)
        except StorageWriteError as e:
            _LOGGER.error("Failed to persist migrated slice %s: %s", key, e)
            report.errors.append(f"{key}: {e}")
        else:
            report.persisted.append(key)

    return migrated, report
