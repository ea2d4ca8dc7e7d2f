"""Slice registry for the Re-Word persisted state.

Each slice is an independently stored partition of application state. The
slice id doubles as its storage key and as its field name in a backup
document, so renaming one is a breaking change for existing stores and
backups.

Defaults are handed out as fresh deep copies (see `default_for`).
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Tuple, Union


class _StrEnum(str, Enum):
    """Enum with stable string values for JSON serialization."""

    def __str__(self) -> str:
        return str(self.value)


class SliceId(_StrEnum):
    SCENARIOS = "scenarios"
    ENTRIES = "entries"
    PAGE_WIDGET_CONFIG = "pageWidgetConfig"
    AUTO_TRANSLATE = "autoTranslate"
    ENGINES = "engines"
    DICTIONARIES = "dictionaries"
    ANKI_CONFIG = "ankiConfig"
    STYLES = "styles"
    ORIGINAL_TEXT_CONFIG = "originalTextConfig"
    INTERACTION_CONFIG = "interactionConfig"


class WordCategory(_StrEnum):
    KNOWN = "Known Words"
    WANT_TO_LEARN = "Want to Learn"
    LEARNING = "Learning"


INITIAL_SCENARIOS: List[Dict[str, Any]] = [
    {"id": "1", "name": "General English", "isActive": True},
    {"id": "2", "name": "Exam Prep", "isActive": False},
]

DEFAULT_PAGE_WIDGET: Dict[str, Any] = {
    "enabled": True,
    "x": -1,
    "y": -1,
    "width": 340,
    "maxHeight": 500,
    "opacity": 0.98,
    "backgroundBlur": True,
    "cardSpacing": 12,
    "cardPadding": 16,
    "cardBorderRadius": 12,
    "modalPosition": {"x": 0, "y": 0},
    "modalSize": {"width": 0, "height": 0},
    "showPhonetic": True,
    "showMeaning": True,
    "showMultiExamples": True,
    "showExampleTranslation": True,
    "showContextTranslation": True,
    "showInflections": True,
    "showPartOfSpeechLabel": True,
    "showTranslationEngineLabel": True,
    "showSections": {
        "known": False,
        "want": True,
        "learning": True,
    },
}

DEFAULT_AUTO_TRANSLATE: Dict[str, Any] = {
    "enabled": True,
    "bilingualMode": False,
    "translateWholePage": False,
    "matchInflections": True,
    "aggressiveMode": False,
    "blacklist": ["google.com", "baidu.com"],
    "whitelist": [],
    "ttsSpeed": 1.0,
}

INITIAL_ENGINES: List[Dict[str, Any]] = [
    {
        "id": "google",
        "name": "Google Translate",
        "type": "standard",
        "isEnabled": True,
        "isCustom": False,
    },
    {
        "id": "microsoft",
        "name": "Microsoft Translator",
        "type": "standard",
        "isEnabled": False,
        "isCustom": False,
    },
    {
        "id": "deepl",
        "name": "DeepL",
        "type": "standard",
        "apiKey": "",
        "isEnabled": False,
        "isCustom": False,
    },
]

# The migrator relies on these two ids; see schema_migrator.
ICIBA_DICTIONARY_ID = "iciba"
YOUDAO_DICTIONARY_ID = "youdao"

INITIAL_DICTIONARIES: List[Dict[str, Any]] = [
    {
        "id": ICIBA_DICTIONARY_ID,
        "name": "ICIBA",
        "endpoint": "https://dict-co.iciba.com/api/dictionary.php",
        "link": "https://www.iciba.com/",
        "isEnabled": True,
        "priority": 1,
        "description": "Chinese-English dictionary with phonetics and examples.",
    },
    {
        "id": YOUDAO_DICTIONARY_ID,
        "name": "Youdao",
        "endpoint": "https://dict.youdao.com/jsonapi",
        "link": "https://dict.youdao.com/",
        "isEnabled": True,
        "priority": 2,
        "description": "Youdao dictionary with collins and web definitions.",
    },
    {
        "id": "free-dictionary",
        "name": "Free Dictionary API",
        "endpoint": "https://api.dictionaryapi.dev/api/v2/entries/en",
        "link": "https://dictionaryapi.dev/",
        "isEnabled": True,
        "priority": 3,
        "description": "English-English definitions.",
    },
]

DEFAULT_ANKI_CONFIG: Dict[str, Any] = {
    "enabled": True,
    "url": "http://127.0.0.1:8765",
    "deckNameWant": "ContextLingo-Want",
    "deckNameLearning": "ContextLingo-Learning",
    "modelName": "Basic",
    "syncInterval": 90,
    "autoSync": False,
    "syncScope": {
        "wantToLearn": True,
        "learning": True,
    },
    "templates": {
        "frontTemplate": "{{word}}",
        "backTemplate": "{{translation}}<br>{{example}}",
    },
}


def _style(color: str, background: str, *, bold: bool, underline: str) -> Dict[str, Any]:
    return {
        "color": color,
        "backgroundColor": background,
        "isBold": bold,
        "isItalic": False,
        "underlineStyle": underline,
        "underlineColor": color,
        "underlineOffset": "2px",
        "fontSize": "1em",
        "opacity": 1,
    }


DEFAULT_STYLES: Dict[str, Dict[str, Any]] = {
    str(WordCategory.KNOWN): _style("#15803d", "transparent", bold=False, underline="none"),
    str(WordCategory.WANT_TO_LEARN): _style("#b45309", "#fef3c7", bold=True, underline="dotted"),
    str(WordCategory.LEARNING): _style("#1d4ed8", "#dbeafe", bold=True, underline="solid"),
}

DEFAULT_ORIGINAL_TEXT_CONFIG: Dict[str, Any] = {
    "show": True,
    "activeMode": "horizontal",
    "bracketsTarget": "original",
    "horizontal": {
        "translationFirst": False,
        "wrappers": {
            "original": {"prefix": "(", "suffix": ")"},
            "translation": {"prefix": "", "suffix": ""},
        },
    },
    "vertical": {
        "translationFirst": True,
        "baselineTarget": "translation",
        "leadingSpace": 0,
        "trailingSpace": 0,
    },
}

DEFAULT_WORD_INTERACTION: Dict[str, Any] = {
    "mainTrigger": {"modifier": "None", "action": "Hover", "delay": 600},
    "quickAddTrigger": {"modifier": "Alt", "action": "DoubleClick", "delay": 0},
    "bubblePosition": "top",
    "showPhonetic": True,
    "showOriginalText": True,
    "showDictExample": True,
    "showDictTranslation": True,
    "autoPronounce": True,
    "autoPronounceAccent": "US",
    "autoPronounceCount": 1,
    "dismissDelay": 300,
    "allowMultipleBubbles": False,
}


@dataclass(frozen=True)
class ConfigSlice:
    """A named, independently stored partition of application state.

    - slice_id: storage key and backup document field name.
    - default: value used when the slice is absent or unreadable.
    """

    slice_id: SliceId
    default: Any

    @property
    def key(self) -> str:
        return str(self.slice_id.value)

    @property
    def shape(self) -> type:
        return list if isinstance(self.default, list) else dict

    def make_default(self) -> Any:
        return copy.deepcopy(self.default)


# Order matches the backup document layout.
SLICES: Tuple[ConfigSlice, ...] = (
    ConfigSlice(SliceId.SCENARIOS, INITIAL_SCENARIOS),
    ConfigSlice(SliceId.ENTRIES, []),
    ConfigSlice(SliceId.PAGE_WIDGET_CONFIG, DEFAULT_PAGE_WIDGET),
    ConfigSlice(SliceId.AUTO_TRANSLATE, DEFAULT_AUTO_TRANSLATE),
    ConfigSlice(SliceId.ENGINES, INITIAL_ENGINES),
    ConfigSlice(SliceId.DICTIONARIES, INITIAL_DICTIONARIES),
    ConfigSlice(SliceId.ANKI_CONFIG, DEFAULT_ANKI_CONFIG),
    ConfigSlice(SliceId.STYLES, DEFAULT_STYLES),
    ConfigSlice(SliceId.ORIGINAL_TEXT_CONFIG, DEFAULT_ORIGINAL_TEXT_CONFIG),
    ConfigSlice(SliceId.INTERACTION_CONFIG, DEFAULT_WORD_INTERACTION),
)

SLICE_KEYS: Tuple[str, ...] = tuple(s.key for s in SLICES)

_BY_KEY: Dict[str, ConfigSlice] = {s.key: s for s in SLICES}


def get_slice(slice_id: Union[SliceId, str]) -> ConfigSlice:
    """Look up a slice by id; raises KeyError for unknown ids."""

    key = slice_id.value if isinstance(slice_id, SliceId) else str(slice_id)
    try:
        return _BY_KEY[key]
    except KeyError:
        raise KeyError(f"Unknown config slice: {key!r}") from None


def default_for(slice_id: Union[SliceId, str]) -> Any:
    return get_slice(slice_id).make_default()


def default_state() -> Dict[str, Any]:
    return {s.key: s.make_default() for s in SLICES}
