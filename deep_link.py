from __future__ import annotations

import urllib.parse
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from slice_defaults import _StrEnum


class StartView(_StrEnum):
    """Initial view selected from the startup query parameters."""

    DASHBOARD = "dashboard"
    WORDS = "words"
    WORD_DETAIL = "word-detail"


@dataclass(frozen=True)
class DeepLinkIntent:
    view: StartView = StartView.DASHBOARD
    word: Optional[str] = None
    tab: Optional[str] = None
    search: str = ""


def _first(params: Mapping[str, Any], key: str) -> str:
    raw = params.get(key)
    # parse_qs yields lists; plain mappings may hold scalars.
    if isinstance(raw, (list, tuple)):
        raw = raw[0] if raw else None
    if raw is None:
        return ""
    return str(raw)


def parse_deep_link(params: Union[str, Mapping[str, Any], None]) -> DeepLinkIntent:
    """Parse `view`/`word`/`tab`/`search` into a one-shot start intent.

    Accepts a query string (leading "?" optional) or a mapping. Anything that
    does not name a complete word-detail or word-list intent falls back to
    the dashboard.
    """

    if params is None:
        return DeepLinkIntent()
    if isinstance(params, str):
        params = urllib.parse.parse_qs(params.lstrip("?"), keep_blank_values=True)

    view = _first(params, "view")
    if view == StartView.WORD_DETAIL.value:
        word = _first(params, "word")
        if word:
            return DeepLinkIntent(view=StartView.WORD_DETAIL, word=word)
        return DeepLinkIntent()

    if view == StartView.WORDS.value:
        return DeepLinkIntent(
            view=StartView.WORDS,
            tab=_first(params, "tab") or None,
            search=_first(params, "search"),
        )

    return DeepLinkIntent()
