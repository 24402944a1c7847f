"""Locale detection and locale-variant URL construction.

Documentation sites publish the same page under several locales, either as a
path segment (``/ja/docs/page``) or a query parameter (``/docs/page?hl=ja``).
The helpers here reduce such URLs to a canonical, locale-free path used as
the crawl de-duplication key, rebuild locale variants from that path, and pick
which alternate-language URL to follow.

All functions are pure and safe to call from concurrent crawl workers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final, Mapping, NamedTuple, Sequence
from urllib.parse import parse_qs, parse_qsl, urlencode, urlsplit, urlunsplit

DEFAULT_LOCALE_PRIORITY: Final[tuple[str, ...]] = ("en", "ja")

# Registry consulted in path mode; a two-letter segment outside it (e.g. an
# API version like /v2/) is never taken for a locale.
KNOWN_LOCALES: Final[frozenset[str]] = frozenset(
    {
        "en",
        "en-us",
        "en-gb",
        "ja",
        "ja-jp",
        "zh",
        "zh-cn",
        "zh-tw",
        "zh-hk",
        "ko",
        "ko-kr",
        "de",
        "de-de",
        "fr",
        "fr-fr",
        "es",
        "es-es",
        "it",
        "it-it",
        "pt",
        "pt-br",
        "ru",
        "ru-ru",
        "ar",
        "nl",
        "pl",
        "tr",
        "vi",
        "th",
        "id",
        "ms",
    }
)

_LOCALE_ALIASES: Final[dict[str, str]] = {
    "ja-jp": "ja",
    "en-us": "en",
    "en-gb": "en",
    "zh-hans": "zh-cn",
    "zh-cn": "zh-cn",
    "zh-hant": "zh-tw",
    "zh-tw": "zh-tw",
}

# A whole path segment shaped like "ja" or "en-US", followed by a separator.
_LOCALE_SEGMENT = re.compile(r"/([a-z]{2}(?:-[a-z]{2,4})?)(?=/)", re.IGNORECASE)


@dataclass(frozen=True)
class LocaleConfig:
    """How locales are expressed in the crawled site's URLs.

    ``param_name`` selects query-parameter mode (``?hl=ja``); when it is
    empty the locale is looked for as a path segment.
    """

    priority: tuple[str, ...] = DEFAULT_LOCALE_PRIORITY
    param_name: str | None = None

    @property
    def uses_query_param(self) -> bool:
        return bool(self.param_name)

    @property
    def preferred(self) -> str:
        return self.priority[0] if self.priority else ""


class ExtractedLocale(NamedTuple):
    locale: str
    canonical_path: str


class LocaleSelection(NamedTuple):
    locale: str
    url: str


def normalize_locale(locale: str) -> str:
    """Lowercase ``locale`` and fold common aliases (``ja-JP`` -> ``ja``)."""

    locale = locale.lower()
    return _LOCALE_ALIASES.get(locale, locale)


def split_locale_path(path: str) -> tuple[str, str, str] | None:
    """Split ``path`` around its first known locale segment.

    Returns ``(prefix, locale, rest)`` so that ``prefix + "/" + locale + rest``
    is the original path, or ``None`` when no segment names a known locale.
    """

    for m in _LOCALE_SEGMENT.finditer(path):
        candidate = m.group(1).lower()
        if candidate in KNOWN_LOCALES:
            return path[: m.start()], candidate, path[m.end() :]
    return None


def extract_locale(url: str, cfg: LocaleConfig | None = None) -> ExtractedLocale:
    """Return the locale carried by ``url`` and its locale-free path.

    Query-parameter mode reads the configured parameter and keeps the path
    as is. Path mode scans the whole path, so a locale nested under a mount
    prefix (``/docs-mirror/ja/page``) is found too. A URL without a locale
    yields ``("", path)``.
    """

    try:
        parsed = urlsplit(url)
    except ValueError:
        fallback = re.split(r"[?#]", url, maxsplit=1)[0]
        return ExtractedLocale("", fallback if fallback.startswith("/") else "/")

    path = parsed.path or "/"

    if cfg is not None and cfg.uses_query_param:
        values = parse_qs(parsed.query, keep_blank_values=True).get(
            cfg.param_name or "", [""]
        )
        return ExtractedLocale(values[0], path)

    parts = split_locale_path(path)
    if parts is None:
        return ExtractedLocale("", path)

    prefix, locale, rest = parts
    if prefix.endswith("/") and rest.startswith("/"):
        rest = rest[1:]
    canonical = prefix + rest
    return ExtractedLocale(locale, canonical or "/")


def build_locale_url(
    base_url: str,
    locale: str,
    canonical_path: str,
    cfg: LocaleConfig | None = None,
) -> str:
    """Build the URL of ``canonical_path`` in ``locale``.

    ``canonical_path`` is expected to start with ``/``. In query-parameter
    mode the query is re-encoded with keys sorted; if the joined URL cannot
    be parsed the plain concatenation is returned.
    """

    if not locale:
        return base_url + canonical_path

    if cfg is not None and cfg.uses_query_param:
        joined = base_url + canonical_path
        try:
            parts = urlsplit(joined)
        except ValueError:
            return joined
        params = [
            (k, v)
            for k, v in parse_qsl(parts.query, keep_blank_values=True)
            if k != cfg.param_name
        ]
        params.append((cfg.param_name or "", locale))
        query = urlencode(sorted(params, key=lambda kv: kv[0]))
        return urlunsplit(parts._replace(query=query))

    return base_url + "/" + locale + canonical_path


def select_preferred_locale_url(
    hreflang_map: Mapping[str, str],
    priority: Sequence[str],
) -> LocaleSelection:
    """Pick the alternate to follow from a locale -> URL map.

    Each priority entry is looked up as is, then in the doubled form
    ``loc-loc`` (``ja`` -> ``ja-ja``). With no priority hit the smallest
    locale code wins so the choice does not depend on map order.
    """

    if not hreflang_map:
        return LocaleSelection("", "")

    for loc in priority:
        if loc in hreflang_map:
            return LocaleSelection(loc, hreflang_map[loc])
        # TODO: confirm whether this should try the region form (ja-jp);
        # the doubled form is what existing consumers are built against.
        expanded = f"{loc}-{loc}"
        if expanded in hreflang_map:
            return LocaleSelection(expanded, hreflang_map[expanded])

    loc = min(hreflang_map)
    return LocaleSelection(loc, hreflang_map[loc])
