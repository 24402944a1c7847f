from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import ParseResult, urlparse, urlunparse


def normalize_url(raw_url: str) -> str:
    """Normalize a URL for de-duplication.

    - Lowercases scheme + hostname.
    - Strips fragments.
    - Gives an empty path on an absolute URL the root path ``/``.
    """

    parsed: ParseResult = urlparse(raw_url)
    scheme = (parsed.scheme or "").lower()
    netloc = (parsed.netloc or "").lower()

    path = parsed.path
    if netloc and not path:
        path = "/"

    parsed = parsed._replace(
        scheme=scheme,
        netloc=netloc,
        path=path,
        fragment="",
    )
    return urlunparse(parsed)


def site_root(url: str) -> str:
    """Return ``scheme://netloc`` for ``url`` (empty when either is missing)."""

    try:
        parsed = urlparse(url)
    except ValueError:
        return ""
    if not parsed.scheme or not parsed.netloc:
        return ""
    return f"{parsed.scheme}://{parsed.netloc}"


_ASSET_EXTS = {
    ".css",
    ".js",
    ".mjs",
    ".map",
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".webp",
    ".svg",
    ".ico",
    ".woff",
    ".woff2",
    ".ttf",
    ".otf",
    ".eot",
    ".pdf",
    ".zip",
    ".gz",
    ".tgz",
}


def is_asset_intent_url(url: str) -> bool:
    path = urlparse(url).path.lower()
    return any(path.endswith(ext) for ext in _ASSET_EXTS)


@dataclass(frozen=True)
class UrlScope:
    allow_host_suffixes: tuple[str, ...]
    follow_offsite: bool = False

    @classmethod
    def for_seeds(
        cls, seeds: list[str], *, follow_offsite: bool = False
    ) -> "UrlScope":
        hosts: list[str] = []
        for seed in seeds:
            host = (urlparse(seed).hostname or "").lower()
            if host and host not in hosts:
                hosts.append(host)
        return cls(tuple(hosts), follow_offsite=follow_offsite)

    def is_allowed(self, url: str) -> bool:
        try:
            parsed = urlparse(url)
        except ValueError:
            return False
        if parsed.scheme not in {"http", "https"}:
            return False
        if self.follow_offsite:
            return True
        host = (parsed.hostname or "").lower()
        if not host:
            return False
        for suffix in self.allow_host_suffixes:
            suffix = suffix.lower().lstrip(".")
            if host == suffix or host.endswith("." + suffix):
                return True
        return False
