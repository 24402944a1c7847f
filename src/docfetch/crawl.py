from __future__ import annotations

import logging
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Iterable
from urllib.parse import urljoin, urlsplit

import requests
from bs4 import BeautifulSoup

from .hreflang import attr_text, extract_hreflang, resolve_hreflang
from .http_client import FetchResult, HttpClient
from .locales import (
    LocaleConfig,
    build_locale_url,
    extract_locale,
    normalize_locale,
    select_preferred_locale_url,
)
from .robots import InvalidRootURLError, RobotsGate
from .urls import UrlScope, is_asset_intent_url, normalize_url, site_root

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "docfetch/0.1 (+https://github.com/docfetch)"

_HTML_CONTENT_TYPES = {"text/html", "application/xhtml+xml"}


def extract_title(soup: BeautifulSoup) -> str:
    h1 = soup.find("h1")
    if h1 and h1.get_text(strip=True):
        return h1.get_text(" ", strip=True)
    if soup.title and soup.title.get_text(strip=True):
        return soup.title.get_text(" ", strip=True)
    return "Untitled"


def links_from_soup(soup: BeautifulSoup, *, page_url: str) -> list[str]:
    base_href = None
    base = soup.find("base")
    if base is not None:
        base_href = attr_text(base.get("href")).strip() or None

    effective_base = page_url
    if base_href is not None:
        try:
            effective_base = urljoin(page_url, base_href)
        except ValueError:
            pass

    out: list[str] = []
    for a in soup.select("a[href]"):
        href = attr_text(a.get("href")).strip()
        if not href:
            continue
        if href.startswith("#"):
            continue
        if href.lower().startswith(("mailto:", "javascript:", "tel:")):
            continue
        try:
            out.append(normalize_url(urljoin(effective_base, href)))
        except ValueError:
            continue

    return out


def extract_links_from_html(html: str, *, page_url: str) -> list[str]:
    return links_from_soup(BeautifulSoup(html, "html.parser"), page_url=page_url)


def _is_html(res: FetchResult) -> bool:
    ct = res.content_type.split(";", 1)[0].strip().lower()
    if ct:
        return ct in _HTML_CONTENT_TYPES
    head = res.body[:2048].lstrip().lower()
    return head.startswith(b"<!doctype html") or head.startswith(b"<html")


@dataclass
class CrawlConfig:
    scope: UrlScope
    locale: LocaleConfig = field(default_factory=LocaleConfig)
    user_agent: str = DEFAULT_USER_AGENT
    base_path: str = ""
    max_pages: int = 200
    max_depth: int = 3
    per_host_delay_s: float = 0.5
    respect_robots: bool = True


@dataclass(frozen=True)
class PageRecord:
    url: str
    locale: str
    canonical_path: str
    title: str
    depth: int
    alternates: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "locale": self.locale,
            "canonical_path": self.canonical_path,
            "title": self.title,
            "depth": self.depth,
            "alternates": dict(self.alternates),
        }


@dataclass
class CrawlResult:
    pages: list[PageRecord] = field(default_factory=list)
    blocked: list[dict[str, str]] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)
    stats: Counter[str] = field(default_factory=Counter)
    remaining_queue: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "pages": [p.to_dict() for p in self.pages],
            "blocked": list(self.blocked),
            "errors": list(self.errors),
            "stats": dict(self.stats),
            "remaining_queue": self.remaining_queue,
        }


class Crawler:
    """Breadth-first crawl that keeps one page per locale-free path.

    Pages are keyed by host plus canonical path, so ``/ja/docs/x`` and
    ``/en/docs/x`` count as the same page. When a page advertises hreflang
    alternates, the variant picked by the locale priority is crawled instead
    of the current one.
    """

    def __init__(
        self,
        *,
        http: HttpClient,
        config: CrawlConfig,
    ) -> None:
        self.http = http
        self.cfg = config

        self._gates: dict[str, RobotsGate] = {}
        self._last_fetch_at_by_host: dict[str, float] = {}

    def _pacing_sleep(self, host: str) -> None:
        last = self._last_fetch_at_by_host.get(host)
        if last is None:
            return
        elapsed = time.time() - last
        if elapsed < self.cfg.per_host_delay_s:
            time.sleep(self.cfg.per_host_delay_s - elapsed)

    def gate_for(self, url: str) -> RobotsGate:
        """Return the robots gate of ``url``'s site, loading it on first use."""

        root = site_root(url)
        gate = self._gates.get(root)
        if gate is None:
            gate = RobotsGate(
                self.http,
                user_agent=self.cfg.user_agent,
                base_path=self.cfg.base_path,
            )
            gate.fetch_policy(root)
            self._gates[root] = gate
        return gate

    def page_key(self, url: str) -> str:
        host = (urlsplit(url).hostname or "").lower()
        _, canonical = extract_locale(url, self.cfg.locale)
        return host + canonical

    def localize_link(self, url: str) -> str:
        """Add the preferred locale parameter to a link that carries none.

        Only applies in query-parameter mode; path-mode links are returned
        unchanged.
        """

        loc_cfg = self.cfg.locale
        if not loc_cfg.uses_query_param or not loc_cfg.preferred:
            return url
        locale, _ = extract_locale(url, loc_cfg)
        if locale:
            return url
        try:
            parts = urlsplit(url)
        except ValueError:
            return url
        path = parts.path or "/"
        if parts.query:
            path += "?" + parts.query
        return build_locale_url(
            f"{parts.scheme}://{parts.netloc}", loc_cfg.preferred, path, loc_cfg
        )

    def _should_fetch(self, url: str) -> tuple[bool, str | None]:
        if not self.cfg.scope.is_allowed(url):
            return False, "offsite"

        if not self.cfg.respect_robots:
            return True, None

        try:
            gate = self.gate_for(url)
        except InvalidRootURLError as e:
            logger.warning("%s", e)
            return False, "invalid_url"

        if not gate.is_allowed(url):
            return False, "robots"

        return True, None

    def crawl(self, seeds: Iterable[str]) -> CrawlResult:
        result = CrawlResult()
        stats = result.stats

        queue: deque[tuple[str, int]] = deque()
        enqueued: set[str] = set()
        for seed in seeds:
            url = normalize_url(seed)
            if url not in enqueued:
                enqueued.add(url)
                queue.append((url, 0))

        visited: set[str] = set()
        done_keys: set[str] = set()
        # Pages set aside for a preferred alternate, keyed by that alternate.
        fallbacks: dict[str, tuple[str, PageRecord, list[str]]] = {}

        def record(key: str, page: PageRecord, links: list[str]) -> None:
            result.pages.append(page)
            done_keys.add(key)
            stats["fetched"] += 1
            logger.info(
                "Crawled %s (locale=%s, canonical=%s)",
                page.url,
                page.locale or "-",
                page.canonical_path,
            )

            if page.depth >= self.cfg.max_depth:
                return

            for link in links:
                link = normalize_url(self.localize_link(link))
                if link in enqueued:
                    continue
                if not self.cfg.scope.is_allowed(link):
                    continue
                if is_asset_intent_url(link):
                    continue
                # Guard against URL explosion; skip long paths.
                if len(urlsplit(link).path) > 500:
                    continue
                if self.page_key(link) in done_keys:
                    stats["duplicate_locale"] += 1
                    continue
                enqueued.add(link)
                queue.append((link, page.depth + 1))

        def fall_back(url: str) -> None:
            pending = fallbacks.pop(url, None)
            if pending is None:
                return
            key, page, links = pending
            if key in done_keys:
                return
            logger.info(
                "Keeping %s; preferred locale %s was not usable", page.url, url
            )
            stats["kept_locale"] += 1
            record(key, page, links)

        while queue and len(result.pages) < self.cfg.max_pages:
            url, depth = queue.popleft()
            if url in visited:
                fall_back(url)
                continue
            visited.add(url)

            key = self.page_key(url)
            if key in done_keys:
                fall_back(url)
                stats["duplicate_locale"] += 1
                continue

            ok, blocked_reason = self._should_fetch(url)
            if not ok:
                stats["blocked"] += 1
                result.blocked.append({"url": url, "reason": blocked_reason or ""})
                logger.debug("Skipping %s (%s)", url, blocked_reason)
                fall_back(url)
                continue

            host = (urlsplit(url).hostname or "").lower()
            self._pacing_sleep(host)
            try:
                res = self.http.get(url)
            except (OSError, requests.RequestException, RuntimeError) as e:
                stats["error"] += 1
                result.errors.append({"url": url, "error": str(e)})
                logger.warning("Failed to fetch %s: %s", url, e)
                fall_back(url)
                continue
            finally:
                self._last_fetch_at_by_host[host] = time.time()

            if not res.ok:
                stats["http_error"] += 1
                result.errors.append(
                    {"url": url, "error": f"HTTP {res.status_code}"}
                )
                logger.warning("%s returned status %d", url, res.status_code)
                fall_back(url)
                continue

            if not _is_html(res):
                stats["non_html"] += 1
                fall_back(url)
                continue

            fallbacks.pop(url, None)
            soup = BeautifulSoup(
                res.body.decode("utf-8", errors="replace"), "html.parser"
            )
            locale, canonical = extract_locale(url, self.cfg.locale)
            alternates = resolve_hreflang(extract_hreflang(soup), page_url=url)
            page = PageRecord(
                url=url,
                locale=locale,
                canonical_path=canonical,
                title=extract_title(soup),
                depth=depth,
                alternates=alternates,
            )
            links = links_from_soup(soup, page_url=url)

            if alternates:
                selection = select_preferred_locale_url(
                    alternates, self.cfg.locale.priority
                )
                preferred = normalize_url(selection.url)
                if (
                    preferred != url
                    and preferred not in visited
                    and normalize_locale(selection.locale) != normalize_locale(locale)
                ):
                    allowed, reason = self._should_fetch(preferred)
                    if allowed:
                        logger.debug(
                            "Switching %s to preferred locale %s: %s",
                            url,
                            selection.locale,
                            preferred,
                        )
                        stats["switched_locale"] += 1
                        fallbacks[preferred] = (key, page, links)
                        enqueued.add(preferred)
                        queue.appendleft((preferred, depth))
                        continue
                    logger.debug(
                        "Not switching %s to %s (%s)", url, preferred, reason
                    )

            record(key, page, links)

        result.remaining_queue = len(queue)
        logger.info(
            "Crawl finished: %d pages, %d blocked, %d errors",
            len(result.pages),
            len(result.blocked),
            len(result.errors),
        )
        return result
