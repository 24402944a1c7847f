"""robots.txt acquisition and permission checks for one crawl session."""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from urllib.parse import unquote, urlsplit
from urllib.robotparser import Entry, RobotFileParser

import requests

from .http_client import HttpClient

logger = logging.getLogger(__name__)


class InvalidRootURLError(ValueError):
    """The crawl root cannot be turned into a robots.txt location."""


# RobotFileParser drops an empty query, which turns "Disallow: /*?" into
# "Disallow: /*". Appending "*", a no-op in a rule, keeps the "?".
_RULE_WITH_EMPTY_QUERY = re.compile(
    r"^(\s*(?:dis)?allow\s*:\s*[^#\s]*\?)(?=\s*(?:#|$))",
    re.IGNORECASE | re.MULTILINE,
)


def compile_rule_path(rule_path: str) -> re.Pattern[str]:
    """Compile a decoded rule path into a pattern anchored at the path start.

    ``*`` matches any run of characters and a trailing ``$`` anchors the
    end of the path. Everything else is literal.
    """

    anchored = rule_path.endswith("$")
    if anchored:
        rule_path = rule_path[:-1]
    body = ".*".join(re.escape(part) for part in rule_path.split("*"))
    return re.compile(body + (r"\Z" if anchored else ""), re.DOTALL)


@dataclass(frozen=True)
class _Rule:
    pattern: re.Pattern[str]
    length: int
    allowance: bool


class RobotsRules:
    """Parsed robots.txt with longest-match Allow/Disallow evaluation.

    Grammar handling (agent groups, comments, rule lines) is left to
    :class:`urllib.robotparser.RobotFileParser`. This class picks the group
    for an agent and tests a path against that group's rules, with ``*``
    and ``$`` wildcards. The longest rule path that matches wins and Allow
    wins a tie.
    """

    def __init__(self, parser: RobotFileParser) -> None:
        self._parser = parser
        self._rules: dict[int, list[_Rule]] = {}
        groups = list(parser.entries)
        if parser.default_entry is not None:
            groups.append(parser.default_entry)
        for entry in groups:
            rules = []
            for line in entry.rulelines:
                rule_path = unquote(line.path)
                rules.append(
                    _Rule(
                        pattern=compile_rule_path(rule_path),
                        length=len(rule_path),
                        allowance=bool(line.allowance),
                    )
                )
            self._rules[id(entry)] = rules

    @classmethod
    def from_text(cls, raw_text: str) -> RobotsRules:
        parser = RobotFileParser()
        parser.parse(_RULE_WITH_EMPTY_QUERY.sub(r"\1*", raw_text).splitlines())
        return cls(parser)

    def find_group(self, user_agent: str) -> Entry | None:
        for entry in self._parser.entries:
            if entry.applies_to(user_agent):
                return entry
        return self._parser.default_entry

    def can_fetch(self, path: str, user_agent: str) -> bool:
        group = self.find_group(user_agent)
        if group is None:
            return True

        target = unquote(path) or "/"
        best: tuple[int, bool] | None = None
        for rule in self._rules[id(group)]:
            if not rule.pattern.match(target):
                continue
            candidate = (rule.length, rule.allowance)
            if best is None or candidate > best:
                best = candidate

        return True if best is None else best[1]


def normalize_base_path(base_path: str) -> str:
    """Give a site-mount prefix a trailing slash; ``/`` means no prefix."""

    base_path = (base_path or "").strip()
    if base_path == "/":
        return ""
    if base_path and not base_path.endswith("/"):
        base_path += "/"
    return base_path


@dataclass
class RobotsPolicy:
    user_agent: str
    base_path: str = ""
    ruleset: RobotsRules | None = None
    fetched: bool = False


class RobotsGate:
    """Fetch a site's robots.txt once and answer allow/deny for its URLs.

    Every failure while acquiring robots.txt (transport error, non-2xx
    status, undecodable body) leaves the gate fetched but without rules, so
    every URL is allowed. Only an unusable root URL is reported to the
    caller.

    One lock covers the fetch and every query, so crawl workers can share a
    gate. The gate is meant to live for one crawl session.
    """

    def __init__(
        self,
        http: HttpClient,
        *,
        user_agent: str,
        base_path: str = "",
    ) -> None:
        self._http = http
        self._lock = threading.Lock()
        self._policy = RobotsPolicy(
            user_agent=user_agent,
            base_path=normalize_base_path(base_path),
        )

    @property
    def user_agent(self) -> str:
        return self._policy.user_agent

    @property
    def base_path(self) -> str:
        return self._policy.base_path

    @property
    def fetched(self) -> bool:
        with self._lock:
            return self._policy.fetched

    @property
    def has_ruleset(self) -> bool:
        with self._lock:
            return self._policy.ruleset is not None

    def fetch_policy(self, root_url: str) -> None:
        """Load robots.txt for the host of ``root_url`` unless already done.

        Raises:
            InvalidRootURLError: ``root_url`` has no usable scheme and host.
        """

        with self._lock:
            if self._policy.fetched:
                return

            try:
                parsed = urlsplit(root_url)
            except ValueError as e:
                raise InvalidRootURLError(f"Invalid root URL {root_url!r}: {e}") from e
            if not parsed.scheme or not parsed.netloc:
                raise InvalidRootURLError(
                    f"Invalid root URL {root_url!r}: scheme and host are required"
                )

            robots_url = f"{parsed.scheme}://{parsed.netloc}/robots.txt"
            logger.info("Fetching robots.txt from %s", robots_url)

            try:
                res = self._http.get(
                    robots_url,
                    headers={"User-Agent": self._policy.user_agent},
                )
            except (OSError, requests.RequestException, RuntimeError) as e:
                logger.warning(
                    "Failed to fetch robots.txt: %s. Assuming allow all.", e
                )
                self._policy.fetched = True
                return

            if not res.ok:
                logger.warning(
                    "robots.txt returned status %d. Assuming allow all.",
                    res.status_code,
                )
                self._policy.fetched = True
                return

            try:
                text = res.body.decode("utf-8-sig")
            except UnicodeDecodeError as e:
                logger.warning(
                    "Failed to parse robots.txt: %s. Assuming allow all.", e
                )
                self._policy.fetched = True
                return

            self._policy.ruleset = RobotsRules.from_text(text)
            self._policy.fetched = True
            logger.info("Successfully parsed robots.txt from %s", robots_url)

    def is_allowed(self, target_url: str) -> bool:
        with self._lock:
            ruleset = self._policy.ruleset
            if not self._policy.fetched or ruleset is None:
                return True

            try:
                parsed = urlsplit(target_url)
            except ValueError:
                return True

            path = parsed.path or "/"
            if parsed.query:
                path += "?" + parsed.query

            # Rules are relative to the site root, not the mount prefix.
            base_path = self._policy.base_path
            if base_path and path.startswith(base_path):
                path = "/" + path[len(base_path) :]

            allowed = ruleset.can_fetch(path, self._policy.user_agent)
            if not allowed:
                logger.debug("robots.txt disallows %s (path %s)", target_url, path)
            return allowed
