"""Tests for the robots.txt gate.

Covers:
- RobotsRules group selection, wildcards and longest-match evaluation
- fail-open outcomes of RobotsGate.fetch_policy
- single-fetch idempotence, also under concurrent callers
- site-mount prefix stripping
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait

import pytest
import requests

from conftest import FakeHttp, make_result
from docfetch.robots import (
    InvalidRootURLError,
    RobotsGate,
    RobotsRules,
    compile_rule_path,
    normalize_base_path,
)

SITE = "https://docs.example.com"
UA = "docfetch/0.1 (+https://github.com/docfetch)"

ROBOTS_TXT = """\
# comment
User-agent: *
Disallow: /private/
Allow: /private/public/
Disallow: /search?q=

User-agent: docfetch
Disallow: /drafts/
"""


class TestRobotsRules:
    def test_wildcard_group_applies_to_unknown_agent(self) -> None:
        rules = RobotsRules.from_text(ROBOTS_TXT)
        assert rules.can_fetch("/private/a", "OtherBot/2.0") is False
        assert rules.can_fetch("/docs/a", "OtherBot/2.0") is True

    def test_specific_group_replaces_wildcard(self) -> None:
        rules = RobotsRules.from_text(ROBOTS_TXT)
        assert rules.can_fetch("/drafts/x", UA) is False
        # The docfetch group has no rule for /private/.
        assert rules.can_fetch("/private/a", UA) is True

    def test_longest_match_wins(self) -> None:
        rules = RobotsRules.from_text(ROBOTS_TXT)
        assert rules.can_fetch("/private/public/page", "OtherBot") is True
        assert rules.can_fetch("/private/page", "OtherBot") is False

    def test_allow_wins_equal_length_tie(self) -> None:
        rules = RobotsRules.from_text(
            "User-agent: *\nDisallow: /docs\nAllow: /docs\n"
        )
        assert rules.can_fetch("/docs/page", "AnyBot") is True

    def test_query_rules_match_path_with_query(self) -> None:
        rules = RobotsRules.from_text(ROBOTS_TXT)
        assert rules.can_fetch("/search?q=locale", "OtherBot") is False
        assert rules.can_fetch("/search", "OtherBot") is True

    def test_no_matching_group_allows(self) -> None:
        rules = RobotsRules.from_text("User-agent: SomeBot\nDisallow: /\n")
        assert rules.find_group(UA) is None
        assert rules.can_fetch("/anything", UA) is True

    def test_disallow_everything(self) -> None:
        rules = RobotsRules.from_text("User-agent: *\nDisallow: /\n")
        assert rules.can_fetch("/", UA) is False
        assert rules.can_fetch("/docs/", UA) is False


class TestRobotsRulesWildcards:
    WILDCARD_TXT = """\
User-agent: *
Disallow: /*.pdf$
Disallow: /*?
Allow: /downloads/*.pdf$
"""

    def test_end_anchor(self) -> None:
        rules = RobotsRules.from_text(self.WILDCARD_TXT)
        assert rules.can_fetch("/files/manual.pdf", UA) is False
        assert rules.can_fetch("/files/manual.pdf.html", UA) is True

    def test_rule_ending_in_question_mark_blocks_queries_only(self) -> None:
        rules = RobotsRules.from_text(self.WILDCARD_TXT)
        assert rules.can_fetch("/docs?hl=ja", UA) is False
        assert rules.can_fetch("/docs", UA) is True

    def test_longer_wildcard_allow_wins(self) -> None:
        rules = RobotsRules.from_text(self.WILDCARD_TXT)
        assert rules.can_fetch("/downloads/sdk.pdf", UA) is True

    def test_bare_star_disallows_everything(self) -> None:
        rules = RobotsRules.from_text("User-agent: *\nDisallow: *\n")
        assert rules.can_fetch("/", UA) is False
        assert rules.can_fetch("/docs/page?x=1", UA) is False

    def test_star_inside_path(self) -> None:
        rules = RobotsRules.from_text("User-agent: *\nDisallow: /api/*/internal\n")
        assert rules.can_fetch("/api/v2/internal/keys", UA) is False
        assert rules.can_fetch("/api/internal", UA) is True

    @pytest.mark.parametrize(
        ("rule", "path", "expected"),
        [
            ("/private", "/private/x", True),
            ("/private$", "/private/x", False),
            ("/private$", "/private", True),
            ("*.json", "/a/b.json", True),
            ("/a.b", "/aXb", False),
        ],
    )
    def test_compile_rule_path(self, rule: str, path: str, expected: bool) -> None:
        assert bool(compile_rule_path(rule).match(path)) is expected

    def test_gate_applies_wildcards(self, robots_response) -> None:
        http = FakeHttp(
            {f"{SITE}/robots.txt": robots_response(SITE, self.WILDCARD_TXT)}
        )
        gate = RobotsGate(http, user_agent=UA)
        gate.fetch_policy(SITE)

        assert gate.is_allowed(f"{SITE}/docs/guide.pdf") is False
        assert gate.is_allowed(f"{SITE}/docs/guide?page=2") is False
        assert gate.is_allowed(f"{SITE}/docs/guide") is True


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("", ""),
        ("/", ""),
        ("/site", "/site/"),
        ("/site/", "/site/"),
        ("  /mirror/docs ", "/mirror/docs/"),
    ],
)
def test_normalize_base_path(raw: str, expected: str) -> None:
    assert normalize_base_path(raw) == expected


class TestRobotsGateBeforeFetch:
    def test_allows_everything_when_never_fetched(self) -> None:
        gate = RobotsGate(FakeHttp(), user_agent=UA)
        assert gate.fetched is False
        assert gate.is_allowed(f"{SITE}/private/a") is True
        assert gate.is_allowed("http://[::1/broken") is True
        assert gate.is_allowed("") is True


class TestRobotsGateFetch:
    def test_successful_fetch_enforces_rules(self, robots_response) -> None:
        http = FakeHttp({f"{SITE}/robots.txt": robots_response(SITE, ROBOTS_TXT)})
        gate = RobotsGate(http, user_agent="OtherBot/1.0")

        gate.fetch_policy(f"{SITE}/en/docs/")

        assert gate.fetched is True
        assert gate.has_ruleset is True
        assert gate.is_allowed(f"{SITE}/private/a") is False
        assert gate.is_allowed(f"{SITE}/private/public/a") is True
        assert gate.is_allowed(f"{SITE}/search?q=x") is False
        assert gate.is_allowed(f"{SITE}/docs/") is True

    def test_robots_location_and_user_agent_header(self, robots_response) -> None:
        http = FakeHttp({f"{SITE}/robots.txt": robots_response(SITE, ROBOTS_TXT)})
        gate = RobotsGate(http, user_agent=UA)

        gate.fetch_policy(f"{SITE}/some/deep/page?hl=ja#frag")

        assert http.calls == [(f"{SITE}/robots.txt", {"User-Agent": UA})]

    def test_second_fetch_is_noop(self, robots_response) -> None:
        http = FakeHttp({f"{SITE}/robots.txt": robots_response(SITE, ROBOTS_TXT)})
        gate = RobotsGate(http, user_agent="OtherBot")
        urls = [f"{SITE}/private/a", f"{SITE}/docs/", f"{SITE}/search?q=1"]

        gate.fetch_policy(SITE)
        before = [gate.is_allowed(u) for u in urls]
        http.responses[f"{SITE}/robots.txt"] = robots_response(
            SITE, "User-agent: *\nDisallow: /\n"
        )
        gate.fetch_policy(SITE)
        gate.fetch_policy("https://elsewhere.example.org/")
        after = [gate.is_allowed(u) for u in urls]

        assert before == after == [False, True, False]
        assert len(http.calls) == 1

    def test_second_fetch_after_failure_is_noop(self) -> None:
        http = FakeHttp({f"{SITE}/robots.txt": RuntimeError("boom")})
        gate = RobotsGate(http, user_agent=UA)

        gate.fetch_policy(SITE)
        gate.fetch_policy(SITE)

        assert len(http.calls) == 1

    @pytest.mark.parametrize(
        "failure",
        [
            RuntimeError("Failed to fetch: retries exhausted"),
            requests.ConnectionError("connection refused"),
            requests.Timeout("timed out"),
        ],
    )
    def test_transport_error_fails_open(self, failure, caplog) -> None:
        http = FakeHttp({f"{SITE}/robots.txt": failure})
        gate = RobotsGate(http, user_agent=UA)

        with caplog.at_level(logging.WARNING, logger="docfetch.robots"):
            gate.fetch_policy(SITE)

        assert gate.fetched is True
        assert gate.has_ruleset is False
        assert gate.is_allowed(f"{SITE}/private/a") is True
        assert "Assuming allow all" in caplog.text

    @pytest.mark.parametrize("status", [301, 403, 404, 500, 503])
    def test_non_success_status_fails_open(self, status) -> None:
        http = FakeHttp(
            {
                f"{SITE}/robots.txt": make_result(
                    f"{SITE}/robots.txt",
                    "User-agent: *\nDisallow: /\n",
                    status_code=status,
                    content_type="text/plain",
                )
            }
        )
        gate = RobotsGate(http, user_agent=UA)

        gate.fetch_policy(SITE)

        assert gate.fetched is True
        assert gate.has_ruleset is False
        assert gate.is_allowed(f"{SITE}/anything") is True

    def test_undecodable_body_fails_open(self, caplog) -> None:
        http = FakeHttp(
            {
                f"{SITE}/robots.txt": make_result(
                    f"{SITE}/robots.txt",
                    b"User-agent: *\nDisallow: /\xff\xfe\n",
                    content_type="text/plain",
                )
            }
        )
        gate = RobotsGate(http, user_agent=UA)

        with caplog.at_level(logging.WARNING, logger="docfetch.robots"):
            gate.fetch_policy(SITE)

        assert gate.fetched is True
        assert gate.has_ruleset is False
        assert gate.is_allowed(f"{SITE}/") is True
        assert "Failed to parse robots.txt" in caplog.text

    def test_utf8_bom_is_accepted(self) -> None:
        http = FakeHttp(
            {
                f"{SITE}/robots.txt": make_result(
                    f"{SITE}/robots.txt",
                    "\ufeffUser-agent: *\nDisallow: /private/\n".encode("utf-8"),
                    content_type="text/plain",
                )
            }
        )
        gate = RobotsGate(http, user_agent=UA)

        gate.fetch_policy(SITE)

        assert gate.is_allowed(f"{SITE}/private/x") is False

    @pytest.mark.parametrize("root", ["not a url", "/relative/path", "http://[::1/x"])
    def test_invalid_root_raises_and_stays_unfetched(self, root) -> None:
        http = FakeHttp()
        gate = RobotsGate(http, user_agent=UA)

        with pytest.raises(InvalidRootURLError):
            gate.fetch_policy(root)

        assert gate.fetched is False
        assert http.calls == []

    def test_valid_fetch_after_invalid_root(self, robots_response) -> None:
        http = FakeHttp({f"{SITE}/robots.txt": robots_response(SITE, ROBOTS_TXT)})
        gate = RobotsGate(http, user_agent="OtherBot")

        with pytest.raises(ValueError):
            gate.fetch_policy("nonsense")
        gate.fetch_policy(SITE)

        assert gate.is_allowed(f"{SITE}/private/a") is False

    def test_malformed_target_is_allowed_after_fetch(self, robots_response) -> None:
        http = FakeHttp(
            {f"{SITE}/robots.txt": robots_response(SITE, "User-agent: *\nDisallow: /\n")}
        )
        gate = RobotsGate(http, user_agent=UA)
        gate.fetch_policy(SITE)

        assert gate.is_allowed(f"{SITE}/docs") is False
        assert gate.is_allowed("http://[::1/docs") is True


class TestRobotsGateBasePath:
    def _gate(self, robots_response, base_path: str) -> RobotsGate:
        http = FakeHttp({f"{SITE}/robots.txt": robots_response(SITE, ROBOTS_TXT)})
        gate = RobotsGate(http, user_agent="OtherBot", base_path=base_path)
        gate.fetch_policy(SITE)
        return gate

    def test_mount_prefix_is_stripped(self, robots_response) -> None:
        gate = self._gate(robots_response, "/site")

        assert gate.base_path == "/site/"
        assert gate.is_allowed(f"{SITE}/site/private/a") is False
        assert gate.is_allowed(f"{SITE}/site/docs/a") is True
        assert gate.is_allowed(f"{SITE}/site/search?q=x") is False

    def test_paths_outside_prefix_are_checked_as_is(self, robots_response) -> None:
        gate = self._gate(robots_response, "/site/")

        assert gate.is_allowed(f"{SITE}/private/a") is False
        assert gate.is_allowed(f"{SITE}/sitemap/private/a") is True

    def test_root_base_path_means_no_prefix(self, robots_response) -> None:
        gate = self._gate(robots_response, "/")

        assert gate.base_path == ""
        assert gate.is_allowed(f"{SITE}/site/private/a") is True


class TestRobotsGateConcurrency:
    def test_concurrent_workers_fetch_once(self, robots_response) -> None:
        http = FakeHttp(
            {f"{SITE}/robots.txt": robots_response(SITE, ROBOTS_TXT)},
            delay_s=0.05,
        )
        gate = RobotsGate(http, user_agent="OtherBot")

        def worker(i: int) -> bool:
            gate.fetch_policy(SITE)
            return gate.is_allowed(f"{SITE}/private/{i}")

        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(worker, range(64)))

        assert len(http.calls) == 1
        assert results == [False] * 64

    def test_queries_wait_for_fetch_in_progress(self, robots_response) -> None:
        started = threading.Event()
        release = threading.Event()

        class BlockingHttp(FakeHttp):
            def get(self, url, *, headers=None):
                started.set()
                release.wait(5)
                return super().get(url, headers=headers)

        http = BlockingHttp(
            {f"{SITE}/robots.txt": robots_response(SITE, "User-agent: *\nDisallow: /\n")}
        )
        gate = RobotsGate(http, user_agent=UA)

        with ThreadPoolExecutor(max_workers=2) as pool:
            try:
                fetch = pool.submit(gate.fetch_policy, SITE)
                assert started.wait(5)
                check = pool.submit(gate.is_allowed, f"{SITE}/x")

                # The query must not answer from the half-built policy.
                done, _ = wait([check], timeout=0.2)
                assert not done
            finally:
                release.set()

            fetch.result(timeout=5)
            assert check.result(timeout=5) is False
