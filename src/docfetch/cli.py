from __future__ import annotations

import argparse
import json
import logging
import sys

import requests
from tqdm import tqdm

from . import __version__
from .crawl import DEFAULT_USER_AGENT, CrawlConfig, Crawler
from .http_client import HttpClient
from .locales import (
    DEFAULT_LOCALE_PRIORITY,
    LocaleConfig,
    build_locale_url,
    extract_locale,
)
from .robots import InvalidRootURLError, RobotsGate
from .urls import UrlScope, site_root


def _parse_priority(text: str) -> tuple[str, ...]:
    out: list[str] = []
    for part in text.split(","):
        part = part.strip().lower()
        if part and part not in out:
            out.append(part)
    return tuple(out)


def _add_locale_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--locale-param",
        default=None,
        help="Query parameter carrying the locale (e.g. hl); path mode if unset",
    )


def _add_robots_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--user-agent", default=DEFAULT_USER_AGENT)
    p.add_argument(
        "--base-path",
        default="",
        help="Site-mount prefix stripped before matching robots.txt rules",
    )
    p.add_argument("--timeout", type=int, default=45)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docfetch",
        description="Locale-aware, robots.txt-compliant documentation crawler",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    crawl_p = sub.add_parser("crawl", help="Crawl a documentation site")
    crawl_p.add_argument("--seed", action="append", required=True)
    crawl_p.add_argument("--max-pages", type=int, default=200)
    crawl_p.add_argument("--max-depth", type=int, default=3)
    crawl_p.add_argument("--per-host-delay", type=float, default=0.5)
    crawl_p.add_argument("--no-robots", action="store_true")
    crawl_p.add_argument("--follow-offsite", action="store_true")
    crawl_p.add_argument(
        "--allow-host-suffix",
        action="append",
        default=None,
        help="Repeatable; defaults to the seed hosts",
    )
    crawl_p.add_argument(
        "--locale-priority",
        default=",".join(DEFAULT_LOCALE_PRIORITY),
        help="Comma-separated locale preference, most preferred first",
    )
    _add_locale_args(crawl_p)
    _add_robots_args(crawl_p)

    robots_p = sub.add_parser(
        "robots-check",
        help="Report whether robots.txt allows each URL",
    )
    robots_p.add_argument("urls", nargs="+")
    _add_robots_args(robots_p)

    locale_p = sub.add_parser("locale", help="Locale URL helpers")
    locale_sub = locale_p.add_subparsers(dest="locale_cmd", required=True)

    resolve_p = locale_sub.add_parser(
        "resolve", help="Print the locale and canonical path of a URL"
    )
    resolve_p.add_argument("url")
    _add_locale_args(resolve_p)

    build_p = locale_sub.add_parser(
        "build", help="Print the URL of a canonical path in a locale"
    )
    build_p.add_argument("base_url")
    build_p.add_argument("locale")
    build_p.add_argument("canonical_path")
    _add_locale_args(build_p)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.cmd == "crawl":
        priority = _parse_priority(args.locale_priority)
        if not priority:
            print("--locale-priority must name at least one locale", file=sys.stderr)
            return 2

        if args.allow_host_suffix:
            scope = UrlScope(
                tuple(args.allow_host_suffix),
                follow_offsite=bool(args.follow_offsite),
            )
        else:
            scope = UrlScope.for_seeds(
                args.seed, follow_offsite=bool(args.follow_offsite)
            )

        session = requests.Session()
        http = HttpClient(session, timeout_s=args.timeout, user_agent=args.user_agent)
        crawl_cfg = CrawlConfig(
            scope=scope,
            locale=LocaleConfig(priority=priority, param_name=args.locale_param),
            user_agent=args.user_agent,
            base_path=args.base_path,
            max_pages=int(args.max_pages),
            max_depth=int(args.max_depth),
            per_host_delay_s=float(args.per_host_delay),
            respect_robots=not bool(args.no_robots),
        )
        result = Crawler(http=http, config=crawl_cfg).crawl(args.seed)
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        return 0

    if args.cmd == "robots-check":
        session = requests.Session()
        http = HttpClient(session, timeout_s=args.timeout, user_agent=args.user_agent)
        gates: dict[str, RobotsGate] = {}
        # Progress goes to stderr and only when it is a terminal.
        for url in tqdm(args.urls, desc="robots-check", unit="url", disable=None):
            root = site_root(url)
            gate = gates.get(root)
            if gate is None:
                gate = RobotsGate(
                    http, user_agent=args.user_agent, base_path=args.base_path
                )
                try:
                    gate.fetch_policy(root or url)
                except InvalidRootURLError as e:
                    print(str(e), file=sys.stderr)
                    return 2
                gates[root] = gate
            verdict = "allow" if gate.is_allowed(url) else "deny"
            print(f"{verdict}\t{url}")
        return 0

    if args.cmd == "locale":
        loc_cfg = LocaleConfig(param_name=args.locale_param)
        if args.locale_cmd == "resolve":
            locale, canonical = extract_locale(args.url, loc_cfg)
            print(f"locale={locale or '-'} canonical={canonical}")
            return 0
        if args.locale_cmd == "build":
            print(
                build_locale_url(
                    args.base_url, args.locale, args.canonical_path, loc_cfg
                )
            )
            return 0

    return 2
