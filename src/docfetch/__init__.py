"""docfetch core library.

This package provides the locale-aware URL resolution and robots.txt
compliance primitives used when crawling a documentation site, plus a small
breadth-first crawl loop that drives them.

Layout:
- ``robots``: single-fetch robots.txt gate shared by crawl workers.
- ``locales`` / ``hreflang``: locale extraction, URL building, alternate
  discovery and preferred-locale selection.
- ``crawl`` / ``cli``: the crawl loop and its command-line front end.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
