from __future__ import annotations

from urllib.parse import urljoin

from bs4 import Tag


def attr_text(val: object) -> str:
    """Attribute value as text; bs4 returns multi-valued ones such as rel as lists."""

    if isinstance(val, list):
        return " ".join(str(v) for v in val)
    return str(val or "")


def extract_hreflang(doc: Tag | None) -> dict[str, str]:
    """Collect ``<link rel="alternate" hreflang=...>`` hints from a page.

    The whole tree is searched in document order, not only ``<head>``.
    Keys are lowercased hreflang codes; values are the hrefs exactly as
    written, so relative URLs stay relative. A later link for the same
    code replaces an earlier one.
    """

    result: dict[str, str] = {}
    if doc is None:
        return result

    for link in doc.find_all("link"):
        rel = attr_text(link.get("rel"))
        hreflang = attr_text(link.get("hreflang"))
        href = attr_text(link.get("href"))
        if rel == "alternate" and hreflang and href:
            result[hreflang.lower()] = href

    return result


def resolve_hreflang(hreflang_map: dict[str, str], *, page_url: str) -> dict[str, str]:
    """Resolve every href of an hreflang map against the page URL.

    Entries whose href cannot be joined are dropped.
    """

    out: dict[str, str] = {}
    for loc, href in hreflang_map.items():
        try:
            out[loc] = urljoin(page_url, href)
        except ValueError:
            continue
    return out
