"""Shared fakes for docfetch tests."""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Optional, Union

import pytest

from docfetch.http_client import FetchResult

Canned = Union[FetchResult, Exception]


def make_result(
    url: str,
    body: Union[bytes, str] = b"",
    *,
    status_code: int = 200,
    content_type: str = "text/html; charset=utf-8",
) -> FetchResult:
    if isinstance(body, str):
        body = body.encode("utf-8")
    return FetchResult(
        url=url,
        final_url=url,
        status_code=status_code,
        headers={"Content-Type": content_type},
        fetched_at=0.0,
        body=body,
    )


class FakeHttp:
    """Stand-in for :class:`docfetch.http_client.HttpClient`.

    Unknown URLs answer 404. Canned exceptions are raised from ``get``.
    """

    def __init__(
        self,
        responses: Optional[Dict[str, Canned]] = None,
        *,
        delay_s: float = 0.0,
    ) -> None:
        self.responses: Dict[str, Canned] = dict(responses or {})
        self.calls: List[tuple[str, Optional[Dict[str, str]]]] = []
        self._delay_s = delay_s
        self._lock = threading.Lock()

    def get(self, url: str, *, headers: Optional[Dict[str, str]] = None) -> FetchResult:
        with self._lock:
            self.calls.append((url, headers))
        if self._delay_s:
            time.sleep(self._delay_s)
        resp = self.responses.get(url)
        if resp is None:
            return make_result(url, status_code=404, content_type="text/plain")
        if isinstance(resp, Exception):
            raise resp
        return resp

    @property
    def urls(self) -> List[str]:
        return [u for u, _ in self.calls]


@pytest.fixture
def robots_response() -> Callable[[str, str], FetchResult]:
    def _build(site: str, text: str) -> FetchResult:
        return make_result(f"{site}/robots.txt", text, content_type="text/plain")

    return _build
