from __future__ import annotations

import sys
import threading
from dataclasses import dataclass
from typing import Any, Callable

import requests

from .models import Availability, Verdict
from .parsers.common import compact_ws, extract_price


# Headless-rendering endpoint first, plain fetch-and-parse second.
DEFAULT_ENDPOINTS = ("/api/check-stock", "/api/check-stock-simple")


@dataclass(frozen=True)
class RemoteResult:
    verdict: Verdict
    endpoint: str
    product_name: str | None = None
    stock_status: str | None = None


def _warn(msg: str) -> None:
    print(f"[remote] {msg}", file=sys.stderr)


def _envelope(payload: Any) -> dict[str, Any] | None:
    if not isinstance(payload, dict):
        return None
    if payload.get("success") is False:
        return None
    data = payload.get("data")
    if isinstance(data, dict) and "inStock" in data:
        return data
    if "inStock" in payload:
        return payload
    return None


def _price(value: Any) -> str | None:
    if value is None or value == "":
        return None
    text = compact_ws(str(value))
    return extract_price(text) or text


class RemoteChecker:
    """Client for a scraping service that renders pages on our behalf.

    Endpoints are tried in order; any failure (transport, non-2xx, bad JSON,
    ``success: false``) moves on to the next one and ``check`` returns None
    once all are exhausted, so callers fall back to fetching directly.
    """

    def __init__(
        self,
        base_url: str,
        *,
        endpoints: tuple[str, ...] = DEFAULT_ENDPOINTS,
        timeout_seconds: float = 30.0,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._endpoints = endpoints
        self._timeout_seconds = timeout_seconds
        self._session_factory = session_factory
        self._local = threading.local()

    def _session(self) -> requests.Session:
        # Sessions are not thread-safe; each timer thread gets its own.
        sess = getattr(self._local, "session", None)
        if sess is None:
            sess = self._session_factory()
            self._local.session = sess
        return sess

    def check(self, url: str) -> RemoteResult | None:
        for endpoint in self._endpoints:
            result = self._check_one(endpoint, url)
            if result is not None:
                return result
        return None

    def _check_one(self, endpoint: str, url: str) -> RemoteResult | None:
        try:
            resp = self._session().get(
                f"{self._base_url}{endpoint}",
                params={"url": url},
                timeout=(self._timeout_seconds, self._timeout_seconds),
            )
        except requests.RequestException as e:
            _warn(f"{endpoint} unreachable: {type(e).__name__}: {e}")
            return None
        if not (200 <= resp.status_code < 300):
            _warn(f"{endpoint} answered HTTP {resp.status_code}")
            return None
        try:
            payload = resp.json()
        except ValueError:
            _warn(f"{endpoint} returned non-JSON body")
            return None
        data = _envelope(payload)
        if data is None:
            return None
        in_stock = data.get("inStock")
        if not isinstance(in_stock, bool):
            return None
        verdict = Verdict(
            availability=Availability.AVAILABLE if in_stock else Availability.UNAVAILABLE,
            price=_price(data.get("price")),
            reason=f"remote {endpoint}: {data.get('stockReason') or data.get('stockStatus') or in_stock}",
        )
        return RemoteResult(
            verdict=verdict,
            endpoint=endpoint,
            product_name=data.get("productName") or None,
            stock_status=data.get("stockStatus") or None,
        )
