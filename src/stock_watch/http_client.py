from __future__ import annotations

import random
import threading
import time
from dataclasses import dataclass
from typing import Callable

import requests
from requests import Response
from requests.adapters import HTTPAdapter

from .request_builder import REQUEST_TIMEOUT_SECONDS, RequestSpec, build_request, pace


@dataclass(frozen=True)
class FetchResult:
    url: str
    status_code: int | None
    ok: bool
    text: str | None
    error: str | None
    elapsed_ms: int
    # "network_error" when no HTTP response was received at all.
    error_kind: str | None = None


class HttpClient:
    def __init__(
        self,
        *,
        timeout_seconds: float = REQUEST_TIMEOUT_SECONDS,
        proxy_url: str | None = None,
        user_agents: list[str] | None = None,
        max_retries: int = 2,
        rng: random.Random | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._proxy_url = proxy_url
        self._user_agents = user_agents
        self._max_retries = max(1, max_retries)
        self._rng = rng or random.Random()
        self._rng_lock = threading.Lock()
        self._sleep = sleep

        self._local = threading.local()

    def _session(self) -> requests.Session:
        sess = getattr(self._local, "session", None)
        if isinstance(sess, requests.Session):
            return sess
        s = requests.Session()
        adapter = HTTPAdapter(pool_connections=16, pool_maxsize=16)
        s.mount("http://", adapter)
        s.mount("https://", adapter)
        self._local.session = s
        return s

    def build(self, url: str, *, user_agent: str | None = None) -> RequestSpec:
        with self._rng_lock:
            return build_request(
                url,
                user_agent=user_agent,
                rng=self._rng,
                timeout_seconds=self._timeout_seconds,
                user_agents=self._user_agents,
            )

    def fetch_text(self, url: str, *, user_agent: str | None = None, paced: bool = True) -> FetchResult:
        spec = self.build(url, user_agent=user_agent)
        if paced:
            pace(spec, sleep=self._sleep)
        return self.fetch(spec)

    @staticmethod
    def _should_retry_status(status_code: int) -> bool:
        # 429 is left alone: it is an anti-bot signal and retrying only deepens the block.
        return status_code == 408 or (500 <= status_code <= 599)

    @staticmethod
    def _retry_after_seconds(resp: Response) -> float | None:
        try:
            raw = (resp.headers or {}).get("Retry-After")
        except Exception:
            raw = None
        if not raw:
            return None
        try:
            return float(raw)
        except (TypeError, ValueError):
            return None

    def _sleep_backoff(self, attempt: int, *, retry_after_seconds: float | None = None) -> None:
        if retry_after_seconds is not None:
            self._sleep(min(5.0, max(0.0, retry_after_seconds)))
            return
        base = min(2.5, 0.35 * attempt)
        with self._rng_lock:
            jitter = self._rng.random() * 0.15
        self._sleep(base + jitter)

    def _proxies(self) -> dict[str, str] | None:
        if not self._proxy_url:
            return None
        return {"http": self._proxy_url, "https": self._proxy_url}

    def fetch(self, spec: RequestSpec) -> FetchResult:
        started = time.perf_counter()
        last_error: str | None = None
        for attempt in range(1, self._max_retries + 1):
            try:
                resp: Response = self._session().get(
                    spec.url,
                    headers=spec.headers,
                    proxies=self._proxies(),
                    timeout=(spec.timeout_seconds, spec.timeout_seconds),
                    allow_redirects=True,
                )
            except requests.Timeout as e:
                # A timeout already spent the whole per-check budget.
                last_error = f"Timeout after {spec.timeout_seconds:g}s: {e}"
                break
            except requests.RequestException as e:
                last_error = f"{type(e).__name__}: {e}"
            else:
                if self._should_retry_status(resp.status_code) and attempt < self._max_retries:
                    last_error = f"HTTP {resp.status_code}"
                    self._sleep_backoff(attempt, retry_after_seconds=self._retry_after_seconds(resp))
                    continue
                elapsed_ms = int((time.perf_counter() - started) * 1000)
                ok = 200 <= resp.status_code < 400
                return FetchResult(
                    url=str(resp.url),
                    status_code=resp.status_code,
                    ok=ok,
                    # Error bodies are kept: the classifier needs them to spot challenge pages.
                    text=resp.text,
                    error=None if ok else f"HTTP {resp.status_code}",
                    elapsed_ms=elapsed_ms,
                )
            if attempt < self._max_retries:
                self._sleep_backoff(attempt)
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        return FetchResult(
            url=spec.url,
            status_code=None,
            ok=False,
            text=None,
            error=last_error,
            elapsed_ms=elapsed_ms,
            error_kind="network_error",
        )
