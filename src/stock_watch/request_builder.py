from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Callable


DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 13_6) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 16_6 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/16.6 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:124.0) Gecko/20100101 Firefox/124.0",
]

ACCEPT_LANGUAGES = [
    "en-US,en;q=0.9",
    "de-DE,de;q=0.9,en;q=0.8",
    "zh-CN,zh;q=0.9,en;q=0.8",
    "ja-JP,ja;q=0.9,en;q=0.8",
    "fr-FR,fr;q=0.9,en;q=0.8",
]

REQUEST_TIMEOUT_SECONDS = 30.0
MIN_DELAY_SECONDS = 1.0
MAX_DELAY_SECONDS = 3.0


@dataclass(frozen=True)
class RequestSpec:
    url: str
    headers: dict[str, str]
    timeout_seconds: float
    delay_seconds: float

    @property
    def user_agent(self) -> str:
        return self.headers["User-Agent"]


def build_request(
    url: str,
    *,
    user_agent: str | None = None,
    rng: random.Random | None = None,
    timeout_seconds: float = REQUEST_TIMEOUT_SECONDS,
    user_agents: list[str] | None = None,
) -> RequestSpec:
    rnd = rng or random
    ua = (user_agent or "").strip() or rnd.choice(user_agents or DEFAULT_USER_AGENTS)
    headers = {
        "User-Agent": ua,
        "Accept-Language": rnd.choice(ACCEPT_LANGUAGES),
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
        "Accept-Encoding": "gzip, deflate, br",
        # Always revalidate; a cached listing would hide restocks.
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "Upgrade-Insecure-Requests": "1",
        "Sec-Fetch-Site": "same-origin",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Dest": "document",
    }
    return RequestSpec(
        url=url,
        headers=headers,
        timeout_seconds=timeout_seconds,
        delay_seconds=rnd.uniform(MIN_DELAY_SECONDS, MAX_DELAY_SECONDS),
    )


def pace(spec: RequestSpec, *, sleep: Callable[[float], None] = time.sleep) -> None:
    if spec.delay_seconds > 0:
        sleep(spec.delay_seconds)
