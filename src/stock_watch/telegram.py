from __future__ import annotations

import html
import os
import sys
import threading
import time
from dataclasses import dataclass
from typing import Callable

import requests

from .models import AvailabilityEvent


@dataclass(frozen=True)
class TelegramConfig:
    bot_token: str
    chat_id: str
    max_retries: int = 6
    retry_base_seconds: float = 1.0
    min_interval_seconds: float = 0.8


def load_telegram_config() -> TelegramConfig | None:
    token = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()
    chat_id = os.getenv("TELEGRAM_CHAT_ID", "").strip()
    if not token or not chat_id:
        return None
    return TelegramConfig(
        bot_token=token,
        chat_id=chat_id,
        max_retries=int(os.getenv("TELEGRAM_MAX_RETRIES", "6")),
        retry_base_seconds=float(os.getenv("TELEGRAM_RETRY_BASE_SECONDS", "1.0")),
        min_interval_seconds=float(os.getenv("TELEGRAM_MIN_INTERVAL_SECONDS", "0.8")),
    )


def _warn(msg: str) -> None:
    print(f"[telegram] {msg}", file=sys.stderr)


def _parse_retry_after_seconds(resp: requests.Response) -> float | None:
    hdr = resp.headers.get("Retry-After")
    if hdr:
        try:
            return float(hdr)
        except ValueError:
            pass
    try:
        payload = resp.json()
    except ValueError:
        return None
    retry_after = (payload or {}).get("parameters", {}).get("retry_after")
    try:
        return float(retry_after)
    except (TypeError, ValueError):
        return None


def h(text: str | None) -> str:
    return html.escape(text or "", quote=True)


def format_restock_message(event: AvailabilityEvent) -> str:
    lines = [
        "🟢 <b>Back in stock</b>",
        f"<b>{h(event.product_name)}</b>",
        f"Variant: {h(event.variant_label)}",
    ]
    if event.price:
        lines.append(f"Price: <b>{h(event.price)}</b>")
    lines.append(f'<a href="{h(event.url)}">Open listing</a>')
    lines.append(f"<i>{h(event.timestamp)}</i>")
    return "\n".join(lines)


class TelegramNotifier:
    def __init__(
        self,
        cfg: TelegramConfig,
        *,
        timeout_seconds: float = 15.0,
        sleep: Callable[[float], None] = time.sleep,
        post: Callable[..., requests.Response] = requests.post,
    ) -> None:
        self._cfg = cfg
        self._timeout_seconds = timeout_seconds
        self._sleep = sleep
        self._post = post
        self._lock = threading.Lock()
        self._last_send_at: float | None = None

    def notify(self, event: AvailabilityEvent) -> None:
        self.send_html(format_restock_message(event))

    def send_html(self, message_html: str) -> bool:
        # One message at a time per bot; Telegram rate-limits bursts per chat.
        with self._lock:
            return self._send_locked(message_html)

    def _send_locked(self, message_html: str) -> bool:
        cfg = self._cfg
        url = f"https://api.telegram.org/bot{cfg.bot_token}/sendMessage"
        for attempt in range(cfg.max_retries + 1):
            if self._last_send_at is not None:
                remaining = cfg.min_interval_seconds - (time.perf_counter() - self._last_send_at)
                if remaining > 0:
                    self._sleep(remaining)

            try:
                resp = self._post(
                    url,
                    data={
                        "chat_id": cfg.chat_id,
                        "text": message_html,
                        "parse_mode": "HTML",
                        "disable_web_page_preview": "true",
                    },
                    timeout=(self._timeout_seconds, self._timeout_seconds),
                )
            except requests.RequestException as e:
                if attempt >= cfg.max_retries:
                    _warn(f"send failed after retries: {type(e).__name__}: {e}")
                    return False
                self._sleep(cfg.retry_base_seconds * (2**attempt))
                continue
            finally:
                self._last_send_at = time.perf_counter()

            if resp.status_code == 429:
                retry_after = _parse_retry_after_seconds(resp) or (cfg.retry_base_seconds * (2**attempt))
                if attempt >= cfg.max_retries:
                    _warn(f"rate limited (429) after retries; retry_after={retry_after}")
                    return False
                self._sleep(min(60.0, max(0.1, retry_after)))
                continue

            if 500 <= resp.status_code <= 599:
                if attempt >= cfg.max_retries:
                    _warn(f"telegram server error after retries: {resp.status_code}")
                    return False
                self._sleep(cfg.retry_base_seconds * (2**attempt))
                continue

            try:
                resp.raise_for_status()
            except requests.HTTPError:
                body = (resp.text or "").strip().replace("\n", " ")
                if len(body) > 300:
                    body = body[:300] + "..."
                _warn(f"send failed: {resp.status_code} {body}")
                return False

            return True
        return False
