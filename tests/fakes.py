from __future__ import annotations

from typing import Callable

from stock_watch.http_client import FetchResult


AVAILABLE_HTML = """
<html><head><title>Labubu Figur | Example Shop</title></head>
<body>
  <h1>Labubu Figur</h1>
  <span class="price">€19,99</span>
  <button type="submit" name="add">In den Warenkorb</button>
</body></html>
"""

SOLD_OUT_HTML = """
<html><head><title>Labubu Figur | Example Shop</title></head>
<body>
  <h1>Labubu Figur</h1>
  <p>€19,99</p>
  <p>Leider ausverkauft</p>
</body></html>
"""

# One product page serving two variants: ?variant=1 in stock, ?variant=2 sold out.
MULTI_OFFER_HTML = """
<html><head><title>Labubu Figur | Example Shop</title>
<script type="application/ld+json">
{"@context": "https://schema.org", "@type": "Product", "name": "Labubu Figur",
 "url": "https://shop.example.test/products/labubu?variant=1",
 "offers": [
  {"@type": "Offer", "url": "https://shop.example.test/products/labubu?variant=1", "sku": "LB-1",
   "price": "19.99", "priceCurrency": "EUR", "availability": "https://schema.org/InStock"},
  {"@type": "Offer", "url": "https://shop.example.test/products/labubu?variant=2", "sku": "LB-SET",
   "price": "59.99", "priceCurrency": "EUR", "availability": "https://schema.org/OutOfStock"}
 ]}
</script></head>
<body>
  <h1>Labubu Figur</h1>
  <span class="price">€19,99</span>
  <button type="submit" name="add">In den Warenkorb</button>
</body></html>
"""


def page(html: str, *, status_code: int = 200, url: str = "https://shop.example.test/") -> FetchResult:
    ok = 200 <= status_code < 400
    return FetchResult(
        url=url,
        status_code=status_code,
        ok=ok,
        text=html,
        error=None if ok else f"HTTP {status_code}",
        elapsed_ms=5,
    )


def network_error(url: str = "https://shop.example.test/") -> FetchResult:
    return FetchResult(
        url=url,
        status_code=None,
        ok=False,
        text=None,
        error="Timeout after 30s: read timed out",
        elapsed_ms=30000,
        error_kind="network_error",
    )


class FakeClient:
    """Serves canned FetchResults; a per-URL entry wins over ``default``."""

    def __init__(self, default: FetchResult | None = None) -> None:
        self.default = default or page(AVAILABLE_HTML)
        self.pages: dict[str, FetchResult | Callable[[], FetchResult]] = {}
        self.calls: list[tuple[str, str | None]] = []

    def fetch_text(self, url: str, *, user_agent: str | None = None) -> FetchResult:
        self.calls.append((url, user_agent))
        entry = self.pages.get(url, self.default)
        return entry() if callable(entry) else entry

    def count(self, url: str) -> int:
        return sum(1 for u, _ua in self.calls if u == url)


class FakeTimer:
    def __init__(self, factory: FakeTimerFactory, interval_seconds: float, callback: Callable[[], None]) -> None:
        self.interval_seconds = interval_seconds
        self.callback = callback
        self.next_due = factory.now + interval_seconds
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeTimerFactory:
    """Virtual-clock stand-in for RepeatingTimer; ``advance`` fires due callbacks in time order."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: list[FakeTimer] = []

    def __call__(self, interval_seconds: float, callback: Callable[[], None]) -> FakeTimer:
        t = FakeTimer(self, interval_seconds, callback)
        self.timers.append(t)
        return t

    @property
    def active(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self.active if t.next_due <= target]
            if not due:
                break
            t = min(due, key=lambda x: x.next_due)
            self.now = t.next_due
            t.next_due += t.interval_seconds
            t.callback()
        self.now = target


def run_inline(fn: Callable[[], None]) -> None:
    fn()
