from __future__ import annotations

import os
import sys

from stock_watch.http_client import HttpClient
from stock_watch.parsers.classifier import classify
from stock_watch.parsers.page_info import extract_page_info


def main(argv: list[str]) -> int:
    try:
        sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        sys.stderr.reconfigure(encoding="utf-8", errors="replace")
    except AttributeError:
        pass

    urls = argv or [u.strip() for u in os.getenv("LIVE_URLS", "").split(",") if u.strip()]
    if not urls:
        print("usage: live_fetch.py URL [URL ...]  (or LIVE_URLS=a,b)", file=sys.stderr)
        return 2

    timeout_seconds = float(os.getenv("LIVE_TIMEOUT_SECONDS", "25"))
    proxy_url = os.getenv("PROXY_URL", "").strip() or None
    user_agent = os.getenv("LIVE_USER_AGENT", "").strip() or None
    client = HttpClient(timeout_seconds=timeout_seconds, proxy_url=proxy_url)

    failures = 0
    for url in urls:
        fetch = client.fetch_text(url, user_agent=user_agent)
        print(f"\n== {url}", flush=True)
        print(f"status={fetch.status_code} ok={fetch.ok} {fetch.elapsed_ms}ms error={fetch.error}", flush=True)
        if fetch.text is None:
            failures += 1
            continue

        verdict = classify(fetch.status_code, fetch.text, url)
        print(
            f"verdict={verdict.availability.value} price={verdict.price} blocked={verdict.blocked} reason={verdict.reason}",
            flush=True,
        )
        if verdict.blocked:
            failures += 1
            continue

        info = extract_page_info(fetch.text, url, status_code=fetch.status_code)
        if info is None:
            print("  no product name found", flush=True)
            continue
        print(f"  name={info.name!r} image={info.image_url}", flush=True)
        for c in info.variants:
            print(f"  - {c.label} [{c.family.value}] available={c.is_available} price={c.price} | {c.url}", flush=True)

    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
