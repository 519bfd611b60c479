from __future__ import annotations

import argparse
import sys
import time
from typing import Callable

from .config import load_config
from .errors import StoreBusy
from .models import PageInfo, Product
from .monitor import CheckResult, ProductMonitor
from .store import DataDirLock


def _run_inline(fn: Callable[[], None]) -> None:
    fn()


def _err(msg: str) -> None:
    print(f"error: {msg}", file=sys.stderr)


def _resolve_product(monitor: ProductMonitor, ref: str) -> Product | None:
    products = monitor.catalog.products()
    exact = [p for p in products if p.id == ref]
    if exact:
        return exact[0]
    matches = [p for p in products if p.id.startswith(ref)]
    if len(matches) == 1:
        return matches[0]
    _err(f"no unique product matches {ref!r}" if matches else f"unknown product {ref!r}")
    return None


def _resolve_variant_id(product: Product, ref: str) -> str | None:
    for v in product.variants:
        if v.id == ref or v.label.lower() == ref.lower():
            return v.id
    matches = [v for v in product.variants if v.id.startswith(ref)]
    if len(matches) == 1:
        return matches[0].id
    _err(f"unknown variant {ref!r} for product {product.name!r}")
    return None


def _print_page_info(info: PageInfo) -> None:
    print(f"{info.name}")
    if info.brand:
        print(f"  brand: {info.brand}")
    if info.image_url:
        print(f"  image: {info.image_url}")
    for c in info.variants:
        state = {True: "available", False: "unavailable", None: "unknown"}[c.is_available]
        price = f" {c.price}" if c.price else ""
        print(f"  - {c.label} [{c.family.value}] {state}{price}")


def _print_product(p: Product) -> None:
    flag = "monitoring" if p.is_monitoring else "idle"
    print(f"{p.id[:8]}  {p.name}  ({flag}, every {p.interval_seconds:g}s, checks={p.total_checks} errors={p.error_count})")
    for v in p.variants:
        state = "available" if v.is_available else "unavailable"
        price = f" {v.price}" if v.price else ""
        interval = f" every {v.interval_seconds:g}s" if v.interval_seconds else ""
        mon = " *" if v.is_monitoring else ""
        print(f"    {v.id[:8]}  {v.label}: {state}{price}{interval}{mon}")


def _print_check(monitor: ProductMonitor, res: CheckResult) -> None:
    variant = monitor.catalog.get_variant(res.product_id, res.variant_id)
    label = variant.label if variant else res.variant_id
    if res.error is not None:
        print(f"{label}: {res.status.value} :: {res.error.message}")
        return
    state = "available" if variant and variant.is_available else "unavailable"
    price = f" {variant.price}" if variant and variant.price else ""
    print(f"{label}: {state}{price}")


def _add_target_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("product", nargs="?", help="Product id (or unique id prefix).")
    p.add_argument("--variant", help="Variant id, id prefix or label.")
    p.add_argument("--all", action="store_true", help="Apply to every product.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stock-watch")
    parser.add_argument("--data-dir", default=None, help="Directory for products/logs JSON (default: $STOCK_WATCH_DATA_DIR or ./data).")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("inspect", help="Fetch a product page and show the detected variants.")
    p.add_argument("url")
    p.add_argument("--user-agent", default=None)

    p = sub.add_parser("add", help="Add a product to the watch list.")
    p.add_argument("url")
    p.add_argument("--variant", action="append", default=[], help="Only track variants with this label (repeatable).")
    p.add_argument("--interval", type=float, default=None, help="Polling interval in seconds.")
    p.add_argument("--max-retries", type=int, default=None)
    p.add_argument("--user-agent", default=None)
    p.add_argument("--auto-start", action="store_true")
    p.add_argument("--debug", action="store_true", help="Record classifier reasons in the log.")

    p = sub.add_parser("remove", help="Stop and delete a product.")
    p.add_argument("product")

    sub.add_parser("list", help="Show all products and variants.")

    for name, help_text in (
        ("start", "Start monitoring."),
        ("stop", "Stop monitoring."),
        ("check", "Run an immediate check without starting a timer."),
    ):
        _add_target_args(sub.add_parser(name, help=help_text))

    p = sub.add_parser("settings", help="Change a product's monitoring settings.")
    p.add_argument("product")
    p.add_argument("--interval", type=float, default=None)
    p.add_argument("--max-retries", type=int, default=None)
    p.add_argument("--user-agent", default=None, help="Fixed user agent; pass an empty string to clear.")
    p.add_argument("--auto-start", dest="auto_start", action="store_true", default=None)
    p.add_argument("--no-auto-start", dest="auto_start", action="store_false")
    p.add_argument("--debug", dest="debug", action="store_true", default=None)
    p.add_argument("--no-debug", dest="debug", action="store_false")
    p.add_argument("--variant", default=None, help="Variant to apply --variant-interval to.")
    p.add_argument("--variant-interval", type=float, default=None)

    p = sub.add_parser("logs", help="Show recent check log entries.")
    p.add_argument("--product", default=None)
    p.add_argument("--limit", type=int, default=50)

    p = sub.add_parser("clear-logs", help="Delete log entries.")
    p.add_argument("--product", default=None)

    sub.add_parser("run", help="Restore monitoring and keep checking until interrupted.")
    return parser


def _cmd_targets(monitor: ProductMonitor, args: argparse.Namespace) -> list[tuple[str, str | None]] | None:
    if args.all:
        return [(p.id, None) for p in monitor.catalog.products()]
    if not args.product:
        _err("give a product id or --all")
        return None
    product = _resolve_product(monitor, args.product)
    if product is None:
        return None
    if args.variant:
        vid = _resolve_variant_id(product, args.variant)
        return [(product.id, vid)] if vid else None
    return [(product.id, None)]


# Commands that never write to the data directory.
READ_ONLY_COMMANDS = frozenset({"inspect", "list", "logs"})


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = load_config(data_dir=args.data_dir)

    lock = DataDirLock(cfg.data_dir)
    if args.command not in READ_ONLY_COMMANDS:
        try:
            lock.acquire()
        except StoreBusy as e:
            _err(f"{e.kind}: {e.message}; stop the running monitor first")
            return 1

    try:
        if args.command == "run":
            monitor = ProductMonitor.from_config(cfg)
            restored = monitor.restore_monitoring()
            print(f"[run] monitoring variants={restored}", flush=True)
            try:
                while True:
                    time.sleep(1.0)
            except KeyboardInterrupt:
                pass
            finally:
                monitor.shutdown()
            return 0

        # One-shot commands finish their checks and notifications before exiting.
        monitor = ProductMonitor.from_config(cfg, spawn=_run_inline)
        try:
            return _dispatch(monitor, args)
        finally:
            monitor.shutdown()
    finally:
        lock.release()


def _dispatch(monitor: ProductMonitor, args: argparse.Namespace) -> int:
    cmd = args.command

    if cmd == "inspect":
        res = monitor.inspect(args.url, user_agent=args.user_agent)
        if not res.ok or res.info is None:
            _err(f"{res.error.kind}: {res.error.message}" if res.error else "inspect failed")
            return 1
        _print_page_info(res.info)
        return 0

    if cmd == "add":
        res = monitor.add_product(
            args.url,
            variant_labels=args.variant or None,
            interval_seconds=args.interval,
            auto_start=args.auto_start,
            max_retries=args.max_retries,
            custom_user_agent=args.user_agent,
            debug_logging=args.debug,
        )
        if not res.ok or res.product is None:
            _err(f"{res.error.kind}: {res.error.message}" if res.error else "add failed")
            return 1
        _print_product(res.product)
        return 0

    if cmd == "remove":
        product = _resolve_product(monitor, args.product)
        if product is None:
            return 1
        monitor.remove_product(product.id)
        print(f"removed {product.name}")
        return 0

    if cmd == "list":
        products = monitor.catalog.products()
        if not products:
            print("no products")
        for p in products:
            _print_product(p)
        return 0

    if cmd in ("start", "stop", "check"):
        targets = _cmd_targets(monitor, args)
        if targets is None:
            return 1
        for pid, vid in targets:
            if cmd == "start":
                n = monitor.start_variant(pid, vid) if vid else monitor.start_product(pid)
                print(f"started {pid[:8]} variants={int(n)}")
            elif cmd == "stop":
                n = monitor.stop_variant(pid, vid) if vid else monitor.stop_product(pid)
                print(f"stopped {pid[:8]} variants={int(n)}")
            else:
                results = [r for r in [monitor.instant_check(pid, vid)] if r] if vid else monitor.instant_check_product(pid)
                for r in results:
                    _print_check(monitor, r)
        return 0

    if cmd == "settings":
        product = _resolve_product(monitor, args.product)
        if product is None:
            return 1
        res = monitor.update_settings(
            product.id,
            interval_seconds=args.interval,
            auto_start=args.auto_start,
            max_retries=args.max_retries,
            debug_logging=args.debug,
            **({"custom_user_agent": args.user_agent} if args.user_agent is not None else {}),
        )
        if res.ok and args.variant:
            vid = _resolve_variant_id(product, args.variant)
            if vid is None:
                return 1
            res = monitor.set_variant_interval(product.id, vid, args.variant_interval)
        if not res.ok or res.product is None:
            _err(f"{res.error.kind}: {res.error.message}" if res.error else "settings failed")
            return 1
        _print_product(res.product)
        return 0

    if cmd == "logs":
        product_id = None
        if args.product:
            product = _resolve_product(monitor, args.product)
            if product is None:
                return 1
            product_id = product.id
        for e in monitor.logs(product_id=product_id, limit=args.limit):
            http = f" http={e.http_status}" if e.http_status is not None else ""
            print(f"{e.timestamp} {e.status.value:<20} {e.product_name}{http} :: {e.message}")
        return 0

    if cmd == "clear-logs":
        product_id = None
        if args.product:
            product = _resolve_product(monitor, args.product)
            if product is None:
                return 1
            product_id = product.id
        print(f"removed {monitor.clear_logs(product_id)} log entries")
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main())
