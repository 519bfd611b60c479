from __future__ import annotations

import random
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from .catalog import ProductCatalog, UNSET
from .config import MonitorConfig
from .errors import AntiBotBlocked, InvalidConfiguration, MonitorError, NetworkError
from .http_client import FetchResult, HttpClient
from .logbook import Logbook
from .models import (
    AvailabilityEvent,
    LogStatus,
    MonitorLogEntry,
    PageInfo,
    Product,
    Variant,
    VariantKey,
    Verdict,
)
from .notifier import Notifier, NullNotifier, dispatch
from .parsers.classifier import classify
from .parsers.page_info import PageInfoResult, family_for, fetch_page_info, validate_url
from .remote_checker import RemoteChecker
from .store import FileBlobStore
from .telegram import TelegramNotifier, load_telegram_config
from .timers import Spawn, Timer, TimerFactory, spawn_daemon, thread_timer_factory
from .timeutil import utc_now_iso


class PageFetcher(Protocol):
    def fetch_text(self, url: str, *, user_agent: str | None = None) -> FetchResult: ...


@dataclass(frozen=True)
class AddProductResult:
    ok: bool
    product: Product | None = None
    error: MonitorError | None = None


@dataclass(frozen=True)
class SettingsResult:
    ok: bool
    product: Product | None = None
    error: MonitorError | None = None
    restarted: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class CheckResult:
    product_id: str
    variant_id: str
    status: LogStatus
    ok: bool
    verdict: Verdict | None = None
    error: MonitorError | None = None
    http_status: int | None = None
    response_time: float | None = None
    changed: bool = False
    auto_paused: bool = False


def validate_settings(*, interval_seconds: float | None = None, max_retries: int | None = None) -> InvalidConfiguration | None:
    if interval_seconds is not None and interval_seconds <= 0:
        return InvalidConfiguration(f"interval_seconds must be positive, got {interval_seconds}")
    if max_retries is not None and max_retries < 1:
        return InvalidConfiguration(f"max_retries must be at least 1, got {max_retries}")
    return None


class ProductMonitor:
    def __init__(
        self,
        *,
        catalog: ProductCatalog,
        logbook: Logbook,
        client: PageFetcher,
        notifier: Notifier | None = None,
        remote: RemoteChecker | None = None,
        timer_factory: TimerFactory = thread_timer_factory,
        spawn: Spawn = spawn_daemon,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], str] = utc_now_iso,
        rng: random.Random | None = None,
        default_interval_seconds: float = 300.0,
        default_max_retries: int = 3,
        settle_delay_seconds: float = 0.5,
        instant_check_stagger_seconds: float = 2.0,
        log_enabled: bool = True,
    ) -> None:
        self.catalog = catalog
        self.logbook = logbook
        self._client = client
        self._notifier = notifier or NullNotifier()
        self._remote = remote
        self._timer_factory = timer_factory
        self._spawn = spawn
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()
        self._default_interval_seconds = default_interval_seconds
        self._default_max_retries = default_max_retries
        self._settle_delay_seconds = settle_delay_seconds
        self._stagger_seconds = instant_check_stagger_seconds
        self._log_enabled = log_enabled

        self._timers: dict[VariantKey, Timer] = {}
        self._timers_lock = threading.RLock()

    @classmethod
    def from_config(cls, cfg: MonitorConfig, *, notifier: Notifier | None = None, **kwargs: Any) -> ProductMonitor:
        store = FileBlobStore(cfg.data_dir)
        catalog = ProductCatalog(store)
        catalog.load()
        logbook = Logbook(store, capacity=cfg.log_capacity, echo=cfg.log_enabled)
        logbook.load()
        if notifier is None:
            tg = load_telegram_config()
            notifier = TelegramNotifier(tg) if tg else NullNotifier()
        return cls(
            catalog=catalog,
            logbook=logbook,
            client=HttpClient(
                timeout_seconds=cfg.timeout_seconds,
                proxy_url=cfg.proxy_url,
                max_retries=cfg.http_max_retries,
            ),
            notifier=notifier,
            remote=RemoteChecker(cfg.remote_checker_url, timeout_seconds=cfg.timeout_seconds) if cfg.remote_checker_url else None,
            default_interval_seconds=cfg.default_interval_seconds,
            default_max_retries=cfg.default_max_retries,
            settle_delay_seconds=cfg.settle_delay_seconds,
            instant_check_stagger_seconds=cfg.instant_check_stagger_seconds,
            log_enabled=cfg.log_enabled,
            **kwargs,
        )

    def _log(self, msg: str) -> None:
        if self._log_enabled:
            print(f"[scheduler] {msg}", flush=True)

    # Timers

    def active_timers(self) -> set[VariantKey]:
        with self._timers_lock:
            return set(self._timers)

    def is_monitoring(self, product_id: str, variant_id: str) -> bool:
        with self._timers_lock:
            return VariantKey(product_id, variant_id) in self._timers

    def _record(self, product: Product, variant: Variant | None, status: LogStatus, message: str) -> None:
        self.logbook.add(
            product_id=product.id,
            product_name=product.name,
            variant_id=variant.id if variant is not None else None,
            status=status,
            message=message,
        )

    def start_variant(self, product_id: str, variant_id: str, *, record: bool = True) -> bool:
        key = VariantKey(product_id, variant_id)
        with self._timers_lock:
            product = self.catalog.get(product_id)
            variant = product.get_variant(variant_id) if product else None
            if product is None or variant is None:
                return False
            if key in self._timers:
                return True
            interval = product.interval_for(variant)
            self._timers[key] = self._timer_factory(interval, lambda: self._tick(key))
            self.catalog.set_monitoring(product_id, variant_id, True)
        self._log(f"start product={product.name!r} variant={variant.label!r} interval={interval:g}s")
        if record:
            self._record(product, variant, LogStatus.STARTED, f"{variant.label}: monitoring started, every {interval:g}s")
        self._spawn(lambda: self._tick(key))
        return True

    def stop_variant(self, product_id: str, variant_id: str, *, record: bool = True) -> bool:
        key = VariantKey(product_id, variant_id)
        with self._timers_lock:
            timer = self._timers.pop(key, None)
            if timer is not None:
                timer.cancel()
            product = self.catalog.get(product_id)
            variant = product.get_variant(variant_id) if product else None
            # A one-shot process has no timer for a variant another process is running.
            was_running = timer is not None or (variant is not None and variant.is_monitoring)
            known = self.catalog.set_monitoring(product_id, variant_id, False)
        if timer is not None:
            self._log(f"stop product_id={product_id} variant_id={variant_id}")
        if record and was_running and product is not None and variant is not None:
            self._record(product, variant, LogStatus.STOPPED, f"{variant.label}: monitoring stopped")
        return known

    def start_product(self, product_id: str) -> int:
        product = self.catalog.get(product_id)
        if product is None:
            return 0
        return sum(1 for v in product.variants if self.start_variant(product_id, v.id))

    def stop_product(self, product_id: str) -> int:
        product = self.catalog.get(product_id)
        if product is None:
            return 0
        return sum(1 for v in product.variants if self.stop_variant(product_id, v.id))

    def start_all(self) -> int:
        return sum(self.start_product(p.id) for p in self.catalog.products())

    def stop_all(self) -> int:
        return sum(self.stop_product(p.id) for p in self.catalog.products())

    def restore_monitoring(self) -> int:
        """Re-arm timers for variants persisted as monitoring.

        ``auto_start`` only governs the start at add time; a product the
        operator stopped stays stopped across restarts.
        """
        started = 0
        for product in self.catalog.products():
            for variant in product.variants:
                if not variant.is_monitoring:
                    continue
                with self._timers_lock:
                    if VariantKey(product.id, variant.id) in self._timers:
                        continue
                    # Persisted flags have no live timer behind them after a restart.
                    self.catalog.set_monitoring(product.id, variant.id, False)
                    if self.start_variant(product.id, variant.id):
                        started += 1
        if started:
            self._log(f"restored variants={started}")
        return started

    def shutdown(self) -> None:
        """Cancel every timer but keep ``is_monitoring`` so the next process restores them."""
        with self._timers_lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()

    def _tick(self, key: VariantKey) -> None:
        self.check_variant(key.product_id, key.variant_id)

    # Operator surface

    def inspect(self, url: str, *, user_agent: str | None = None) -> PageInfoResult:
        return fetch_page_info(self._client, url, user_agent=user_agent)

    def add_product(
        self,
        url: str,
        *,
        variant_labels: list[str] | None = None,
        interval_seconds: float | None = None,
        auto_start: bool = False,
        max_retries: int | None = None,
        custom_user_agent: str | None = None,
        debug_logging: bool = False,
        page_info: PageInfo | None = None,
    ) -> AddProductResult:
        invalid = validate_url(url) or validate_settings(interval_seconds=interval_seconds, max_retries=max_retries)
        if invalid is not None:
            return AddProductResult(ok=False, error=invalid)

        info = page_info
        if info is None:
            res = self.inspect(url, user_agent=custom_user_agent)
            if not res.ok or res.info is None:
                return AddProductResult(ok=False, error=res.error)
            info = res.info

        candidates = list(info.variants)
        if variant_labels:
            wanted = {label.strip().lower() for label in variant_labels if label.strip()}
            candidates = [c for c in candidates if c.label.lower() in wanted]
            if not candidates:
                known = ", ".join(c.label for c in info.variants)
                return AddProductResult(
                    ok=False,
                    error=InvalidConfiguration(f"No variant matches {sorted(wanted)}; page offers: {known}"),
                )

        product = Product(
            base_url=url,
            name=info.name,
            image_url=info.image_url,
            variants=[c.to_variant() for c in candidates],
            interval_seconds=float(interval_seconds or self._default_interval_seconds),
            auto_start=auto_start,
            max_retries=int(max_retries or self._default_max_retries),
            custom_user_agent=(custom_user_agent or "").strip() or None,
            debug_logging=debug_logging,
        )
        stored = self.catalog.add_product(product)
        self._log(f"added product={stored.name!r} variants={len(stored.variants)}")
        if auto_start:
            self.start_product(stored.id)
            stored = self.catalog.get(stored.id) or stored
        return AddProductResult(ok=True, product=stored)

    def remove_product(self, product_id: str) -> bool:
        self.stop_product(product_id)
        return self.catalog.remove_product(product_id)

    def add_variant(
        self,
        product_id: str,
        *,
        label: str,
        url: str | None = None,
        interval_seconds: float | None = None,
    ) -> Variant | None:
        product = self.catalog.get(product_id)
        if product is None or validate_settings(interval_seconds=interval_seconds) is not None:
            return None
        return self.catalog.add_variant(
            product_id,
            Variant(
                label=label,
                url=url or product.base_url,
                family=family_for(label),
                interval_seconds=interval_seconds,
            ),
        )

    def remove_variant(self, product_id: str, variant_id: str) -> bool:
        product = self.catalog.get(product_id)
        if product is None or product.get_variant(variant_id) is None or len(product.variants) <= 1:
            return False
        self.stop_variant(product_id, variant_id)
        return self.catalog.remove_variant(product_id, variant_id)

    def update_settings(
        self,
        product_id: str,
        *,
        interval_seconds: float | None = None,
        auto_start: bool | None = None,
        custom_user_agent: str | None = UNSET,
        max_retries: int | None = None,
        debug_logging: bool | None = None,
    ) -> SettingsResult:
        invalid = validate_settings(interval_seconds=interval_seconds, max_retries=max_retries)
        if invalid is not None:
            return SettingsResult(ok=False, error=invalid)
        before = self.catalog.get(product_id)
        if before is None:
            return SettingsResult(ok=False, error=InvalidConfiguration(f"Unknown product: {product_id}"))

        running = [v.id for v in before.variants if self.is_monitoring(product_id, v.id)]
        for vid in running:
            self.stop_variant(product_id, vid, record=False)
        updated = self.catalog.update_settings(
            product_id,
            interval_seconds=interval_seconds,
            auto_start=auto_start,
            custom_user_agent=custom_user_agent,
            max_retries=max_retries,
            debug_logging=debug_logging,
        )
        if updated is not None:
            restart_note = f", restarting {len(running)} variant(s)" if running else ""
            self._record(
                updated,
                None,
                LogStatus.SETTINGS_UPDATED,
                f"settings updated: every {updated.interval_seconds:g}s, max_retries={updated.max_retries}{restart_note}",
            )
        if running:
            self._sleep(self._settle_delay_seconds)
            for vid in running:
                self.start_variant(product_id, vid, record=False)
            updated = self.catalog.get(product_id)
        return SettingsResult(ok=True, product=updated, restarted=running)

    def set_variant_interval(self, product_id: str, variant_id: str, interval_seconds: float | None) -> SettingsResult:
        invalid = validate_settings(interval_seconds=interval_seconds)
        if invalid is not None:
            return SettingsResult(ok=False, error=invalid)
        if self.catalog.get_variant(product_id, variant_id) is None:
            return SettingsResult(ok=False, error=InvalidConfiguration(f"Unknown variant: {variant_id}"))
        running = self.is_monitoring(product_id, variant_id)
        if running:
            self.stop_variant(product_id, variant_id, record=False)
        self.catalog.set_variant_interval(product_id, variant_id, interval_seconds)
        product = self.catalog.get(product_id)
        if product is not None:
            variant = product.get_variant(variant_id)
            interval = product.interval_for(variant) if variant is not None else product.interval_seconds
            label = variant.label if variant is not None else variant_id
            self._record(
                product,
                variant,
                LogStatus.SETTINGS_UPDATED,
                f"{label}: interval set to {interval:g}s" + (", restarting" if running else ""),
            )
        if running:
            self._sleep(self._settle_delay_seconds)
            self.start_variant(product_id, variant_id, record=False)
        return SettingsResult(ok=True, product=self.catalog.get(product_id), restarted=[variant_id] if running else [])

    def logs(self, *, product_id: str | None = None, limit: int | None = None) -> list[MonitorLogEntry]:
        return self.logbook.entries(product_id=product_id, limit=limit)

    def clear_logs(self, product_id: str | None = None) -> int:
        return self.logbook.clear(product_id)

    # Checks

    def instant_check(self, product_id: str, variant_id: str) -> CheckResult | None:
        return self.check_variant(product_id, variant_id, instant=True)

    def instant_check_product(self, product_id: str) -> list[CheckResult]:
        product = self.catalog.get(product_id)
        if product is None:
            return []
        results: list[CheckResult] = []
        for variant in product.variants:
            self._sleep(self._rng.uniform(0, self._stagger_seconds))
            res = self.instant_check(product_id, variant.id)
            if res is not None:
                results.append(res)
        return results

    def instant_check_all(self) -> list[CheckResult]:
        results: list[CheckResult] = []
        for product in self.catalog.products():
            results.extend(self.instant_check_product(product.id))
        return results

    def _fetch_verdict(self, product: Product, variant: Variant) -> tuple[Verdict | None, MonitorError | None, int | None]:
        if self._remote is not None:
            remote = self._remote.check(variant.url)
            if remote is not None:
                return remote.verdict, None, None

        fetch = self._client.fetch_text(variant.url, user_agent=product.custom_user_agent)
        if fetch.error_kind == "network_error":
            return None, NetworkError(fetch.error or "fetch failed"), None
        verdict = classify(fetch.status_code, fetch.text or "", variant.url)
        if verdict.blocked:
            return verdict, AntiBotBlocked(verdict.reason or "blocked", status_code=fetch.status_code), fetch.status_code
        if not fetch.ok:
            return verdict, NetworkError(fetch.error or f"HTTP {fetch.status_code}", status_code=fetch.status_code), fetch.status_code
        return verdict, None, fetch.status_code

    def check_variant(self, product_id: str, variant_id: str, *, instant: bool = False) -> CheckResult | None:
        """Fetch, classify and record one variant. Never raises for check-time failures."""
        product = self.catalog.get(product_id)
        variant = product.get_variant(variant_id) if product else None
        if product is None or variant is None:
            return None

        started = time.perf_counter()
        verdict, error, http_status = self._fetch_verdict(product, variant)
        response_time = round(time.perf_counter() - started, 3)
        ok = error is None

        applied = self.catalog.record_check(
            product_id,
            variant_id,
            ok=ok,
            checked_at=self._clock(),
            is_available=verdict.is_available if ok and verdict else None,
            price=verdict.price if ok and verdict else None,
        )
        if applied is None:
            return None
        product, variant = applied.product, applied.variant

        if error is not None:
            if isinstance(error, AntiBotBlocked):
                status = LogStatus.ANTI_BOT
            elif error.status_code is None:
                status = LogStatus.NETWORK_ERROR
            else:
                status = LogStatus.ERROR
            message = f"{variant.label}: {error.message}"
        elif applied.changed:
            status = LogStatus.AVAILABILITY_CHANGED
            before = "available" if applied.was_available else "unavailable"
            after = "available" if variant.is_available else "unavailable"
            message = f"{variant.label}: {before} -> {after}" + (f" ({variant.price})" if variant.price else "")
        else:
            status = LogStatus.INSTANT_CHECK if instant else LogStatus.SUCCESS
            state = "available" if variant.is_available else "unavailable"
            message = f"{variant.label}: {state}" + (f" ({variant.price})" if variant.price else "")
        if product.debug_logging and verdict is not None and verdict.reason:
            message = f"{message} [{verdict.reason}]"

        self.logbook.add(
            product_id=product.id,
            product_name=product.name,
            variant_id=variant.id,
            status=status,
            message=message,
            response_time=response_time,
            http_status=http_status,
        )

        if applied.changed and variant.is_available:
            event = AvailabilityEvent(
                product_id=product.id,
                product_name=product.name,
                variant_id=variant.id,
                variant_label=variant.label,
                url=variant.url,
                price=variant.price,
                timestamp=variant.last_checked or self._clock(),
            )
            dispatch(self._notifier, event, spawn=self._spawn)

        auto_paused = False
        if not ok and variant.consecutive_errors >= product.max_retries and self.is_monitoring(product.id, variant.id):
            self.stop_variant(product.id, variant.id, record=False)
            auto_paused = True
            self.logbook.add(
                product_id=product.id,
                product_name=product.name,
                variant_id=variant.id,
                status=LogStatus.AUTO_PAUSED,
                message=f"{variant.label}: paused after {variant.consecutive_errors} consecutive failures",
            )

        return CheckResult(
            product_id=product.id,
            variant_id=variant.id,
            status=status,
            ok=ok,
            verdict=verdict,
            error=error,
            http_status=http_status,
            response_time=response_time,
            changed=applied.changed,
            auto_paused=auto_paused,
        )
