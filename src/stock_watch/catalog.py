from __future__ import annotations

import copy
import threading
from dataclasses import dataclass
from typing import Any

from .models import HISTORY_LIMIT, AvailabilityChangeRecord, Product, Variant, new_id
from .state import load_products, save_products
from .store import BlobStore


UNSET: Any = object()


@dataclass(frozen=True)
class CheckApplied:
    """Snapshots taken right after a check outcome was written."""

    product: Product
    variant: Variant
    was_available: bool
    changed: bool


class ProductCatalog:
    """The shared product list.

    Every mutation runs under one lock and is persisted before the call
    returns. Reads hand out deep copies, so callers never observe a
    half-applied update.
    """

    def __init__(self, store: BlobStore) -> None:
        self._store = store
        self._lock = threading.RLock()
        self._products: dict[str, Product] = {}

    def load(self) -> list[Product]:
        with self._lock:
            self._products = {}
            for p in load_products(self._store):
                self._insert(p)
            return self.products()

    def _persist(self) -> None:
        save_products(self._store, self._products.values())

    def _insert(self, product: Product) -> Product:
        while product.id in self._products:
            product.id = new_id()
        seen: set[str] = set()
        for v in product.variants:
            while v.id in seen:
                v.id = new_id()
            seen.add(v.id)
        self._products[product.id] = product
        return product

    def _variant(self, product_id: str, variant_id: str) -> tuple[Product, Variant] | None:
        product = self._products.get(product_id)
        if product is None:
            return None
        variant = product.get_variant(variant_id)
        if variant is None:
            return None
        return product, variant

    def products(self) -> list[Product]:
        with self._lock:
            return [copy.deepcopy(p) for p in self._products.values()]

    def get(self, product_id: str) -> Product | None:
        with self._lock:
            p = self._products.get(product_id)
            return copy.deepcopy(p) if p is not None else None

    def get_variant(self, product_id: str, variant_id: str) -> Variant | None:
        with self._lock:
            found = self._variant(product_id, variant_id)
            return copy.deepcopy(found[1]) if found else None

    def add_product(self, product: Product) -> Product:
        with self._lock:
            stored = self._insert(copy.deepcopy(product))
            self._persist()
            return copy.deepcopy(stored)

    def remove_product(self, product_id: str) -> bool:
        with self._lock:
            if self._products.pop(product_id, None) is None:
                return False
            self._persist()
            return True

    def add_variant(self, product_id: str, variant: Variant) -> Variant | None:
        with self._lock:
            product = self._products.get(product_id)
            if product is None:
                return None
            v = copy.deepcopy(variant)
            while product.get_variant(v.id) is not None:
                v.id = new_id()
            product.variants.append(v)
            self._persist()
            return copy.deepcopy(v)

    def remove_variant(self, product_id: str, variant_id: str) -> bool:
        with self._lock:
            found = self._variant(product_id, variant_id)
            # A product always keeps at least one variant.
            if found is None or len(found[0].variants) <= 1:
                return False
            product, variant = found
            product.variants = [v for v in product.variants if v.id != variant.id]
            self._persist()
            return True

    def update_settings(
        self,
        product_id: str,
        *,
        interval_seconds: float | None = None,
        auto_start: bool | None = None,
        custom_user_agent: str | None = UNSET,
        max_retries: int | None = None,
        debug_logging: bool | None = None,
        name: str | None = None,
    ) -> Product | None:
        with self._lock:
            product = self._products.get(product_id)
            if product is None:
                return None
            if interval_seconds is not None:
                product.interval_seconds = float(interval_seconds)
            if auto_start is not None:
                product.auto_start = bool(auto_start)
            if custom_user_agent is not UNSET:
                product.custom_user_agent = (custom_user_agent or "").strip() or None
            if max_retries is not None:
                product.max_retries = int(max_retries)
            if debug_logging is not None:
                product.debug_logging = bool(debug_logging)
            if name:
                product.name = name
            self._persist()
            return copy.deepcopy(product)

    def set_variant_interval(self, product_id: str, variant_id: str, interval_seconds: float | None) -> Variant | None:
        with self._lock:
            found = self._variant(product_id, variant_id)
            if found is None:
                return None
            found[1].interval_seconds = float(interval_seconds) if interval_seconds else None
            self._persist()
            return copy.deepcopy(found[1])

    def set_monitoring(self, product_id: str, variant_id: str, monitoring: bool) -> bool:
        with self._lock:
            found = self._variant(product_id, variant_id)
            if found is None:
                return False
            found[1].is_monitoring = monitoring
            self._persist()
            return True

    def record_check(
        self,
        product_id: str,
        variant_id: str,
        *,
        ok: bool,
        checked_at: str,
        is_available: bool | None = None,
        price: str | None = None,
    ) -> CheckApplied | None:
        """Apply one check outcome.

        ``is_available=None`` keeps the previous observed state (blocked or
        undetermined pages). Failed checks never touch availability or price.
        """
        with self._lock:
            found = self._variant(product_id, variant_id)
            if found is None:
                return None
            product, variant = found
            was_available = variant.is_available
            variant.total_checks += 1
            variant.last_checked = checked_at
            changed = False
            if ok:
                variant.successful_checks += 1
                variant.consecutive_errors = 0
                if price:
                    variant.price = price
                if is_available is not None and is_available != was_available:
                    variant.is_available = is_available
                    changed = True
                    product.availability_history.insert(
                        0,
                        AvailabilityChangeRecord(
                            variant_id=variant.id,
                            variant_label=variant.label,
                            was_available=was_available,
                            is_available=is_available,
                            price=variant.price,
                            timestamp=checked_at,
                        ),
                    )
                    del product.availability_history[HISTORY_LIMIT:]
            else:
                variant.error_count += 1
                variant.consecutive_errors += 1
            self._persist()
            return CheckApplied(
                product=copy.deepcopy(product),
                variant=copy.deepcopy(variant),
                was_available=was_available,
                changed=changed,
            )
