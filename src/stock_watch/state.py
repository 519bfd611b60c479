from __future__ import annotations

import json
from typing import Any, Iterable

from .models import MonitorLogEntry, Product
from .store import BlobStore
from .timeutil import utc_now_iso


SCHEMA_VERSION = 1

PRODUCTS_KEY = "products"
LOGS_KEY = "monitor_logs"


def _dump(payload: dict[str, Any]) -> bytes:
    out = {**payload, "schema_version": SCHEMA_VERSION, "updated_at": utc_now_iso()}
    return (json.dumps(out, ensure_ascii=False, indent=2, sort_keys=True) + "\n").encode("utf-8")


def _load_records(raw: bytes | None, field: str) -> list[dict[str, Any]]:
    if not raw:
        return []
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return []
    # Unversioned files held the bare list.
    if isinstance(data, list):
        records = data
    elif isinstance(data, dict):
        records = data.get(field)
    else:
        return []
    if not isinstance(records, list):
        return []
    return [r for r in records if isinstance(r, dict)]


def encode_products(products: Iterable[Product]) -> bytes:
    return _dump({"products": [p.to_dict() for p in products]})


def decode_products(raw: bytes | None) -> list[Product]:
    out: list[Product] = []
    seen: set[str] = set()
    for rec in _load_records(raw, "products"):
        product = Product.from_dict(rec)
        if product.id in seen:
            continue
        seen.add(product.id)
        out.append(product)
    return out


def encode_logs(entries: Iterable[MonitorLogEntry]) -> bytes:
    return _dump({"logs": [e.to_dict() for e in entries]})


def decode_logs(raw: bytes | None) -> list[MonitorLogEntry]:
    return [MonitorLogEntry.from_dict(rec) for rec in _load_records(raw, "logs")]


def load_products(store: BlobStore) -> list[Product]:
    return decode_products(store.load(PRODUCTS_KEY))


def save_products(store: BlobStore, products: Iterable[Product]) -> None:
    store.save(PRODUCTS_KEY, encode_products(products))


def load_logs(store: BlobStore) -> list[MonitorLogEntry]:
    return decode_logs(store.load(LOGS_KEY))


def save_logs(store: BlobStore, entries: Iterable[MonitorLogEntry]) -> None:
    store.save(LOGS_KEY, encode_logs(entries))
