from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NamedTuple


DEFAULT_INTERVAL_SECONDS = 300.0
DEFAULT_MAX_RETRIES = 3
HISTORY_LIMIT = 50


def new_id() -> str:
    return uuid.uuid4().hex


class Availability(str, Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    UNDETERMINED = "undetermined"


class ProductFamily(str, Enum):
    SINGLE_ITEM = "single_item"
    WHOLE_SET = "whole_set"
    RANDOM = "random"
    LIMITED = "limited"
    SPECIFIC = "specific"


class LogStatus(str, Enum):
    SUCCESS = "success"
    AVAILABILITY_CHANGED = "availability_changed"
    ANTI_BOT = "anti_bot"
    NETWORK_ERROR = "network_error"
    ERROR = "error"
    INSTANT_CHECK = "instant_check"
    AUTO_PAUSED = "auto_paused"
    STARTED = "started"
    STOPPED = "stopped"
    SETTINGS_UPDATED = "settings_updated"


class VariantKey(NamedTuple):
    product_id: str
    variant_id: str


@dataclass(frozen=True)
class Verdict:
    availability: Availability
    price: str | None = None
    blocked: bool = False
    reason: str | None = None

    @property
    def is_available(self) -> bool | None:
        if self.availability is Availability.AVAILABLE:
            return True
        if self.availability is Availability.UNAVAILABLE:
            return False
        return None


@dataclass(frozen=True)
class AvailabilityChangeRecord:
    variant_id: str
    variant_label: str
    was_available: bool
    is_available: bool
    price: str | None
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "variant_id": self.variant_id,
            "variant_label": self.variant_label,
            "was_available": self.was_available,
            "is_available": self.is_available,
            "price": self.price,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AvailabilityChangeRecord:
        return cls(
            variant_id=str(data.get("variant_id") or ""),
            variant_label=str(data.get("variant_label") or ""),
            was_available=bool(data.get("was_available")),
            is_available=bool(data.get("is_available")),
            price=data.get("price"),
            timestamp=str(data.get("timestamp") or ""),
        )


@dataclass
class Variant:
    label: str
    url: str
    id: str = field(default_factory=new_id)
    family: ProductFamily = ProductFamily.SINGLE_ITEM
    sku: str | None = None
    image_url: str | None = None
    interval_seconds: float | None = None

    is_available: bool = False
    price: str | None = None
    last_checked: str | None = None

    is_monitoring: bool = False
    total_checks: int = 0
    successful_checks: int = 0
    error_count: int = 0
    consecutive_errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "url": self.url,
            "family": self.family.value,
            "sku": self.sku,
            "image_url": self.image_url,
            "interval_seconds": self.interval_seconds,
            "is_available": self.is_available,
            "price": self.price,
            "last_checked": self.last_checked,
            "is_monitoring": self.is_monitoring,
            "total_checks": self.total_checks,
            "successful_checks": self.successful_checks,
            "error_count": self.error_count,
            "consecutive_errors": self.consecutive_errors,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Variant:
        try:
            family = ProductFamily(data.get("family") or ProductFamily.SINGLE_ITEM.value)
        except ValueError:
            family = ProductFamily.SINGLE_ITEM
        interval = data.get("interval_seconds")
        return cls(
            id=str(data.get("id") or new_id()),
            label=str(data.get("label") or "Default"),
            url=str(data.get("url") or ""),
            family=family,
            sku=data.get("sku"),
            image_url=data.get("image_url"),
            interval_seconds=float(interval) if isinstance(interval, (int, float)) else None,
            is_available=bool(data.get("is_available")),
            price=data.get("price"),
            last_checked=data.get("last_checked"),
            is_monitoring=bool(data.get("is_monitoring")),
            total_checks=int(data.get("total_checks") or 0),
            successful_checks=int(data.get("successful_checks") or 0),
            error_count=int(data.get("error_count") or 0),
            consecutive_errors=int(data.get("consecutive_errors") or 0),
        )


@dataclass
class Product:
    base_url: str
    name: str
    variants: list[Variant]
    id: str = field(default_factory=new_id)
    image_url: str | None = None
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS
    auto_start: bool = False
    max_retries: int = DEFAULT_MAX_RETRIES
    custom_user_agent: str | None = None
    debug_logging: bool = False
    availability_history: list[AvailabilityChangeRecord] = field(default_factory=list)

    @property
    def is_available(self) -> bool:
        return any(v.is_available for v in self.variants)

    @property
    def is_monitoring(self) -> bool:
        return any(v.is_monitoring for v in self.variants)

    @property
    def total_checks(self) -> int:
        return sum(v.total_checks for v in self.variants)

    @property
    def successful_checks(self) -> int:
        return sum(v.successful_checks for v in self.variants)

    @property
    def error_count(self) -> int:
        return sum(v.error_count for v in self.variants)

    def get_variant(self, variant_id: str) -> Variant | None:
        for v in self.variants:
            if v.id == variant_id:
                return v
        return None

    def interval_for(self, variant: Variant) -> float:
        return variant.interval_seconds or self.interval_seconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "base_url": self.base_url,
            "name": self.name,
            "image_url": self.image_url,
            "interval_seconds": self.interval_seconds,
            "auto_start": self.auto_start,
            "max_retries": self.max_retries,
            "custom_user_agent": self.custom_user_agent,
            "debug_logging": self.debug_logging,
            "variants": [v.to_dict() for v in self.variants],
            "availability_history": [r.to_dict() for r in self.availability_history],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Product:
        variants = [Variant.from_dict(v) for v in (data.get("variants") or []) if isinstance(v, dict)]
        base_url = str(data.get("base_url") or data.get("url") or "")
        name = str(data.get("name") or base_url)
        if not variants:
            # Older single-variant records carried state on the product itself.
            variants = [
                Variant(
                    label="Default",
                    url=base_url,
                    is_available=bool(data.get("is_available")),
                    price=data.get("price"),
                    is_monitoring=bool(data.get("is_monitoring")),
                )
            ]
        history = [
            AvailabilityChangeRecord.from_dict(r) for r in (data.get("availability_history") or []) if isinstance(r, dict)
        ]
        return cls(
            id=str(data.get("id") or new_id()),
            base_url=base_url,
            name=name,
            image_url=data.get("image_url"),
            interval_seconds=float(data.get("interval_seconds") or DEFAULT_INTERVAL_SECONDS),
            auto_start=bool(data.get("auto_start")),
            max_retries=int(data.get("max_retries") or DEFAULT_MAX_RETRIES),
            custom_user_agent=data.get("custom_user_agent") or None,
            debug_logging=bool(data.get("debug_logging")),
            variants=variants,
            availability_history=history[:HISTORY_LIMIT],
        )


@dataclass(frozen=True)
class MonitorLogEntry:
    product_id: str
    product_name: str
    status: LogStatus
    message: str
    timestamp: str
    variant_id: str | None = None
    response_time: float | None = None
    http_status: int | None = None
    id: str = field(default_factory=new_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "variant_id": self.variant_id,
            "status": self.status.value,
            "message": self.message,
            "response_time": self.response_time,
            "http_status": self.http_status,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MonitorLogEntry:
        try:
            status = LogStatus(data.get("status"))
        except ValueError:
            status = LogStatus.ERROR
        rt = data.get("response_time")
        hs = data.get("http_status")
        return cls(
            id=str(data.get("id") or new_id()),
            timestamp=str(data.get("timestamp") or ""),
            product_id=str(data.get("product_id") or ""),
            product_name=str(data.get("product_name") or ""),
            variant_id=data.get("variant_id"),
            status=status,
            message=str(data.get("message") or ""),
            response_time=float(rt) if isinstance(rt, (int, float)) else None,
            http_status=int(hs) if isinstance(hs, int) else None,
        )


@dataclass(frozen=True)
class AvailabilityEvent:
    product_id: str
    product_name: str
    variant_id: str
    variant_label: str
    url: str
    price: str | None
    timestamp: str


@dataclass(frozen=True)
class VariantCandidate:
    label: str
    url: str
    family: ProductFamily
    is_available: bool | None = None
    price: str | None = None
    sku: str | None = None
    image_url: str | None = None
    stock_level: int | None = None

    def to_variant(self) -> Variant:
        return Variant(
            label=self.label,
            url=self.url,
            family=self.family,
            sku=self.sku,
            image_url=self.image_url,
            is_available=bool(self.is_available),
            price=self.price,
        )


@dataclass(frozen=True)
class PageInfo:
    name: str
    url: str
    variants: list[VariantCandidate]
    image_url: str | None = None
    description: str | None = None
    brand: str | None = None
