from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from bs4 import BeautifulSoup

from ..errors import AntiBotBlocked, InvalidConfiguration, MonitorError, NetworkError, ParseError
from ..models import PageInfo, ProductFamily, VariantCandidate
from .classifier import classify
from .common import (
    UNAVAILABLE_WORDS,
    compact_ws,
    extract_price,
    find_keyword,
    format_price,
    iter_embedded_variant_lists,
    json_ld_offers,
    json_ld_products,
    looks_like_block_page,
    make_soup,
    page_currency,
    schema_availability,
    shopify_amount,
)
from .extractors import extract_brand, extract_description, extract_image, extract_name
from .registry import SiteProfile, get_profile_for_url


class TextFetcher(Protocol):
    def fetch_text(self, url: str, *, user_agent: str | None = None): ...


@dataclass(frozen=True)
class PageInfoResult:
    ok: bool
    info: PageInfo | None = None
    error: MonitorError | None = None


_FAMILY_PATTERNS: tuple[tuple[ProductFamily, re.Pattern[str]], ...] = (
    (ProductFamily.WHOLE_SET, re.compile(r"\bset\b|\bcomplete\b|\bwhole\b|\bpack\b|整套|整盒|端盒|komplett", re.IGNORECASE)),
    (ProductFamily.RANDOM, re.compile(r"\brandom\b|blind\s*box|mystery|随机|盲盒|zufällig", re.IGNORECASE)),
    (ProductFamily.LIMITED, re.compile(r"\blimited\b|\bspecial\b|\bexclusive\b|限定|限量|limitiert", re.IGNORECASE)),
    (ProductFamily.SPECIFIC, re.compile(r"\bspecific\b|\bstyle\b|\bsize\b|指定|款式", re.IGNORECASE)),
)

_PLACEHOLDER_OPTION_RE = re.compile(
    r"^(select|choose|pick|please|bitte|wählen|auswählen|choisir|seleccione|请选择|選択)\b|^[-–—\s]*$",
    re.IGNORECASE,
)


def family_for(label: str, sku: str | None = None) -> ProductFamily:
    haystack = f"{label or ''} {sku or ''}"
    for family, pattern in _FAMILY_PATTERNS:
        if pattern.search(haystack):
            return family
    return ProductFamily.SINGLE_ITEM


def variant_url(base_url: str, variant_id: str | None) -> str:
    if not variant_id:
        return base_url
    p = urlparse(base_url)
    query = [(k, v) for k, v in parse_qsl(p.query, keep_blank_values=True) if k != "variant"]
    query.append(("variant", str(variant_id)))
    return urlunparse(p._replace(query=urlencode(query)))


def _variants_from_shopify(soup: BeautifulSoup, url: str) -> list[VariantCandidate]:
    currency = page_currency(soup)
    for variants in iter_embedded_variant_lists(soup):
        out: list[VariantCandidate] = []
        for v in variants:
            label = compact_ws(str(v.get("public_title") or v.get("title") or v.get("name") or v.get("option1") or ""))
            vid = v.get("id")
            if not label or vid is None:
                continue
            sku = str(v.get("sku") or "").strip() or None
            available = v.get("available")
            out.append(
                VariantCandidate(
                    label=label,
                    url=variant_url(url, str(vid)),
                    family=family_for(label, sku),
                    is_available=bool(available) if isinstance(available, bool) else None,
                    price=format_price(shopify_amount(v.get("price")), currency),
                    sku=sku,
                    stock_level=v.get("inventory_quantity") if isinstance(v.get("inventory_quantity"), int) else None,
                )
            )
        if out:
            return out
    return []


def _variants_from_json_ld(soup: BeautifulSoup, url: str) -> list[VariantCandidate]:
    out: list[VariantCandidate] = []
    for product in json_ld_products(soup):
        for variant in product.get("hasVariant") or []:
            if not isinstance(variant, dict):
                continue
            label = compact_ws(str(variant.get("name") or ""))
            if not label:
                continue
            sku = str(variant.get("sku") or "").strip() or None
            offers = json_ld_offers(variant)
            offer = offers[0] if offers else {}
            vurl = str(offer.get("url") or variant.get("url") or "") or variant_url(url, sku)
            out.append(
                VariantCandidate(
                    label=label,
                    url=vurl,
                    family=family_for(label, sku),
                    is_available=schema_availability(offer.get("availability")),
                    price=format_price(offer.get("price"), offer.get("priceCurrency")),
                    sku=sku,
                    image_url=variant.get("image") if isinstance(variant.get("image"), str) else None,
                )
            )
    return out


def _option_availability(label: str, disabled: bool) -> bool | None:
    if disabled or find_keyword(label, UNAVAILABLE_WORDS):
        return False
    return None


def _clean_option_label(label: str) -> str:
    for word in UNAVAILABLE_WORDS:
        label = re.sub(re.escape(word), "", label, flags=re.IGNORECASE)
    return compact_ws(label.strip(" -–—()[]/,"))


def _variants_from_widgets(soup: BeautifulSoup, url: str, profile: SiteProfile) -> list[VariantCandidate]:
    out: list[VariantCandidate] = []
    selects = [s for sel in profile.option_selectors for s in soup.select(sel)]
    if not selects:
        selects = [
            s
            for s in soup.find_all("select")
            if re.search(r"size|variant|option|style|groesse|größe", f"{s.get('name') or ''} {s.get('id') or ''}", re.IGNORECASE)
        ]
    for select in selects:
        for option in select.find_all("option"):
            raw = compact_ws(option.get_text(" ", strip=True))
            value = str(option.get("value", raw) or "").strip()
            if not raw or _PLACEHOLDER_OPTION_RE.search(raw) or value in ("", "-1"):
                continue
            label = _clean_option_label(raw) or raw
            vid = value if value.isdigit() else None
            out.append(
                VariantCandidate(
                    label=label,
                    url=variant_url(url, vid),
                    family=family_for(label),
                    is_available=_option_availability(raw, option.has_attr("disabled")),
                    price=extract_price(raw),
                )
            )
        if out:
            return out

    for radio in soup.select("input[type='radio']"):
        name = str(radio.get("name") or "")
        if not re.search(r"size|variant|option|style", name, re.IGNORECASE):
            continue
        value = compact_ws(str(radio.get("value") or ""))
        if not value:
            continue
        out.append(
            VariantCandidate(
                label=value,
                url=url,
                family=family_for(value),
                is_available=_option_availability(value, radio.has_attr("disabled")),
            )
        )
    if out:
        return out

    for button in soup.select("[data-option-value], #variation_size_name li, #variation_style_name li"):
        raw = compact_ws(str(button.get("data-option-value") or button.get("title") or button.get_text(" ", strip=True)))
        raw = re.sub(r"^click to select\s+", "", raw, flags=re.IGNORECASE)
        if not raw:
            continue
        classes = " ".join(button.get("class") or [])
        disabled = button.has_attr("disabled") or "unavailable" in classes or "disabled" in classes
        asin = str(button.get("data-defaultasin") or "").strip()
        vurl = url
        if asin:
            p = urlparse(url)
            vurl = urlunparse(p._replace(path=f"/dp/{asin}", query=""))
        out.append(
            VariantCandidate(
                label=_clean_option_label(raw) or raw,
                url=vurl,
                family=family_for(raw),
                is_available=_option_availability(raw, disabled),
                price=extract_price(raw),
            )
        )
    return out


def _dedupe(candidates: list[VariantCandidate]) -> list[VariantCandidate]:
    seen: set[str] = set()
    out: list[VariantCandidate] = []
    for c in candidates:
        key = c.label.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(c)
    return out


def extract_page_info(html: str, url: str, *, status_code: int | None = 200) -> PageInfo | None:
    """Name, image and candidate variants for a product page, or None when no product name is found."""
    soup = make_soup(html)
    name = extract_name(soup, url)
    if not name:
        return None
    profile = get_profile_for_url(url)
    image_url = extract_image(soup, url)

    variants = _variants_from_shopify(soup, url) or _variants_from_json_ld(soup, url)
    if not variants:
        variants = _variants_from_widgets(soup, url, profile)
    if not variants:
        verdict = classify(status_code, html, url, profile=profile)
        variants = [
            VariantCandidate(
                label="Default",
                url=url,
                family=family_for(name),
                is_available=verdict.is_available,
                price=verdict.price,
                image_url=image_url,
            )
        ]

    return PageInfo(
        name=name,
        url=url,
        variants=_dedupe(variants),
        image_url=image_url,
        description=extract_description(soup, url),
        brand=extract_brand(soup),
    )


def validate_url(url: str) -> InvalidConfiguration | None:
    try:
        p = urlparse((url or "").strip())
    except ValueError:
        return InvalidConfiguration(f"Malformed URL: {url!r}")
    if p.scheme not in ("http", "https") or not p.netloc:
        return InvalidConfiguration(f"Malformed URL: {url!r}")
    return None


def fetch_page_info(client: TextFetcher, url: str, *, user_agent: str | None = None) -> PageInfoResult:
    url = (url or "").strip()
    invalid = validate_url(url)
    if invalid is not None:
        return PageInfoResult(ok=False, error=invalid)

    fetch = client.fetch_text(url, user_agent=user_agent)
    if fetch.error_kind == "network_error":
        return PageInfoResult(ok=False, error=NetworkError(fetch.error or "fetch failed"))
    if looks_like_block_page(fetch.status_code, fetch.text or ""):
        return PageInfoResult(ok=False, error=AntiBotBlocked("Blocked by anti-bot protection", status_code=fetch.status_code))
    if not fetch.ok:
        return PageInfoResult(ok=False, error=NetworkError(fetch.error or "fetch failed", status_code=fetch.status_code))
    if not (fetch.text or "").strip():
        return PageInfoResult(ok=False, error=ParseError("Empty response body", status_code=fetch.status_code))

    info = extract_page_info(fetch.text, url, status_code=fetch.status_code)
    if info is None:
        return PageInfoResult(ok=False, error=ParseError("No product name found on page", status_code=fetch.status_code))
    return PageInfoResult(ok=True, info=info)
