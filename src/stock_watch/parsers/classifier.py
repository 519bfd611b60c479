from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import parse_qsl, urlparse

from bs4 import BeautifulSoup

from ..models import Availability, Verdict
from .common import (
    AVAILABLE_WORDS,
    PURCHASE_BUTTON_WORDS,
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
    visible_text,
)
from .extractors import extract_image, extract_name
from .registry import SiteProfile, get_profile_for_url


@dataclass
class Page:
    status_code: int | None
    body: str
    url: str
    profile: SiteProfile
    soup: BeautifulSoup = field(init=False)
    text: str = field(init=False)
    stock_text: str = field(init=False)
    structured: bool | None = field(init=False)
    selected: SelectedOffer | None = field(init=False)

    def __post_init__(self) -> None:
        self.soup = make_soup(self.body)
        self.text = visible_text(self.soup)
        scoped: list[str] = []
        for sel in self.profile.availability_selectors:
            for tag in self.soup.select(sel):
                scoped.append(compact_ws(tag.get_text(" ", strip=True)))
        scoped_text = compact_ws(" ".join(scoped))
        self.stock_text = scoped_text or self.text
        self.selected = selected_offer(self.soup, self.url)
        if self.selected is not None and self.selected.is_available is not None:
            self.structured = self.selected.is_available
        else:
            self.structured = structured_availability(self.soup)


Rule = Callable[[Page, "str | None"], "Verdict | None"]


@dataclass(frozen=True)
class SelectedOffer:
    """Offer data for the one variant a URL points at."""

    is_available: bool | None
    price: str | None


def selected_variant_id(url: str) -> str | None:
    for key, value in parse_qsl(urlparse(url).query, keep_blank_values=True):
        if key == "variant" and value.strip():
            return value.strip()
    return None


def _refs_of(node: dict[str, Any]) -> set[str]:
    refs: set[str] = set()
    for key in ("url", "@id"):
        raw = node.get(key)
        if isinstance(raw, str) and raw:
            vid = selected_variant_id(raw)
            if vid:
                refs.add(vid)
    for key in ("sku", "productID"):
        raw = node.get(key)
        if isinstance(raw, (str, int)) and str(raw).strip():
            refs.add(str(raw).strip())
    return refs


def _offer_price(offer: dict[str, Any]) -> str | None:
    amount = offer.get("price")
    if amount in (None, ""):
        amount = offer.get("lowPrice")
    if amount in (None, ""):
        spec = offer.get("priceSpecification")
        if isinstance(spec, dict):
            amount = spec.get("price")
    return format_price(amount, offer.get("priceCurrency"))


def _matching_offer(soup: BeautifulSoup, ref: str) -> dict[str, Any] | None:
    # Product-level url/@id is skipped: storefronts set it to whichever variant is selected.
    for product in json_ld_products(soup):
        for offer in json_ld_offers(product):
            if ref in _refs_of(offer):
                return offer
        for variant in product.get("hasVariant") or []:
            if not isinstance(variant, dict):
                continue
            own = ref in _refs_of(variant)
            for offer in json_ld_offers(variant):
                if own or ref in _refs_of(offer):
                    return offer
    return None


def selected_offer(soup: BeautifulSoup, url: str) -> SelectedOffer | None:
    """Availability and price of the variant named by ``?variant=`` in *url*.

    JSON-LD offers are matched on their own url, @id, sku or productID, then
    embedded storefront variant lists on their id. None when nothing matches,
    in which case the page-wide signals apply.
    """
    ref = selected_variant_id(url)
    if ref is None:
        return None
    offer = _matching_offer(soup, ref)
    if offer is not None:
        return SelectedOffer(
            is_available=schema_availability(offer.get("availability")),
            price=_offer_price(offer),
        )
    for variants in iter_embedded_variant_lists(soup):
        for v in variants:
            if str(v.get("id")) != ref:
                continue
            available = v.get("available")
            return SelectedOffer(
                is_available=available if isinstance(available, bool) else None,
                price=format_price(shopify_amount(v.get("price")), page_currency(soup)),
            )
    return None


def structured_availability(soup: BeautifulSoup) -> bool | None:
    """Stock state declared in JSON-LD, microdata or product meta tags.

    Any in-stock offer wins over out-of-stock ones: a product with one
    purchasable variant is purchasable.
    """
    seen: list[bool] = []
    for product in json_ld_products(soup):
        for offer in json_ld_offers(product):
            v = schema_availability(offer.get("availability"))
            if v is not None:
                seen.append(v)
        for variant in product.get("hasVariant") or []:
            if isinstance(variant, dict):
                for offer in json_ld_offers(variant):
                    v = schema_availability(offer.get("availability"))
                    if v is not None:
                        seen.append(v)
    for tag in soup.select("[itemprop='availability']"):
        v = schema_availability(tag.get("href") or tag.get("content"))
        if v is not None:
            seen.append(v)
    for name in ("product:availability", "og:availability"):
        tag = soup.find("meta", attrs={"property": name})
        if tag is not None:
            v = schema_availability(str(tag.get("content") or "").replace(" ", ""))
            if v is not None:
                seen.append(v)
    if not seen:
        return None
    return any(seen)


def _has_disabled_purchase_button(page: Page) -> bool:
    candidates = list(page.soup.select(", ".join(page.profile.purchase_selectors))) if page.profile.purchase_selectors else []
    candidates.extend(page.soup.find_all(["button", "input"]))
    for tag in candidates:
        if not (tag.has_attr("disabled") or str(tag.get("aria-disabled") or "").lower() == "true"):
            continue
        label = compact_ws(tag.get_text(" ", strip=True) or str(tag.get("value") or "")).lower()
        if tag.get("name") == "add" or find_keyword(label, PURCHASE_BUTTON_WORDS) or find_keyword(label, UNAVAILABLE_WORDS):
            return True
    return False


def _blocked_rule(page: Page, price: str | None) -> Verdict | None:
    if looks_like_block_page(page.status_code, page.body):
        reason = f"blocked: HTTP {page.status_code}" if page.status_code in (403, 429) else "blocked: challenge markup"
        return Verdict(availability=Availability.UNDETERMINED, price=None, blocked=True, reason=reason)
    return None


def _unavailable_rule(page: Page, price: str | None) -> Verdict | None:
    structured = page.structured
    if structured is True:
        return None
    if structured is False:
        return Verdict(availability=Availability.UNAVAILABLE, price=price, reason="unavailable: structured data OutOfStock")
    word = find_keyword(page.stock_text, UNAVAILABLE_WORDS)
    if word:
        return Verdict(availability=Availability.UNAVAILABLE, price=price, reason=f"unavailable: keyword {word!r}")
    if _has_disabled_purchase_button(page):
        return Verdict(availability=Availability.UNAVAILABLE, price=price, reason="unavailable: disabled purchase button")
    return None


def _available_rule(page: Page, price: str | None) -> Verdict | None:
    if page.structured is True:
        return Verdict(availability=Availability.AVAILABLE, price=price, reason="available: structured data InStock")
    word = find_keyword(page.stock_text, AVAILABLE_WORDS) or find_keyword(page.text, AVAILABLE_WORDS)
    if word:
        return Verdict(availability=Availability.AVAILABLE, price=price, reason=f"available: keyword {word!r}")
    if price:
        return Verdict(availability=Availability.AVAILABLE, price=price, reason="available: price present")
    return None


def _product_markup_rule(page: Page, price: str | None) -> Verdict | None:
    """A page with a product name and a product image counts as available.

    This is a deliberate bias toward false positives: a stale "available" is
    preferred over missing a restock on a page whose stock wording we do not know.
    """
    if extract_name(page.soup, page.url) and extract_image(page.soup, page.url):
        return Verdict(availability=Availability.AVAILABLE, price=price, reason="available: product markup")
    return None


RULES: tuple[Rule, ...] = (
    _blocked_rule,
    _unavailable_rule,
    _available_rule,
    _product_markup_rule,
)


def _price_from_json_ld(soup: BeautifulSoup) -> str | None:
    for product in json_ld_products(soup):
        for offer in json_ld_offers(product):
            price = _offer_price(offer)
            if price:
                return price
    return None


def _price_from_meta(soup: BeautifulSoup) -> str | None:
    for prefix in ("product:price", "og:price"):
        amount = soup.find("meta", attrs={"property": f"{prefix}:amount"})
        if amount is None:
            continue
        currency = soup.find("meta", attrs={"property": f"{prefix}:currency"})
        price = format_price(amount.get("content"), currency.get("content") if currency is not None else None)
        if price:
            return price
    return None


def _price_from_microdata(soup: BeautifulSoup) -> str | None:
    tag = soup.select_one("[itemprop='price']")
    if tag is None:
        return None
    amount = tag.get("content") or compact_ws(tag.get_text(" ", strip=True))
    currency_tag = soup.select_one("[itemprop='priceCurrency']")
    currency = None
    if currency_tag is not None:
        currency = currency_tag.get("content") or compact_ws(currency_tag.get_text(" ", strip=True))
    return format_price(amount, currency) or extract_price(str(amount or ""))


def extract_page_price(soup: BeautifulSoup, text: str, profile: SiteProfile) -> str | None:
    """Price from structured data first, then site price elements, then currency-adjacent text."""
    for strategy in (_price_from_json_ld, _price_from_meta, _price_from_microdata):
        price = strategy(soup)
        if price:
            return price
    for sel in profile.price_selectors:
        for tag in soup.select(sel):
            price = extract_price(tag.get_text(" ", strip=True))
            if price:
                return price
    return extract_price(text)


def classify(status_code: int | None, body: str, url: str, *, profile: SiteProfile | None = None) -> Verdict:
    page = Page(status_code=status_code, body=body or "", url=url, profile=profile or get_profile_for_url(url))
    blocked = _blocked_rule(page, None)
    if blocked is not None:
        return blocked
    price = (page.selected.price if page.selected is not None else None) or extract_page_price(
        page.soup, page.text, page.profile
    )
    for rule in RULES[1:]:
        verdict = rule(page, price)
        if verdict is not None:
            return verdict
    return Verdict(availability=Availability.UNDETERMINED, price=price, reason="undetermined")
