from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urlparse


@dataclass(frozen=True)
class SiteProfile:
    name: str
    # Elements whose text is authoritative for stock wording; empty means the whole visible page.
    availability_selectors: tuple[str, ...] = ()
    price_selectors: tuple[str, ...] = ()
    purchase_selectors: tuple[str, ...] = ()
    option_selectors: tuple[str, ...] = ()


STOREFRONT = SiteProfile(
    name="storefront",
    price_selectors=(
        ".price-item--sale",
        ".price__current",
        ".product__price",
        ".product-single__price",
        "[data-product-price]",
        ".price",
    ),
    purchase_selectors=(
        "button[name='add']",
        "form[action*='/cart/add'] button[type='submit']",
        "button.product-form__submit",
        "#AddToCart",
        "input[type='submit'][name='add']",
        "button[class*='add-to-cart']",
        "button[class*='buy']",
    ),
    option_selectors=(
        "select[name^='options']",
        "select[name='id']",
        "select[data-option]",
        "select[class*='variant']",
        "select[class*='size']",
    ),
)

MARKETPLACE = SiteProfile(
    name="marketplace",
    availability_selectors=("#availability", "#outOfStock", "#availabilityInsideBuyBox_feature_div"),
    price_selectors=(
        "#corePrice_feature_div .a-offscreen",
        "#corePriceDisplay_desktop_feature_div .a-offscreen",
        ".a-price .a-offscreen",
        "#priceblock_ourprice",
        "#priceblock_dealprice",
        "#price_inside_buybox",
    ),
    purchase_selectors=("#add-to-cart-button", "#buy-now-button"),
    option_selectors=("select#native_dropdown_selected_size_name", "#variation_size_name select"),
)

_MARKETPLACE_HOST_RE = re.compile(r"(^|\.)(amazon\.[a-z]{2,3}(\.[a-z]{2})?|amzn\.[a-z]{2,3})$")


def get_profile_for_url(url: str) -> SiteProfile:
    host = (urlparse(url or "").hostname or "").lower()
    if _MARKETPLACE_HOST_RE.search(host):
        return MARKETPLACE
    return STOREFRONT
