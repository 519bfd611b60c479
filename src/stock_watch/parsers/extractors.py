from __future__ import annotations

import re
from typing import Callable
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from .common import compact_ws, iter_json_ld, json_ld_products


Strategy = Callable[[BeautifulSoup, str], "str | None"]

_PLACEHOLDER_NAMES = {
    "home",
    "shop",
    "store",
    "products",
    "product",
    "cart",
    "amazon.com",
    "amazon.de",
    "untitled",
    "page not found",
    "404",
    "404 not found",
    "access denied",
    "just a moment...",
    "robot check",
}

_PLACEHOLDER_IMAGE_HINTS = ("placeholder", "spacer", "pixel", "blank.gif", "transparent", "sprite", "logo")


def _meta(soup: BeautifulSoup, *names: str) -> str | None:
    for name in names:
        tag = soup.find("meta", attrs={"property": name}) or soup.find("meta", attrs={"name": name})
        if tag is not None:
            content = compact_ws(str(tag.get("content") or ""))
            if content:
                return content
    return None


def _site_brand(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host.split(".")[0] if host else ""


def looks_like_name(text: str | None, *, url: str = "") -> bool:
    n = compact_ws(text or "")
    if not (2 <= len(n) <= 300):
        return False
    if not re.search(r"\w", n):
        return False
    n_l = n.lower()
    if n_l in _PLACEHOLDER_NAMES:
        return False
    brand = _site_brand(url)
    if brand and n_l == brand:
        return False
    return True


def _clean_title(title: str, url: str) -> str:
    # "Product | Shop Name" / "Product - Shop Name": keep the product part.
    parts = re.split(r"\s+[|–—-]\s+", title)
    if len(parts) > 1:
        brand = _site_brand(url)
        head = parts[0].strip()
        if brand and brand in parts[-1].lower():
            return head
        if looks_like_name(head, url=url):
            return head
    return title


def _name_from_json_ld(soup: BeautifulSoup, url: str) -> str | None:
    for obj in json_ld_products(soup):
        name = obj.get("name")
        if isinstance(name, str):
            return compact_ws(name)
    return None


def _name_from_marketplace_title(soup: BeautifulSoup, url: str) -> str | None:
    tag = soup.select_one("#productTitle") or soup.select_one("#title")
    return compact_ws(tag.get_text(" ", strip=True)) if tag else None


def _name_from_og(soup: BeautifulSoup, url: str) -> str | None:
    return _meta(soup, "og:title", "twitter:title")


def _name_from_heading(soup: BeautifulSoup, url: str) -> str | None:
    for sel in ("h1.product__title", "h1.product-title", ".product-single__title", "[itemprop='name']", "h1"):
        tag = soup.select_one(sel)
        if tag:
            text = compact_ws(tag.get_text(" ", strip=True))
            if text:
                return text
    return None


def _name_from_title(soup: BeautifulSoup, url: str) -> str | None:
    if soup.title and soup.title.string:
        return _clean_title(compact_ws(soup.title.string), url)
    return None


NAME_STRATEGIES: tuple[Strategy, ...] = (
    _name_from_json_ld,
    _name_from_marketplace_title,
    _name_from_og,
    _name_from_heading,
    _name_from_title,
)


def _absolute(src: str | None, url: str) -> str | None:
    s = compact_ws(src or "")
    if not s or s.startswith("data:"):
        return None
    if s.startswith("//"):
        return f"https:{s}"
    return urljoin(url, s)


def _looks_like_image(src: str | None) -> bool:
    if not src:
        return False
    s = src.lower()
    return not any(h in s for h in _PLACEHOLDER_IMAGE_HINTS)


def _image_from_json_ld(soup: BeautifulSoup, url: str) -> str | None:
    for obj in json_ld_products(soup):
        image = obj.get("image")
        if isinstance(image, list):
            image = image[0] if image else None
        if isinstance(image, dict):
            image = image.get("url")
        if isinstance(image, str):
            return _absolute(image, url)
    return None


def _image_from_og(soup: BeautifulSoup, url: str) -> str | None:
    return _absolute(_meta(soup, "og:image", "og:image:secure_url", "twitter:image"), url)


def _image_from_marketplace(soup: BeautifulSoup, url: str) -> str | None:
    tag = soup.select_one("#landingImage") or soup.select_one("#imgBlkFront")
    if tag is None:
        return None
    return _absolute(tag.get("data-old-hires") or tag.get("src"), url)


def _image_from_product_gallery(soup: BeautifulSoup, url: str) -> str | None:
    for sel in (
        "[itemprop='image']",
        ".product__media img",
        ".product-single__photo img",
        ".product-gallery img",
        "[class*='product'] img",
        "main img",
    ):
        for tag in soup.select(sel):
            src = tag.get("content") or tag.get("data-src") or tag.get("src")
            if isinstance(src, list):
                src = src[0] if src else None
            absolute = _absolute(src, url)
            if _looks_like_image(absolute):
                return absolute
    return None


IMAGE_STRATEGIES: tuple[Strategy, ...] = (
    _image_from_json_ld,
    _image_from_og,
    _image_from_marketplace,
    _image_from_product_gallery,
)


def _description_from_json_ld(soup: BeautifulSoup, url: str) -> str | None:
    for obj in iter_json_ld(soup):
        desc = obj.get("description")
        if isinstance(desc, str) and compact_ws(desc):
            return compact_ws(desc)
    return None


def _description_from_meta(soup: BeautifulSoup, url: str) -> str | None:
    return _meta(soup, "og:description", "description", "twitter:description")


def _description_from_markup(soup: BeautifulSoup, url: str) -> str | None:
    for sel in ("#feature-bullets", ".product__description", ".product-single__description", "[itemprop='description']"):
        tag = soup.select_one(sel)
        if tag:
            text = compact_ws(tag.get_text(" ", strip=True))
            if text:
                return text
    return None


DESCRIPTION_STRATEGIES: tuple[Strategy, ...] = (
    _description_from_json_ld,
    _description_from_meta,
    _description_from_markup,
)


def extract_name(soup: BeautifulSoup, url: str) -> str | None:
    for strategy in NAME_STRATEGIES:
        name = strategy(soup, url)
        if looks_like_name(name, url=url):
            return name
    return None


def extract_image(soup: BeautifulSoup, url: str) -> str | None:
    for strategy in IMAGE_STRATEGIES:
        image = strategy(soup, url)
        if _looks_like_image(image):
            return image
    return None


def extract_description(soup: BeautifulSoup, url: str, *, limit: int = 1200) -> str | None:
    for strategy in DESCRIPTION_STRATEGIES:
        desc = strategy(soup, url)
        if desc and re.search(r"\w", desc):
            return desc[:limit]
    return None


def extract_brand(soup: BeautifulSoup) -> str | None:
    for obj in json_ld_products(soup):
        brand = obj.get("brand")
        if isinstance(brand, dict):
            brand = brand.get("name")
        if isinstance(brand, str) and compact_ws(brand):
            return compact_ws(brand)
    tag = soup.select_one("#bylineInfo") or soup.select_one(".product__vendor") or soup.select_one("[itemprop='brand']")
    if tag:
        text = compact_ws(tag.get_text(" ", strip=True))
        return text or None
    return None
