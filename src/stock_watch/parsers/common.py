from __future__ import annotations

import json
import re
from typing import Any, Iterator

from bs4 import BeautifulSoup


_WS_RE = re.compile(r"\s+")


def compact_ws(text: str) -> str:
    return _WS_RE.sub(" ", (text or "").strip())


def make_soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "lxml")


def visible_text(soup: BeautifulSoup) -> str:
    """Page text as a shopper would read it (scripts, styles and templates dropped)."""
    parts: list[str] = []
    for s in soup.find_all(string=True):
        parent = getattr(s, "parent", None)
        if parent is not None and parent.name in {"script", "style", "noscript", "template", "head", "title"}:
            continue
        text = str(s).strip()
        if text:
            parts.append(text)
    return compact_ws(" ".join(parts))


# US/UK thousands, EU thousands with comma decimals, then plain amounts.
_AMOUNT_RE = r"\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d{1,3}(?:\.\d{3})+(?:,\d{1,2})?|\d{1,6}(?:[.,]\d{1,2})?"
_CURRENCY_TOKEN_LIST = [
    "HK$",
    "US$",
    "NT$",
    "A$",
    "C$",
    "$",
    "€",  # EUR symbol
    "£",  # GBP symbol
    "¥",  # JPY/CNY symbol
    "￥",  # Full-width yuan sign
    "元",  # Yuan character
    "USD",
    "EUR",
    "GBP",
    "HKD",
    "CNY",
    "RMB",
    "JPY",
    "TWD",
    "CHF",
]
_CURRENCY_TOKENS = "|".join(sorted((re.escape(t) for t in _CURRENCY_TOKEN_LIST), key=len, reverse=True))

PRICE_RE = re.compile(
    rf"(?P<currency>{_CURRENCY_TOKENS})\s*(?P<amount>{_AMOUNT_RE})",
    re.IGNORECASE,
)
PRICE_RE_2 = re.compile(
    rf"(?P<amount>{_AMOUNT_RE})\s*(?P<currency>{_CURRENCY_TOKENS})",
    re.IGNORECASE,
)

CURRENCY_SYMBOLS: dict[str, str] = {
    "$": "$",
    "US$": "$",
    "USD": "$",
    "€": "€",
    "EUR": "€",
    "£": "£",
    "GBP": "£",
    "¥": "¥",
    "￥": "¥",
    "元": "¥",
    "JPY": "¥",
    "CNY": "¥",
    "RMB": "¥",
    "HK$": "HK$",
    "HKD": "HK$",
    "NT$": "NT$",
    "TWD": "NT$",
    "A$": "A$",
    "C$": "C$",
    "CHF": "CHF ",
}


def currency_symbol(token: str | None) -> str:
    if not token:
        return ""
    t = token.strip()
    return CURRENCY_SYMBOLS.get(t) or CURRENCY_SYMBOLS.get(t.upper()) or f"{t.upper()} "


def normalize_amount(amount: str) -> str:
    s = compact_ws(str(amount)).replace(" ", "").replace(" ", "")
    if "," in s and "." in s:
        # Whichever separator comes last is the decimal point.
        if s.rfind(",") > s.rfind("."):
            return s.replace(".", "").replace(",", ".")
        return s.replace(",", "")
    if s.count(",") > 1:
        return s.replace(",", "")
    if s.count(".") > 1:
        return s.replace(".", "")
    if s.count(",") == 1:
        left, right = s.split(",", 1)
        if len(right) <= 2:
            return f"{left}.{right}"
        return f"{left}{right}"
    return s


def format_price(amount: Any, currency: str | None) -> str | None:
    if amount is None or isinstance(amount, bool):
        return None
    if isinstance(amount, (int, float)):
        text = f"{float(amount):.2f}"
    else:
        text = normalize_amount(str(amount))
    if not re.fullmatch(r"\d+(?:\.\d+)?", text or ""):
        return None
    return f"{currency_symbol(currency)}{text}"


def extract_price(text: str) -> str | None:
    """First currency-adjacent amount in ``text``, as ``<symbol><amount>`` (e.g. ``€19.99``)."""
    t = compact_ws(text)
    if not t:
        return None
    m1 = PRICE_RE.search(t)
    m2 = PRICE_RE_2.search(t)
    candidates = [m for m in (m1, m2) if m]
    if not candidates:
        return None
    m = min(candidates, key=lambda x: x.start())
    return format_price(m.group("amount"), m.group("currency"))


UNAVAILABLE_WORDS = [
    "out of stock",
    "out-of-stock",
    "sold out",
    "sold-out",
    "currently unavailable",
    "temporarily unavailable",
    "no longer available",
    # Restock sign-up prompts.
    "notify me when",
    "email me when",
    "when back in stock",
    "when it's back in stock",
    "ausverkauft",
    "nicht verfügbar",
    "nicht auf lager",
    "vergriffen",
    "sobald wieder verfügbar",
    "sobald verfügbar",
    "benachrichtigen, sobald",
    "épuisé",
    "rupture de stock",
    "m'avertir",
    "me prévenir",
    "prévenez-moi",
    "agotado",
    "sin stock",
    "avisarme cuando",
    "avísame cuando",
    "esaurito",
    "non disponibile",
    "avvisami quando",
    "uitverkocht",
    "已售罄",
    "售罄",
    "缺货",
    "無庫存",
    "无库存",
    "暂时缺货",
    "到货通知",
    "到貨通知",
    "补货通知",
    "品切れ",
    "在庫切れ",
    "売り切れ",
    "再入荷通知",
    "再入荷のお知らせ",
    "入荷お知らせ",
]

AVAILABLE_WORDS = [
    "add to cart",
    "add to bag",
    "add to basket",
    "buy now",
    "buy it now",
    "in stock",
    "in den warenkorb",
    "in den einkaufswagen",
    "jetzt kaufen",
    "sofort kaufen",
    "auf lager",
    "ajouter au panier",
    "acheter maintenant",
    "añadir al carrito",
    "comprar ahora",
    "aggiungi al carrello",
    "加入购物车",
    "加入購物車",
    "立即购买",
    "立即購買",
    "カートに入れる",
    "今すぐ買う",
    "在庫あり",
]

PURCHASE_BUTTON_WORDS = [
    "add to cart",
    "add to bag",
    "add to basket",
    "buy now",
    "in den warenkorb",
    "in den einkaufswagen",
    "jetzt kaufen",
    "ajouter au panier",
    "añadir al carrito",
    "aggiungi al carrello",
    "加入购物车",
    "加入購物車",
    "カートに入れる",
]


def find_keyword(text: str, words: list[str]) -> str | None:
    t = (text or "").lower()
    for w in words:
        if w in t:
            return w
    return None


BLOCK_STATUS_CODES = (403, 429)


def looks_like_block_page(status_code: int | None, body: str) -> bool:
    if status_code in BLOCK_STATUS_CODES:
        return True
    t = (body or "").lower()
    # Many normal pages include Cloudflare analytics beacons; require a challenge marker.
    if "/cdn-cgi/" in t:
        strong = (
            "challenge-platform",
            "cf-chl",
            "__cf_chl",
            "jschl",
            "turnstile",
            "cf-turnstile",
        )
        if any(m in t for m in strong):
            return True
    if "just a moment" in t and "checking your browser" in t:
        return True
    if "attention required" in t and "cloudflare" in t:
        return True
    if "access denied" in t and ("you don't have permission" in t or "reference #" in t):
        return True
    if "/errors/validatecaptcha" in t or "enter the characters you see below" in t:
        return True
    if "px-captcha" in t or "captcha-delivery.com" in t:
        return True
    return False


def iter_json_ld(soup: BeautifulSoup) -> Iterator[dict[str, Any]]:
    """Yield every JSON-LD object on the page, flattening ``@graph`` and top-level lists."""
    for tag in soup.find_all("script", attrs={"type": re.compile(r"ld\+json", re.IGNORECASE)}):
        raw = tag.string or tag.get_text() or ""
        try:
            data = json.loads(raw)
        except ValueError:
            continue
        stack: list[Any] = [data]
        while stack:
            item = stack.pop(0)
            if isinstance(item, list):
                stack.extend(item)
            elif isinstance(item, dict):
                graph = item.get("@graph")
                if isinstance(graph, list):
                    stack.extend(graph)
                yield item


def json_ld_type_is(obj: dict[str, Any], name: str) -> bool:
    t = obj.get("@type")
    if isinstance(t, list):
        return any(str(x).lower() == name.lower() for x in t)
    return str(t or "").lower() == name.lower()


def json_ld_products(soup: BeautifulSoup) -> list[dict[str, Any]]:
    return [o for o in iter_json_ld(soup) if json_ld_type_is(o, "Product") or json_ld_type_is(o, "ProductGroup")]


def json_ld_offers(product: dict[str, Any]) -> list[dict[str, Any]]:
    offers = product.get("offers")
    out: list[dict[str, Any]] = []
    if isinstance(offers, dict):
        nested = offers.get("offers")
        if isinstance(nested, list):
            out.extend(o for o in nested if isinstance(o, dict))
        else:
            out.append(offers)
    elif isinstance(offers, list):
        out.extend(o for o in offers if isinstance(o, dict))
    return out


def schema_availability(value: Any) -> bool | None:
    v = str(value or "").lower()
    if not v:
        return None
    if any(k in v for k in ("outofstock", "soldout", "discontinued")):
        return False
    if any(k in v for k in ("instock", "limitedavailability", "onlineonly", "preorder", "instoreonly")):
        return True
    return None


def extract_json_value(text: str, start: int) -> Any | None:
    """Decode the JSON value beginning at ``start`` (the first ``{`` or ``[``)."""
    try:
        value, _end = json.JSONDecoder().raw_decode(text, start)
    except ValueError:
        return None
    return value


def page_currency(soup: BeautifulSoup) -> str | None:
    for product in json_ld_products(soup):
        for offer in json_ld_offers(product):
            if offer.get("priceCurrency"):
                return str(offer["priceCurrency"])
    for name in ("product:price:currency", "og:price:currency"):
        tag = soup.find("meta", attrs={"property": name})
        if tag is not None and tag.get("content"):
            return str(tag["content"])
    for script in soup.find_all("script"):
        m = re.search(r"Shopify\.currency\s*=\s*\{[^}]*\"active\"\s*:\s*\"([A-Z]{3})\"", script.string or "")
        if m:
            return m.group(1)
    return None


def shopify_amount(value: Any) -> Any:
    # Storefront JSON carries integer minor units; strings are already decimal.
    if isinstance(value, int) and not isinstance(value, bool):
        return value / 100.0
    return value


def iter_embedded_variant_lists(soup: BeautifulSoup) -> list[list[dict[str, Any]]]:
    """Every ``"variants": [...]`` list of objects embedded in a page script."""
    found: list[list[dict[str, Any]]] = []
    for script in soup.find_all("script"):
        raw = script.string or script.get_text() or ""
        if '"variants"' not in raw:
            continue
        for m in re.finditer(r'"variants"\s*:\s*\[', raw):
            value = extract_json_value(raw, m.end() - 1)
            if isinstance(value, list) and value and all(isinstance(v, dict) for v in value):
                found.append(value)
    return found
