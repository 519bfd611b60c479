from __future__ import annotations

import json
import unittest

from fakes import AVAILABLE_HTML, MULTI_OFFER_HTML, SOLD_OUT_HTML

from stock_watch.models import Availability
from stock_watch.parsers.classifier import classify, selected_offer, selected_variant_id, structured_availability
from stock_watch.parsers.common import make_soup
from stock_watch.parsers.registry import MARKETPLACE, STOREFRONT, get_profile_for_url


SHOP_URL = "https://shop.example.test/products/labubu"
AMAZON_URL = "https://www.amazon.de/dp/B0TEST1234"


def _json_ld(availability: str, price: str = "29.90", currency: str = "EUR") -> str:
    data = {
        "@context": "https://schema.org",
        "@type": "Product",
        "name": "Labubu Figur",
        "offers": {"@type": "Offer", "price": price, "priceCurrency": currency, "availability": availability},
    }
    return f'<script type="application/ld+json">{json.dumps(data)}</script>'


class TestClassifier(unittest.TestCase):
    def test_german_sold_out_is_unavailable(self) -> None:
        v = classify(200, SOLD_OUT_HTML, SHOP_URL)
        self.assertEqual(v.availability, Availability.UNAVAILABLE)
        self.assertFalse(v.blocked)
        self.assertEqual(v.price, "€19.99")

    def test_german_add_to_cart_with_price_is_available(self) -> None:
        v = classify(200, AVAILABLE_HTML, SHOP_URL)
        self.assertEqual(v.availability, Availability.AVAILABLE)
        self.assertEqual(v.price, "€19.99")
        self.assertTrue(v.is_available)

    def test_rate_limited_is_blocked(self) -> None:
        v = classify(429, AVAILABLE_HTML, SHOP_URL)
        self.assertTrue(v.blocked)
        self.assertEqual(v.availability, Availability.UNDETERMINED)
        self.assertIsNone(v.is_available)

    def test_challenge_markup_is_blocked(self) -> None:
        html = "<html><title>Just a moment...</title><body>Checking your browser before accessing.</body></html>"
        v = classify(200, html, SHOP_URL)
        self.assertTrue(v.blocked)

    def test_structured_in_stock_beats_sold_out_wording(self) -> None:
        html = f"<html><head>{_json_ld('https://schema.org/InStock')}</head><body><h1>Labubu</h1><p>Sold out</p></body></html>"
        v = classify(200, html, SHOP_URL)
        self.assertEqual(v.availability, Availability.AVAILABLE)
        self.assertEqual(v.price, "€29.90")

    def test_structured_out_of_stock_beats_add_to_cart(self) -> None:
        html = f"<html><head>{_json_ld('http://schema.org/OutOfStock')}</head><body><button>Add to cart</button></body></html>"
        v = classify(200, html, SHOP_URL)
        self.assertEqual(v.availability, Availability.UNAVAILABLE)

    def test_disabled_purchase_button_is_unavailable(self) -> None:
        html = '<html><body><h1>Figure</h1><button name="add" disabled>Add to cart</button></body></html>'
        v = classify(200, html, SHOP_URL)
        self.assertEqual(v.availability, Availability.UNAVAILABLE)
        self.assertIn("disabled", v.reason or "")

    def test_price_alone_counts_as_available(self) -> None:
        html = "<html><body><h1>Figure</h1><p>Now only $12.50</p></body></html>"
        v = classify(200, html, SHOP_URL)
        self.assertEqual(v.availability, Availability.AVAILABLE)
        self.assertEqual(v.price, "$12.50")

    def test_product_markup_defaults_to_available(self) -> None:
        html = (
            '<html><head><meta property="og:title" content="Mystery Figure">'
            '<meta property="og:image" content="https://cdn.example.test/fig.jpg"></head>'
            "<body><h1>Mystery Figure</h1></body></html>"
        )
        v = classify(200, html, SHOP_URL)
        self.assertEqual(v.availability, Availability.AVAILABLE)
        self.assertEqual(v.reason, "available: product markup")

    def test_no_signals_is_undetermined(self) -> None:
        v = classify(200, "<html><body><p>Hello</p></body></html>", SHOP_URL)
        self.assertEqual(v.availability, Availability.UNDETERMINED)
        self.assertFalse(v.blocked)

    def test_identical_input_identical_verdict(self) -> None:
        self.assertEqual(classify(200, AVAILABLE_HTML, SHOP_URL), classify(200, AVAILABLE_HTML, SHOP_URL))
        self.assertEqual(classify(200, SOLD_OUT_HTML, SHOP_URL), classify(200, SOLD_OUT_HTML, SHOP_URL))

    def test_meta_price(self) -> None:
        html = (
            '<html><head><meta property="product:price:amount" content="15">'
            '<meta property="product:price:currency" content="USD"></head><body><button>Buy now</button></body></html>'
        )
        v = classify(200, html, SHOP_URL)
        self.assertEqual(v.price, "$15")

    def test_restock_signup_prompt_is_unavailable(self) -> None:
        for prompt in (
            "Notify me when back in stock",
            "Email me when available",
            "Benachrichtigen, sobald wieder verfügbar",
            "M'avertir quand l'article est disponible",
            "Avísame cuando esté disponible",
            "Avvisami quando disponibile",
            "到货通知",
            "再入荷通知を受け取る",
        ):
            with self.subTest(prompt=prompt):
                html = f"<html><body><h1>Labubu</h1><p>€19,99</p><button>{prompt}</button></body></html>"
                v = classify(200, html, SHOP_URL)
                self.assertEqual(v.availability, Availability.UNAVAILABLE)
                self.assertEqual(v.price, "€19.99")

    def test_back_in_stock_banner_alone_is_available(self) -> None:
        html = "<html><body><h1>Labubu</h1><p>Back in stock!</p><button>Add to cart</button></body></html>"
        self.assertEqual(classify(200, html, SHOP_URL).availability, Availability.AVAILABLE)


class TestMarketplaceProfile(unittest.TestCase):
    def test_amazon_hosts_use_marketplace_profile(self) -> None:
        self.assertIs(get_profile_for_url(AMAZON_URL), MARKETPLACE)
        self.assertIs(get_profile_for_url("https://www.amazon.co.uk/dp/X"), MARKETPLACE)
        self.assertIs(get_profile_for_url(SHOP_URL), STOREFRONT)
        self.assertIs(get_profile_for_url("https://notamazon.example.test/"), STOREFRONT)

    def test_availability_box_wins_over_page_noise(self) -> None:
        html = """
        <html><body>
          <span id="productTitle">Labubu Figur</span>
          <div id="availability"><span>Derzeit nicht verfügbar.</span></div>
          <div class="carousel">Ähnliche Artikel: Auf Lager</div>
        </body></html>
        """
        v = classify(200, html, AMAZON_URL)
        self.assertEqual(v.availability, Availability.UNAVAILABLE)

    def test_marketplace_in_stock_with_price(self) -> None:
        html = """
        <html><body>
          <span id="productTitle">Labubu Figur</span>
          <span class="a-price"><span class="a-offscreen">24,99 €</span></span>
          <div id="availability"><span>Auf Lager.</span></div>
          <input id="add-to-cart-button" type="submit" value="In den Einkaufswagen">
        </body></html>
        """
        v = classify(200, html, AMAZON_URL)
        self.assertEqual(v.availability, Availability.AVAILABLE)
        self.assertEqual(v.price, "€24.99")


class TestStructuredAvailability(unittest.TestCase):
    def test_any_in_stock_offer_wins(self) -> None:
        data = {
            "@type": "Product",
            "name": "Set",
            "offers": [
                {"@type": "Offer", "availability": "https://schema.org/OutOfStock"},
                {"@type": "Offer", "availability": "https://schema.org/InStock"},
            ],
        }
        soup = make_soup(f'<script type="application/ld+json">{json.dumps(data)}</script>')
        self.assertTrue(structured_availability(soup))

    def test_absent_is_none(self) -> None:
        self.assertIsNone(structured_availability(make_soup("<p>x</p>")))


class TestSelectedVariant(unittest.TestCase):
    def test_sold_out_variant_uses_its_own_offer(self) -> None:
        v = classify(200, MULTI_OFFER_HTML, f"{SHOP_URL}?variant=2")
        self.assertEqual(v.availability, Availability.UNAVAILABLE)
        self.assertEqual(v.price, "€59.99")

    def test_in_stock_variant_uses_its_own_offer(self) -> None:
        v = classify(200, MULTI_OFFER_HTML, f"{SHOP_URL}?variant=1")
        self.assertEqual(v.availability, Availability.AVAILABLE)
        self.assertEqual(v.price, "€19.99")

    def test_offer_matched_by_sku(self) -> None:
        v = classify(200, MULTI_OFFER_HTML, f"{SHOP_URL}?variant=LB-SET")
        self.assertEqual(v.availability, Availability.UNAVAILABLE)
        self.assertEqual(v.price, "€59.99")

    def test_without_variant_any_in_stock_offer_wins(self) -> None:
        v = classify(200, MULTI_OFFER_HTML, SHOP_URL)
        self.assertEqual(v.availability, Availability.AVAILABLE)
        self.assertEqual(v.price, "€19.99")

    def test_unmatched_variant_falls_back_to_page_signals(self) -> None:
        v = classify(200, MULTI_OFFER_HTML, f"{SHOP_URL}?variant=999")
        self.assertEqual(v.availability, Availability.AVAILABLE)
        self.assertIsNone(selected_offer(make_soup(MULTI_OFFER_HTML), f"{SHOP_URL}?variant=999"))

    def test_embedded_variant_list(self) -> None:
        variants = {
            "variants": [
                {"id": 11, "title": "Single Box", "available": True, "price": 1999},
                {"id": 12, "title": "Whole Set", "available": False, "price": 11994},
            ]
        }
        html = (
            '<html><head><meta property="product:price:currency" content="EUR"></head><body>'
            f'<h1>Labubu</h1><script type="application/json">{json.dumps(variants)}</script>'
            '<button name="add">Add to cart</button></body></html>'
        )
        v = classify(200, html, f"{SHOP_URL}?variant=12")
        self.assertEqual(v.availability, Availability.UNAVAILABLE)
        self.assertEqual(v.price, "€119.94")
        v = classify(200, html, f"{SHOP_URL}?variant=11")
        self.assertEqual(v.availability, Availability.AVAILABLE)
        self.assertEqual(v.price, "€19.99")

    def test_selected_variant_id(self) -> None:
        self.assertEqual(selected_variant_id(f"{SHOP_URL}?ref=x&variant=42"), "42")
        self.assertIsNone(selected_variant_id(SHOP_URL))
        self.assertIsNone(selected_variant_id(f"{SHOP_URL}?variant="))


if __name__ == "__main__":
    unittest.main()
