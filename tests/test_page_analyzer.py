"""Tests for destination page classification."""

import pytest
from selectolax.parser import HTMLParser

from linkguard.links.networks import classify
from linkguard.links.types import LinkStatus
from linkguard.verify.fetchers import FetchedPage
from linkguard.verify.page_analyzer import (
    analyze_page,
    is_amazon_search,
    structured_availability,
)

AMAZON_URL = "https://www.amazon.com/dp/B08N5WRWNW?tag=chan-20"

PRODUCT_PAGE = """
<html><head><title>Amazon.com: Echo Dot</title></head>
<body>
  <span id="productTitle">Echo Dot (4th Gen)</span>
  <div id="availability">In Stock.</div>
  <input id="add-to-cart-button" type="submit" value="Add to Cart">
</body></html>
"""


def _page(url, html, status=200, final_url=None):
    return FetchedPage(url=url, http_status=status, final_url=final_url or url, html=html)


class TestAmazonPages:
    """Tests for Amazon storefront analysis."""

    def test_buy_button_with_tag_is_ok(self):
        link = classify(AMAZON_URL)
        verdict = analyze_page(link, _page(AMAZON_URL, PRODUCT_PAGE))
        assert verdict.status == LinkStatus.OK
        assert verdict.product_title == "Echo Dot (4th Gen)"

    @pytest.mark.parametrize("status", [404, 410, 451])
    def test_gone_statuses_are_not_found(self, status):
        link = classify(AMAZON_URL)
        verdict = analyze_page(link, _page(AMAZON_URL, "", status=status))
        assert verdict.status == LinkStatus.NOT_FOUND

    def test_server_error_is_unknown(self):
        link = classify(AMAZON_URL)
        verdict = analyze_page(link, _page(AMAZON_URL, "<html></html>", status=503))
        assert verdict.status == LinkStatus.UNKNOWN

    def test_captcha_is_unknown(self):
        html = '<html><body><input id="captchacharacters"></body></html>'
        verdict = analyze_page(classify(AMAZON_URL), _page(AMAZON_URL, html))
        assert verdict.status == LinkStatus.UNKNOWN
        assert "CAPTCHA" in verdict.reason

    def test_dog_page_is_not_found(self):
        html = "<html><head><title>Page Not Found</title></head><body>Looking for something?</body></html>"
        verdict = analyze_page(classify(AMAZON_URL), _page(AMAZON_URL, html))
        assert verdict.status == LinkStatus.NOT_FOUND

    def test_search_redirect(self):
        final = "https://www.amazon.com/s?k=echo+dot"
        verdict = analyze_page(classify(AMAZON_URL), _page(AMAZON_URL, "<html><body>results</body></html>", final_url=final))
        assert verdict.status == LinkStatus.SEARCH_REDIRECT

    def test_asin_change_is_redirect(self):
        final = "https://www.amazon.com/dp/B09B8V1LZ3?tag=chan-20"
        verdict = analyze_page(classify(AMAZON_URL), _page(AMAZON_URL, PRODUCT_PAGE, final_url=final))
        assert verdict.status == LinkStatus.REDIRECT
        assert "B09B8V1LZ3" in verdict.reason

    def test_unresolved_shortener_is_redirect(self):
        url = "https://amzn.to/3abcDEF"
        verdict = analyze_page(classify(url), _page(url, "<html><body>hello</body></html>"))
        assert verdict.status == LinkStatus.REDIRECT

    def test_missing_tag(self):
        url = "https://www.amazon.com/dp/B08N5WRWNW"
        verdict = analyze_page(classify(url), _page(url, PRODUCT_PAGE))
        assert verdict.status == LinkStatus.MISSING_TAG

    def test_expected_tag_mismatch(self):
        verdict = analyze_page(classify(AMAZON_URL), _page(AMAZON_URL, PRODUCT_PAGE), expected_tag="other-20")
        assert verdict.status == LinkStatus.MISSING_TAG
        assert "other-20" in verdict.reason

    def test_third_party_only(self):
        html = """
        <html><body><span id="productTitle">Widget</span>
        <div id="buybox-see-all-buying-choices-announce">See All Buying Options</div>
        </body></html>
        """
        verdict = analyze_page(classify(AMAZON_URL), _page(AMAZON_URL, html))
        assert verdict.status == LinkStatus.OOS_THIRD_PARTY

    def test_out_of_stock(self):
        html = """
        <html><body><span id="productTitle">Widget</span>
        <div id="availability">Currently unavailable.</div>
        </body></html>
        """
        verdict = analyze_page(classify(AMAZON_URL), _page(AMAZON_URL, html))
        assert verdict.status == LinkStatus.OOS

    def test_price_without_buy_button_is_unknown(self):
        html = """
        <html><body><span id="productTitle">Widget</span>
        <span class="a-price"><span class="a-offscreen">$19.99</span></span>
        </body></html>
        """
        verdict = analyze_page(classify(AMAZON_URL), _page(AMAZON_URL, html))
        assert verdict.status == LinkStatus.UNKNOWN


class TestGenericPages:
    """Tests for non-Amazon merchant analysis."""

    URL = "https://shop.example.com/products/widget"

    def test_structured_in_stock_with_cart_is_ok(self):
        html = """
        <html><head><title>Widget</title>
        <script type="application/ld+json">
        {"@type": "Product", "offers": {"@type": "Offer", "availability": "https://schema.org/InStock"}}
        </script></head>
        <body><h1>Widget</h1><button>Add to Cart</button></body></html>
        """
        verdict = analyze_page(classify(self.URL), _page(self.URL, html))
        assert verdict.status == LinkStatus.OK
        assert verdict.product_title == "Widget"

    def test_structured_out_of_stock(self):
        html = """
        <html><body>
        <link itemprop="availability" href="http://schema.org/OutOfStock">
        <button>Add to Cart</button></body></html>
        """
        verdict = analyze_page(classify(self.URL), _page(self.URL, html))
        assert verdict.status == LinkStatus.OOS

    def test_error_title_is_not_found(self):
        html = "<html><head><title>404 - Page Not Found</title></head><body></body></html>"
        verdict = analyze_page(classify(self.URL), _page(self.URL, html))
        assert verdict.status == LinkStatus.NOT_FOUND

    def test_homepage_redirect(self):
        html = "<html><body><h1>Welcome</h1></body></html>"
        page = _page(self.URL, html, final_url="https://shop.example.com/")
        verdict = analyze_page(classify(self.URL), page)
        assert verdict.status == LinkStatus.REDIRECT

    def test_unrelated_site_redirect(self):
        html = "<html><body><h1>Other</h1></body></html>"
        page = _page(self.URL, html, final_url="https://elsewhere.net/landing")
        verdict = analyze_page(classify(self.URL), page)
        assert verdict.status == LinkStatus.REDIRECT
        assert "elsewhere.net" in verdict.reason

    def test_search_redirect(self):
        html = "<html><body>results</body></html>"
        page = _page(self.URL, html, final_url="https://shop.example.com/search?q=widget")
        verdict = analyze_page(classify(self.URL), page)
        assert verdict.status == LinkStatus.SEARCH_REDIRECT

    def test_no_signals_is_unknown(self):
        html = "<html><body><h1>Widget</h1><p>Nice widget.</p></body></html>"
        verdict = analyze_page(classify(self.URL), _page(self.URL, html))
        assert verdict.status == LinkStatus.UNKNOWN

    def test_cart_without_structured_data_is_unknown(self):
        html = "<html><body><h1>Widget</h1><button>Add to Cart</button></body></html>"
        verdict = analyze_page(classify(self.URL), _page(self.URL, html))
        assert verdict.status == LinkStatus.UNKNOWN

    def test_oos_text_without_signals(self):
        html = "<html><body><h1>Widget</h1><p>Sorry, this item is out of stock.</p></body></html>"
        verdict = analyze_page(classify(self.URL), _page(self.URL, html))
        assert verdict.status == LinkStatus.OOS

    def test_empty_body_is_unknown(self):
        verdict = analyze_page(classify(self.URL), _page(self.URL, ""))
        assert verdict.status == LinkStatus.UNKNOWN


def test_is_amazon_search():
    assert is_amazon_search("https://www.amazon.com/s?k=widgets")
    assert is_amazon_search("https://www.amazon.com/b?node=12345")
    assert not is_amazon_search("https://www.amazon.com/dp/B08N5WRWNW")


def test_structured_availability_nested_graph():
    html = """
    <script type="application/ld+json">
    {"@graph": [{"@type": "WebPage"}, {"@type": "Product", "offers": [{"availability": "InStock"}]}]}
    </script>
    """
    assert structured_availability(HTMLParser(html)) is True


def test_structured_availability_ignores_bad_json():
    html = '<script type="application/ld+json">{not json</script>'
    assert structured_availability(HTMLParser(html)) is None
