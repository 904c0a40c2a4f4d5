"""Classify a fetched destination page into a link status.

Amazon pages get storefront-specific analysis; every other merchant page is
judged from structured data (JSON-LD / microdata) and purchase controls.
Anything ambiguous resolves to UNKNOWN, never OK.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterator, Optional
from urllib.parse import parse_qs, urlsplit

from selectolax.parser import HTMLParser

from linkguard.links.networks import extract_asin
from linkguard.links.regions import host_matches, marketplace_for_host
from linkguard.links.types import LinkStatus, Network, ParsedLink
from linkguard.verify.fetchers import FetchedPage

logger = logging.getLogger(__name__)

# Statuses that mean the destination is gone for good
NOT_FOUND_HTTP_STATUSES = frozenset({404, 410, 451})

AMAZON_TAG_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+-[0-9]{2}$")

TAG_STRIPPED_REASON = "Affiliate tag stripped - no commission will be earned"
NO_TAG_REASON = "No affiliate tag on link - no commission will be earned"

SHORTENER_HOSTS = ("bit.ly", "amzn.to", "a.co", "goo.gl", "t.co", "tinyurl.com", "ow.ly")

AMAZON_SEARCH_MARKERS = ("/s?k=", "/s/ref=", "/s?i=", "/s?rh=", "/stores/")

CAPTCHA_SELECTORS = ("#captchacharacters", 'form[action*="validateCaptcha"]')

BUY_BUTTON_SELECTORS = (
    "#add-to-cart-button",
    "#buy-now-button",
    'input[name="submit.add-to-cart"]',
    'input[name="submit.addToCart"]',
    '[data-action="add-to-cart"]',
    "#addToCart",
    "#add-to-cart-button-ubb",
)

THIRD_PARTY_SELECTORS = ("#olp-upd-new", "#mbc")

TITLE_SELECTORS = ("#productTitle", 'span[data-hook="product-title"]', "h1#title")

OOS_PHRASES = ("currently unavailable", "out of stock")
OOS_BACK_IN_STOCK_PHRASE = "we don't know when or if this item will be back in stock"

ERROR_PAGE_PHRASES = (
    "page not found",
    "product not found",
    "this page doesn't exist",
    "sorry, we couldn't find that page",
    "the page you requested could not be found",
)

GENERIC_SEARCH_PATHS = ("/search", "/s/", "/catalogsearch")
GENERIC_SEARCH_PARAMS = ("q", "query", "keyword", "keywords", "searchterm", "k")

GENERIC_CART_SELECTORS = (
    '[id*="add-to-cart"]',
    '[name*="add-to-cart"]',
    '[class*="add-to-cart"]',
    '[id*="addToCart"]',
    '[class*="addToCart"]',
    '[data-action="add-to-cart"]',
)
CART_BUTTON_TEXT = ("add to cart", "add to basket", "add to bag", "buy now")

IN_STOCK_VALUES = ("instock", "limitedavailability", "onlineonly", "instoreonly", "preorder", "backorder")
OUT_OF_STOCK_VALUES = ("outofstock", "soldout", "discontinued")


@dataclass(frozen=True)
class PageVerdict:
    """Status decided from one fetched page."""

    status: LinkStatus
    reason: str
    product_title: Optional[str] = None


def _host(url: Optional[str]) -> Optional[str]:
    try:
        return urlsplit(url or "").hostname
    except ValueError:
        return None


def _tag_from_url(url: Optional[str]) -> Optional[str]:
    try:
        values = parse_qs(urlsplit(url or "").query).get("tag")
    except ValueError:
        return None
    return values[0] if values else None


def _exists(tree: HTMLParser, selectors) -> bool:
    return any(tree.css_first(selector) is not None for selector in selectors)


def _text(tree: HTMLParser, selector: str) -> str:
    node = tree.css_first(selector)
    return node.text(strip=True) if node is not None else ""


def _first_text(tree: HTMLParser, selectors) -> Optional[str]:
    for selector in selectors:
        text = _text(tree, selector)
        if text:
            return text
    return None


def is_shortener(host: Optional[str]) -> bool:
    return any(host_matches(host, domain) for domain in SHORTENER_HOSTS)


def is_amazon_search(url: str) -> bool:
    """True when a URL is an Amazon search or listing page instead of a product."""
    lowered = (url or "").lower()
    if any(marker in lowered for marker in AMAZON_SEARCH_MARKERS):
        return True
    if "/s?" in lowered and "keywords=" in lowered:
        return True
    return ("/b/" in lowered or "/b?" in lowered) and "node=" in lowered


def analyze_page(
    link: ParsedLink,
    page: FetchedPage,
    expected_tag: Optional[str] = None,
) -> PageVerdict:
    """
    Decide a link status from a fetched page.

    Args:
        link: The link that was fetched
        page: Final page after redirects
        expected_tag: Affiliate tag the owner expects on Amazon links

    Returns:
        PageVerdict with status, reason and product title if found
    """
    if page.http_status in NOT_FOUND_HTTP_STATUSES:
        return PageVerdict(LinkStatus.NOT_FOUND, f"Dead link (HTTP {page.http_status})")
    if page.http_status >= 400:
        return PageVerdict(LinkStatus.UNKNOWN, f"HTTP {page.http_status} - could not verify")
    if not page.html:
        return PageVerdict(LinkStatus.UNKNOWN, "Empty response body")

    if link.network is Network.AMAZON or marketplace_for_host(_host(page.final_url)):
        return analyze_amazon_page(link, page, expected_tag)
    return analyze_generic_page(link, page)


def analyze_amazon_page(
    link: ParsedLink,
    page: FetchedPage,
    expected_tag: Optional[str] = None,
) -> PageVerdict:
    tree = HTMLParser(page.html)
    html_lower = page.html.lower()
    final_host = _host(page.final_url)

    if _exists(tree, CAPTCHA_SELECTORS) or "enter the characters you see below" in html_lower:
        return PageVerdict(LinkStatus.UNKNOWN, "CAPTCHA detected - retry needed")

    page_title = _text(tree, "title").lower()
    if (
        "page not found" in page_title
        or "looking for something?" in html_lower
        or tree.css_first("#d") is not None
    ):
        return PageVerdict(LinkStatus.NOT_FOUND, "Product page not found (dog page)")

    if is_amazon_search(page.final_url):
        return PageVerdict(LinkStatus.SEARCH_REDIRECT, "Redirected to search results")

    original_host = _host(link.url)
    if is_shortener(original_host) and final_host == original_host:
        return PageVerdict(LinkStatus.REDIRECT, "Link shortener did not resolve")

    if marketplace_for_host(final_host) is None:
        return PageVerdict(LinkStatus.REDIRECT, f"Amazon link redirected off-site to {final_host}")

    original_asin = link.identifier or link.preserved.asin
    final_asin = extract_asin(page.final_url)
    if original_asin and final_asin and original_asin != final_asin:
        return PageVerdict(
            LinkStatus.REDIRECT,
            f"Product redirect - ASIN changed from {original_asin} to {final_asin}",
        )

    title = _first_text(tree, TITLE_SELECTORS)

    if _exists(tree, BUY_BUTTON_SELECTORS):
        return _purchasable(title, _missing_tag_reason(link, page, expected_tag))

    availability = _text(tree, "#availability").lower()
    buybox = _text(tree, "#buybox-see-all-buying-choices-announce").lower()
    if (
        "see all buying options" in buybox
        or _exists(tree, THIRD_PARTY_SELECTORS)
        or "available from these sellers" in availability
    ):
        return PageVerdict(LinkStatus.OOS_THIRD_PARTY, "Only available from third-party sellers", title)

    if any(phrase in availability for phrase in OOS_PHRASES) or OOS_BACK_IN_STOCK_PHRASE in html_lower:
        return PageVerdict(LinkStatus.OOS, "Currently unavailable", title)

    if title:
        return PageVerdict(LinkStatus.UNKNOWN, "Could not verify availability - manual check recommended", title)
    return PageVerdict(LinkStatus.UNKNOWN, "Could not determine product status")


def _purchasable(title: Optional[str], missing: Optional[str]) -> PageVerdict:
    if missing:
        return PageVerdict(LinkStatus.MISSING_TAG, missing, title)
    return PageVerdict(LinkStatus.OK, "Product available - Add to Cart present", title)


def _expected_tag_reason(expected_tag: str) -> str:
    return f'Expected tag "{expected_tag}" not found in final URL'


def _missing_tag_reason(
    link: ParsedLink,
    page: FetchedPage,
    expected_tag: Optional[str],
) -> Optional[str]:
    """Return why the affiliate tag is considered missing, or None if intact."""
    final_tag = _tag_from_url(page.final_url)
    original_tag = link.preserved.affiliate_tag

    if expected_tag:
        if final_tag and final_tag.lower() == expected_tag.lower():
            return None
        if f"tag={expected_tag.lower()}" in page.html.lower():
            return None
        if original_tag and original_tag.lower() == expected_tag.lower():
            return TAG_STRIPPED_REASON
        return _expected_tag_reason(expected_tag)

    if final_tag and AMAZON_TAG_PATTERN.match(final_tag):
        return None
    if original_tag and f"tag={original_tag.lower()}" in page.html.lower():
        return None
    if original_tag:
        return TAG_STRIPPED_REASON
    return NO_TAG_REASON


def rejudge_tag(link: ParsedLink, shared: PageVerdict, expected_tag: Optional[str]) -> PageVerdict:
    """
    Judge a verdict obtained through another link to the same product
    against this link's own affiliate tag.

    Availability belongs to the product, the tag belongs to the link. A product
    whose redirect stripped one tag strips every tag; otherwise the link's own
    tag is what reaches the product page.
    """
    if shared.status not in (LinkStatus.OK, LinkStatus.MISSING_TAG):
        return shared

    tag = link.preserved.affiliate_tag
    if shared.reason == TAG_STRIPPED_REASON:
        return PageVerdict(LinkStatus.MISSING_TAG, TAG_STRIPPED_REASON if tag else NO_TAG_REASON, shared.product_title)

    if expected_tag:
        intact = bool(tag) and tag.lower() == expected_tag.lower()
        return _purchasable(shared.product_title, None if intact else _expected_tag_reason(expected_tag))
    return _purchasable(shared.product_title, None if tag else NO_TAG_REASON)


def _walk_json(data: Any) -> Iterator[dict]:
    if isinstance(data, dict):
        yield data
        for value in data.values():
            yield from _walk_json(value)
    elif isinstance(data, list):
        for item in data:
            yield from _walk_json(item)


def structured_availability(tree: HTMLParser) -> Optional[bool]:
    """
    Read schema.org availability from JSON-LD or microdata.

    Returns:
        True if in stock, False if out of stock, None if no signal
    """
    values = []
    for script in tree.css('script[type="application/ld+json"]'):
        try:
            data = json.loads(script.text())
        except (json.JSONDecodeError, TypeError):
            continue
        for node in _walk_json(data):
            availability = node.get("availability")
            if isinstance(availability, str):
                values.append(availability)

    for node in tree.css('[itemprop="availability"]'):
        value = node.attributes.get("href") or node.attributes.get("content")
        if value:
            values.append(value)

    normalized = [v.rsplit("/", 1)[-1].lower() for v in values]
    if any(v in IN_STOCK_VALUES for v in normalized):
        return True
    if any(v in OUT_OF_STOCK_VALUES for v in normalized):
        return False
    return None


def has_cart_control(tree: HTMLParser) -> bool:
    if _exists(tree, GENERIC_CART_SELECTORS):
        return True
    for node in tree.css("button, input[type=submit], a[role=button]"):
        label = (node.text(strip=True) or node.attributes.get("value") or "").lower()
        if any(text in label for text in CART_BUTTON_TEXT):
            return True
    return False


def _is_generic_search(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    path = parts.path.lower()
    if any(marker in path for marker in GENERIC_SEARCH_PATHS):
        return True
    query = {k.lower() for k in parse_qs(parts.query)}
    return bool(query & set(GENERIC_SEARCH_PARAMS))


def _expected_host(link: ParsedLink) -> Optional[str]:
    """Host the link should land on, when it can be known."""
    if link.preserved.product_url:
        return _host(link.preserved.product_url)
    if link.network is Network.OTHER and not is_shortener(_host(link.url)):
        return _host(link.url)
    return None


def _same_site(host: Optional[str], expected: Optional[str]) -> bool:
    if not host or not expected:
        return False
    host = host.lower().removeprefix("www.")
    expected = expected.lower().removeprefix("www.")
    return host_matches(host, expected) or host_matches(expected, host)


def analyze_generic_page(link: ParsedLink, page: FetchedPage) -> PageVerdict:
    tree = HTMLParser(page.html)
    title_text = _text(tree, "title").lower()
    final_host = _host(page.final_url)

    original_host = _host(link.url)
    if is_shortener(original_host) and final_host == original_host:
        return PageVerdict(LinkStatus.REDIRECT, "Link shortener did not resolve")

    if any(phrase in title_text for phrase in ERROR_PAGE_PHRASES) or title_text.startswith("404"):
        return PageVerdict(LinkStatus.NOT_FOUND, "Error page - destination not found")

    expected_host = _expected_host(link)
    if expected_host and page.redirected and not _same_site(final_host, expected_host):
        return PageVerdict(LinkStatus.REDIRECT, f"Redirected to unrelated site {final_host}")

    expected_path = urlsplit(link.preserved.product_url or link.url).path
    if page.redirected and expected_path not in ("", "/"):
        if _is_generic_search(page.final_url) and not _is_generic_search(link.preserved.product_url or link.url):
            return PageVerdict(LinkStatus.SEARCH_REDIRECT, "Redirected to search results")
        if urlsplit(page.final_url).path in ("", "/"):
            return PageVerdict(LinkStatus.REDIRECT, "Redirected to the merchant homepage")

    title = _first_text(tree, ("h1", "title"))
    availability = structured_availability(tree)
    if availability is False:
        return PageVerdict(LinkStatus.OOS, "Listed as out of stock", title)

    cart = has_cart_control(tree)
    if availability and cart:
        return PageVerdict(LinkStatus.OK, "Product available - purchase control present", title)
    if availability is None and not cart and any(phrase in page.html.lower() for phrase in OOS_PHRASES):
        return PageVerdict(LinkStatus.OOS, "Product page shows no stock", title)

    return PageVerdict(LinkStatus.UNKNOWN, "Could not verify purchase signals", title)
