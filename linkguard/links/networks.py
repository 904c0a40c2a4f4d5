"""Commerce network classification and identifier extraction.

Each network gets one handler class owning its domain table, product
identifier rules and the tracking parameters worth preserving for link
regeneration. The registry is checked against the Network enum at import
time so a new network cannot be added without a handler.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from types import MappingProxyType
from typing import Optional
from urllib.parse import SplitResult, parse_qs, unquote, urlsplit, urlunsplit, urlencode

from linkguard.links.regions import host_matches
from linkguard.links.types import Network, ParsedLink, PreservedParams

logger = logging.getLogger(__name__)

ASIN_PATTERNS = (
    re.compile(r"/dp/([A-Z0-9]{10})(?:[/?#]|$)", re.IGNORECASE),
    re.compile(r"/gp/product/([A-Z0-9]{10})(?:[/?#]|$)", re.IGNORECASE),
    re.compile(r"/gp/aw/d/([A-Z0-9]{10})(?:[/?#]|$)", re.IGNORECASE),
    re.compile(r"/exec/obidos/ASIN/([A-Z0-9]{10})(?:[/?#]|$)", re.IGNORECASE),
    re.compile(r"/o/ASIN/([A-Z0-9]{10})(?:[/?#]|$)", re.IGNORECASE),
)
ASIN_QUERY_PATTERN = re.compile(r"[?&]asin=([A-Z0-9]{10})(?:&|$)", re.IGNORECASE)


def extract_asin(url: str) -> Optional[str]:
    """Extract the 10-character ASIN from any Amazon URL shape."""
    if not url:
        return None
    for pattern in ASIN_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1).upper()
    match = ASIN_QUERY_PATTERN.search(url)
    if match:
        return match.group(1).upper()
    return None


def _query_value(parts: SplitResult, name: str) -> Optional[str]:
    values = parse_qs(parts.query, keep_blank_values=False).get(name)
    if not values:
        return None
    return values[0].strip() or None


def _decode_destination(value: Optional[str]) -> Optional[str]:
    """Percent-decode a wrapped destination URL (handles double encoding)."""
    if not value:
        return None
    decoded = value
    for _ in range(2):
        if not re.match(r"^https?%3a", decoded, re.IGNORECASE):
            break
        decoded = unquote(decoded)
    return decoded


class NetworkHandler(ABC):
    """Classification rules for one commerce network."""

    network: Network
    domains: tuple[str, ...] = ()

    def matches(self, host: Optional[str]) -> bool:
        return any(host_matches(host, domain) for domain in self.domains)

    def extract_identifier(self, url: str, parts: SplitResult) -> Optional[str]:
        """Product identifier used as the verification cache key."""
        return None

    @abstractmethod
    def extract_preserved(self, url: str, parts: SplitResult) -> PreservedParams:
        """Tracking metadata needed to regenerate a link for this network."""


class AmazonHandler(NetworkHandler):
    network = Network.AMAZON
    domains = (
        "amazon.com",
        "amazon.co.uk",
        "amazon.ca",
        "amazon.de",
        "amazon.fr",
        "amazon.es",
        "amazon.it",
        "amazon.co.jp",
        "amazon.com.au",
        "amazon.in",
        "amazon.com.mx",
        "amazon.com.br",
        "amazon.nl",
        "amazon.se",
        "amazon.pl",
        "amazon.sg",
        "amzn.to",
        "amzn.com",
        "amzn.eu",
        "a.co",
    )

    def extract_identifier(self, url: str, parts: SplitResult) -> Optional[str]:
        return extract_asin(url)

    def extract_preserved(self, url: str, parts: SplitResult) -> PreservedParams:
        return PreservedParams(
            asin=extract_asin(url),
            marketplace_host=parts.hostname,
            affiliate_tag=_query_value(parts, "tag"),
        )


class BHPhotoHandler(NetworkHandler):
    network = Network.BHPHOTO
    domains = ("bhphotovideo.com", "bhphoto.com")

    _product_pattern = re.compile(r"/c/product/(\d+)-")

    def extract_identifier(self, url: str, parts: SplitResult) -> Optional[str]:
        match = self._product_pattern.search(parts.path)
        return match.group(1) if match else None

    def extract_preserved(self, url: str, parts: SplitResult) -> PreservedParams:
        # Product URL without our tracking params
        query = [
            (key, value)
            for key, values in parse_qs(parts.query, keep_blank_values=True).items()
            if key not in ("BI", "KBID")
            for value in values
        ]
        product_url = urlunsplit(
            (parts.scheme, parts.netloc, parts.path, urlencode(query), "")
        )
        return PreservedParams(product_url=product_url)


class ImpactHandler(NetworkHandler):
    """Impact links: https://TRACKING_DOMAIN/c/ACCOUNT_SID/CAMPAIGN_ID/AD_ID?u=..."""

    network = Network.IMPACT
    domains = ("sjv.io", "pxf.io", "pjatr.com", "pjtra.com", "pntrs.com", "pntrac.com", "evyy.net")

    def extract_preserved(self, url: str, parts: SplitResult) -> PreservedParams:
        segments = [s for s in parts.path.split("/") if s]
        campaign_id = ad_id = None
        if len(segments) >= 4 and segments[0] == "c":
            campaign_id, ad_id = segments[2], segments[3]
        return PreservedParams(
            tracking_domain=parts.hostname,
            campaign_id=campaign_id,
            ad_id=ad_id,
            product_url=_decode_destination(_query_value(parts, "u")),
        )


class CJHandler(NetworkHandler):
    """CJ links: /click-PID-ADVERTISER_ID?url=..."""

    network = Network.CJ
    domains = ("anrdoezrs.net", "dpbolvw.net", "jdoqocy.com", "kqzyfj.com", "tkqlhce.com")

    _click_pattern = re.compile(r"click-\d+-(\d+)")

    def extract_preserved(self, url: str, parts: SplitResult) -> PreservedParams:
        match = self._click_pattern.search(parts.path)
        return PreservedParams(
            advertiser_id=match.group(1) if match else None,
            product_url=_decode_destination(_query_value(parts, "url")),
        )


class RakutenHandler(NetworkHandler):
    network = Network.RAKUTEN
    domains = ("linksynergy.com",)

    def extract_preserved(self, url: str, parts: SplitResult) -> PreservedParams:
        return PreservedParams(
            merchant_id=_query_value(parts, "mid"),
            product_url=_decode_destination(_query_value(parts, "murl")),
        )


class ShareASaleHandler(NetworkHandler):
    network = Network.SHAREASALE
    domains = ("shareasale.com",)

    def extract_preserved(self, url: str, parts: SplitResult) -> PreservedParams:
        return PreservedParams(
            merchant_id=_query_value(parts, "m"),
            product_url=_decode_destination(_query_value(parts, "urllink")),
        )


class AwinHandler(NetworkHandler):
    network = Network.AWIN
    domains = ("awin1.com", "zenaps.com")

    def extract_preserved(self, url: str, parts: SplitResult) -> PreservedParams:
        return PreservedParams(
            merchant_id=_query_value(parts, "awinmid"),
            product_url=_decode_destination(_query_value(parts, "ued")),
        )


class OtherHandler(NetworkHandler):
    network = Network.OTHER

    def matches(self, host: Optional[str]) -> bool:
        return False

    def extract_preserved(self, url: str, parts: SplitResult) -> PreservedParams:
        return PreservedParams()


def _build_registry(*handlers: NetworkHandler) -> MappingProxyType:
    registry = {handler.network: handler for handler in handlers}
    missing = set(Network) - set(registry)
    if missing:
        raise RuntimeError(
            f"No classification handler for: {sorted(n.value for n in missing)}"
        )
    return MappingProxyType(registry)


HANDLERS = _build_registry(
    AmazonHandler(),
    BHPhotoHandler(),
    ImpactHandler(),
    CJHandler(),
    RakutenHandler(),
    ShareASaleHandler(),
    AwinHandler(),
    OtherHandler(),
)

# Detection order; OTHER is the fallback, never matched
DETECTION_ORDER = tuple(n for n in Network if n is not Network.OTHER)

# Immutable network -> domain table
NETWORK_DOMAINS = MappingProxyType({n: HANDLERS[n].domains for n in DETECTION_ORDER})


def _split(url: str) -> SplitResult:
    parts = urlsplit(url.strip())
    if not parts.netloc and "://" not in url:
        # Bare host like "amzn.to/abc"
        parts = urlsplit("//" + url.strip())
    return parts


def detect(url: str) -> Network:
    """Return the network a URL belongs to, or Network.OTHER. Never raises."""
    try:
        host = _split(url.lower()).hostname
    except Exception:
        return Network.OTHER
    for network in DETECTION_ORDER:
        if HANDLERS[network].matches(host):
            return network
    return Network.OTHER


def extract_identifier(url: str, network: Network) -> Optional[str]:
    """Network-specific product identifier (ASIN for Amazon), if any."""
    try:
        return HANDLERS[network].extract_identifier(url, _split(url))
    except ValueError:
        return None


def extract_preserved_params(url: str, network: Network) -> PreservedParams:
    """Network-specific tracking parameters preserved for regeneration."""
    try:
        return HANDLERS[network].extract_preserved(url, _split(url))
    except ValueError:
        logger.debug("Could not parse %s for preserved params", url)
        return PreservedParams()


def classify(url: str, raw_url: Optional[str] = None) -> ParsedLink:
    """Classify a normalized URL into a ParsedLink."""
    network = detect(url)
    return ParsedLink(
        url=url,
        network=network,
        identifier=extract_identifier(url, network),
        preserved=extract_preserved_params(url, network),
        raw_url=raw_url or url,
    )


def is_affiliate_link(url: str) -> bool:
    """True when the URL belongs to a supported network."""
    return detect(url) is not Network.OTHER
