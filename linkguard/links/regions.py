"""Amazon marketplace lookup by host."""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Optional
from urllib.parse import urlsplit


@dataclass(frozen=True)
class Marketplace:
    """An Amazon storefront."""

    domain: str
    country_code: str
    name: str
    currency: str


# Longest domains first so amazon.com.au wins over amazon.com
MARKETPLACES = MappingProxyType({
    "amazon.com.au": Marketplace("amazon.com.au", "au", "Australia", "A$"),
    "amazon.com.br": Marketplace("amazon.com.br", "br", "Brazil", "R$"),
    "amazon.com.mx": Marketplace("amazon.com.mx", "mx", "Mexico", "MX$"),
    "amazon.co.uk": Marketplace("amazon.co.uk", "gb", "United Kingdom", "£"),
    "amazon.co.jp": Marketplace("amazon.co.jp", "jp", "Japan", "¥"),
    "amazon.ca": Marketplace("amazon.ca", "ca", "Canada", "CA$"),
    "amazon.de": Marketplace("amazon.de", "de", "Germany", "€"),
    "amazon.fr": Marketplace("amazon.fr", "fr", "France", "€"),
    "amazon.es": Marketplace("amazon.es", "es", "Spain", "€"),
    "amazon.it": Marketplace("amazon.it", "it", "Italy", "€"),
    "amazon.in": Marketplace("amazon.in", "in", "India", "₹"),
    "amazon.nl": Marketplace("amazon.nl", "nl", "Netherlands", "€"),
    "amazon.se": Marketplace("amazon.se", "se", "Sweden", "kr"),
    "amazon.pl": Marketplace("amazon.pl", "pl", "Poland", "zł"),
    "amazon.sg": Marketplace("amazon.sg", "sg", "Singapore", "S$"),
    "amazon.com": Marketplace("amazon.com", "us", "United States", "$"),
})

DEFAULT_MARKETPLACE = MARKETPLACES["amazon.com"]


def host_matches(host: Optional[str], domain: str) -> bool:
    """Exact label-suffix match: host is the domain or a subdomain of it."""
    if not host:
        return False
    host = host.lower().rstrip(".")
    return host == domain or host.endswith("." + domain)


def marketplace_for_host(host: Optional[str]) -> Optional[Marketplace]:
    """Return the marketplace a host belongs to, if it is an Amazon storefront."""
    for domain, marketplace in MARKETPLACES.items():
        if host_matches(host, domain):
            return marketplace
    return None


def country_code_for_url(url: str) -> str:
    """Proxy country code for a URL; defaults to the US storefront."""
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return DEFAULT_MARKETPLACE.country_code
    marketplace = marketplace_for_host(host)
    return marketplace.country_code if marketplace else DEFAULT_MARKETPLACE.country_code
