"""Replacement affiliate link generation.

Re-applies a network's link template to a known-good destination using the
caller's credentials and the parameters preserved from the original link.
Generation either fully succeeds or refuses with the list of missing values.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Optional
from urllib.parse import quote, urlsplit, urlunsplit

from linkguard.errors import CredentialMissingError
from linkguard.links.networks import extract_asin
from linkguard.links.regions import DEFAULT_MARKETPLACE, marketplace_for_host
from linkguard.links.types import AffiliateCredentials, Network, PreservedParams

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReplacementResult:
    """Either a generated URL or an explicit refusal."""

    network: Network
    url: Optional[str] = None
    reason: str = ""
    missing: tuple[str, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.url is not None


def _encode(url: str) -> str:
    return quote(url, safe="")


class TemplateHandler(ABC):
    """Link template for one network."""

    network: Network
    required_credentials: tuple[str, ...] = ()

    def _credentials(self, credentials: AffiliateCredentials) -> dict[str, str]:
        missing = [name for name in self.required_credentials if not credentials.get(name)]
        if missing:
            raise CredentialMissingError(missing)
        return {name: credentials.get(name) for name in self.required_credentials}

    @staticmethod
    def _require(**values: Optional[str]) -> dict[str, str]:
        missing = [name for name, value in values.items() if not value]
        if missing:
            raise CredentialMissingError(missing)
        return values

    @abstractmethod
    def render(
        self,
        destination: str,
        credentials: AffiliateCredentials,
        preserved: PreservedParams,
    ) -> str:
        """Render the link or raise CredentialMissingError."""


class AmazonTemplate(TemplateHandler):
    network = Network.AMAZON
    required_credentials = ("amazon_tag",)

    def render(self, destination, credentials, preserved):
        creds = self._credentials(credentials)
        values = self._require(asin=preserved.asin or extract_asin(destination))

        # Keep the storefront of the original link; short links fall back to .com
        marketplace = marketplace_for_host(preserved.marketplace_host) or DEFAULT_MARKETPLACE
        return (
            f"https://www.{marketplace.domain}/dp/{values['asin']}"
            f"?tag={quote(creds['amazon_tag'], safe='')}"
        )


class BHPhotoTemplate(TemplateHandler):
    network = Network.BHPHOTO
    required_credentials = ("bhphoto_bi", "bhphoto_kbid")

    def render(self, destination, credentials, preserved):
        creds = self._credentials(credentials)
        values = self._require(product_url=preserved.product_url or destination)
        parts = urlsplit(values["product_url"])
        base = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
        return (
            f"{base}?BI={quote(creds['bhphoto_bi'], safe='')}"
            f"&KBID={quote(creds['bhphoto_kbid'], safe='')}"
        )


class ImpactTemplate(TemplateHandler):
    network = Network.IMPACT
    required_credentials = ("impact_sid",)

    def render(self, destination, credentials, preserved):
        creds = self._credentials(credentials)
        values = self._require(
            tracking_domain=preserved.tracking_domain,
            campaign_id=preserved.campaign_id,
            ad_id=preserved.ad_id,
        )
        return (
            f"https://{values['tracking_domain']}/c/{quote(creds['impact_sid'], safe='')}"
            f"/{values['campaign_id']}/{values['ad_id']}?u={_encode(destination)}"
        )


class CJTemplate(TemplateHandler):
    network = Network.CJ
    required_credentials = ("cj_pid",)

    def render(self, destination, credentials, preserved):
        creds = self._credentials(credentials)
        values = self._require(advertiser_id=preserved.advertiser_id)
        return (
            f"https://www.anrdoezrs.net/click-{quote(creds['cj_pid'], safe='')}"
            f"-{values['advertiser_id']}?url={_encode(destination)}"
        )


class RakutenTemplate(TemplateHandler):
    network = Network.RAKUTEN
    required_credentials = ("rakuten_id",)

    def render(self, destination, credentials, preserved):
        creds = self._credentials(credentials)
        values = self._require(merchant_id=preserved.merchant_id)
        return (
            f"https://click.linksynergy.com/deeplink?id={quote(creds['rakuten_id'], safe='')}"
            f"&mid={quote(values['merchant_id'], safe='')}&murl={_encode(destination)}"
        )


class ShareASaleTemplate(TemplateHandler):
    network = Network.SHAREASALE
    required_credentials = ("shareasale_id",)

    def render(self, destination, credentials, preserved):
        creds = self._credentials(credentials)
        values = self._require(merchant_id=preserved.merchant_id)
        return (
            f"https://www.shareasale.com/r.cfm?b=0&u={quote(creds['shareasale_id'], safe='')}"
            f"&m={quote(values['merchant_id'], safe='')}&urllink={_encode(destination)}"
        )


class AwinTemplate(TemplateHandler):
    network = Network.AWIN
    required_credentials = ("awin_id",)

    def render(self, destination, credentials, preserved):
        creds = self._credentials(credentials)
        values = self._require(merchant_id=preserved.merchant_id)
        return (
            f"https://www.awin1.com/cread.php?awinmid={quote(values['merchant_id'], safe='')}"
            f"&awinaffid={quote(creds['awin_id'], safe='')}&ued={_encode(destination)}"
        )


class OtherTemplate(TemplateHandler):
    network = Network.OTHER

    def render(self, destination, credentials, preserved):
        raise CredentialMissingError(["network_template"])


def _build_registry(*handlers: TemplateHandler) -> MappingProxyType:
    registry = {handler.network: handler for handler in handlers}
    missing = set(Network) - set(registry)
    if missing:
        raise RuntimeError(f"No link template for: {sorted(n.value for n in missing)}")
    return MappingProxyType(registry)


TEMPLATES = _build_registry(
    AmazonTemplate(),
    BHPhotoTemplate(),
    ImpactTemplate(),
    CJTemplate(),
    RakutenTemplate(),
    ShareASaleTemplate(),
    AwinTemplate(),
    OtherTemplate(),
)


def can_generate(network: Network, credentials: AffiliateCredentials) -> bool:
    """True when the caller has every credential the network template needs."""
    if network is Network.OTHER:
        return False
    return all(credentials.get(name) for name in TEMPLATES[network].required_credentials)


def generate_replacement(
    network: Network,
    destination: str,
    credentials: AffiliateCredentials,
    preserved: Optional[PreservedParams] = None,
) -> ReplacementResult:
    """
    Build a correctly tagged link to a verified-good destination.

    Args:
        network: Network of the original link
        destination: Verified-good destination URL
        credentials: Caller's per-network identifiers
        preserved: Parameters captured from the original link

    Returns:
        ReplacementResult with either a URL or the missing values
    """
    preserved = preserved or PreservedParams()

    if not destination:
        return ReplacementResult(network=network, reason="Cannot generate: no destination", missing=("destination",))

    try:
        url = TEMPLATES[network].render(destination, credentials, preserved)
    except CredentialMissingError as e:
        logger.debug(f"Refusing {network.value} replacement: {e}")
        return ReplacementResult(
            network=network,
            reason=f"Cannot generate: {e}",
            missing=tuple(e.missing),
        )

    return ReplacementResult(network=network, url=url, reason="Generated")
