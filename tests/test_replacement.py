"""Tests for replacement link generation."""

from urllib.parse import parse_qs, urlsplit

from linkguard.links.networks import classify
from linkguard.links.replacement import can_generate, generate_replacement
from linkguard.links.types import AffiliateCredentials, Network, PreservedParams


def test_amazon_replacement_keeps_marketplace():
    link = classify("https://www.amazon.co.uk/dp/B08N5WRWNW?tag=old-21")
    result = generate_replacement(
        Network.AMAZON,
        "https://www.amazon.co.uk/dp/B08N5WRWNW",
        AffiliateCredentials(amazon_tag="mine-21"),
        link.preserved,
    )
    assert result.ok
    assert result.url == "https://www.amazon.co.uk/dp/B08N5WRWNW?tag=mine-21"


def test_amazon_replacement_for_short_link_destination():
    result = generate_replacement(
        Network.AMAZON,
        "https://www.amazon.com/dp/B000000001",
        AffiliateCredentials(amazon_tag="mine-20"),
        PreservedParams(marketplace_host="amzn.to"),
    )
    assert result.url == "https://www.amazon.com/dp/B000000001?tag=mine-20"


def test_missing_credential_refuses():
    result = generate_replacement(
        Network.AMAZON,
        "https://www.amazon.com/dp/B08N5WRWNW",
        AffiliateCredentials(amazon_tag="  "),
    )
    assert not result.ok
    assert result.url is None
    assert result.missing == ("amazon_tag",)


def test_impact_requires_preserved_params():
    result = generate_replacement(
        Network.IMPACT,
        "https://shop.com/item",
        AffiliateCredentials(impact_sid="999"),
        PreservedParams(tracking_domain="brand.sjv.io"),
    )
    assert not result.ok
    assert set(result.missing) == {"campaign_id", "ad_id"}


def test_impact_replacement_encodes_destination():
    link = classify("https://brand.sjv.io/c/111/222/333?u=https%3A%2F%2Fshop.com%2Fold")
    result = generate_replacement(
        Network.IMPACT,
        "https://shop.com/new?color=red",
        AffiliateCredentials(impact_sid="999"),
        link.preserved,
    )
    assert result.ok
    parts = urlsplit(result.url)
    assert parts.hostname == "brand.sjv.io"
    assert parts.path == "/c/999/222/333"
    assert parse_qs(parts.query)["u"] == ["https://shop.com/new?color=red"]


def test_bhphoto_replacement():
    link = classify("https://www.bhphotovideo.com/c/product/1234-REG/item.html?BI=old&KBID=old")
    result = generate_replacement(
        Network.BHPHOTO,
        link.preserved.product_url,
        AffiliateCredentials(bhphoto_bi="10", bhphoto_kbid="20"),
        link.preserved,
    )
    assert result.url == "https://www.bhphotovideo.com/c/product/1234-REG/item.html?BI=10&KBID=20"


def test_other_network_always_refuses():
    result = generate_replacement(Network.OTHER, "https://example.com", AffiliateCredentials(amazon_tag="x"))
    assert not result.ok
    assert not can_generate(Network.OTHER, AffiliateCredentials(amazon_tag="x"))


def test_empty_destination_refuses():
    result = generate_replacement(Network.AMAZON, "", AffiliateCredentials(amazon_tag="x"))
    assert result.missing == ("destination",)


def test_can_generate():
    creds = AffiliateCredentials(rakuten_id="r1")
    assert can_generate(Network.RAKUTEN, creds)
    assert not can_generate(Network.AWIN, creds)
