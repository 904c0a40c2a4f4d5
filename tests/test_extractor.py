"""Tests for link extraction and normalization."""

from linkguard.links.extractor import extract_candidates, extract_links, link_stats, normalize_url
from linkguard.links.types import Network


class TestExtractCandidates:
    """Tests for raw URL token extraction."""

    def test_strips_trailing_punctuation(self):
        text = "Grab it here: https://amzn.to/3abcDEF. Or (https://example.com/page)!"
        raws = [c.raw for c in extract_candidates(text)]
        assert raws == ["https://amzn.to/3abcDEF", "https://example.com/page"]

    def test_empty_text(self):
        assert list(extract_candidates("")) == []
        assert list(extract_candidates(None)) == []

    def test_records_offsets(self):
        text = "a https://example.com b"
        candidates = list(extract_candidates(text))
        assert candidates[0].offset == 2

    def test_drops_email_tokens(self):
        text = (
            "Business: https://example.com/contact@shop.com. "
            "Gear: https://www.amazon.com/dp/B08N5WRWNW https://shop.example.com/item"
        )
        raws = [c.raw for c in extract_candidates(text)]
        assert raws == ["https://www.amazon.com/dp/B08N5WRWNW", "https://shop.example.com/item"]


class TestNormalizeUrl:
    """Tests for tracking-parameter stripping."""

    def test_removes_tracking_params(self):
        url = "https://www.amazon.com/dp/B08N5WRWNW?tag=chan-20&utm_source=yt&ref=abc&psc=1"
        assert normalize_url(url) == "https://www.amazon.com/dp/B08N5WRWNW?tag=chan-20"

    def test_removes_ref_path_segment(self):
        url = "https://www.amazon.com/dp/B08N5WRWNW/ref=sr_1_1?tag=chan-20"
        assert normalize_url(url) == "https://www.amazon.com/dp/B08N5WRWNW?tag=chan-20"

    def test_lowercases_scheme_and_host(self):
        assert normalize_url("HTTPS://WWW.Example.COM/Path") == "https://www.example.com/Path"

    def test_malformed_url_passes_through(self):
        url = "https://example.com:notaport/x"
        assert normalize_url(url) == url


class TestExtractLinks:
    """Tests for the full extraction pipeline."""

    def test_dedupes_by_normalized_url(self):
        text = (
            "https://www.amazon.com/dp/B08N5WRWNW?tag=chan-20&utm_source=a\n"
            "https://www.amazon.com/dp/B08N5WRWNW?tag=chan-20&utm_source=b\n"
        )
        links = extract_links(text)
        assert len(links) == 1
        assert links[0].network == Network.AMAZON
        assert links[0].identifier == "B08N5WRWNW"
        assert links[0].raw_url.endswith("utm_source=a")

    def test_preserves_order_of_first_appearance(self):
        text = "https://example.com/one https://www.bhphotovideo.com/c/product/123-REG/x.html https://example.com/one"
        links = extract_links(text)
        assert [link.network for link in links] == [Network.OTHER, Network.BHPHOTO]

    def test_no_links(self):
        assert extract_links("no links at all, just 12:30 timestamps") == []

    def test_email_like_links_are_not_extracted(self):
        links = extract_links("Email https://example.com/contact@shop.com or buy https://amzn.to/abc")
        assert [link.url for link in links] == ["https://amzn.to/abc"]

    def test_link_stats(self):
        links = extract_links(
            "https://amzn.to/abc https://example.com https://www.amazon.com/dp/B08N5WRWNW"
        )
        stats = link_stats(links)
        assert stats["total"] == 3
        assert stats["affiliate"] == 2
        assert stats["other"] == 1
        assert stats["with_identifier"] == 1
        assert stats["network_amazon"] == 2
