"""Link extraction from free-text content bodies."""

import logging
import re
from collections import Counter
from typing import Iterator
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from linkguard import metrics
from linkguard.errors import ParseError
from linkguard.links.networks import classify
from linkguard.links.types import CandidateLink, Network, ParsedLink

logger = logging.getLogger(__name__)

# Matches most common URL formats
URL_PATTERN = re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+", re.IGNORECASE)

TRAILING_PUNCTUATION = re.compile(r"[.,;:!?)]+$")
TIMESTAMP_PATTERN = re.compile(r"^\d{1,2}:\d{2}(:\d{2})?$")
EMAIL_PATTERN = re.compile(r"^mailto:|@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$", re.IGNORECASE)

# Exact tracking query parameters removed during normalization
TRACKING_PARAMS = frozenset({
    "ref",
    "ref_",
    "linkcode",
    "linkid",
    "psc",
    "smid",
    "spla",
    "sr",
    "th",
    "qid",
    "fbclid",
    "gclid",
    "dclid",
    "msclkid",
    "yclid",
    "igshid",
})

# Tracking parameter families removed by prefix
TRACKING_PREFIXES = ("utm_", "pd_rd_", "pf_rd_")

REF_SEGMENT = re.compile(r"/ref=[^/]*$", re.IGNORECASE)


def _is_tracking_param(name: str) -> bool:
    lowered = name.lower()
    return lowered in TRACKING_PARAMS or lowered.startswith(TRACKING_PREFIXES)


def extract_candidates(text: str) -> Iterator[CandidateLink]:
    """Yield URL-like tokens, with trailing punctuation, timestamps and emails removed."""
    if not text:
        return
    for match in URL_PATTERN.finditer(text):
        token = TRAILING_PUNCTUATION.sub("", match.group(0))
        if not token or TIMESTAMP_PATTERN.match(token) or EMAIL_PATTERN.search(token):
            continue
        yield CandidateLink(raw=token, offset=match.start())


def _normalize(url: str) -> str:
    try:
        parts = urlsplit(url)
        # Accessing port validates it
        parts.port
    except ValueError as e:
        raise ParseError(f"Malformed URL {url!r}: {e}") from e

    query = urlencode(
        [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if not _is_tracking_param(k)]
    )

    fragment = parts.fragment
    if "ref=" in fragment:
        fragment = ""

    path = parts.path
    while REF_SEGMENT.search(path):
        path = REF_SEGMENT.sub("", path)

    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, query, fragment))


def normalize_url(url: str) -> str:
    """
    Strip tracking parameters and ref-style fragments from a URL.

    Malformed URLs are returned unchanged so no candidate is ever dropped.
    """
    try:
        return _normalize(url)
    except ParseError as e:
        logger.debug(f"Passing through unnormalized link: {e}")
        return url


def extract_links(text: str) -> list[ParsedLink]:
    """
    Extract, normalize, deduplicate and classify every link in a text body.

    Args:
        text: Free-text content body (e.g. a video description)

    Returns:
        ParsedLinks in order of first appearance, unique by normalized URL
    """
    seen: set[str] = set()
    links: list[ParsedLink] = []

    for candidate in extract_candidates(text):
        normalized = normalize_url(candidate.raw)
        if normalized in seen:
            continue
        seen.add(normalized)

        link = classify(normalized, raw_url=candidate.raw)
        links.append(link)
        metrics.links_extracted_total.labels(network=link.network.value).inc()

    return links


def link_stats(links: list[ParsedLink]) -> dict[str, int]:
    """Summary counts for a set of extracted links."""
    by_network = Counter(link.network for link in links)
    return {
        "total": len(links),
        "affiliate": sum(c for n, c in by_network.items() if n is not Network.OTHER),
        "other": by_network.get(Network.OTHER, 0),
        "with_identifier": sum(1 for link in links if link.identifier),
        **{f"network_{n.value}": by_network.get(n, 0) for n in Network},
    }
