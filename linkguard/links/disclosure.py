"""Affiliate disclosure detection for content bodies.

A disclosure is compliant when clear affiliate language appears above the
fold (the first 200 characters a viewer sees before "Show More"). Bodies with
no affiliate links need no disclosure.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Optional, Sequence

from linkguard.links.extractor import extract_links
from linkguard.links.types import Network, ParsedLink

logger = logging.getLogger(__name__)

ABOVE_FOLD_CHARS = 200
CONTEXT_CHARS = 50

# Specific language that tells the viewer a commission is earned
COMPLIANT_PHRASES = frozenset({
    "i earn from qualifying purchases",
    "i may receive a commission",
    "i earn a commission",
    "i may earn a commission",
    "commission earned",
    "affiliate links",
    "affiliate link",
    "paid promotion",
    "as an amazon associate",
    "amazon associate",
    "at no extra cost to you",
    "at no additional cost to you",
    "i receive a small commission",
    "earn a small commission",
    "contains affiliate",
    "paid partnership",
})

# Too vague to count on their own
WEAK_PHRASES = frozenset({
    "affiliate",
    "#ad",
    "#sponsored",
    "#sp",
    "#spon",
    "#collab",
    "partner",
})

# Unclassified links that still look monetized
AFFILIATE_HINT_PATTERNS = (
    re.compile(r"://(?:[^/]*\.)?(?:geni\.us|howl\.me|rstyle\.me|shrsl\.com|bit\.ly|linktr\.ee)/", re.IGNORECASE),
    re.compile(r"[?&](?:ref|aff|affiliate|partner|tracking)=", re.IGNORECASE),
)


class DisclosureStatus(str, Enum):
    COMPLIANT = "COMPLIANT"
    WEAK = "WEAK"
    MISSING = "MISSING"
    UNKNOWN = "UNKNOWN"


BURIED_ISSUE = "Disclosure found but buried below 'Show More'. Move it to the first 2 lines."
VAGUE_ISSUE = (
    "Disclosure language is too vague. "
    "Use clearer terms like 'I may earn a commission' or 'affiliate links'."
)
MISSING_ISSUE = "No affiliate disclosure found. Add one above the fold."

DISCLOSURE_TEMPLATES = MappingProxyType({
    "standard": (
        "Disclosure: As an Amazon Associate, I earn from qualifying purchases. "
        "If you click a link and buy something, I may receive a small commission "
        "at no extra cost to you."
    ),
    "short": (
        "Commission Earned: Links below are affiliate links that help support "
        "the channel at no extra cost to you."
    ),
})


@dataclass(frozen=True)
class DisclosureResult:
    """Disclosure verdict for one content body."""

    status: DisclosureStatus
    affiliate_link_count: int = 0
    text: Optional[str] = None
    position: Optional[int] = None
    issue: Optional[str] = None

    @property
    def has_affiliate_links(self) -> bool:
        return self.affiliate_link_count > 0

    @property
    def needs_attention(self) -> bool:
        return self.status in (DisclosureStatus.WEAK, DisclosureStatus.MISSING)


def is_monetized(link: ParsedLink) -> bool:
    """True for links that earn a commission and therefore need disclosing."""
    if link.network is not Network.OTHER:
        return True
    raw = link.raw_url or link.url
    return any(pattern.search(raw) for pattern in AFFILIATE_HINT_PATTERNS)


def _find_phrase(text: str, phrases: frozenset) -> Optional[tuple[str, int]]:
    """Earliest occurrence of any phrase; the longer phrase wins a tie."""
    lowered = text.lower()
    best = None
    for phrase in phrases:
        index = lowered.find(phrase)
        if index == -1:
            continue
        if best is None or (index, -len(phrase)) < (best[1], -len(best[0])):
            best = (phrase, index)
    return best


def _context(text: str, position: int, length: int) -> str:
    start = max(0, position - CONTEXT_CHARS)
    end = min(len(text), position + length + CONTEXT_CHARS)
    return text[start:end].strip()


def analyze_disclosure(text: Optional[str], links: Optional[Sequence[ParsedLink]] = None) -> DisclosureResult:
    """
    Judge whether a content body discloses its affiliate links.

    Args:
        text: Content body (e.g. a video description)
        links: Links already extracted from the body; extracted here when omitted

    Returns:
        DisclosureResult; UNKNOWN for an empty body
    """
    if not text or not text.strip():
        return DisclosureResult(DisclosureStatus.UNKNOWN)

    if links is None:
        links = extract_links(text)
    count = sum(1 for link in links if is_monetized(link))
    if count == 0:
        # Nothing to disclose
        return DisclosureResult(DisclosureStatus.COMPLIANT)

    found = _find_phrase(text[:ABOVE_FOLD_CHARS], COMPLIANT_PHRASES)
    if found:
        phrase, position = found
        return DisclosureResult(
            DisclosureStatus.COMPLIANT,
            affiliate_link_count=count,
            text=_context(text, position, len(phrase)),
            position=position,
        )

    for phrases, issue in ((COMPLIANT_PHRASES, BURIED_ISSUE), (WEAK_PHRASES, VAGUE_ISSUE)):
        found = _find_phrase(text, phrases)
        if found:
            phrase, position = found
            return DisclosureResult(
                DisclosureStatus.WEAK,
                affiliate_link_count=count,
                text=_context(text, position, len(phrase)),
                position=position,
                issue=issue,
            )

    logger.debug(f"No disclosure found for {count} affiliate links")
    return DisclosureResult(DisclosureStatus.MISSING, affiliate_link_count=count, issue=MISSING_ISSUE)
