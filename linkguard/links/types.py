"""Shared link pipeline types."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class Network(str, Enum):
    """Commerce network a link belongs to."""

    AMAZON = "amazon"
    BHPHOTO = "bhphoto"
    IMPACT = "impact"
    CJ = "cj"
    RAKUTEN = "rakuten"
    SHAREASALE = "shareasale"
    AWIN = "awin"
    OTHER = "other"


class LinkStatus(str, Enum):
    """Terminal verification status of a link."""

    OK = "OK"
    NOT_FOUND = "NOT_FOUND"
    SEARCH_REDIRECT = "SEARCH_REDIRECT"
    OOS = "OOS"
    OOS_THIRD_PARTY = "OOS_THIRD_PARTY"
    MISSING_TAG = "MISSING_TAG"
    REDIRECT = "REDIRECT"
    UNKNOWN = "UNKNOWN"


# Everything that represents lost or at-risk revenue
PROBLEM_STATUSES = frozenset(LinkStatus) - {LinkStatus.OK}

# Problems that count toward confirmed/verified loss
CONFIRMED_STATUSES = PROBLEM_STATUSES - {LinkStatus.UNKNOWN}


@dataclass(frozen=True)
class CandidateLink:
    """Raw URL-like token pulled out of a text body."""

    raw: str
    offset: int


@dataclass(frozen=True)
class PreservedParams:
    """Network metadata captured at classification time for link regeneration."""

    tracking_domain: Optional[str] = None  # Impact
    campaign_id: Optional[str] = None  # Impact
    ad_id: Optional[str] = None  # Impact
    merchant_id: Optional[str] = None  # Rakuten, ShareASale, Awin
    advertiser_id: Optional[str] = None  # CJ
    asin: Optional[str] = None  # Amazon
    product_url: Optional[str] = None  # B&H and wrapped destinations
    marketplace_host: Optional[str] = None  # Amazon marketplace, e.g. www.amazon.co.uk
    affiliate_tag: Optional[str] = None  # Amazon tag= value on the original link


@dataclass(frozen=True)
class ParsedLink:
    """A normalized, classified link."""

    url: str
    network: Network
    identifier: Optional[str] = None
    preserved: PreservedParams = field(default_factory=PreservedParams)
    raw_url: Optional[str] = None

    @property
    def cache_key(self) -> Optional[str]:
        """Verification cache key, or None when the link has no product identifier."""
        if self.network is Network.OTHER or not self.identifier:
            return None
        return f"{self.network.value}:{self.identifier}"


@dataclass
class HealthCheckResult:
    """Outcome of verifying one link."""

    url: str
    status: LinkStatus
    reason: str
    http_status: Optional[int] = None
    final_url: Optional[str] = None
    severity: float = 0.0
    checked_at: datetime = field(default_factory=utcnow)
    from_cache: bool = False
    identifier: Optional[str] = None
    product_title: Optional[str] = None

    @property
    def is_problem(self) -> bool:
        return self.status in PROBLEM_STATUSES


@dataclass
class CacheEntry:
    """One cached verification outcome, keyed by product identifier."""

    identifier: str
    status: LinkStatus
    final_url: Optional[str]
    reason: Optional[str]
    http_status: Optional[int]
    last_checked: datetime
    hit_count: int = 0


@dataclass(frozen=True)
class ContentItem:
    """A content item as supplied by the upstream content collaborator."""

    content_id: str
    body: str
    view_count: int
    published_at: datetime
    title: Optional[str] = None

    def age_months(self, now: Optional[datetime] = None) -> float:
        """Content age in (30-day) months."""
        now = now or utcnow()
        published = self.published_at
        if published.tzinfo is None:
            published = published.replace(tzinfo=timezone.utc)
        days = max((now - published).total_seconds() / 86400, 0.0)
        return days / 30.0


@dataclass(frozen=True)
class AffiliateCredentials:
    """Per-user, per-network identifier set read from account settings."""

    amazon_tag: Optional[str] = None
    bhphoto_bi: Optional[str] = None
    bhphoto_kbid: Optional[str] = None
    impact_sid: Optional[str] = None
    cj_pid: Optional[str] = None
    rakuten_id: Optional[str] = None
    shareasale_id: Optional[str] = None
    awin_id: Optional[str] = None

    def get(self, name: str) -> Optional[str]:
        """Return a credential value, treating blank strings as missing."""
        value = getattr(self, name, None)
        if value is None or not str(value).strip():
            return None
        return str(value).strip()
