"""Remediation ordering for link issues."""

from collections import Counter, OrderedDict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from linkguard.links.types import (
    CONFIRMED_STATUSES,
    PROBLEM_STATUSES,
    ContentItem,
    HealthCheckResult,
    LinkStatus,
    Network,
    ParsedLink,
    utcnow,
)
from linkguard.revenue.impact import DEFAULT_SETTINGS, ImpactModel, RevenueSettings, impact_model, to_cents

# Tiebreak rank, higher is fixed first: uncredited > dead > soft redirects > availability
STATUS_PRIORITY = MappingProxyType({
    LinkStatus.MISSING_TAG: 7,
    LinkStatus.NOT_FOUND: 6,
    LinkStatus.SEARCH_REDIRECT: 5,
    LinkStatus.REDIRECT: 4,
    LinkStatus.OOS: 3,
    LinkStatus.OOS_THIRD_PARTY: 2,
    LinkStatus.UNKNOWN: 1,
    LinkStatus.OK: 0,
})

PROBLEM_STATUSES_ORDERED = tuple(sorted(PROBLEM_STATUSES, key=lambda s: -STATUS_PRIORITY[s]))


@dataclass
class Issue:
    """A problem link in the context of the content item that carries it."""

    url: str
    status: LinkStatus
    content_id: str
    view_count: int
    estimated_loss: Decimal
    network: Network = Network.OTHER
    content_title: Optional[str] = None
    age_months: float = 12.0
    reason: Optional[str] = None
    final_url: Optional[str] = None
    identifier: Optional[str] = None
    link_id: Optional[int] = None
    suggested_url: Optional[str] = None
    is_fixed: bool = False
    fixed_at: Optional[datetime] = None

    @property
    def is_confirmed(self) -> bool:
        return self.status in CONFIRMED_STATUSES


def build_issues(
    content_links: Iterable[tuple[ContentItem, list[ParsedLink]]],
    results: Mapping[str, HealthCheckResult],
    revenue_settings: RevenueSettings = DEFAULT_SETTINGS,
    model: Optional[ImpactModel] = None,
    conservative: bool = False,
    evergreen: bool = False,
    now: Optional[datetime] = None,
) -> list[Issue]:
    """
    Turn verification results into scored issues, one per (content item, problem link).

    Args:
        content_links: Each content item with the links extracted from it
        results: Health check results keyed by normalized URL
        revenue_settings: Revenue assumptions for scoring
        model: Impact model (defaults to the configured model)
        conservative: Use the damped severity table
        evergreen: Exempt content from long-tail damping
        now: Reference time for content age

    Returns:
        Unsorted issues; OK links and links without a result are skipped
    """
    model = model or impact_model
    now = now or utcnow()
    issues = []

    for item, links in content_links:
        age = item.age_months(now)
        for link in links:
            result = results.get(link.url)
            if result is None or result.status not in PROBLEM_STATUSES:
                continue
            loss = model.impact(
                item.view_count,
                result.status,
                revenue_settings,
                age_months=age,
                evergreen=evergreen,
                conservative=conservative,
            )
            issues.append(
                Issue(
                    url=link.url,
                    status=result.status,
                    content_id=item.content_id,
                    view_count=item.view_count,
                    estimated_loss=loss,
                    network=link.network,
                    content_title=item.title,
                    age_months=age,
                    reason=result.reason,
                    final_url=result.final_url,
                    identifier=link.identifier,
                )
            )
    return issues


def _sort_key(issue: Issue):
    return (
        -issue.estimated_loss,
        -issue.view_count,
        -STATUS_PRIORITY[issue.status],
        issue.content_id,
        issue.url,
    )


def prioritize(issues: Iterable[Issue], include_unknown: bool = False) -> list[Issue]:
    """
    Order open issues for remediation.

    Sorted by estimated loss, then view count, then status rank. UNKNOWN is
    only included on request; fixed issues are dropped.
    """
    allowed = PROBLEM_STATUSES if include_unknown else CONFIRMED_STATUSES
    open_issues = [i for i in issues if i.status in allowed and not i.is_fixed]
    return sorted(open_issues, key=_sort_key)


def fix_first(issues: Iterable[Issue], limit: int = 5) -> list[Issue]:
    """The top issues worth fixing first."""
    return prioritize(issues)[:limit]


def group_by_destination(issues: Iterable[Issue]) -> "OrderedDict[str, list[Issue]]":
    """Group by destination URL, largest combined loss first."""
    groups: dict[str, list[Issue]] = {}
    for issue in prioritize(issues, include_unknown=True):
        groups.setdefault(issue.url, []).append(issue)

    ordered = sorted(
        groups.items(),
        key=lambda kv: (-sum(i.estimated_loss for i in kv[1]), -len(kv[1]), kv[0]),
    )
    return OrderedDict(ordered)


def group_by_content(issues: Iterable[Issue]) -> "OrderedDict[str, list[Issue]]":
    """Each content item's issues in priority order."""
    groups: OrderedDict[str, list[Issue]] = OrderedDict()
    for issue in prioritize(issues, include_unknown=True):
        groups.setdefault(issue.content_id, []).append(issue)
    return groups


def issue_stats(issues: Iterable[Issue]) -> dict:
    """
    Aggregate counts for a set of issues.

    ``total_estimated_loss`` counts confirmed problems only; UNKNOWN loss is
    reported separately as unverified.
    """
    open_issues = [i for i in issues if i.status in PROBLEM_STATUSES and not i.is_fixed]
    counts = Counter(i.status for i in open_issues)
    confirmed = [i for i in open_issues if i.is_confirmed]

    return {
        "total": len(open_issues),
        "confirmed": len(confirmed),
        "by_status": {status.value: counts.get(status, 0) for status in PROBLEM_STATUSES_ORDERED},
        "total_estimated_loss": to_cents(sum((i.estimated_loss for i in confirmed), Decimal("0"))),
        "unverified_loss": to_cents(
            sum((i.estimated_loss for i in open_issues if not i.is_confirmed), Decimal("0"))
        ),
        "affected_items": len({i.content_id for i in confirmed}),
    }
