"""Audit pipeline and background tasks.

One audit run is extract -> classify -> (cache <-> verify) -> score -> prioritize.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional
from urllib.parse import urlsplit

from linkguard import metrics
from linkguard.config import settings
from linkguard.db.repository import IssueRepository
from linkguard.db.session import AsyncSessionLocal
from linkguard.errors import VerificationUnavailableError
from linkguard.links.disclosure import DisclosureResult, analyze_disclosure
from linkguard.links.extractor import extract_links, link_stats
from linkguard.links.networks import classify
from linkguard.links.types import ContentItem, HealthCheckResult, Network, ParsedLink, utcnow
from linkguard.revenue.impact import DEFAULT_SETTINGS, ImpactModel, RevenueSettings, impact_model, risk_level
from linkguard.revenue.prioritizer import Issue, build_issues, issue_stats, prioritize
from linkguard.verify.cache import VerificationCache, build_cache_store
from linkguard.verify.health_checker import HealthChecker
from linkguard.verify.page_analyzer import is_shortener

logger = logging.getLogger(__name__)


@dataclass
class AuditReport:
    """Outcome of auditing a set of content items."""

    links_found: int
    links_checked: int
    results: dict[str, HealthCheckResult]
    issues: list[Issue]
    stats: dict
    link_stats: dict[str, int]
    monthly_loss: Decimal
    annual_loss: Decimal
    risk_level: str
    breakdown: dict[str, dict]
    disclosures: dict[str, DisclosureResult] = field(default_factory=dict)
    truncated: bool = False
    verification_unavailable: bool = False
    checked_at: datetime = field(default_factory=utcnow)


def should_verify(link: ParsedLink) -> bool:
    """Affiliate links, plus shortened links that may hide one."""
    if link.network is not Network.OTHER:
        return True
    try:
        return is_shortener(urlsplit(link.url).hostname)
    except ValueError:
        return False


async def audit_content(
    items: Iterable[ContentItem],
    checker: HealthChecker,
    revenue_settings: RevenueSettings = DEFAULT_SETTINGS,
    conservative: bool = False,
    max_links: Optional[int] = None,
    evergreen: bool = False,
    model: Optional[ImpactModel] = None,
    deadline: Optional[float] = None,
) -> AuditReport:
    """
    Run the full pipeline over a set of content items.

    Args:
        items: Content items supplied by the caller
        checker: Health checker to verify links with
        revenue_settings: Revenue assumptions for scoring
        conservative: Use the damped severity table
        max_links: Cap on unique links verified
        evergreen: Exempt content from long-tail damping
        model: Impact model (defaults to the configured model)
        deadline: Overall verification deadline in seconds

    Returns:
        AuditReport with prioritized issues and loss estimates
    """
    model = model or impact_model
    items = list(items)

    content_links = [(item, extract_links(item.body)) for item in items]

    unique: dict[str, ParsedLink] = {}
    for _, links in content_links:
        for link in links:
            if should_verify(link):
                unique.setdefault(link.url, link)
    links_found = len(unique)

    to_check = list(unique.values())
    truncated = max_links is not None and len(to_check) > max_links
    if truncated:
        logger.info(f"Capping audit at {max_links} of {len(to_check)} links")
        to_check = to_check[:max_links]
    checked_urls = {link.url for link in to_check}

    unavailable = False
    try:
        results = await checker.check_links(to_check, deadline=deadline)
    except VerificationUnavailableError as e:
        logger.error(f"Audit verification unavailable: {e}")
        results = e.results
        unavailable = True

    scoped = [(item, [l for l in links if l.url in checked_urls]) for item, links in content_links]
    issues = build_issues(
        scoped,
        results,
        revenue_settings=revenue_settings,
        model=model,
        conservative=conservative,
        evergreen=evergreen,
    )
    stats = issue_stats(issues)
    confirmed = [i for i in issues if i.is_confirmed]
    monthly = model.aggregate((i.estimated_loss for i in confirmed), stats["affected_items"])

    return AuditReport(
        links_found=links_found,
        links_checked=len(results),
        results=results,
        issues=prioritize(issues),
        stats=stats,
        link_stats=link_stats(list(unique.values())),
        monthly_loss=monthly,
        annual_loss=model.annualize(monthly),
        risk_level=risk_level(monthly),
        breakdown=model.leakage_breakdown((i.status, i.estimated_loss) for i in confirmed),
        disclosures={item.content_id: analyze_disclosure(item.body, links) for item, links in content_links},
        truncated=truncated,
        verification_unavailable=unavailable,
    )


class TaskRunner:
    """Runner for background tasks."""

    def __init__(self):
        self.cache: Optional[VerificationCache] = None
        self.checker: Optional[HealthChecker] = None

    async def initialize(self):
        """Initialize task runner."""
        self.cache = VerificationCache(build_cache_store())
        self.checker = HealthChecker(cache=self.cache)
        logger.info(f"Task runner initialized (cache backend: {settings.cache_backend})")

    async def close(self):
        """Clean up resources."""
        if self.checker:
            await self.checker.close()
        if self.cache:
            await self.cache.close()

    def _require_checker(self) -> HealthChecker:
        if self.checker is None:
            raise RuntimeError("Task runner not initialized")
        return self.checker

    async def sweep_cache(self) -> int:
        """Delete expired verification cache entries (scheduled)."""
        if self.cache is None:
            return 0
        try:
            deleted = await self.cache.sweep()
            metrics.scheduler_runs_total.labels(job_type="cache_sweep", status="success").inc()
            return deleted
        except Exception as e:
            logger.exception(f"Cache sweep failed: {e}")
            metrics.scheduler_runs_total.labels(job_type="cache_sweep", status="error").inc()
            return 0

    async def scan_content(
        self,
        items: Iterable[ContentItem],
        revenue_settings: RevenueSettings = DEFAULT_SETTINGS,
    ) -> AuditReport:
        """Audit content items and persist links, statuses and losses."""
        items = list(items)
        report = await audit_content(items, self._require_checker(), revenue_settings)
        losses = {(issue.content_id, issue.url): issue.estimated_loss for issue in report.issues}

        scope = set()
        async with AsyncSessionLocal() as db:
            repo = IssueRepository(db)
            for item in items:
                content = await repo.upsert_content(item)
                records = await repo.sync_links(
                    content, [l for l in extract_links(item.body) if should_verify(l)]
                )
                scope.update((item.content_id, record.url) for record in records)
            updated = await repo.record_results(report.results, losses, scope=scope)
            await db.commit()

        logger.info(
            f"Scanned {len(items)} content items: {report.links_checked} links checked, "
            f"{report.stats['confirmed']} issues, {updated} link rows updated"
        )
        return report

    async def run_link_guard(self, limit: Optional[int] = None) -> dict:
        """
        Re-verify the most recently checked links and refresh their losses (scheduled).

        Returns:
            Summary dict with counts
        """
        limit = limit or settings.link_guard_batch_size
        checker = self._require_checker()
        logger.info(f"Link guard: re-verifying up to {limit} links")

        try:
            async with AsyncSessionLocal() as db:
                repo = IssueRepository(db)
                records = await repo.recently_checked_links(limit)
                if not records:
                    logger.info("Link guard: no links to verify")
                    metrics.scheduler_runs_total.labels(job_type="link_guard", status="success").inc()
                    return {"checked": 0, "issues": 0}

                by_content: dict[str, tuple[ContentItem, list[ParsedLink]]] = {}
                for record in records:
                    content = record.content
                    item, links = by_content.setdefault(
                        content.external_id,
                        (
                            ContentItem(
                                content_id=content.external_id,
                                body="",
                                view_count=content.view_count,
                                published_at=content.published_at,
                                title=content.title,
                            ),
                            [],
                        ),
                    )
                    links.append(classify(record.url, raw_url=record.raw_url))

                all_links = [link for _, links in by_content.values() for link in links]
                try:
                    results = await checker.check_links(all_links)
                except VerificationUnavailableError as e:
                    # Keep last known statuses rather than overwrite with UNKNOWN
                    logger.error(f"Link guard aborted: {e}")
                    metrics.scheduler_runs_total.labels(job_type="link_guard", status="unavailable").inc()
                    return {"checked": 0, "issues": 0, "error": str(e)}

                issues = build_issues(by_content.values(), results)
                losses = {(i.content_id, i.url): i.estimated_loss for i in issues}
                scope = {(record.content.external_id, record.url) for record in records}
                updated = await repo.record_results(results, losses, scope=scope)
                await db.commit()

            confirmed = sum(1 for i in issues if i.is_confirmed)
            logger.info(f"Link guard complete: {updated} links updated, {confirmed} confirmed issues")
            metrics.scheduler_runs_total.labels(job_type="link_guard", status="success").inc()
            return {"checked": len(results), "issues": confirmed}

        except Exception as e:
            logger.exception(f"Link guard failed: {e}")
            metrics.scheduler_runs_total.labels(job_type="link_guard", status="error").inc()
            return {"checked": 0, "issues": 0, "error": str(e)}


# Global task runner instance
task_runner = TaskRunner()
