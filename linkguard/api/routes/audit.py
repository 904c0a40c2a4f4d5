"""Anonymous link audit endpoint."""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from linkguard.config import settings
from linkguard.links.types import ContentItem
from linkguard.revenue.impact import CONSERVATIVE_SETTINGS, RevenueSettings, settings_for_niche
from linkguard.verify.health_checker import HealthChecker
from linkguard.api.deps import get_health_checker
from linkguard.worker.tasks import audit_content

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/audit", tags=["audit"])


# Request/Response models
class ContentItemRequest(BaseModel):
    """One content item to audit."""
    content_id: str = Field(..., min_length=1, max_length=64)
    body: str = Field(..., max_length=20000)
    view_count: int = Field(0, ge=0)
    published_at: datetime
    title: Optional[str] = None


class AuditRequest(BaseModel):
    """Request model for an audit."""
    items: List[ContentItemRequest] = Field(..., min_length=1, max_length=50)
    niche: Optional[str] = None


class LinkResultResponse(BaseModel):
    """Verification outcome for one link."""
    url: str
    status: str
    reason: str
    final_url: Optional[str]
    http_status: Optional[int]
    from_cache: bool
    checked_at: datetime


class IssueResponse(BaseModel):
    """A problem link ready for remediation."""
    url: str
    status: str
    content_id: str
    content_title: Optional[str]
    view_count: int
    estimated_loss: float
    reason: Optional[str]


class DisclosureResponse(BaseModel):
    """Affiliate disclosure verdict for one content item."""
    content_id: str
    status: str
    affiliate_link_count: int
    text: Optional[str]
    issue: Optional[str]


class AuditResponse(BaseModel):
    """Response model for an audit."""
    links_found: int
    links_checked: int
    truncated: bool
    verification_unavailable: bool
    monthly_loss: float
    annual_loss: float
    risk_level: str
    stats: dict
    breakdown: dict
    issues: List[IssueResponse]
    results: List[LinkResultResponse]
    disclosures: List[DisclosureResponse]


@router.post("", response_model=AuditResponse)
async def run_audit(
    request: AuditRequest,
    checker: HealthChecker = Depends(get_health_checker),
):
    """
    Audit content bodies for broken affiliate links.

    Anonymous callers always get the conservative revenue profile and a
    capped number of verified links.
    """
    revenue_settings = CONSERVATIVE_SETTINGS
    if request.niche:
        preset = settings_for_niche(request.niche)
        # Niche AOV, but rates capped at the conservative profile
        revenue_settings = RevenueSettings(
            ctr_percent=min(preset.ctr_percent, CONSERVATIVE_SETTINGS.ctr_percent),
            conversion_percent=min(preset.conversion_percent, CONSERVATIVE_SETTINGS.conversion_percent),
            avg_order_value=preset.avg_order_value,
            commission_percent=CONSERVATIVE_SETTINGS.commission_percent,
            niche=preset.niche,
        )

    items = [
        ContentItem(
            content_id=item.content_id,
            body=item.body,
            view_count=item.view_count,
            published_at=item.published_at,
            title=item.title,
        )
        for item in request.items
    ]

    try:
        report = await audit_content(
            items,
            checker,
            revenue_settings=revenue_settings,
            conservative=True,
            max_links=settings.public_audit_max_links,
        )
    except Exception as e:
        logger.exception(f"Audit failed: {e}")
        raise HTTPException(status_code=500, detail="Audit failed")

    logger.info(
        f"Public audit: {report.links_checked} links checked, "
        f"{report.stats['confirmed']} issues, ${report.monthly_loss}/month"
    )

    return AuditResponse(
        links_found=report.links_found,
        links_checked=report.links_checked,
        truncated=report.truncated,
        verification_unavailable=report.verification_unavailable,
        monthly_loss=float(report.monthly_loss),
        annual_loss=float(report.annual_loss),
        risk_level=report.risk_level,
        stats={
            **report.stats,
            "total_estimated_loss": float(report.stats["total_estimated_loss"]),
            "unverified_loss": float(report.stats["unverified_loss"]),
        },
        breakdown={
            category: {
                "count": bucket["count"],
                "monthly_loss": float(bucket["monthly_loss"]),
                "annual_loss": float(bucket["annual_loss"]),
            }
            for category, bucket in report.breakdown.items()
        },
        issues=[
            IssueResponse(
                url=issue.url,
                status=issue.status.value,
                content_id=issue.content_id,
                content_title=issue.content_title,
                view_count=issue.view_count,
                estimated_loss=float(issue.estimated_loss),
                reason=issue.reason,
            )
            for issue in report.issues
        ],
        results=[
            LinkResultResponse(
                url=url,
                status=result.status.value,
                reason=result.reason,
                final_url=result.final_url,
                http_status=result.http_status,
                from_cache=result.from_cache,
                checked_at=result.checked_at,
            )
            for url, result in report.results.items()
        ],
        disclosures=[
            DisclosureResponse(
                content_id=content_id,
                status=disclosure.status.value,
                affiliate_link_count=disclosure.affiliate_link_count,
                text=disclosure.text,
                issue=disclosure.issue,
            )
            for content_id, disclosure in report.disclosures.items()
        ],
    )
