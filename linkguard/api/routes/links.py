"""Link remediation API endpoints."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from linkguard.api.deps import get_database
from linkguard.db.models import AffiliateLinkRecord
from linkguard.db.repository import IssueRepository
from linkguard.links.networks import classify
from linkguard.links.replacement import generate_replacement
from linkguard.links.types import AffiliateCredentials
from linkguard.revenue.prioritizer import group_by_destination, issue_stats, prioritize

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/links", tags=["links"])


# Request/Response models
class CredentialsModel(BaseModel):
    """Per-network affiliate identifiers."""
    amazon_tag: Optional[str] = None
    bhphoto_bi: Optional[str] = None
    bhphoto_kbid: Optional[str] = None
    impact_sid: Optional[str] = None
    cj_pid: Optional[str] = None
    rakuten_id: Optional[str] = None
    shareasale_id: Optional[str] = None
    awin_id: Optional[str] = None

    def to_credentials(self) -> AffiliateCredentials:
        return AffiliateCredentials(**self.model_dump())


class ReplacementRequest(BaseModel):
    """Request model for generating a replacement link."""
    original_url: str = Field(..., min_length=1)
    destination: Optional[str] = None  # Defaults to the link's own destination
    credentials: CredentialsModel


class ReplacementResponse(BaseModel):
    """Response model for a replacement link."""
    network: str
    ok: bool
    url: Optional[str]
    reason: str
    missing: List[str]


class SuggestionRequest(BaseModel):
    """Request model for storing a suggested replacement."""
    destination: Optional[str] = None
    credentials: CredentialsModel


class IssueResponse(BaseModel):
    """Response model for a stored issue."""
    link_id: Optional[int]
    url: str
    status: str
    content_id: str
    content_title: Optional[str]
    view_count: int
    estimated_loss: float
    reason: Optional[str]
    suggested_url: Optional[str]


class DestinationGroupResponse(BaseModel):
    """Issues sharing one destination."""
    url: str
    affected_items: int
    total_loss: float


class IssueListResponse(BaseModel):
    """Response model for the issue list."""
    stats: dict
    issues: List[IssueResponse]
    destinations: List[DestinationGroupResponse]


def _replacement(original_url: str, destination: Optional[str], credentials: CredentialsModel):
    link = classify(original_url)
    destination = destination or link.preserved.product_url or link.url
    return generate_replacement(link.network, destination, credentials.to_credentials(), link.preserved)


@router.post("/replacement", response_model=ReplacementResponse)
async def create_replacement(request: ReplacementRequest):
    """Generate a correctly tagged link for a known-good destination."""
    result = _replacement(request.original_url, request.destination, request.credentials)
    return ReplacementResponse(
        network=result.network.value,
        ok=result.ok,
        url=result.url,
        reason=result.reason,
        missing=list(result.missing),
    )


@router.get("/issues", response_model=IssueListResponse)
async def list_issues(
    include_unknown: bool = False,
    limit: int = 100,
    db: AsyncSession = Depends(get_database),
):
    """Open issues in remediation order."""
    repo = IssueRepository(db)
    issues = await repo.load_issues(include_unknown=include_unknown)
    ordered = prioritize(issues, include_unknown=include_unknown)[:limit]
    stats = issue_stats(issues)

    return IssueListResponse(
        stats={
            **stats,
            "total_estimated_loss": float(stats["total_estimated_loss"]),
            "unverified_loss": float(stats["unverified_loss"]),
        },
        issues=[
            IssueResponse(
                link_id=issue.link_id,
                url=issue.url,
                status=issue.status.value,
                content_id=issue.content_id,
                content_title=issue.content_title,
                view_count=issue.view_count,
                estimated_loss=float(issue.estimated_loss),
                reason=issue.reason,
                suggested_url=issue.suggested_url,
            )
            for issue in ordered
        ],
        destinations=[
            DestinationGroupResponse(
                url=url,
                affected_items=len({i.content_id for i in group}),
                total_loss=float(sum(i.estimated_loss for i in group)),
            )
            for url, group in group_by_destination(issues).items()
        ],
    )


@router.post("/{link_id}/fixed")
async def mark_link_fixed(link_id: int, db: AsyncSession = Depends(get_database)):
    """Mark a link as fixed."""
    repo = IssueRepository(db)
    if not await repo.mark_fixed(link_id):
        raise HTTPException(status_code=404, detail="Link not found")
    await db.commit()
    return {"status": "fixed", "link_id": link_id}


@router.post("/{link_id}/suggestion", response_model=ReplacementResponse)
async def suggest_replacement(
    link_id: int,
    request: SuggestionRequest,
    db: AsyncSession = Depends(get_database),
):
    """Generate a replacement for a stored link and save it as the suggestion."""
    record = await db.get(AffiliateLinkRecord, link_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Link not found")

    result = _replacement(record.url, request.destination, request.credentials)
    if result.ok:
        await IssueRepository(db).set_suggestion(link_id, result.url)
        await db.commit()
    else:
        logger.info(f"No suggestion for link {link_id}: {result.reason}")

    return ReplacementResponse(
        network=result.network.value,
        ok=result.ok,
        url=result.url,
        reason=result.reason,
        missing=list(result.missing),
    )
