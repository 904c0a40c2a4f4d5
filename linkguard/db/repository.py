"""Persistence for link records, issues and the SQL-backed verification cache."""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Collection, Iterable, Mapping, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from linkguard.db.models import AffiliateLinkRecord, ContentRecord, LinkCacheRecord
from linkguard.db.session import AsyncSessionLocal
from linkguard.errors import CacheUnavailableError
from linkguard.links.types import (
    CONFIRMED_STATUSES,
    PROBLEM_STATUSES,
    CacheEntry,
    ContentItem,
    HealthCheckResult,
    LinkStatus,
    Network,
    ParsedLink,
    utcnow,
)
from linkguard.revenue.prioritizer import Issue
from linkguard.verify.cache import CacheStore

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlCacheStore(CacheStore):
    """Verification cache entries in the ``link_cache`` table."""

    def __init__(self, session_factory: Callable[[], AsyncSession] = AsyncSessionLocal):
        self.session_factory = session_factory

    def _insert(self, db: AsyncSession):
        dialect = db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(LinkCacheRecord)
        if dialect == "sqlite":
            return sqlite.insert(LinkCacheRecord)
        return None

    async def get(self, identifier: str) -> Optional[CacheEntry]:
        try:
            async with self.session_factory() as db:
                record = await db.get(LinkCacheRecord, identifier)
        except SQLAlchemyError as e:
            raise CacheUnavailableError(f"Cache read failed: {e}") from e
        if record is None:
            return None
        try:
            status = LinkStatus(record.status)
        except ValueError as e:
            raise CacheUnavailableError(f"Corrupt cache entry {identifier}: {e}") from e
        return CacheEntry(
            identifier=record.identifier,
            status=status,
            final_url=record.final_url,
            reason=record.reason,
            http_status=record.http_status,
            last_checked=_aware(record.last_checked),
            hit_count=record.hit_count,
        )

    async def upsert(self, entry: CacheEntry) -> None:
        values = {
            "identifier": entry.identifier,
            "status": entry.status.value,
            "final_url": entry.final_url,
            "reason": entry.reason,
            "http_status": entry.http_status,
            "last_checked": entry.last_checked,
        }
        try:
            async with self.session_factory() as db:
                stmt = self._insert(db)
                if stmt is not None:
                    stmt = stmt.values(hit_count=0, **values)
                    stmt = stmt.on_conflict_do_update(
                        index_elements=[LinkCacheRecord.identifier],
                        set_={k: v for k, v in values.items() if k != "identifier"},
                    )
                    await db.execute(stmt)
                else:
                    # No native upsert for this dialect
                    await db.merge(LinkCacheRecord(**values))
                await db.commit()
        except SQLAlchemyError as e:
            raise CacheUnavailableError(f"Cache write failed: {e}") from e

    async def increment_hits(self, identifier: str) -> None:
        try:
            async with self.session_factory() as db:
                await db.execute(
                    update(LinkCacheRecord)
                    .where(LinkCacheRecord.identifier == identifier)
                    .values(hit_count=LinkCacheRecord.hit_count + 1)
                )
                await db.commit()
        except SQLAlchemyError as e:
            raise CacheUnavailableError(f"Cache hit increment failed: {e}") from e

    async def delete_older_than(self, cutoff: datetime) -> int:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    delete(LinkCacheRecord).where(LinkCacheRecord.last_checked < cutoff)
                )
                await db.commit()
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise CacheUnavailableError(f"Cache sweep failed: {e}") from e

    async def stats(self, cutoff: datetime) -> dict[str, int]:
        try:
            async with self.session_factory() as db:
                total, hits = (
                    await db.execute(
                        select(func.count(), func.coalesce(func.sum(LinkCacheRecord.hit_count), 0)).select_from(
                            LinkCacheRecord
                        )
                    )
                ).one()
                valid = await db.scalar(
                    select(func.count())
                    .select_from(LinkCacheRecord)
                    .where(LinkCacheRecord.last_checked >= cutoff)
                )
        except SQLAlchemyError as e:
            raise CacheUnavailableError(f"Cache stats failed: {e}") from e
        return {"total_entries": int(total), "valid_entries": int(valid or 0), "total_hits": int(hits)}


class IssueRepository:
    """Reads and writes content, links and remediation state."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def upsert_content(self, item: ContentItem, evergreen: bool = False) -> ContentRecord:
        """Insert a content item or refresh its metadata."""
        record = await self.db.scalar(
            select(ContentRecord).where(ContentRecord.external_id == item.content_id)
        )
        if record is None:
            record = ContentRecord(
                external_id=item.content_id,
                published_at=item.published_at,
                evergreen=evergreen,
            )
            self.db.add(record)
        record.title = item.title
        record.view_count = item.view_count
        record.last_scanned_at = utcnow()
        await self.db.flush()
        return record

    async def sync_links(self, content: ContentRecord, links: Iterable[ParsedLink]) -> list[AffiliateLinkRecord]:
        """Make sure every extracted link has a row for this content item."""
        existing = {
            record.url: record
            for record in await self.db.scalars(
                select(AffiliateLinkRecord).where(AffiliateLinkRecord.content_id == content.id)
            )
        }
        records = []
        for link in links:
            record = existing.get(link.url)
            if record is None:
                record = AffiliateLinkRecord(
                    content_id=content.id,
                    url=link.url,
                    raw_url=link.raw_url,
                    network=link.network.value,
                    identifier=link.identifier,
                )
                self.db.add(record)
                existing[link.url] = record
            records.append(record)
        await self.db.flush()
        return records

    async def record_results(
        self,
        results: Mapping[str, HealthCheckResult],
        losses: Optional[Mapping[tuple[str, str], Decimal]] = None,
        scope: Optional[Collection[tuple[str, str]]] = None,
    ) -> int:
        """
        Store verification outcomes on matching link rows.

        A stored loss is only replaced by a loss computed for that row, or
        cleared when the link is healthy again.

        Args:
            results: Health check results keyed by normalized URL
            losses: Estimated monthly loss keyed by (content external id, url)
            scope: (content external id, url) rows to update; all rows with a
                matching url when omitted

        Returns:
            Number of link rows updated
        """
        if not results:
            return 0
        losses = losses or {}
        rows = await self.db.execute(
            select(AffiliateLinkRecord, ContentRecord.external_id)
            .join(ContentRecord, AffiliateLinkRecord.content_id == ContentRecord.id)
            .where(AffiliateLinkRecord.url.in_(list(results)))
        )
        updated = 0
        for record, external_id in rows.all():
            key = (external_id, record.url)
            if scope is not None and key not in scope:
                continue
            result = results[record.url]
            record.status = result.status.value
            record.reason = result.reason
            record.http_status = result.http_status
            record.final_url = result.final_url
            record.last_checked_at = result.checked_at
            if key in losses:
                record.estimated_loss = losses[key]
            elif not result.is_problem:
                record.estimated_loss = Decimal("0.00")
            if record.is_fixed and result.status in CONFIRMED_STATUSES:
                # Came back broken after being marked fixed
                record.is_fixed = False
                record.fixed_at = None
            updated += 1
        await self.db.flush()
        return updated

    async def recently_checked_links(self, limit: int) -> list[AffiliateLinkRecord]:
        """Most recently checked links, with their content loaded."""
        result = await self.db.scalars(
            select(AffiliateLinkRecord)
            .options(selectinload(AffiliateLinkRecord.content))
            .where(AffiliateLinkRecord.last_checked_at.is_not(None))
            .order_by(AffiliateLinkRecord.last_checked_at.desc())
            .limit(limit)
        )
        return list(result)

    async def load_issues(self, include_unknown: bool = False) -> list[Issue]:
        """Open problem links as Issues (unsorted)."""
        statuses = PROBLEM_STATUSES if include_unknown else CONFIRMED_STATUSES
        rows = await self.db.execute(
            select(AffiliateLinkRecord, ContentRecord)
            .join(ContentRecord, AffiliateLinkRecord.content_id == ContentRecord.id)
            .where(
                AffiliateLinkRecord.status.in_([s.value for s in statuses]),
                AffiliateLinkRecord.is_fixed.is_(False),
            )
        )
        now = utcnow()
        issues = []
        for record, content in rows.all():
            item = ContentItem(
                content_id=content.external_id,
                body="",
                view_count=content.view_count,
                published_at=_aware(content.published_at),
                title=content.title,
            )
            issues.append(
                Issue(
                    url=record.url,
                    status=LinkStatus(record.status),
                    content_id=content.external_id,
                    view_count=content.view_count,
                    estimated_loss=Decimal(record.estimated_loss or 0),
                    network=Network(record.network),
                    content_title=content.title,
                    age_months=item.age_months(now),
                    reason=record.reason,
                    final_url=record.final_url,
                    identifier=record.identifier,
                    link_id=record.id,
                    suggested_url=record.suggested_url,
                )
            )
        return issues

    async def mark_fixed(self, link_id: int, fixed_at: Optional[datetime] = None) -> bool:
        record = await self.db.get(AffiliateLinkRecord, link_id)
        if record is None:
            return False
        record.is_fixed = True
        record.fixed_at = fixed_at or utcnow()
        await self.db.flush()
        logger.info(f"Marked link {link_id} as fixed")
        return True

    async def set_suggestion(self, link_id: int, suggested_url: str) -> bool:
        record = await self.db.get(AffiliateLinkRecord, link_id)
        if record is None:
            return False
        record.suggested_url = suggested_url
        await self.db.flush()
        return True
