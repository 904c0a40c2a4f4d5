"""SQLAlchemy database models."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from linkguard.links.types import utcnow


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class ContentRecord(Base):
    """A content item (e.g. a video) whose body carries affiliate links."""

    __tablename__ = "content_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    external_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    view_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    published_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    evergreen: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    last_scanned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    links: Mapped[list["AffiliateLinkRecord"]] = relationship(
        "AffiliateLinkRecord", back_populates="content", cascade="all, delete-orphan"
    )


class AffiliateLinkRecord(Base):
    """One link found in a content item, with its latest verification outcome."""

    __tablename__ = "affiliate_links"
    __table_args__ = (UniqueConstraint("content_id", "url", name="uq_affiliate_link_content_url"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    content_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("content_items.id", ondelete="CASCADE"), nullable=False
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)  # Normalized
    raw_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    network: Mapped[str] = mapped_column(String(16), nullable=False)
    identifier: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    # Latest verification
    status: Mapped[str] = mapped_column(String(24), default="UNKNOWN", nullable=False, index=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    http_status: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    final_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_checked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    estimated_loss: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)

    # Remediation
    suggested_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_fixed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    fixed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    content: Mapped["ContentRecord"] = relationship("ContentRecord", back_populates="links")


class LinkCacheRecord(Base):
    """Verification cache entry keyed by product identifier."""

    __tablename__ = "link_cache"

    identifier: Mapped[str] = mapped_column(String(96), primary_key=True)
    status: Mapped[str] = mapped_column(String(24), nullable=False)
    final_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    http_status: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_checked: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    hit_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
