"""Lead SQLAlchemy model for storing discovered businesses."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Float, Index, String, Text, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from . import Base
from ..clock import ensure_utc, utcnow


class UTCDateTime(TypeDecorator):
    """DateTime column that stores naive UTC and always returns aware UTC.

    SQLite drops tzinfo on the way in and out; this keeps comparisons in
    Python code between aware datetimes only.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        return ensure_utc(value).replace(tzinfo=None)

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class LeadStatus(str, Enum):
    """Status of a lead in the outreach lifecycle.

    Ordered: a lead only ever moves forward through these values.
    """

    NEW = "new"
    CONTACTED = "contacted"
    RESPONDED = "responded"
    CONVERTED = "converted"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = [
    LeadStatus.NEW,
    LeadStatus.CONTACTED,
    LeadStatus.RESPONDED,
    LeadStatus.CONVERTED,
]


class Lead(Base):
    """SQLAlchemy model representing a discovered prospective business.

    Attributes:
        id: Unique identifier for the lead (UUID).
        dedup_key: Stable identity derived from provider id and location.
        provider_id: Discovery provider's identifier (e.g. Google place_id).
        name: Business name.
        industry: Industry keyword the business was discovered under.
        city: City the business was discovered in.
        state: Two-letter state code.
        address: Full street address.
        phone: Primary phone number.
        email: Contact email, when known.
        website: Business website URL.
        rating: Star rating (0.0-5.0).
        review_count: Number of reviews.
        has_website: Whether the business already has a website.
        status: Current lifecycle status.
        delivery_attempts: Failed outreach attempts so far.
        next_attempt_at: Earliest time a failed lead is retried.
        undeliverable: Whether the email address was permanently rejected.
        tested_at: When the lead went through the testing-phase pipeline.
        created_at: When the lead was first sighted.
        contacted_at: When the first outreach email was sent.
        updated_at: Timestamp when lead was last updated.
    """

    __tablename__ = "leads"
    __table_args__ = (
        # Serves "oldest uncontacted first"
        Index("ix_leads_status_created_at", "status", "created_at"),
    )

    # Primary key
    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )

    # Deduplication key
    dedup_key: Mapped[str] = mapped_column(
        String(512),
        nullable=False,
        unique=True,
        index=True,
        comment="Provider id plus location, lower-cased"
    )
    provider_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Business descriptors
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    industry: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[str] = mapped_column(String(20), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    website: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rating: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment="Star rating (0.0-5.0)"
    )
    review_count: Mapped[Optional[int]] = mapped_column(nullable=True)
    has_website: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Lifecycle
    status: Mapped[LeadStatus] = mapped_column(
        SQLEnum(LeadStatus, name="lead_status"),
        nullable=False,
        default=LeadStatus.NEW,
        index=True
    )
    delivery_attempts: Mapped[int] = mapped_column(nullable=False, default=0)
    next_attempt_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    undeliverable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tested_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        index=True
    )
    contacted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<Lead(dedup_key={self.dedup_key!r}, name={self.name!r}, status={self.status})>"

    @property
    def is_uncontacted(self) -> bool:
        return self.status == LeadStatus.NEW

    def to_dict(self) -> dict[str, Any]:
        """Convert lead to dictionary representation.

        Returns:
            Dictionary with all lead fields.
        """
        return {
            "id": self.id,
            "dedup_key": self.dedup_key,
            "provider_id": self.provider_id,
            "name": self.name,
            "industry": self.industry,
            "city": self.city,
            "state": self.state,
            "address": self.address,
            "phone": self.phone,
            "email": self.email,
            "website": self.website,
            "rating": self.rating,
            "review_count": self.review_count,
            "has_website": self.has_website,
            "status": self.status.value if self.status else None,
            "delivery_attempts": self.delivery_attempts,
            "next_attempt_at": self.next_attempt_at.isoformat() if self.next_attempt_at else None,
            "undeliverable": self.undeliverable,
            "tested_at": self.tested_at.isoformat() if self.tested_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "contacted_at": self.contacted_at.isoformat() if self.contacted_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
