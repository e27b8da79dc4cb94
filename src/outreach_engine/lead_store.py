"""Deduplicated, status-tracked lead storage.

LeadStore sits on top of the SQLAlchemy models. Every mutation goes through
a single asyncio.Lock so at most one discovery or outreach cycle writes at a
time; reads do not take the lock.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import func, or_, select

from .clock import utcnow
from .exceptions import InvalidStatusTransition, LeadNotFoundError
from .models.database import DatabaseManager
from .models.lead import Lead, LeadStatus
from .providers.base import Business

logger = logging.getLogger(__name__)

# Descriptive fields a later sighting may fill in when they were empty
MERGE_FIELDS = (
    "provider_id",
    "address",
    "phone",
    "email",
    "website",
    "rating",
    "review_count",
)

# Qualification thresholds shared by the phase targeting predicates
MIN_ESTABLISHED_RATING = 4.0
MIN_ESTABLISHED_REVIEWS = 20

# Retry backoff after a failed outreach attempt
RETRY_BACKOFF = timedelta(hours=1)
MAX_RETRY_BACKOFF = timedelta(hours=24)


def _normalize(value: Optional[str]) -> str:
    return " ".join((value or "").strip().lower().split())


def compute_dedup_key(business: Business) -> str:
    """Derive the stable identity of a business.

    Uses the provider id plus location when available, falling back to
    name and address.

    Raises:
        ValueError: If the business has neither a provider id nor a name.
    """
    city = _normalize(business.city)
    state = _normalize(business.state)
    if business.provider_id:
        provider = _normalize(business.provider) or "unknown"
        return f"{provider}:{business.provider_id.strip()}|{city}|{state}"
    if not business.name or not business.name.strip():
        raise ValueError("Cannot derive a dedup key without a provider id or a name")
    return f"name:{_normalize(business.name)}|{_normalize(business.address)}|{city}|{state}"


def no_website_candidate(lead: Lead) -> bool:
    """Businesses that need a first website or are not yet established online."""
    if not lead.has_website:
        return True
    if lead.rating is None or lead.rating < MIN_ESTABLISHED_RATING:
        return True
    return (lead.review_count or 0) < MIN_ESTABLISHED_REVIEWS


def upgrade_candidate(lead: Lead) -> bool:
    """Established businesses with a website, candidates for an upgrade pitch."""
    return (
        bool(lead.has_website)
        and lead.rating is not None
        and lead.rating >= MIN_ESTABLISHED_RATING
        and (lead.review_count or 0) >= MIN_ESTABLISHED_REVIEWS
    )


@dataclass
class InsertResult:
    """Result of LeadStore.insert."""

    lead: Lead
    is_new: bool


class LeadStore:
    """Deduplicated collection of leads with contact-state tracking.

    Example:
        >>> store = LeadStore(DatabaseManager("sqlite+aiosqlite:///data/leads.db"))
        >>> result = await store.insert(business)
        >>> batch = await store.get_uncontacted_batch(10)
    """

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db
        self._write_lock = asyncio.Lock()

    async def insert(self, business: Business, now: Optional[datetime] = None) -> InsertResult:
        """Insert a business, or merge it into the existing lead with the same key.

        Args:
            business: Business from a discovery provider.
            now: Creation timestamp for a new lead. Defaults to the current time.

        Returns:
            InsertResult with the stored lead and whether it was created.
        """
        dedup_key = compute_dedup_key(business)

        async with self._write_lock:
            async with self.db.session() as session:
                existing = await session.scalar(
                    select(Lead).where(Lead.dedup_key == dedup_key)
                )
                if existing is not None:
                    changed = self._merge(existing, business)
                    if changed:
                        logger.debug("Merged %s into existing lead %s", changed, dedup_key)
                    return InsertResult(lead=existing, is_new=False)

                lead = Lead(
                    dedup_key=dedup_key,
                    provider_id=business.provider_id,
                    name=business.name.strip(),
                    industry=business.industry,
                    city=business.city,
                    state=business.state,
                    address=business.address,
                    phone=business.phone,
                    email=business.email,
                    website=business.website,
                    rating=business.rating,
                    review_count=business.review_count,
                    has_website=business.website_present,
                    status=LeadStatus.NEW,
                    created_at=now or utcnow(),
                )
                session.add(lead)
                await session.flush()

        logger.info("New lead %s (%s)", lead.name, dedup_key)
        return InsertResult(lead=lead, is_new=True)

    @staticmethod
    def _merge(lead: Lead, business: Business) -> list[str]:
        """Fill empty descriptive fields; never touches status or timestamps."""
        changed = []
        for field_name in MERGE_FIELDS:
            incoming = getattr(business, field_name)
            if incoming in (None, "") or getattr(lead, field_name) not in (None, ""):
                continue
            setattr(lead, field_name, incoming)
            changed.append(field_name)
        if business.website_present and not lead.has_website:
            lead.has_website = True
            changed.append("has_website")
        return changed

    async def get(self, dedup_key: str) -> Optional[Lead]:
        async with self.db.session() as session:
            return await session.scalar(select(Lead).where(Lead.dedup_key == dedup_key))

    async def get_uncontacted_batch(
        self,
        limit: int,
        now: Optional[datetime] = None,
        require_email: bool = False,
        exclude_tested: bool = False,
    ) -> list[Lead]:
        """Return up to ``limit`` new leads, oldest first.

        Leads rejected as undeliverable are never returned.

        Args:
            limit: Maximum number of leads.
            now: When given, leads whose retry backoff has not elapsed are left out.
            require_email: Only return leads with a contact email.
            exclude_tested: Leave out leads already run through the testing phase.
        """
        if limit <= 0:
            return []
        query = select(Lead).where(
            Lead.status == LeadStatus.NEW, Lead.undeliverable.is_(False)
        )
        if require_email:
            query = query.where(Lead.email.is_not(None), Lead.email != "")
        if now is not None:
            query = query.where(or_(Lead.next_attempt_at.is_(None), Lead.next_attempt_at <= now))
        if exclude_tested:
            query = query.where(Lead.tested_at.is_(None))
        async with self.db.session() as session:
            result = await session.scalars(
                query.order_by(Lead.created_at.asc(), Lead.id.asc()).limit(limit)
            )
            return list(result)

    async def record_failed_attempt(
        self, dedup_key: str, now: Optional[datetime] = None, permanent: bool = False
    ) -> Lead:
        """Count a failed outreach attempt and hold the lead back before its retry.

        The backoff doubles with every attempt up to MAX_RETRY_BACKOFF. A
        permanent failure marks the lead undeliverable instead.

        Raises:
            LeadNotFoundError: If no lead has this key.
        """
        now = now or utcnow()
        async with self._write_lock:
            async with self.db.session() as session:
                lead = await self._require(session, dedup_key)
                lead.delivery_attempts = (lead.delivery_attempts or 0) + 1
                if permanent:
                    lead.undeliverable = True
                    lead.next_attempt_at = None
                    logger.warning("Lead %s marked undeliverable", dedup_key)
                else:
                    backoff = min(
                        RETRY_BACKOFF * 2 ** (lead.delivery_attempts - 1), MAX_RETRY_BACKOFF
                    )
                    lead.next_attempt_at = now + backoff
                    logger.info(
                        "Lead %s failed %d times; next attempt after %s",
                        dedup_key,
                        lead.delivery_attempts,
                        lead.next_attempt_at.isoformat(),
                    )
                return lead

    async def mark_tested(self, dedup_key: str, now: Optional[datetime] = None) -> None:
        """Record that the lead went through the pipeline without a send."""
        async with self._write_lock:
            async with self.db.session() as session:
                lead = await self._require(session, dedup_key)
                if lead.tested_at is None:
                    lead.tested_at = now or utcnow()

    async def mark_contacted(self, dedup_key: str, now: Optional[datetime] = None) -> bool:
        """Mark a lead contacted.

        Idempotent: a lead that is already past ``new`` is left untouched,
        including its original contacted_at.

        Returns:
            True if the lead changed, False if it was already contacted.

        Raises:
            LeadNotFoundError: If no lead has this key.
        """
        async with self._write_lock:
            async with self.db.session() as session:
                lead = await self._require(session, dedup_key)
                if lead.status != LeadStatus.NEW:
                    logger.debug("Lead %s already %s", dedup_key, lead.status.value)
                    return False
                lead.status = LeadStatus.CONTACTED
                lead.contacted_at = now or utcnow()
                return True

    async def mark_status(
        self, dedup_key: str, status: LeadStatus, now: Optional[datetime] = None
    ) -> bool:
        """Move a lead forward in its lifecycle.

        Returns:
            True if the status changed, False if it already had this status.

        Raises:
            LeadNotFoundError: If no lead has this key.
            InvalidStatusTransition: If the change would move the lead backwards.
        """
        async with self._write_lock:
            async with self.db.session() as session:
                lead = await self._require(session, dedup_key)
                if lead.status == status:
                    return False
                if status.rank < lead.status.rank:
                    raise InvalidStatusTransition(
                        f"Lead {dedup_key} cannot move from {lead.status.value} to {status.value}"
                    )
                if lead.contacted_at is None:
                    lead.contacted_at = now or utcnow()
                lead.status = status
                logger.info("Lead %s is now %s", dedup_key, status.value)
                return True

    async def record_email(self, dedup_key: str, email: str) -> None:
        """Store a contact email found after discovery."""
        async with self._write_lock:
            async with self.db.session() as session:
                lead = await self._require(session, dedup_key)
                lead.email = email.strip()

    async def filter_by_phase_criteria(
        self,
        predicate: Callable[[Lead], bool],
        status: Optional[LeadStatus] = LeadStatus.NEW,
        limit: Optional[int] = None,
    ) -> list[Lead]:
        """Return leads matching a targeting predicate, oldest first.

        Args:
            predicate: Phase targeting rule, e.g. no_website_candidate.
            status: Restrict to this status; None means any status.
            limit: Maximum number of leads to return.
        """
        query = select(Lead).order_by(Lead.created_at.asc(), Lead.id.asc())
        if status is not None:
            query = query.where(Lead.status == status)
        async with self.db.session() as session:
            leads = list(await session.scalars(query))
        matched = [lead for lead in leads if predicate(lead)]
        return matched[:limit] if limit is not None else matched

    async def count(self) -> int:
        async with self.db.session() as session:
            return await session.scalar(select(func.count()).select_from(Lead)) or 0

    async def count_by_status(self) -> dict[str, int]:
        async with self.db.session() as session:
            rows = await session.execute(
                select(Lead.status, func.count()).group_by(Lead.status)
            )
            counts = {status.value: 0 for status in LeadStatus}
            for status, total in rows:
                counts[status.value] = total
            return counts

    async def count_uncontacted(self) -> int:
        async with self.db.session() as session:
            return await session.scalar(
                select(func.count()).select_from(Lead).where(Lead.status == LeadStatus.NEW)
            ) or 0

    async def count_contacted_since(self, since: datetime) -> int:
        """Count leads first contacted at or after ``since``."""
        async with self.db.session() as session:
            return await session.scalar(
                select(func.count()).select_from(Lead).where(Lead.contacted_at >= since)
            ) or 0

    async def count_converted(self) -> int:
        async with self.db.session() as session:
            return await session.scalar(
                select(func.count())
                .select_from(Lead)
                .where(Lead.status == LeadStatus.CONVERTED)
            ) or 0

    async def oldest_uncontacted_created_at(self) -> Optional[datetime]:
        async with self.db.session() as session:
            return await session.scalar(
                select(func.min(Lead.created_at)).where(Lead.status == LeadStatus.NEW)
            )

    @staticmethod
    async def _require(session, dedup_key: str) -> Lead:
        lead = await session.scalar(select(Lead).where(Lead.dedup_key == dedup_key))
        if lead is None:
            raise LeadNotFoundError(f"No lead with dedup key {dedup_key}")
        return lead
