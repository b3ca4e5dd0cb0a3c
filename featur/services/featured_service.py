"""
Featur: Featured Placement Gate

The entitlement boundary for paid featured placements.  Purchase
verification happens elsewhere; this service only grants, checks and lists
placements.  One placement row exists per user, and a user with an
unexpired placement cannot be granted another.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Mapping, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from featur.database import insert_ignoring_conflicts
from featur.errors import (
    AlreadyFeaturedError,
    InvalidIdentifierError,
    InvalidPlacementError,
    UnknownProductError,
)
from featur.models.featured import FeaturedPlacement as PlacementRow
from featur.schemas.featured import FeaturedPlacement
from featur.services.profile_service import ProfileService
from featur.services.telemetry import Telemetry
from featur.utils.timeutil import ensure_utc, utcnow

logger = structlog.get_logger("featur.featured_service")

DEFAULT_CATEGORY = "Featured"
DEFAULT_HIGHLIGHT = "Content creator on Featur"
DEFAULT_DURATION_DAYS = 1
STATUS_ACTIVE = "active"


def _to_placement(row: PlacementRow) -> FeaturedPlacement:
    return FeaturedPlacement(
        user_id=row.user_id,
        product_id=row.product_id,
        category=row.category,
        highlight_text=row.highlight_text,
        priority=row.priority,
        transaction_id=row.transaction_id,
        featured_at=ensure_utc(row.featured_at),
        expires_at=ensure_utc(row.expires_at),
        status=row.status,
    )


def _is_live(row: Optional[PlacementRow], now: datetime) -> bool:
    return (
        row is not None
        and row.status == STATUS_ACTIVE
        and ensure_utc(row.expires_at) > now
    )


class FeaturedPlacementGate:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        profiles: ProfileService,
        products: Mapping[str, int],
        telemetry: Optional[Telemetry] = None,
        default_priority: int = 1,
    ) -> None:
        self._session_factory = session_factory
        self._profiles = profiles
        self._products = dict(products)
        self._telemetry = telemetry or Telemetry()
        self._default_priority = default_priority
        logger.info("featured_gate_initialised", products=sorted(self._products))

    def duration_for(self, product_id: str) -> timedelta:
        days = self._products.get(product_id)
        if days is None:
            raise UnknownProductError(product_id)
        return timedelta(days=days)

    # ── Public API ────────────────────────────────────────────────────────

    async def is_featured(self, user_id: str) -> bool:
        if not user_id:
            return False
        async with self._session_factory() as session:
            row = await session.get(PlacementRow, user_id)
            return _is_live(row, utcnow())

    async def fetch_placement(self, user_id: str) -> Optional[FeaturedPlacement]:
        async with self._session_factory() as session:
            row = await session.get(PlacementRow, user_id)
            return _to_placement(row) if row else None

    async def grant_featured(
        self,
        user_id: str,
        expires_at: Optional[datetime] = None,
        product_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> FeaturedPlacement:
        """Grant a featured placement.

        Parameters
        ----------
        user_id:
            The creator to feature.
        expires_at:
            Explicit expiry.  Takes precedence over the product duration.
        product_id:
            Purchased product; its duration sets the expiry.
        transaction_id:
            Store transaction reference, kept for support lookups.

        Raises
        ------
        UnknownProductError
            ``product_id`` is not a known featured product.
        AlreadyFeaturedError
            The user already holds an unexpired placement.
        """
        if not user_id:
            raise InvalidIdentifierError("user_id must be non-empty")
        now = utcnow()
        if product_id is not None:
            duration = self.duration_for(product_id)
        else:
            duration = timedelta(days=DEFAULT_DURATION_DAYS)
        expiry = ensure_utc(expires_at) if expires_at else now + duration
        if expiry <= now:
            raise InvalidPlacementError("Placement expiry must be in the future")

        profile = await self._profiles.fetch_profile(user_id)
        highlight = (profile.bio if profile else None) or DEFAULT_HIGHLIGHT
        values = dict(
            product_id=product_id,
            category=DEFAULT_CATEGORY,
            highlight_text=highlight,
            priority=self._default_priority,
            transaction_id=transaction_id,
            featured_at=now,
            expires_at=expiry,
            status=STATUS_ACTIVE,
        )

        async with self._session_factory() as session, session.begin():
            row = await session.get(PlacementRow, user_id, with_for_update=True)
            if _is_live(row, now):
                raise AlreadyFeaturedError(user_id)
            if row is None:
                result = await session.execute(
                    insert_ignoring_conflicts(session, PlacementRow).values(
                        user_id=user_id, **values
                    )
                )
                if result.rowcount != 1:
                    raise AlreadyFeaturedError(user_id)
                row = await session.get(PlacementRow, user_id, populate_existing=True)
            else:
                for key, value in values.items():
                    setattr(row, key, value)
            placement = _to_placement(row)

        logger.info(
            "featured_granted",
            user_id=user_id,
            product_id=product_id,
            expires_at=placement.expires_at.isoformat(),
        )
        self._telemetry.track(
            "featured_granted",
            {"user_id": user_id, "product_id": product_id, "transaction_id": transaction_id},
        )
        return placement

    async def list_featured(self, limit: int = 20) -> list[FeaturedPlacement]:
        """Unexpired active placements, highest priority first."""
        now = utcnow()
        async with self._session_factory() as session:
            result = await session.execute(
                select(PlacementRow)
                .where(
                    PlacementRow.status == STATUS_ACTIVE,
                    PlacementRow.expires_at > now,
                )
                .order_by(PlacementRow.priority.desc(), PlacementRow.featured_at.desc())
                .limit(limit)
            )
            return [_to_placement(row) for row in result.scalars()]
