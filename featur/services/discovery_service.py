"""
Featur: Discovery Ranker

Builds the next page of creator profiles to show a user.

Exclusion is split in two because document stores cap ``NOT IN`` lists (10
values on the store the mobile client was built against): the first
``native_exclude_limit`` ids go into the query, everything else (and the
subject) is filtered after the fetch.  The fetch is sized so that the
client-side filter can never starve the page:

    fetch = max(limit × overfetch_factor, limit + len(remaining) + 1)

Ranking strategies are explicit:

* ``affinity`` – 2 points per shared content style, 1 per shared interest,
  highest first; ties keep the store order (newest profiles first).
* ``distance`` – great-circle distance, nearest first; profiles without
  coordinates sort last.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Iterable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from featur.errors import InvalidIdentifierError, ProfileDecodeError
from featur.models.profile import ProfileDocument
from featur.schemas.profile import Coordinates, Profile
from featur.services.profile_service import ProfileService
from featur.services.swipe_service import SwipeLedger

logger = structlog.get_logger("featur.discovery_service")

EARTH_RADIUS_KM = 6371.0
CONTENT_STYLE_WEIGHT = 2
INTEREST_WEIGHT = 1


class DiscoveryStrategy(str, Enum):
    AFFINITY = "affinity"
    DISTANCE = "distance"


# ──────────────────────────────────────────────────────────────────────────────
# Scoring
# ──────────────────────────────────────────────────────────────────────────────

def affinity_score(subject: Profile, candidate: Profile) -> int:
    shared_styles = set(subject.content_styles) & set(candidate.content_styles)
    shared_interests = set(subject.interests) & set(candidate.interests)
    return CONTENT_STYLE_WEIGHT * len(shared_styles) + INTEREST_WEIGHT * len(shared_interests)


def haversine_km(a: Coordinates, b: Coordinates) -> float:
    lat1, lon1 = math.radians(a.latitude), math.radians(a.longitude)
    lat2, lon2 = math.radians(b.latitude), math.radians(b.longitude)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def distance_km(subject: Profile, candidate: Profile) -> float:
    """Distance between two profiles, ``inf`` when either has no coordinates."""
    if subject.coordinates is None or candidate.coordinates is None:
        return math.inf
    return haversine_km(subject.coordinates, candidate.coordinates)


def rank(
    subject: Profile,
    candidates: list[Profile],
    strategy: DiscoveryStrategy,
) -> list[Profile]:
    """Stable sort of ``candidates`` for ``subject``."""
    if strategy is DiscoveryStrategy.AFFINITY:
        return sorted(candidates, key=lambda c: -affinity_score(subject, c))
    if strategy is DiscoveryStrategy.DISTANCE:
        return sorted(candidates, key=lambda c: distance_km(subject, c))
    raise ValueError(f"Unknown discovery strategy: {strategy!r}")


# ──────────────────────────────────────────────────────────────────────────────
# Ranker
# ──────────────────────────────────────────────────────────────────────────────

class DiscoveryRanker:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        profiles: ProfileService,
        ledger: SwipeLedger,
        native_exclude_limit: int = 10,
        overfetch_factor: int = 2,
        default_limit: int = 20,
    ) -> None:
        self._session_factory = session_factory
        self._profiles = profiles
        self._ledger = ledger
        self._native_exclude_limit = native_exclude_limit
        self._overfetch_factor = overfetch_factor
        self._default_limit = default_limit
        logger.info(
            "discovery_ranker_initialised",
            native_exclude_limit=native_exclude_limit,
            overfetch_factor=overfetch_factor,
        )

    def fetch_size(self, limit: int, remaining_excluded: int) -> int:
        return max(limit * self._overfetch_factor, limit + remaining_excluded + 1)

    async def next_candidates(
        self,
        subject: Profile,
        *,
        strategy: DiscoveryStrategy,
        limit: Optional[int] = None,
        exclude_ids: Iterable[str] = (),
        max_distance_km: Optional[float] = None,
    ) -> list[Profile]:
        """Return up to ``limit`` ranked profiles for ``subject``.

        Parameters
        ----------
        subject:
            The viewing user's profile (used for ranking and self-exclusion).
        strategy:
            ``affinity`` or ``distance``; there is no implicit default.
        limit:
            Page size, defaults to the configured discovery limit.
        exclude_ids:
            Profiles that must never be returned (already swiped, blocked...).
            Any number of ids is supported.
        max_distance_km:
            Optional radius.  When set, profiles further away or without
            coordinates are dropped.

        Returns
        -------
        list[Profile]
            Never contains the subject or an excluded id.
        """
        strategy = DiscoveryStrategy(strategy)
        limit = self._default_limit if limit is None else limit
        if limit <= 0:
            return []

        excluded = [uid for uid in dict.fromkeys(exclude_ids) if uid and uid != subject.uid]
        native = excluded[: self._native_exclude_limit]
        remaining = set(excluded[self._native_exclude_limit:])
        remaining.add(subject.uid)
        fetch = self.fetch_size(limit, len(remaining) - 1)

        stmt = (
            select(ProfileDocument)
            .order_by(ProfileDocument.created_at.desc(), ProfileDocument.uid)
            .limit(fetch)
        )
        if native:
            stmt = stmt.where(ProfileDocument.uid.not_in(native))

        async with self._session_factory() as session:
            rows = list((await session.execute(stmt)).scalars())

        candidates: list[Profile] = []
        for row in rows:
            if row.uid in remaining:
                continue
            try:
                profile = ProfileService.decode_row(row).profile
            except ProfileDecodeError as exc:
                logger.warning("discovery_profile_skipped", uid=row.uid, error=str(exc))
                continue
            if max_distance_km is not None and distance_km(subject, profile) > max_distance_km:
                continue
            candidates.append(profile)

        ranked = rank(subject, candidates, strategy)[:limit]
        logger.info(
            "discovery_page_built",
            uid=subject.uid,
            strategy=strategy.value,
            fetched=len(rows),
            returned=len(ranked),
            native_excluded=len(native),
            client_excluded=len(remaining) - 1,
        )
        return ranked

    async def candidates_for(
        self,
        uid: str,
        *,
        strategy: DiscoveryStrategy,
        limit: Optional[int] = None,
        max_distance_km: Optional[float] = None,
    ) -> list[Profile]:
        """Load the subject and exclude everyone they have already swiped on."""
        if not uid:
            raise InvalidIdentifierError("uid must be non-empty")
        subject = await self._profiles.require_profile(uid)
        swiped = await self._ledger.list_targets(uid)
        return await self.next_candidates(
            subject,
            strategy=strategy,
            limit=limit,
            exclude_ids=sorted(swiped),
            max_distance_km=max_distance_km,
        )
