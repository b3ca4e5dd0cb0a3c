"""
Featur: Service container

Builds every service explicitly from settings, an engine and a change feed.
The application lifespan creates one container and stores it on
``app.state``; tests build their own against a throwaway database.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from featur.config import Settings
from featur.database import make_session_factory
from featur.realtime import ChangeFeed
from featur.services.conversation_service import ConversationService
from featur.services.discovery_service import DiscoveryRanker
from featur.services.featured_service import FeaturedPlacementGate
from featur.services.match_service import MatchEngine
from featur.services.profile_service import ProfileService
from featur.services.swipe_service import SwipeLedger
from featur.services.telemetry import Telemetry
from featur.utils.storage import MediaStorage

logger = structlog.get_logger("featur.container")


@dataclass
class Container:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    feed: ChangeFeed
    telemetry: Telemetry
    storage: Optional[MediaStorage]
    profiles: ProfileService
    swipes: SwipeLedger
    conversations: ConversationService
    matches: MatchEngine
    discovery: DiscoveryRanker
    featured: FeaturedPlacementGate

    async def aclose(self) -> None:
        await self.telemetry.aclose()
        await self.feed.close()
        await self.engine.dispose()
        logger.info("container_closed")


def build_container(
    settings: Settings,
    engine: AsyncEngine,
    feed: ChangeFeed,
    storage: Optional[MediaStorage] = None,
    telemetry: Optional[Telemetry] = None,
) -> Container:
    session_factory = make_session_factory(engine)
    telemetry = telemetry or Telemetry(
        endpoint=settings.TELEMETRY_ENDPOINT,
        timeout_seconds=settings.TELEMETRY_TIMEOUT_SECONDS,
    )
    if storage is None and settings.GCS_BUCKET_NAME:
        storage = MediaStorage(
            bucket_name=settings.GCS_BUCKET_NAME,
            project_id=settings.GCP_PROJECT_ID,
            public_base_url=settings.MEDIA_PUBLIC_BASE_URL,
            max_attempts=settings.UPLOAD_MAX_ATTEMPTS,
            backoff_base_seconds=settings.UPLOAD_BACKOFF_BASE_SECONDS,
        )

    profiles = ProfileService(session_factory, storage=storage)
    swipes = SwipeLedger(session_factory, telemetry=telemetry)
    conversations = ConversationService(
        session_factory,
        feed,
        telemetry=telemetry,
        page_size=settings.MESSAGE_PAGE_SIZE,
    )
    matches = MatchEngine(
        session_factory,
        conversations,
        feed,
        telemetry=telemetry,
        max_attempts=settings.MATCH_MAX_ATTEMPTS,
        backoff_base_seconds=settings.MATCH_BACKOFF_BASE_SECONDS,
    )
    swipes.attach_match_engine(matches)
    discovery = DiscoveryRanker(
        session_factory,
        profiles,
        swipes,
        native_exclude_limit=settings.DISCOVERY_NATIVE_EXCLUDE_LIMIT,
        overfetch_factor=settings.DISCOVERY_OVERFETCH_FACTOR,
        default_limit=settings.DISCOVERY_DEFAULT_LIMIT,
    )
    featured = FeaturedPlacementGate(
        session_factory,
        profiles,
        products=settings.FEATURED_PRODUCTS,
        telemetry=telemetry,
        default_priority=settings.FEATURED_DEFAULT_PRIORITY,
    )

    logger.info("container_built", storage=storage is not None)
    return Container(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        feed=feed,
        telemetry=telemetry,
        storage=storage,
        profiles=profiles,
        swipes=swipes,
        conversations=conversations,
        matches=matches,
        discovery=discovery,
        featured=featured,
    )
