"""
Featur: Discovery API
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query

from featur.api.deps import get_container, http_error
from featur.container import Container
from featur.errors import FeaturError
from featur.schemas.profile import Profile
from featur.services.discovery_service import DiscoveryStrategy

logger = structlog.get_logger("featur.api.discovery")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# GET /{user_id}: Next discovery page (already-swiped profiles excluded)
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/{user_id}", response_model=list[Profile], summary="Discovery feed")
async def discovery_feed(
    user_id: str,
    strategy: DiscoveryStrategy = Query(..., description="affinity or distance"),
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    max_distance_km: Optional[float] = Query(default=None, gt=0),
    container: Container = Depends(get_container),
) -> list[Profile]:
    log = logger.bind(user_id=user_id, strategy=strategy.value)
    try:
        profiles = await container.discovery.candidates_for(
            user_id,
            strategy=strategy,
            limit=limit,
            max_distance_km=max_distance_km,
        )
    except FeaturError as exc:
        log.warning("discovery_failed", error=str(exc))
        raise http_error(exc)
    return profiles
