"""
Featur: Featured placements API
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query, status

from featur.api.deps import get_container, http_error
from featur.container import Container
from featur.errors import FeaturError
from featur.schemas.featured import FeaturedGrant, FeaturedPlacement, FeaturedStatus

logger = structlog.get_logger("featur.api.featured")

router = APIRouter()


@router.get("/", response_model=list[FeaturedPlacement], summary="Active placements")
async def list_featured(
    limit: int = Query(default=20, ge=1, le=100),
    container: Container = Depends(get_container),
) -> list[FeaturedPlacement]:
    return await container.featured.list_featured(limit)


@router.get("/{user_id}", response_model=FeaturedStatus)
async def featured_status(
    user_id: str,
    container: Container = Depends(get_container),
) -> FeaturedStatus:
    return FeaturedStatus(
        user_id=user_id,
        is_featured=await container.featured.is_featured(user_id),
    )


# ──────────────────────────────────────────────────────────────────────────────
# POST /{user_id}: Grant a placement after a verified purchase
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/{user_id}",
    response_model=FeaturedPlacement,
    status_code=status.HTTP_201_CREATED,
    summary="Grant a featured placement",
)
async def grant_featured(
    user_id: str,
    payload: FeaturedGrant,
    container: Container = Depends(get_container),
) -> FeaturedPlacement:
    log = logger.bind(user_id=user_id, product_id=payload.product_id)
    try:
        placement = await container.featured.grant_featured(
            user_id,
            expires_at=payload.expires_at,
            product_id=payload.product_id,
            transaction_id=payload.transaction_id,
        )
    except FeaturError as exc:
        log.warning("grant_featured_rejected", error=str(exc))
        raise http_error(exc)
    return placement
