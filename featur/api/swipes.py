"""
Featur: Swipes API
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from featur.api.deps import get_container
from featur.container import Container
from featur.schemas.match import SwipeAction, SwipeCreate, SwipeOutcome

logger = structlog.get_logger("featur.api.swipes")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# POST /: Record a swipe (evaluates likes for a match)
# ──────────────────────────────────────────────────────────────────────────────

@router.post("/", response_model=SwipeOutcome, summary="Record a swipe")
async def record_swipe(
    payload: SwipeCreate,
    container: Container = Depends(get_container),
) -> SwipeOutcome:
    return await container.swipes.record(
        payload.subject_id,
        payload.target_id,
        payload.action,
        payload.timestamp,
    )


# ──────────────────────────────────────────────────────────────────────────────
# DELETE /{subject_id}/{target_id}: Undo the most recent swipe
# ──────────────────────────────────────────────────────────────────────────────

@router.delete(
    "/{subject_id}/{target_id}",
    response_model=SwipeAction,
    summary="Undo the latest swipe",
)
async def undo_swipe(
    subject_id: str,
    target_id: str,
    container: Container = Depends(get_container),
) -> SwipeAction:
    removed = await container.swipes.undo(subject_id, target_id)
    if removed is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No swipe to undo",
        )
    return removed


@router.get("/{subject_id}/targets", response_model=list[str])
async def list_targets(
    subject_id: str,
    container: Container = Depends(get_container),
) -> list[str]:
    return sorted(await container.swipes.list_targets(subject_id))


@router.get("/{subject_id}/{target_id}/liked")
async def has_liked(
    subject_id: str,
    target_id: str,
    container: Container = Depends(get_container),
) -> dict:
    liked = await container.swipes.has_liked(subject_id, target_id)
    return {"subjectId": subject_id, "targetId": target_id, "liked": liked}
