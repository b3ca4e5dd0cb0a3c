"""
Featur: Matches API

Manual match evaluation (replaying a pending evaluation), listing a user's
active matches and unmatching.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends

from featur.api.deps import get_container, http_error
from featur.container import Container
from featur.errors import FeaturError
from featur.schemas.match import (
    Match,
    MatchEvaluateRequest,
    MatchEvaluation,
    UnmatchResponse,
)

logger = structlog.get_logger("featur.api.matches")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# POST /evaluate: Re-run match evaluation for a pair
# ──────────────────────────────────────────────────────────────────────────────

@router.post("/evaluate", response_model=MatchEvaluation, summary="Evaluate a pair")
async def evaluate_match(
    payload: MatchEvaluateRequest,
    container: Container = Depends(get_container),
) -> MatchEvaluation:
    log = logger.bind(subject_id=payload.subject_id, target_id=payload.target_id)
    try:
        evaluation = await container.matches.evaluate(payload.subject_id, payload.target_id)
    except FeaturError as exc:
        log.error("evaluate_match_failed", error=str(exc))
        raise http_error(exc)
    log.info("evaluate_match_complete", matched=evaluation.matched, created=evaluation.created)
    return evaluation


# ──────────────────────────────────────────────────────────────────────────────
# GET /user/{user_id}: Active matches for a user
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/user/{user_id}", response_model=list[Match], summary="List a user's matches")
async def list_matches(
    user_id: str,
    container: Container = Depends(get_container),
) -> list[Match]:
    try:
        return await container.matches.fetch_matches(user_id)
    except FeaturError as exc:
        raise http_error(exc)


# ──────────────────────────────────────────────────────────────────────────────
# POST /{match_id}/unmatch: Soft-deactivate a match
# ──────────────────────────────────────────────────────────────────────────────

@router.post("/{match_id}/unmatch", response_model=UnmatchResponse, summary="Unmatch")
async def unmatch(
    match_id: str,
    container: Container = Depends(get_container),
) -> UnmatchResponse:
    try:
        match = await container.matches.unmatch(match_id)
    except FeaturError as exc:
        raise http_error(exc)
    return UnmatchResponse(
        match_id=match.id,
        is_active=match.is_active,
        unmatched_at=match.unmatched_at,
    )
