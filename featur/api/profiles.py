"""
Featur: Profiles API

Endpoints for profile CRUD and photo uploads.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from featur.api.deps import get_container, http_error
from featur.container import Container
from featur.errors import FeaturError
from featur.schemas.profile import PhotoUploadResponse, Profile, ProfileUpdate

logger = structlog.get_logger("featur.api.profiles")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# POST /: Create a profile
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/",
    response_model=Profile,
    status_code=status.HTTP_201_CREATED,
    summary="Create a profile",
)
async def create_profile(
    payload: Profile,
    container: Container = Depends(get_container),
) -> Profile:
    log = logger.bind(uid=payload.uid)
    log.info("create_profile_start")
    try:
        profile = await container.profiles.create_profile(payload)
    except FeaturError as exc:
        log.warning("create_profile_rejected", error=str(exc))
        raise http_error(exc)
    log.info("create_profile_complete")
    return profile


# ──────────────────────────────────────────────────────────────────────────────
# GET /{uid}: Fetch a profile
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/{uid}", response_model=Profile, summary="Fetch a profile")
async def get_profile(
    uid: str,
    container: Container = Depends(get_container),
) -> Profile:
    try:
        profile = await container.profiles.fetch_profile(uid)
    except FeaturError as exc:
        raise http_error(exc)
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Profile {uid} not found",
        )
    return profile


# ──────────────────────────────────────────────────────────────────────────────
# PUT /{uid}: Partial update (uid is immutable)
# ──────────────────────────────────────────────────────────────────────────────

@router.put("/{uid}", response_model=Profile, summary="Update a profile")
async def update_profile(
    uid: str,
    payload: ProfileUpdate,
    container: Container = Depends(get_container),
) -> Profile:
    log = logger.bind(uid=uid)
    try:
        profile = await container.profiles.update_profile(uid, payload)
    except FeaturError as exc:
        log.warning("update_profile_rejected", error=str(exc))
        raise http_error(exc)
    return profile


# ──────────────────────────────────────────────────────────────────────────────
# DELETE /{uid}: Account deletion
# ──────────────────────────────────────────────────────────────────────────────

@router.delete(
    "/{uid}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a profile",
)
async def delete_profile(
    uid: str,
    container: Container = Depends(get_container),
) -> None:
    deleted = await container.profiles.delete_profile(uid)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Profile {uid} not found",
        )


# ──────────────────────────────────────────────────────────────────────────────
# POST /{uid}/photos: Upload a profile photo
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/{uid}/photos",
    response_model=PhotoUploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a profile photo",
)
async def upload_photo(
    uid: str,
    file: UploadFile = File(..., description="Image file"),
    container: Container = Depends(get_container),
) -> PhotoUploadResponse:
    log = logger.bind(uid=uid, filename=file.filename)
    log.info("upload_photo_start")

    data = await file.read()
    content_type = file.content_type or "application/octet-stream"
    try:
        url, media = await container.profiles.upload_profile_photo(uid, data, content_type)
    except FeaturError as exc:
        log.error("upload_photo_failed", error=str(exc))
        raise http_error(exc)

    log.info("upload_photo_complete", url=url)
    return PhotoUploadResponse(uid=uid, url=url, media_urls=media)
