"""
Featur: Main API Router

Aggregates all sub-routers under a single prefix so that ``featur.main``
can mount the entire API surface with one ``include_router`` call.
"""

from fastapi import APIRouter

from featur.api import conversations, discovery, featured, matches, profiles, swipes

router = APIRouter()

router.include_router(profiles.router, prefix="/profiles", tags=["Profiles"])
router.include_router(swipes.router, prefix="/swipes", tags=["Swipes"])
router.include_router(matches.router, prefix="/matches", tags=["Matches"])
router.include_router(conversations.router, prefix="/conversations", tags=["Conversations"])
router.include_router(discovery.router, prefix="/discovery", tags=["Discovery"])
router.include_router(featured.router, prefix="/featured", tags=["Featured"])
