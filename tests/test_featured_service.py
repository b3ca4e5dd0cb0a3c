"""Unit tests for FeaturedPlacementGate."""
from datetime import timedelta

import pytest
from sqlalchemy import update

from featur.errors import AlreadyFeaturedError, InvalidPlacementError, UnknownProductError
from featur.models.featured import FeaturedPlacement as PlacementRow
from featur.services.featured_service import DEFAULT_HIGHLIGHT
from featur.utils.timeutil import utcnow

WEEK = "com.featur.featured.7d"


class TestGrant:
    """Tests for granting paid featured placements."""

    @pytest.mark.asyncio
    async def test_grant_product_duration(self, container, make_profile):
        await container.profiles.create_profile(make_profile("alice", bio="Dance covers"))
        placement = await container.featured.grant_featured(
            "alice", product_id=WEEK, transaction_id="txn-1"
        )
        assert placement.highlight_text == "Dance covers"
        assert placement.expires_at - placement.featured_at == timedelta(days=7)
        assert placement.transaction_id == "txn-1"
        assert await container.featured.is_featured("alice")

    @pytest.mark.asyncio
    async def test_default_duration_and_highlight(self, container):
        placement = await container.featured.grant_featured("no-profile")
        assert placement.expires_at - placement.featured_at == timedelta(days=1)
        assert placement.highlight_text == DEFAULT_HIGHLIGHT

    @pytest.mark.asyncio
    async def test_explicit_expiry(self, container):
        expiry = utcnow() + timedelta(hours=6)
        placement = await container.featured.grant_featured("alice", expires_at=expiry)
        assert placement.expires_at == expiry

    @pytest.mark.asyncio
    async def test_past_expiry_rejected(self, container):
        with pytest.raises(InvalidPlacementError):
            await container.featured.grant_featured("alice", expires_at=utcnow() - timedelta(hours=1))

    @pytest.mark.asyncio
    async def test_unknown_product(self, container):
        with pytest.raises(UnknownProductError):
            await container.featured.grant_featured("alice", product_id="com.featur.lifetime")
        assert not await container.featured.is_featured("alice")

    @pytest.mark.asyncio
    async def test_already_featured(self, container):
        await container.featured.grant_featured("alice", product_id=WEEK)
        with pytest.raises(AlreadyFeaturedError):
            await container.featured.grant_featured("alice", product_id=WEEK)

    @pytest.mark.asyncio
    async def test_regrant_after_expiry(self, container):
        await container.featured.grant_featured("alice", product_id=WEEK, transaction_id="old")
        async with container.session_factory() as session, session.begin():
            await session.execute(
                update(PlacementRow)
                .where(PlacementRow.user_id == "alice")
                .values(expires_at=utcnow() - timedelta(minutes=1))
            )
        assert not await container.featured.is_featured("alice")

        placement = await container.featured.grant_featured("alice", transaction_id="new")
        assert placement.transaction_id == "new"
        assert await container.featured.is_featured("alice")


class TestListing:
    """Tests for listing live featured creators."""

    @pytest.mark.asyncio
    async def test_list_only_live_placements(self, container):
        await container.featured.grant_featured("alice")
        await container.featured.grant_featured("bob")
        async with container.session_factory() as session, session.begin():
            await session.execute(
                update(PlacementRow)
                .where(PlacementRow.user_id == "bob")
                .values(expires_at=utcnow() - timedelta(minutes=1))
            )

        listed = await container.featured.list_featured()
        assert [p.user_id for p in listed] == ["alice"]
        assert not await container.featured.is_featured("carol")
        assert await container.featured.fetch_placement("carol") is None
