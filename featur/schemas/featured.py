from __future__ import annotations

from datetime import datetime
from typing import Optional

from featur.schemas.profile import CamelModel


class FeaturedPlacement(CamelModel):
    user_id: str
    product_id: Optional[str] = None
    category: str = "Featured"
    highlight_text: Optional[str] = None
    priority: int = 1
    transaction_id: Optional[str] = None
    featured_at: datetime
    expires_at: datetime
    status: str = "active"


class FeaturedGrant(CamelModel):
    product_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    transaction_id: Optional[str] = None


class FeaturedStatus(CamelModel):
    user_id: str
    is_featured: bool
