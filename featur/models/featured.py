"""
Featur: Featured placement model (one row per user).
"""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from featur.database import Base
from featur.utils.timeutil import utcnow


class FeaturedPlacement(Base):
    __tablename__ = "featured_placements"
    __table_args__ = (Index("ix_featured_status_expiry", "status", "expires_at"),)

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    product_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    category: Mapped[str] = mapped_column(String(60), default="Featured", nullable=False)
    highlight_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    transaction_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    featured_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), default="active", nullable=False, comment="active / expired"
    )

    def __repr__(self) -> str:
        return f"<FeaturedPlacement {self.user_id} until={self.expires_at}>"
