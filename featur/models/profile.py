"""
Featur: Profile document model.

The profile body is stored as a JSON document so that older app versions'
documents survive schema changes; ``schema_version`` records the layout the
document was written with.
"""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from featur.database import Base, JSONDocument
from featur.utils.timeutil import utcnow


class ProfileDocument(Base):
    __tablename__ = "profiles"
    __table_args__ = (Index("ix_profiles_created_at", "created_at"),)

    uid: Mapped[str] = mapped_column(String(128), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    data: Mapped[dict] = mapped_column(
        JSONDocument, nullable=False, comment="camelCase profile document"
    )
    schema_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<ProfileDocument {self.uid} v{self.schema_version}>"
