"""SQLAlchemy ORM models.

Two collections live here: ``games`` mirrors the subset of the RAWG catalog
we have seen, keyed by the upstream id, and ``watchlist`` holds each user's
tracked games. Watchlist rows carry their own copy of the game name, image,
release date and platforms so they stay valid when the catalog row changes
or disappears.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class GameRecord(Base):
    """A cached upstream game, refreshed in place by upserts."""

    __tablename__ = "games"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    external_id: Mapped[int] = mapped_column(Integer, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255))
    slug: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    background_image: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    release_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    metacritic: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    platforms: Mapped[list[str]] = mapped_column(JSON, default=list)
    genres: Mapped[list[str]] = mapped_column(JSON, default=list)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"GameRecord(id={self.id}, external_id={self.external_id}, slug={self.slug})"


class WatchlistEntry(Base):
    """One user's intent to follow a game's release."""

    __tablename__ = "watchlist"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    owner: Mapped[str] = mapped_column(String(255), index=True)
    external_id: Mapped[int] = mapped_column(Integer)
    game_name: Mapped[str] = mapped_column(String(255))
    background_image: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    release_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    platforms: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notify: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint("owner", "external_id", name="uq_watchlist_owner_external"),
        Index("ix_watchlist_release_date", "release_date"),
        Index("ix_watchlist_added_at", "added_at"),
    )

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"WatchlistEntry(owner={self.owner}, external_id={self.external_id}, notify={self.notify})"
