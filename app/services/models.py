"""Shared dataclasses for service layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any


@dataclass(slots=True)
class GameData:
    """Normalized RAWG game metadata, as handed to the catalog cache."""

    external_id: int
    name: str
    slug: str
    background_image: str | None = None
    release_date: date | None = None
    metacritic: int | None = None
    rating: float | None = None
    platforms: list[str] = field(default_factory=list)
    genres: list[str] = field(default_factory=list)
    description: str | None = None
    website: str | None = None
    developers: list[str] = field(default_factory=list)
    publishers: list[str] = field(default_factory=list)
    esrb_rating: str | None = None
    screenshots: list[str] = field(default_factory=list)

    def as_record(self) -> dict[str, Any]:
        """Return the catalog upsert payload.

        Search results carry no description, so it is only sent when known
        and a list refresh does not wipe a description cached from details.
        """

        record: dict[str, Any] = {
            "external_id": self.external_id,
            "name": self.name,
            "slug": self.slug,
            "background_image": self.background_image,
            "release_date": self.release_date,
            "metacritic": self.metacritic,
            "rating": self.rating,
            "platforms": list(self.platforms),
            "genres": list(self.genres),
        }
        if self.description is not None:
            record["description"] = self.description
        return record


@dataclass(slots=True)
class GamePage:
    """One page of gateway search results."""

    games: list[GameData]
    count: int
    next: str | None = None
    previous: str | None = None
    page: int = 1
