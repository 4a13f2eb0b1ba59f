"""Service helpers that push RAWG data into the catalog cache."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.db import CatalogRepository
from app.models import GameRecord
from app.services.rawg import RAWGClient


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RefreshResult:
    fetched: int = 0
    stored: int = 0
    failed: int = 0


def refresh_catalog(
    session: Session,
    repo: CatalogRepository,
    client: RAWGClient,
    *,
    view: str = "upcoming",
    platform: str | None = None,
    pages: int = 1,
) -> RefreshResult:
    """Pull ``pages`` pages of a RAWG view and upsert every game into the cache."""

    result = RefreshResult()
    for page in range(1, max(pages, 1) + 1):
        game_page = client.search_games(view=view, platform=platform, page=page)
        identities = repo.bulk_upsert(session, [game.as_record() for game in game_page.games])
        result.fetched += len(identities)
        result.stored += sum(1 for identity in identities if identity is not None)
        result.failed += sum(1 for identity in identities if identity is None)
        if not game_page.next:
            break
    logger.info(
        "Catalog refresh view=%s platform=%s: fetched=%s stored=%s failed=%s",
        view,
        platform,
        result.fetched,
        result.stored,
        result.failed,
    )
    return result


def cache_game(
    session: Session,
    repo: CatalogRepository,
    client: RAWGClient,
    id_or_slug: int | str,
) -> GameRecord:
    """Fetch one game's details and store them, returning the cached row."""

    game = client.get_game(id_or_slug)
    repo.upsert(session, game.as_record())
    cached = repo.get_by_external_id(session, game.external_id)
    if cached is None:  # pragma: no cover - upsert just wrote it
        raise LookupError(f"game {game.external_id} vanished after upsert")
    return cached
