"""FastAPI entrypoint wiring the catalog cache, watchlist store and RAWG gateway."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.auth import get_current_owner
from app.db import (
    CatalogRepository,
    SlugConflict,
    StorageFault,
    Unauthenticated,
    WatchlistRepository,
    get_session,
    init_models,
)
from app.models import GameRecord, WatchlistEntry
from app.services.catalog_sync import cache_game, refresh_catalog
from app.services.countdown import countdown, relative_release_label
from app.services.models import GameData
from app.services.rawg import RAWGClient, RAWGError, RAWGNotFound


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Ensure database tables before serving."""

    init_models()
    yield


app = FastAPI(title="Game Release Radar", lifespan=lifespan)
catalog_repo = CatalogRepository()
watchlist_repo = WatchlistRepository()


class GameResponse(BaseModel):
    external_id: int
    name: str
    slug: str
    background_image: str | None = None
    release_date: date | None = None
    metacritic: int | None = None
    rating: float | None = None
    platforms: list[str] = Field(default_factory=list)
    genres: list[str] = Field(default_factory=list)
    description: str | None = None
    release_label: str | None = None
    last_updated: datetime | None = None


class GameDetailResponse(GameResponse):
    website: str | None = None
    developers: list[str] = Field(default_factory=list)
    publishers: list[str] = Field(default_factory=list)
    esrb_rating: str | None = None
    screenshots: list[str] = Field(default_factory=list)


class GamePageResponse(BaseModel):
    games: list[GameResponse]
    count: int
    next: str | None = None
    previous: str | None = None
    page: int


class RefreshRequest(BaseModel):
    view: str = Field(default="upcoming", description="upcoming 또는 recent")
    platform: str | None = None
    pages: int = Field(default=1, ge=1, le=10)


class RefreshResponse(BaseModel):
    fetched: int
    stored: int
    failed: int


class CountdownResponse(BaseModel):
    days: int
    hours: int
    minutes: int
    seconds: int
    is_released: bool
    is_unscheduled: bool
    ticking: bool


class WatchlistAddRequest(BaseModel):
    external_id: int
    game_name: str = Field(..., min_length=1)
    background_image: str | None = None
    release_date: date | None = None
    platforms: list[str] | None = None
    notify: bool | None = None


class WatchlistItemResponse(BaseModel):
    id: uuid.UUID
    external_id: int
    game_name: str
    background_image: str | None = None
    release_date: date | None = None
    platforms: list[str] | None = None
    added_at: datetime
    notify: bool
    countdown: CountdownResponse


class WatchlistPartitionResponse(BaseModel):
    upcoming: list[WatchlistItemResponse]
    released: list[WatchlistItemResponse]


class WatchlistAddResponse(BaseModel):
    id: uuid.UUID


@app.exception_handler(Unauthenticated)
async def _unauthenticated_handler(_: Request, exc: Unauthenticated) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": str(exc)},
        headers={"WWW-Authenticate": "Bearer"},
    )


@app.exception_handler(SlugConflict)
async def _slug_conflict_handler(_: Request, exc: SlugConflict) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(StorageFault)
async def _storage_fault_handler(_: Request, exc: StorageFault) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "저장소를 사용할 수 없습니다. 잠시 후 다시 시도해 주세요."},
    )


def _gateway_errors(exc: RAWGError) -> HTTPException:
    if isinstance(exc, RAWGNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Game not found")
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail="게임 정보를 불러오는 중 문제가 발생했습니다.",
    )


@app.get("/games", response_model=GamePageResponse)
def search_games(
    view: str = Query(default="upcoming"),
    platform: str | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=40),
    search: str | None = None,
) -> GamePageResponse:
    """Read-through gateway search; results are not cached."""

    try:
        result = RAWGClient().search_games(
            view=view,
            platform=platform,
            page=page,
            page_size=page_size,
            search=search,
        )
    except RAWGError as exc:
        raise _gateway_errors(exc) from exc
    return GamePageResponse(
        games=[_game_data_to_response(game) for game in result.games],
        count=result.count,
        next=result.next,
        previous=result.previous,
        page=result.page,
    )


@app.get("/games/{id_or_slug}", response_model=GameDetailResponse)
def get_game_details(id_or_slug: str) -> GameDetailResponse:
    try:
        game = RAWGClient().get_game(id_or_slug)
    except RAWGError as exc:
        raise _gateway_errors(exc) from exc
    return _game_data_to_response(game, detail=True)


@app.post("/catalog/refresh", response_model=RefreshResponse)
def refresh(
    payload: RefreshRequest,
    session: Session = Depends(get_session),
) -> RefreshResponse:
    try:
        result = refresh_catalog(
            session,
            catalog_repo,
            RAWGClient(),
            view=payload.view,
            platform=payload.platform,
            pages=payload.pages,
        )
    except RAWGError as exc:
        raise _gateway_errors(exc) from exc
    return RefreshResponse(fetched=result.fetched, stored=result.stored, failed=result.failed)


@app.post("/catalog/games/{id_or_slug}", response_model=GameResponse)
def cache_single_game(id_or_slug: str, session: Session = Depends(get_session)) -> GameResponse:
    try:
        record = cache_game(session, catalog_repo, RAWGClient(), id_or_slug)
    except RAWGError as exc:
        raise _gateway_errors(exc) from exc
    return _game_to_response(record)


@app.get("/catalog", response_model=list[GameResponse])
def list_catalog(
    platform: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    order: str = Query(default="recent", pattern="^(recent|release_date)$"),
    session: Session = Depends(get_session),
) -> list[GameResponse]:
    records = catalog_repo.list(session, platform=platform, limit=limit, order=order)
    return [_game_to_response(record) for record in records]


@app.get("/catalog/upcoming", response_model=list[GameResponse])
def list_upcoming(
    platform: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    session: Session = Depends(get_session),
) -> list[GameResponse]:
    records = catalog_repo.upcoming(session, platform=platform, limit=limit)
    return [_game_to_response(record) for record in records]


@app.get("/catalog/recent", response_model=list[GameResponse])
def list_recently_released(
    limit: int = Query(default=20, ge=1, le=200),
    session: Session = Depends(get_session),
) -> list[GameResponse]:
    records = catalog_repo.recently_released(session, limit=limit)
    return [_game_to_response(record) for record in records]


@app.get("/catalog/slug/{slug}", response_model=GameResponse | None)
def get_cached_by_slug(slug: str, session: Session = Depends(get_session)) -> GameResponse | None:
    record = catalog_repo.get_by_slug(session, slug)
    return _game_to_response(record) if record else None


@app.get("/catalog/{external_id}", response_model=GameResponse | None)
def get_cached_by_external_id(
    external_id: int, session: Session = Depends(get_session)
) -> GameResponse | None:
    record = catalog_repo.get_by_external_id(session, external_id)
    return _game_to_response(record) if record else None


@app.get("/watchlist", response_model=list[WatchlistItemResponse])
def list_watchlist(
    session: Session = Depends(get_session),
    owner: str | None = Depends(get_current_owner),
) -> list[WatchlistItemResponse]:
    return [_entry_to_response(entry) for entry in watchlist_repo.list(session, owner)]


@app.get("/watchlist/by-release-date", response_model=WatchlistPartitionResponse)
def watchlist_by_release_date(
    session: Session = Depends(get_session),
    owner: str | None = Depends(get_current_owner),
) -> WatchlistPartitionResponse:
    partition = watchlist_repo.by_release_date(session, owner)
    return WatchlistPartitionResponse(
        upcoming=[_entry_to_response(entry) for entry in partition.upcoming],
        released=[_entry_to_response(entry) for entry in partition.released],
    )


@app.get("/watchlist/count", response_model=int)
def watchlist_count(
    session: Session = Depends(get_session),
    owner: str | None = Depends(get_current_owner),
) -> int:
    return watchlist_repo.count(session, owner)


@app.get("/watchlist/{external_id}/member", response_model=bool)
def watchlist_membership(
    external_id: int,
    session: Session = Depends(get_session),
    owner: str | None = Depends(get_current_owner),
) -> bool:
    return watchlist_repo.is_member(session, owner, external_id)


@app.post("/watchlist", response_model=WatchlistAddResponse)
def add_to_watchlist(
    payload: WatchlistAddRequest,
    session: Session = Depends(get_session),
    owner: str | None = Depends(get_current_owner),
) -> WatchlistAddResponse:
    entry_id = watchlist_repo.add(session, owner, payload.model_dump())
    return WatchlistAddResponse(id=entry_id)


@app.delete("/watchlist/{external_id}", response_model=bool)
def remove_from_watchlist(
    external_id: int,
    session: Session = Depends(get_session),
    owner: str | None = Depends(get_current_owner),
) -> bool:
    return watchlist_repo.remove(session, owner, external_id)


@app.post("/watchlist/{external_id}/notify", response_model=bool)
def toggle_watchlist_notify(
    external_id: int,
    session: Session = Depends(get_session),
    owner: str | None = Depends(get_current_owner),
) -> bool:
    return watchlist_repo.toggle_notify(session, owner, external_id)


def _game_to_response(record: GameRecord) -> GameResponse:
    return GameResponse(
        external_id=record.external_id,
        name=record.name,
        slug=record.slug,
        background_image=record.background_image,
        release_date=record.release_date,
        metacritic=record.metacritic,
        rating=record.rating,
        platforms=list(record.platforms or []),
        genres=list(record.genres or []),
        description=record.description,
        release_label=relative_release_label(record.release_date),
        last_updated=record.last_updated,
    )


def _game_data_to_response(
    game: GameData, *, detail: bool = False
) -> GameResponse | GameDetailResponse:
    fields = dict(
        external_id=game.external_id,
        name=game.name,
        slug=game.slug,
        background_image=game.background_image,
        release_date=game.release_date,
        metacritic=game.metacritic,
        rating=game.rating,
        platforms=game.platforms,
        genres=game.genres,
        description=game.description,
        release_label=relative_release_label(game.release_date),
    )
    if not detail:
        return GameResponse(**fields)
    return GameDetailResponse(
        **fields,
        website=game.website,
        developers=game.developers,
        publishers=game.publishers,
        esrb_rating=game.esrb_rating,
        screenshots=game.screenshots,
    )


def _entry_to_response(entry: WatchlistEntry) -> WatchlistItemResponse:
    state = countdown(entry.release_date)
    return WatchlistItemResponse(
        id=entry.id,
        external_id=entry.external_id,
        game_name=entry.game_name,
        background_image=entry.background_image,
        release_date=entry.release_date,
        platforms=entry.platforms,
        added_at=entry.added_at,
        notify=entry.notify,
        countdown=CountdownResponse(
            days=state.days,
            hours=state.hours,
            minutes=state.minutes,
            seconds=state.seconds,
            is_released=state.is_released,
            is_unscheduled=state.is_unscheduled,
            ticking=state.ticking,
        ),
    )
