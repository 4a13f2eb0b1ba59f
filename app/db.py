"""Database session management and repositories."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Iterator, Mapping

from sqlalchemy import create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import get_settings
from app.models import Base, GameRecord, WatchlistEntry
from app.services.countdown import parse_release_date

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base exception for catalog and watchlist store failures."""


class StorageFault(StoreError):
    """Raised when the underlying database is unavailable or inconsistent."""


class SlugConflict(StorageFault):
    """Raised when an upsert would give an existing slug to another game."""


class Unauthenticated(StoreError):
    """Raised when a watchlist write has no resolved owner."""


def _database_url() -> str:
    """Return the SQLAlchemy URL from settings (defaults to local SQLite for dev)."""
    return get_settings().database_url


def enable_sqlite_savepoints(engine: Engine) -> None:
    """Let pysqlite honour SAVEPOINT by taking over BEGIN from the driver."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


engine = create_engine(_database_url(), future=True)
if engine.dialect.name == "sqlite":
    enable_sqlite_savepoints(engine)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def init_models() -> None:
    """Create tables if they do not exist (handy for local dev)."""
    Base.metadata.create_all(bind=engine)


def get_session() -> Iterator[Session]:
    """FastAPI-friendly dependency that manages commits/rollbacks."""

    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Storage failure during %s: %s", operation, exc)
        raise StorageFault(f"{operation} failed") from exc


def _unique_names(values: Iterable[str] | None) -> list[str]:
    """Collapse a platform/genre collection into a duplicate-free list."""
    if not values:
        return []
    if isinstance(values, (str, bytes, Mapping)) or not isinstance(values, Iterable):
        raise ValueError(f"expected a list of names, got {type(values).__name__}")
    seen: dict[str, None] = {}
    for value in values:
        if value:
            seen.setdefault(str(value), None)
    return list(seen)


def _matches_platform(platforms: Iterable[str] | None, platform: str) -> bool:
    needle = platform.strip().lower()
    return any(needle in name.lower() for name in platforms or [])


_GAME_FIELDS = (
    "name",
    "slug",
    "background_image",
    "release_date",
    "metacritic",
    "rating",
    "platforms",
    "genres",
    "description",
)


def _normalize_game(record: Mapping[str, Any]) -> dict[str, Any]:
    """Validate an upsert payload and coerce it to column values.

    Only keys present in ``record`` are returned, so an upsert patches the
    fields it was given and leaves the rest of a cached row alone.
    """

    missing = [key for key in ("external_id", "name", "slug") if record.get(key) in (None, "")]
    if missing:
        raise ValueError(f"game payload is missing {', '.join(missing)}")

    try:
        values: dict[str, Any] = {"external_id": int(record["external_id"])}
        for key in _GAME_FIELDS:
            if key not in record:
                continue
            value = record[key]
            if key == "release_date":
                value = parse_release_date(value)
            elif key in {"platforms", "genres"}:
                value = _unique_names(value)
            elif key == "metacritic" and value is not None:
                value = int(value)
                if not 0 <= value <= 100:
                    raise ValueError(f"metacritic must be within 0..100, got {value}")
            elif key == "rating" and value is not None:
                value = float(value)
            elif key in {"name", "slug"} and not isinstance(value, str):
                raise ValueError(f"{key} must be text, got {type(value).__name__}")
            values[key] = value
    except TypeError as exc:
        raise ValueError(f"malformed game payload: {exc}") from exc
    return values


class CatalogRepository:
    """Cached RAWG games: upsert-based refresh plus list/lookup queries.

    ``upcoming`` and ``recently_released`` examine at most ``scan_window``
    rows from the release-date index before the platform filter and limit
    apply, so a very large catalog can undercount a filtered page.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] | None = None,
        today: Callable[[], date] | None = None,
        scan_window: int | None = None,
        recent_window_days: int | None = None,
    ) -> None:
        settings = get_settings()
        self.clock = clock or _utcnow
        self.today = today or date.today
        self.scan_window = scan_window or settings.catalog_scan_window
        self.recent_window_days = (
            settings.recent_window_days if recent_window_days is None else recent_window_days
        )
        self.list_limit = settings.catalog_list_limit
        self.recent_limit = settings.catalog_recent_limit

    def upsert(self, session: Session, record: Mapping[str, Any]) -> uuid.UUID:
        """Insert the game or patch the cached row with the same external id."""

        values = _normalize_game(record)
        try:
            return self._upsert_once(session, values)
        except IntegrityError:
            # Another writer inserted this external id first; patch its row instead.
            logger.debug("Retrying upsert for external_id=%s", values["external_id"])
        try:
            return self._upsert_once(session, values)
        except IntegrityError as exc:
            raise StorageFault(
                f"upsert of external_id={values['external_id']} kept violating a unique index"
            ) from exc

    def bulk_upsert(
        self, session: Session, records: Iterable[Mapping[str, Any]]
    ) -> list[uuid.UUID | None]:
        """Upsert each record independently; failed records yield ``None``."""

        results: list[uuid.UUID | None] = []
        for record in records:
            try:
                results.append(self.upsert(session, record))
            except (StoreError, ValueError, TypeError) as exc:
                logger.warning(
                    "Skipping catalog record external_id=%s: %s",
                    record.get("external_id"),
                    exc,
                )
                results.append(None)
        return results

    def list(
        self,
        session: Session,
        *,
        platform: str | None = None,
        limit: int | None = None,
        order: str = "recent",
    ) -> list[GameRecord]:
        """Return cached games, most recently written first unless ``order="release_date"``."""

        limit = limit or self.list_limit
        query = select(GameRecord)
        if order == "release_date":
            query = query.order_by(
                GameRecord.release_date.is_(None),
                GameRecord.release_date,
                GameRecord.external_id,
            )
        elif order == "recent":
            query = query.order_by(
                GameRecord.last_updated.desc(),
                GameRecord.created_at.desc(),
            )
        else:
            raise ValueError(f"unknown catalog ordering: {order!r}")

        with _storage_errors("catalog list"):
            if not platform:
                return list(session.scalars(query.limit(limit)))
            matches: list[GameRecord] = []
            for game in session.scalars(query):
                if _matches_platform(game.platforms, platform):
                    matches.append(game)
                    if len(matches) >= limit:
                        break
            return matches

    def upcoming(
        self,
        session: Session,
        *,
        platform: str | None = None,
        limit: int | None = None,
    ) -> list[GameRecord]:
        limit = limit or self.list_limit
        query = (
            select(GameRecord)
            .where(GameRecord.release_date >= self.today())
            .order_by(GameRecord.release_date, GameRecord.external_id)
            .limit(self.scan_window)
        )
        with _storage_errors("catalog upcoming"):
            candidates = list(session.scalars(query))
        if platform:
            candidates = [game for game in candidates if _matches_platform(game.platforms, platform)]
        return candidates[:limit]

    def recently_released(self, session: Session, *, limit: int | None = None) -> list[GameRecord]:
        limit = limit or self.recent_limit
        today = self.today()
        window_start = today - timedelta(days=self.recent_window_days)
        query = (
            select(GameRecord)
            .where(GameRecord.release_date >= window_start, GameRecord.release_date <= today)
            .order_by(GameRecord.release_date.desc(), GameRecord.external_id)
            .limit(self.scan_window)
        )
        with _storage_errors("catalog recently released"):
            return list(session.scalars(query))[:limit]

    def get_by_slug(self, session: Session, slug: str) -> GameRecord | None:
        query = select(GameRecord).where(GameRecord.slug == slug)
        with _storage_errors("catalog slug lookup"):
            return session.execute(query).scalar_one_or_none()

    def get_by_external_id(self, session: Session, external_id: int) -> GameRecord | None:
        query = select(GameRecord).where(GameRecord.external_id == external_id)
        with _storage_errors("catalog id lookup"):
            return session.execute(query).scalar_one_or_none()

    def _upsert_once(self, session: Session, values: dict[str, Any]) -> uuid.UUID:
        try:
            with session.begin_nested():
                game = self._write(session, values)
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Storage failure upserting external_id=%s: %s", values["external_id"], exc)
            raise StorageFault("upsert failed") from exc
        return game.id

    def _write(self, session: Session, values: dict[str, Any]) -> GameRecord:
        external_id = values["external_id"]
        game = session.execute(
            select(GameRecord).where(GameRecord.external_id == external_id).with_for_update()
        ).scalar_one_or_none()

        slug_owner = session.execute(
            select(GameRecord.external_id).where(
                GameRecord.slug == values["slug"],
                GameRecord.external_id != external_id,
            )
        ).scalar_one_or_none()
        if slug_owner is not None:
            raise SlugConflict(
                f"slug '{values['slug']}' already belongs to external_id={slug_owner}"
            )

        now = self.clock()
        if game is None:
            game = GameRecord(external_id=external_id, created_at=now, platforms=[], genres=[])
            session.add(game)
            logger.debug("Caching new game external_id=%s", external_id)
        else:
            logger.debug("Refreshing cached game external_id=%s", external_id)
        for key, value in values.items():
            if key != "external_id":
                setattr(game, key, value)
        game.last_updated = now
        session.flush()
        return game


@dataclass
class WatchlistPartition:
    """A user's watchlist split around today's date."""

    upcoming: list[WatchlistEntry] = field(default_factory=list)
    released: list[WatchlistEntry] = field(default_factory=list)


class WatchlistRepository:
    """Per-user watchlist rows.

    Every call takes the resolved owner id (``None`` when the caller is
    anonymous). Reads answer empty results for anonymous callers while
    writes raise :class:`Unauthenticated`.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] | None = None,
        today: Callable[[], date] | None = None,
    ) -> None:
        self.clock = clock or _utcnow
        self.today = today or date.today

    def list(self, session: Session, owner: str | None) -> list[WatchlistEntry]:
        if not owner:
            return []
        query = (
            select(WatchlistEntry)
            .where(WatchlistEntry.owner == owner)
            .order_by(WatchlistEntry.added_at.desc())
        )
        with _storage_errors("watchlist list"):
            return list(session.scalars(query))

    def by_release_date(self, session: Session, owner: str | None) -> WatchlistPartition:
        """Split entries into upcoming (soonest first) and released (newest added first).

        Entries without a release date count as released so the upcoming
        bucket only holds games with a known date.
        """

        partition = WatchlistPartition()
        today = self.today()
        for entry in self.list(session, owner):
            if entry.release_date is not None and entry.release_date >= today:
                partition.upcoming.append(entry)
            else:
                partition.released.append(entry)
        partition.upcoming.sort(key=lambda entry: entry.release_date)
        return partition

    def get(self, session: Session, owner: str | None, external_id: int) -> WatchlistEntry | None:
        if not owner:
            return None
        with _storage_errors("watchlist lookup"):
            return self._find(session, owner, external_id)

    def is_member(self, session: Session, owner: str | None, external_id: int) -> bool:
        return self.get(session, owner, external_id) is not None

    def count(self, session: Session, owner: str | None) -> int:
        if not owner:
            return 0
        query = select(func.count()).select_from(WatchlistEntry).where(WatchlistEntry.owner == owner)
        with _storage_errors("watchlist count"):
            return session.execute(query).scalar_one()

    def add(self, session: Session, owner: str | None, payload: Mapping[str, Any]) -> uuid.UUID:
        """Track a game for ``owner``; re-adding returns the existing entry untouched."""

        owner = self._require_owner(owner)
        if payload.get("external_id") is None or not payload.get("game_name"):
            raise ValueError("watchlist payload requires external_id and game_name")
        external_id = int(payload["external_id"])

        try:
            existing = self._find(session, owner, external_id)
            if existing is not None:
                return existing.id
            notify = payload.get("notify")
            platforms = payload.get("platforms")
            entry = WatchlistEntry(
                owner=owner,
                external_id=external_id,
                game_name=payload["game_name"],
                background_image=payload.get("background_image"),
                release_date=parse_release_date(payload.get("release_date")),
                platforms=_unique_names(platforms) if platforms is not None else None,
                added_at=self.clock(),
                notify=True if notify is None else bool(notify),
            )
            with session.begin_nested():
                session.add(entry)
            logger.debug("Owner %s now tracks external_id=%s", owner, external_id)
            return entry.id
        except IntegrityError as exc:
            # A concurrent add won the (owner, external_id) race.
            winner = self._find(session, owner, external_id)
            if winner is None:
                raise StorageFault("watchlist add failed") from exc
            return winner.id
        except SQLAlchemyError as exc:
            logger.error("Storage failure adding external_id=%s for %s: %s", external_id, owner, exc)
            raise StorageFault("watchlist add failed") from exc

    def remove(self, session: Session, owner: str | None, external_id: int) -> bool:
        owner = self._require_owner(owner)
        with _storage_errors("watchlist remove"):
            entry = self._find(session, owner, external_id, for_update=True)
            if entry is None:
                return False
            with session.begin_nested():
                session.delete(entry)
        logger.debug("Owner %s stopped tracking external_id=%s", owner, external_id)
        return True

    def toggle_notify(self, session: Session, owner: str | None, external_id: int) -> bool:
        """Flip the notify flag and return its new value (``False`` when not tracked)."""

        owner = self._require_owner(owner)
        with _storage_errors("watchlist notify toggle"):
            entry = self._find(session, owner, external_id, for_update=True)
            if entry is None:
                return False
            with session.begin_nested():
                entry.notify = not entry.notify
            return entry.notify

    @staticmethod
    def _require_owner(owner: str | None) -> str:
        if not owner:
            raise Unauthenticated("Not authenticated")
        return owner

    @staticmethod
    def _find(
        session: Session, owner: str, external_id: int, *, for_update: bool = False
    ) -> WatchlistEntry | None:
        query = select(WatchlistEntry).where(
            WatchlistEntry.owner == owner,
            WatchlistEntry.external_id == external_id,
        )
        if for_update:
            query = query.with_for_update()
        return session.execute(query).scalar_one_or_none()
