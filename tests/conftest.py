import datetime as dt

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from app.db import CatalogRepository, WatchlistRepository, enable_sqlite_savepoints
from app.models import Base

TODAY = dt.date(2026, 6, 15)


class Ticker:
    """Clock that moves one second forward on every reading."""

    def __init__(self, start: dt.datetime) -> None:
        self.current = start

    def __call__(self) -> dt.datetime:
        self.current += dt.timedelta(seconds=1)
        return self.current


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    session = Session(bind=engine, autoflush=False)
    yield session
    session.close()


@pytest.fixture
def ticker():
    return Ticker(dt.datetime(2026, 6, 15, 9, 0, tzinfo=dt.timezone.utc))


@pytest.fixture
def catalog(ticker):
    return CatalogRepository(clock=ticker, today=lambda: TODAY, scan_window=200)


@pytest.fixture
def watchlist(ticker):
    return WatchlistRepository(clock=ticker, today=lambda: TODAY)
