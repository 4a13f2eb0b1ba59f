"""Thin wrapper around the RAWG API to fetch game metadata."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any

import httpx

from app.core.config import get_settings
from app.services.countdown import parse_release_date
from app.services.models import GameData, GamePage


logger = logging.getLogger(__name__)


class RAWGError(Exception):
    """Base exception for RAWG-related failures."""


class RAWGNotFound(RAWGError):
    """Raised when RAWG has no game for the given id or slug."""


# RAWG platform ids per platform bucket: PS5/PS4/PS3, Xbox Series/One, Switch.
PLATFORM_BUCKETS: dict[str, tuple[int, ...]] = {
    "pc": (4,),
    "playstation": (187, 18, 16),
    "xbox": (186, 1),
    "nintendo": (7,),
}


class RAWGClient:
    """Simple RAWG HTTP client using API key auth."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.api_key = api_key or settings.rawg_api_key
        self.base_url = (base_url or settings.rawg_base_url).rstrip("/")
        self.timeout = timeout or settings.rawg_timeout
        self.page_size = settings.rawg_page_size
        self.upcoming_window_days = settings.upcoming_window_days
        self.recent_window_days = settings.recent_window_days
        self.transport = transport

    def _request(self, method: str, path: str, *, params: dict[str, Any] | None = None) -> Any:
        if not self.api_key:
            raise RAWGError("RAWG_API_KEY is not configured")
        url = f"{self.base_url}{path}"
        query = {"key": self.api_key}
        if params:
            query.update({k: v for k, v in params.items() if v is not None})
        logger.debug("RAWG %s %s params=%s", method, path, {k: v for k, v in query.items() if k != "key"})
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.request(method, url, params=query)
        except httpx.HTTPError as exc:
            raise RAWGError(f"RAWG request failed: {exc}") from exc
        if response.status_code == 404:
            raise RAWGNotFound(f"RAWG has no resource at {path}")
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise RAWGError(f"RAWG API error: {response.status_code}") from exc
        return response.json()

    def get_game(self, id_or_slug: int | str) -> GameData:
        """Fetch full details for one game by RAWG id or slug."""

        details = self._request("GET", f"/games/{id_or_slug}")
        logger.debug("RAWG details payload for %s: %s", id_or_slug, details.get("slug"))
        game = self._normalize(details)
        game.description = details.get("description_raw") or None
        game.website = details.get("website") or None
        game.developers = self._names(details.get("developers"))
        game.publishers = self._names(details.get("publishers"))
        esrb = details.get("esrb_rating") or {}
        game.esrb_rating = esrb.get("name")
        game.screenshots = [
            shot["image"] for shot in details.get("short_screenshots") or [] if shot.get("image")
        ]
        return game

    def search_games(
        self,
        *,
        view: str = "upcoming",
        platform: str | None = None,
        page: int = 1,
        page_size: int | None = None,
        search: str | None = None,
        today: date | None = None,
    ) -> GamePage:
        """Return one page of games for a view (``upcoming``/``recent``) or a search term."""

        params = self.build_search_params(
            view=view,
            platform=platform,
            page=page,
            page_size=page_size,
            search=search,
            today=today,
        )
        payload = self._request("GET", "/games", params=params)
        return GamePage(
            games=[self._normalize(item) for item in payload.get("results") or []],
            count=int(payload.get("count") or 0),
            next=payload.get("next"),
            previous=payload.get("previous"),
            page=page,
        )

    def build_search_params(
        self,
        *,
        view: str = "upcoming",
        platform: str | None = None,
        page: int = 1,
        page_size: int | None = None,
        search: str | None = None,
        today: date | None = None,
    ) -> dict[str, Any]:
        today = today or date.today()
        params: dict[str, Any] = {
            "page": page,
            "page_size": page_size or self.page_size,
            "ordering": "released" if view == "upcoming" else "-released",
        }
        if view == "upcoming":
            until = today + timedelta(days=self.upcoming_window_days)
            params["dates"] = f"{today.isoformat()},{until.isoformat()}"
        elif view == "recent":
            since = today - timedelta(days=self.recent_window_days)
            params["dates"] = f"{since.isoformat()},{today.isoformat()}"

        bucket = PLATFORM_BUCKETS.get((platform or "").lower())
        if bucket:
            params["platforms"] = ",".join(str(platform_id) for platform_id in bucket)

        if search:
            # Fuzzy relevance ranking handles abbreviations better than date ordering.
            params["search"] = search
            params.pop("ordering", None)
            params.pop("dates", None)
        return params

    def _normalize(self, item: dict[str, Any]) -> GameData:
        return GameData(
            external_id=int(item["id"]),
            name=item.get("name") or "",
            slug=item.get("slug") or str(item["id"]),
            background_image=item.get("background_image"),
            release_date=self._parse_date(item.get("released")),
            metacritic=item.get("metacritic"),
            rating=item.get("rating"),
            platforms=[
                entry["platform"]["name"]
                for entry in item.get("platforms") or []
                if (entry.get("platform") or {}).get("name")
            ],
            genres=self._names(item.get("genres")),
        )

    @staticmethod
    def _names(entries: list[dict[str, Any]] | None) -> list[str]:
        return [entry["name"] for entry in entries or [] if entry.get("name")]

    @staticmethod
    def _parse_date(raw: str | None) -> date | None:
        if not raw:
            return None
        try:
            return parse_release_date(raw)
        except ValueError:
            return None
