"""Public API client — jokes, quotes and weather over aiohttp.

Every call degrades gracefully: jokes and quotes return None on any failure
so the caller can fall back to its local list; weather raises
``WeatherError`` with a kind the caller can phrase for the user.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import aiohttp

if TYPE_CHECKING:
    from .config import PublicApisConfig, WeatherConfig


@dataclass(frozen=True)
class WeatherReport:
    city: str
    country: str
    temperature: float
    feels_like: float
    description: str
    humidity: int
    wind_speed: float
    visibility_km: float | None


class WeatherError(Exception):
    """Weather lookup failed. ``kind`` is 'not_found', 'auth' or 'unavailable'."""

    def __init__(self, kind: str, detail: str = "") -> None:
        super().__init__(f"{kind}: {detail}" if detail else kind)
        self.kind = kind


class PublicApiClient:
    """Async client for the joke, quote and weather APIs."""

    def __init__(
        self,
        apis: PublicApisConfig,
        weather: WeatherConfig,
        logger: logging.Logger | None = None,
    ) -> None:
        self._apis = apis
        self._weather = weather
        self._logger = logger or logging.getLogger("economy.web")
        self._session: aiohttp.ClientSession | None = None

    @property
    def weather_enabled(self) -> bool:
        return bool(self._weather.api_key)

    async def start(self) -> None:
        """Create the HTTP session."""
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self._apis.timeout_seconds),
        )

    async def stop(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def fetch_joke(self) -> tuple[str, str] | None:
        """Return (setup, punchline) or None."""
        data = await self._get_json(self._apis.joke_url)
        if not isinstance(data, dict) or not data.get("setup") or not data.get("punchline"):
            return None
        return data["setup"], data["punchline"]

    async def fetch_quote(self) -> tuple[str, str] | None:
        """Return (content, author) or None."""
        data = await self._get_json(self._apis.quote_url)
        if isinstance(data, list) and data:
            data = data[0]
        if not isinstance(data, dict) or not data.get("content"):
            return None
        return data["content"], data.get("author") or "Unknown"

    async def fetch_weather(self, city: str) -> WeatherReport:
        if not self.weather_enabled:
            raise WeatherError("auth", "no API key configured")
        if not self._session:
            raise WeatherError("unavailable", "client not started")

        url = self._weather.base_url.rstrip("/") + "/data/2.5/weather"
        params = {"q": city, "appid": self._weather.api_key, "units": "metric"}
        try:
            async with self._session.get(url, params=params) as resp:
                if resp.status == 404:
                    raise WeatherError("not_found", city)
                if resp.status == 401:
                    raise WeatherError("auth", "rejected API key")
                resp.raise_for_status()
                data = await resp.json()
        except WeatherError:
            raise
        except Exception as e:
            self._logger.error("Weather lookup failed for '%s': %s", city, e)
            raise WeatherError("unavailable", str(e)) from e

        return self._parse_weather(data)

    # ══════════════════════════════════════════════════════════
    #  Internal Helpers
    # ══════════════════════════════════════════════════════════

    async def _get_json(self, url: str) -> Any | None:
        if not self._session:
            return None
        try:
            async with self._session.get(url) as resp:
                resp.raise_for_status()
                return await resp.json(content_type=None)
        except Exception as e:
            self._logger.warning("GET %s failed: %s", url, e)
            return None

    @staticmethod
    def _parse_weather(data: dict) -> WeatherReport:
        main = data.get("main", {})
        visibility = data.get("visibility")
        return WeatherReport(
            city=data.get("name", "Unknown"),
            country=data.get("sys", {}).get("country", ""),
            temperature=float(main.get("temp", 0.0)),
            feels_like=float(main.get("feels_like", 0.0)),
            description=(data.get("weather") or [{}])[0].get("description", "unknown"),
            humidity=int(main.get("humidity", 0)),
            wind_speed=float(data.get("wind", {}).get("speed", 0.0)),
            visibility_km=visibility / 1000 if isinstance(visibility, (int, float)) else None,
        )
