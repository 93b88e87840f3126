"""Tests for PublicApiClient — jokes, quotes and weather."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from whatsapp_economy.config import PublicApisConfig, WeatherConfig
from whatsapp_economy.web_client import PublicApiClient, WeatherError


def _make_client(api_key: str = "test-key") -> PublicApiClient:
    return PublicApiClient(PublicApisConfig(), WeatherConfig(api_key=api_key), logging.getLogger("test"))


def _session_returning(data=None, status: int = 200, error: Exception | None = None) -> MagicMock:
    mock_resp = AsyncMock()
    mock_resp.status = status
    mock_resp.raise_for_status = MagicMock(side_effect=error)
    mock_resp.json = AsyncMock(return_value=data)
    mock_resp.__aenter__ = AsyncMock(return_value=mock_resp)
    mock_resp.__aexit__ = AsyncMock(return_value=False)
    session = MagicMock()
    session.get = MagicMock(return_value=mock_resp)
    return session


WEATHER_JSON = {
    "name": "Lagos",
    "sys": {"country": "NG"},
    "main": {"temp": 29.1, "feels_like": 33.0, "humidity": 80},
    "weather": [{"description": "light rain"}],
    "wind": {"speed": 4.1},
    "visibility": 8000,
}


# ═══════════════════════════════════════════════════════════════
#  Jokes & quotes
# ═══════════════════════════════════════════════════════════════


async def test_fetch_joke():
    client = _make_client()
    client._session = _session_returning({"setup": "S", "punchline": "P"})
    assert await client.fetch_joke() == ("S", "P")


async def test_fetch_joke_incomplete():
    client = _make_client()
    client._session = _session_returning({"setup": "S"})
    assert await client.fetch_joke() is None


async def test_fetch_joke_http_error():
    client = _make_client()
    client._session = _session_returning(error=aiohttp.ClientError("503"))
    assert await client.fetch_joke() is None


async def test_fetch_before_start():
    assert await _make_client().fetch_joke() is None


async def test_fetch_quote_list_payload():
    client = _make_client()
    client._session = _session_returning([{"content": "Go on.", "author": ""}])
    assert await client.fetch_quote() == ("Go on.", "Unknown")


# ═══════════════════════════════════════════════════════════════
#  Weather
# ═══════════════════════════════════════════════════════════════


async def test_fetch_weather():
    client = _make_client()
    session = _session_returning(WEATHER_JSON)
    client._session = session
    report = await client.fetch_weather("Lagos")
    assert report.city == "Lagos"
    assert report.country == "NG"
    assert report.description == "light rain"
    assert report.humidity == 80
    assert report.visibility_km == 8.0
    params = session.get.call_args[1]["params"]
    assert params == {"q": "Lagos", "appid": "test-key", "units": "metric"}
    assert session.get.call_args[0][0] == "https://api.openweathermap.org/data/2.5/weather"


async def test_weather_missing_visibility():
    client = _make_client()
    data = dict(WEATHER_JSON)
    del data["visibility"]
    client._session = _session_returning(data)
    assert (await client.fetch_weather("Lagos")).visibility_km is None


@pytest.mark.parametrize("status,kind", [(404, "not_found"), (401, "auth")])
async def test_weather_error_status(status: int, kind: str):
    client = _make_client()
    client._session = _session_returning({}, status=status)
    with pytest.raises(WeatherError) as exc_info:
        await client.fetch_weather("Nowhere")
    assert exc_info.value.kind == kind


async def test_weather_network_error():
    client = _make_client()
    client._session = _session_returning(error=aiohttp.ClientError("reset"))
    with pytest.raises(WeatherError) as exc_info:
        await client.fetch_weather("Lagos")
    assert exc_info.value.kind == "unavailable"


async def test_weather_disabled_without_key():
    client = _make_client(api_key="")
    assert client.weather_enabled is False
    with pytest.raises(WeatherError):
        await client.fetch_weather("Lagos")


async def test_start_stop():
    client = _make_client()
    await client.start()
    assert client._session is not None
    await client.stop()
    assert client._session is None
