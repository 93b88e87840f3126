"""Tests for the WhatsApp bridge gateway."""

from __future__ import annotations

import asyncio
import json
import logging
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from conftest import ALICE, BOB, GROUP
from whatsapp_economy.config import GatewayConfig
from whatsapp_economy.gateway import MessageEvent, WhatsAppGateway


def _payload(**overrides) -> dict:
    data = {
        "id": "ABC123",
        "chat_id": GROUP,
        "sender_id": ALICE,
        "text": "!balance",
        "mentions": [BOB],
        "quoted": {"sender_id": BOB},
        "push_name": "Alice",
        "timestamp": 1772366400,
    }
    data.update(overrides)
    return data


def _gateway(**overrides) -> WhatsAppGateway:
    cfg = GatewayConfig(base_url="http://bridge.test", session_id="main", **overrides)
    return WhatsAppGateway(cfg, logging.getLogger("test"))


def _mock_response() -> AsyncMock:
    resp = AsyncMock()
    resp.raise_for_status = MagicMock()
    resp.__aenter__ = AsyncMock(return_value=resp)
    resp.__aexit__ = AsyncMock(return_value=False)
    return resp


class TestMessageEvent:

    def test_from_payload(self):
        event = MessageEvent.from_payload(_payload())
        assert event.message_id == "ABC123"
        assert event.sender_id == ALICE
        assert event.mentions == [BOB]
        assert event.quoted_sender_id == BOB
        assert event.is_group is True
        assert event.timestamp.year == 2026

    def test_caption_used_when_no_text(self):
        event = MessageEvent.from_payload(_payload(text=None, caption="  !work "))
        assert event.text == "!work"

    def test_direct_chat_sender_defaults_to_chat(self):
        event = MessageEvent.from_payload(_payload(chat_id=ALICE, sender_id=None))
        assert event.sender_id == ALICE
        assert event.is_group is False

    def test_millisecond_timestamp(self):
        event = MessageEvent.from_payload(_payload(timestamp=1772366400000))
        assert event.timestamp.year == 2026
        assert event.timestamp == MessageEvent.from_payload(_payload()).timestamp

    def test_non_dict_quoted_ignored(self):
        event = MessageEvent.from_payload(_payload(quoted="abc", mentions="2348000000102"))
        assert event.quoted_sender_id is None
        assert event.mentions == []

    @pytest.mark.parametrize("overrides", [
        {"chat_id": "status@broadcast"},
        {"text": "   "},
        {"id": ""},
        {"chat_id": None},
    ])
    def test_ignored_payloads(self, overrides: dict):
        assert MessageEvent.from_payload(_payload(**overrides)) is None


class TestInbound:

    async def test_message_frame_dispatched(self):
        gateway = _gateway()
        handler = AsyncMock()
        gateway.on_message(handler)
        task = gateway.handle_frame(json.dumps({"type": "message", "message": _payload()}))
        assert task is not None
        await task
        event = handler.await_args[0][0]
        assert event.text == "!balance"
        assert gateway.messages_received == 1

    async def test_own_messages_skipped(self):
        gateway = _gateway()
        handler = AsyncMock()
        gateway.on_message(handler)
        assert gateway.handle_frame(json.dumps({"type": "message", "message": _payload(from_me=True)})) is None
        handler.assert_not_called()

    @pytest.mark.parametrize("raw", [
        "{not json",
        json.dumps([1, 2]),
        json.dumps({"type": "message", "message": "text"}),
        json.dumps({"type": "message", "message": _payload(timestamp=10**30)}),
        json.dumps({"type": "message", "message": _payload(text=42)}),
        json.dumps({"type": "connection", "state": "open"}),
        json.dumps({"type": "receipt"}),
    ])
    async def test_other_frames_ignored(self, raw: str):
        gateway = _gateway()
        gateway.on_message(AsyncMock())
        assert gateway.handle_frame(raw) is None

    async def test_bad_payloads_do_not_stop_later_messages(self):
        gateway = _gateway()
        handler = AsyncMock()
        gateway.on_message(handler)
        bad = _payload(timestamp=1e300, quoted="abc")
        assert gateway.handle_frame(json.dumps({"type": "message", "message": bad})) is None
        task = gateway.handle_frame(json.dumps({"type": "message", "message": _payload(timestamp=1772366400000)}))
        await task
        handler.assert_awaited_once()

    async def test_handler_errors_are_contained(self):
        gateway = _gateway()
        gateway.on_message(AsyncMock(side_effect=RuntimeError("boom")))
        task = gateway.handle_frame(json.dumps({"type": "message", "message": _payload()}))
        await task
        assert task.exception() is None

    async def test_run_reconnects_until_stopped(self):
        gateway = _gateway(reconnect_initial_seconds=0.01, reconnect_max_seconds=0.02)
        gateway._listen = AsyncMock(side_effect=aiohttp.ClientConnectionError("refused"))
        runner = asyncio.create_task(gateway.run())
        for _ in range(100):
            if gateway._listen.await_count >= 3:
                break
            await asyncio.sleep(0.01)
        await gateway.stop()
        await asyncio.wait_for(runner, timeout=1)
        assert gateway._listen.await_count >= 3
        assert gateway.connected is False

    async def test_run_survives_unexpected_errors(self):
        gateway = _gateway(reconnect_initial_seconds=0.01, reconnect_max_seconds=0.02)
        gateway._listen = AsyncMock(side_effect=ValueError("bad frame"))
        runner = asyncio.create_task(gateway.run())
        for _ in range(100):
            if gateway._listen.await_count >= 2:
                break
            await asyncio.sleep(0.01)
        await gateway.stop()
        await asyncio.wait_for(runner, timeout=1)
        assert gateway._listen.await_count >= 2


class TestOutbound:

    async def test_send_before_start(self):
        assert await _gateway().send_message(GROUP, "hi") is False

    async def test_reply_quotes_and_mentions(self):
        gateway = _gateway()
        session = MagicMock()
        session.post = MagicMock(return_value=_mock_response())
        gateway._session = session
        event = MessageEvent.from_payload(_payload())

        assert await gateway.reply(event, "done", [BOB]) is True
        path = session.post.call_args[0][0]
        body = session.post.call_args[1]["json"]
        assert path == "/sessions/main/messages"
        assert body == {"chat_id": GROUP, "text": "done", "mentions": [BOB], "quoted_message_id": "ABC123"}

    async def test_react(self):
        gateway = _gateway()
        session = MagicMock()
        session.post = MagicMock(return_value=_mock_response())
        gateway._session = session
        event = MessageEvent.from_payload(_payload())

        assert await gateway.react(event, "🏓") is True
        assert session.post.call_args[0][0] == "/sessions/main/reactions"
        assert session.post.call_args[1]["json"]["emoji"] == "🏓"

    async def test_send_failure_returns_false(self):
        gateway = _gateway()
        resp = _mock_response()
        resp.raise_for_status = MagicMock(side_effect=aiohttp.ClientError("500"))
        session = MagicMock()
        session.post = MagicMock(return_value=resp)
        gateway._session = session
        assert await gateway.send_message(GROUP, "hi") is False

    async def test_status_when_stopped(self):
        assert await _gateway().get_status() == {"state": "stopped"}

    async def test_start_and_stop(self):
        gateway = _gateway(api_token="secret")
        await gateway.start()
        assert gateway._session is not None
        assert gateway._session.headers["Authorization"] == "Bearer secret"
        await gateway.stop()
        assert gateway._session is None
