"""Messaging gateway — talks to a WhatsApp Web bridge sidecar.

The bridge process owns the WhatsApp Web protocol, pairing and credential
storage. This module only consumes its event stream (WebSocket) and calls its
send endpoints (HTTP). Inbound messages are handed to the registered handler
as ``MessageEvent`` objects, one task per message.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import aiohttp

from .utils import now_utc

if TYPE_CHECKING:
    from .config import GatewayConfig

STATUS_BROADCAST = "status@broadcast"

# Epoch values above this are milliseconds (year 5138 in seconds)
MILLISECOND_EPOCH_THRESHOLD = 1e11

MessageCallback = Callable[["MessageEvent"], Awaitable[None]]


@dataclass
class MessageEvent:
    """One inbound chat message."""

    message_id: str
    chat_id: str
    sender_id: str
    text: str
    mentions: list[str] = field(default_factory=list)
    quoted_sender_id: str | None = None
    from_me: bool = False
    push_name: str = ""
    timestamp: datetime = field(default_factory=now_utc)

    @property
    def is_group(self) -> bool:
        return self.chat_id.endswith("@g.us")

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> MessageEvent | None:
        """Build an event from a bridge ``message`` payload.

        Returns None for payloads the bot never answers: status broadcasts,
        messages without text and payloads missing identifiers.
        """
        chat_id = data.get("chat_id") or ""
        message_id = data.get("id") or ""
        if not chat_id or not message_id or chat_id == STATUS_BROADCAST:
            return None

        text = (data.get("text") or data.get("caption") or "").strip()
        if not text:
            return None

        # Direct chats have no separate participant
        sender_id = data.get("sender_id") or chat_id

        quoted = data.get("quoted")
        if not isinstance(quoted, dict):
            quoted = {}
        mentions = data.get("mentions")
        if not isinstance(mentions, list):
            mentions = []
        return cls(
            message_id=message_id,
            chat_id=chat_id,
            sender_id=sender_id,
            text=text,
            mentions=[m for m in mentions if isinstance(m, str)],
            quoted_sender_id=quoted.get("sender_id"),
            from_me=bool(data.get("from_me", False)),
            push_name=data.get("push_name") or "",
            timestamp=_parse_epoch(data.get("timestamp")),
        )


def _parse_epoch(ts: Any) -> datetime:
    """Bridge timestamps are epoch seconds; some bridges send milliseconds."""
    if isinstance(ts, bool) or not isinstance(ts, (int, float)):
        return now_utc()
    if ts > MILLISECOND_EPOCH_THRESHOLD:
        ts = ts / 1000
    return datetime.fromtimestamp(float(ts), tz=timezone.utc)


class WhatsAppGateway:
    """Event stream consumer and send API client for the bridge."""

    def __init__(self, config: GatewayConfig, logger: logging.Logger | None = None) -> None:
        self._config = config
        self._logger = logger or logging.getLogger("economy.gateway")
        self._session: aiohttp.ClientSession | None = None
        self._handler: MessageCallback | None = None
        self._running = False
        self._connected = False
        self._stopped = asyncio.Event()
        self._tasks: set[asyncio.Task] = set()
        self.messages_received = 0

    @property
    def connected(self) -> bool:
        return self._connected

    def on_message(self, handler: MessageCallback) -> None:
        self._handler = handler

    async def start(self) -> None:
        """Create the HTTP session."""
        headers: dict[str, str] = {}
        if self._config.api_token:
            headers["Authorization"] = f"Bearer {self._config.api_token}"
        self._session = aiohttp.ClientSession(
            base_url=self._config.base_url,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self._config.request_timeout_seconds),
        )

    async def stop(self) -> None:
        """Stop listening, wait for in-flight handlers and close the session."""
        self._running = False
        self._stopped.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._session:
            await self._session.close()
            self._session = None
        self._connected = False

    # ══════════════════════════════════════════════════════════
    #  Inbound
    # ══════════════════════════════════════════════════════════

    async def run(self) -> None:
        """Consume the event stream until ``stop()``, reconnecting with backoff."""
        if self._session is None:
            await self.start()
        self._running = True
        self._stopped.clear()
        delay = self._config.reconnect_initial_seconds
        while self._running:
            try:
                await self._listen()
                delay = self._config.reconnect_initial_seconds
            except asyncio.CancelledError:
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                self._logger.warning("Gateway connection lost: %s", e)
            except Exception:
                self._logger.exception("Gateway receive loop failed")
            if not self._running:
                break
            self._logger.info("Reconnecting to gateway in %.1fs", delay)
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
            delay = min(delay * 2, self._config.reconnect_max_seconds)

    async def _listen(self) -> None:
        assert self._session is not None
        path = f"/sessions/{self._config.session_id}/events"
        async with self._session.ws_connect(path, heartbeat=30) as ws:
            self._connected = True
            self._logger.info("Connected to WhatsApp gateway session '%s'", self._config.session_id)
            try:
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        self.handle_frame(msg.data)
                    elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                        break
            finally:
                self._connected = False

    def handle_frame(self, raw: str) -> asyncio.Task | None:
        """Parse one event frame and schedule the handler for messages."""
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            self._logger.warning("Discarding malformed gateway frame")
            return None
        if not isinstance(frame, dict):
            return None

        kind = frame.get("type")
        if kind == "connection":
            self._logger.info("Gateway connection state: %s", frame.get("state"))
            return None
        if kind != "message":
            return None

        payload = frame.get("message")
        if not isinstance(payload, dict):
            return None
        try:
            event = MessageEvent.from_payload(payload)
        except Exception as e:
            self._logger.warning("Discarding unparseable message payload: %s", e)
            return None
        if event is None or event.from_me or self._handler is None:
            return None

        self.messages_received += 1
        task = asyncio.create_task(self._dispatch(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _dispatch(self, event: MessageEvent) -> None:
        try:
            await self._handler(event)
        except Exception:
            self._logger.exception("Message handler error for %s", event.sender_id)

    # ══════════════════════════════════════════════════════════
    #  Outbound
    # ══════════════════════════════════════════════════════════

    async def send_message(
        self,
        chat_id: str,
        text: str,
        mentions: list[str] | None = None,
        quoted_message_id: str | None = None,
    ) -> bool:
        """Send a text message. Returns False on failure."""
        payload: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if mentions:
            payload["mentions"] = mentions
        if quoted_message_id:
            payload["quoted_message_id"] = quoted_message_id
        return await self._post(f"/sessions/{self._config.session_id}/messages", payload)

    async def reply(
        self,
        event: MessageEvent,
        text: str,
        mentions: list[str] | None = None,
    ) -> bool:
        """Answer ``event`` in its chat, quoting it."""
        return await self.send_message(event.chat_id, text, mentions, event.message_id)

    async def react(self, event: MessageEvent, emoji: str) -> bool:
        return await self._post(
            f"/sessions/{self._config.session_id}/reactions",
            {"chat_id": event.chat_id, "message_id": event.message_id, "emoji": emoji},
        )

    async def get_status(self) -> dict[str, Any]:
        """Bridge session status, or an ``error`` entry when unreachable."""
        if not self._session:
            return {"state": "stopped"}
        try:
            async with self._session.get(f"/sessions/{self._config.session_id}/status") as resp:
                resp.raise_for_status()
                return await resp.json()
        except Exception as e:
            self._logger.warning("Gateway status check failed: %s", e)
            return {"state": "unreachable", "error": str(e)}

    async def _post(self, path: str, payload: dict[str, Any]) -> bool:
        if not self._session:
            self._logger.error("Gateway send attempted before start(): %s", path)
            return False
        try:
            async with self._session.post(path, json=payload) as resp:
                resp.raise_for_status()
                return True
        except Exception as e:
            self._logger.error("Gateway POST %s failed: %s", path, e)
            return False
