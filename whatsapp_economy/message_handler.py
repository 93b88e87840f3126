"""Message handler — turns prefixed chat messages into plugin commands.

Plugins contribute ``Command`` entries; the handler builds one lookup table
from every name and alias at startup. A handler returns the reply text (or a
``Reply`` carrying mentions); ``EconomyError`` rejections are answered with
their message and anything else is logged and answered generically.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, Iterable, Union

from .errors import EconomyError, PermissionDenied
from .gateway import MessageEvent

if TYPE_CHECKING:
    from .gateway import WhatsAppGateway
    from .permissions import Permissions


@dataclass
class Reply:
    text: str
    mentions: list[str] = field(default_factory=list)


HandlerResult = Union[Reply, str, None]
CommandCallback = Callable[[MessageEvent, list[str]], Awaitable[HandlerResult]]


@dataclass(frozen=True)
class Command:
    name: str
    handler: CommandCallback
    aliases: tuple[str, ...] = ()
    description: str = ""
    usage: str = ""
    category: str = "general"
    admin_only: bool = False
    owner_only: bool = False


class CommandRateLimiter:
    """Sliding-window rate limiter for commands per user."""

    def __init__(self, max_per_minute: int = 10, clock: Callable[[], float] = time.time) -> None:
        self._max = max_per_minute
        self._clock = clock
        self._counters: dict[str, list[float]] = {}

    def check(self, user_id: str) -> bool:
        """Return True if the command should be allowed."""
        now = self._clock()
        cutoff = now - 60
        window = [t for t in self._counters.get(user_id, []) if t > cutoff]

        if len(window) >= self._max:
            self._counters[user_id] = window
            return False

        window.append(now)
        self._counters[user_id] = window
        return True

    def cleanup(self) -> None:
        """Remove stale entries (call periodically)."""
        cutoff = self._clock() - 120
        stale = [k for k, v in self._counters.items() if all(t < cutoff for t in v)]
        for k in stale:
            del self._counters[k]


class MessageHandler:
    """Prefix parsing, rate limiting, permission gates and dispatch."""

    def __init__(
        self,
        gateway: WhatsAppGateway,
        permissions: Permissions,
        prefix: str = "!",
        rate_limit_per_minute: int = 10,
        logger: logging.Logger | None = None,
    ) -> None:
        self._gateway = gateway
        self._permissions = permissions
        self._prefix = prefix
        self._logger = logger or logging.getLogger("economy.messages")
        self._commands: dict[str, Command] = {}
        self._ordered: list[Command] = []
        self.rate_limiter = CommandRateLimiter(max_per_minute=rate_limit_per_minute)

        # Counters (for metrics)
        self.messages_seen = 0
        self.commands_processed = 0
        self.command_errors = 0

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def commands(self) -> list[Command]:
        """Registered commands in registration order, without alias duplicates."""
        return list(self._ordered)

    def register(self, command: Command) -> None:
        for name in (command.name, *command.aliases):
            key = name.lower()
            if key in self._commands:
                raise ValueError(f"Command name '{key}' registered twice")
            self._commands[key] = command
        self._ordered.append(command)

    def register_all(self, commands: Iterable[Command]) -> None:
        for command in commands:
            self.register(command)

    def lookup(self, name: str) -> Command | None:
        return self._commands.get(name.lower())

    async def handle_message(self, event: MessageEvent) -> None:
        self.messages_seen += 1
        text = event.text.strip()
        if not text.startswith(self._prefix):
            return

        body = text[len(self._prefix):].strip()
        if not body:
            return

        parts = body.split()
        name = parts[0].lower()
        args = parts[1:]

        if not self.rate_limiter.check(event.sender_id):
            await self._gateway.reply(event, "⏳ Slow down! You're sending commands too quickly.")
            return

        command = self._commands.get(name)
        if command is None:
            await self._gateway.reply(
                event,
                f"❓ Unknown command '{name}'. Type {self._prefix}help to see what I can do.",
            )
            return

        if command.owner_only and not self._permissions.is_owner(event.sender_id):
            await self._gateway.reply(event, PermissionDenied("🚫 This command is for the bot owner only.").message)
            return
        if command.admin_only and not self._permissions.is_admin(event.sender_id):
            await self._gateway.reply(event, PermissionDenied().message)
            return

        self.commands_processed += 1
        self._logger.debug("Command %s from %s in %s", command.name, event.sender_id, event.chat_id)
        try:
            result = await command.handler(event, args)
        except EconomyError as e:
            result = e.message
        except Exception:
            self.command_errors += 1
            self._logger.exception("Command %s failed for %s", command.name, event.sender_id)
            result = "❌ Something went wrong. Please try again later."

        if result is None:
            return
        if isinstance(result, str):
            result = Reply(result)
        await self._gateway.reply(event, result.text, result.mentions or None)
