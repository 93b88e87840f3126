"""Utility plugins — ping, help, info, admin panel, calc, joke, quote, weather."""

from __future__ import annotations

import logging
import platform
import random
import time
from typing import TYPE_CHECKING

from . import __version__
from .calculator import CalculationError, evaluate, format_result
from .errors import ValidationError
from .message_handler import Command
from .utils import format_duration, now_utc
from .web_client import WeatherError

if TYPE_CHECKING:
    from .command_locks import CommandLockManager
    from .config import AppConfig
    from .database import LedgerDatabase
    from .gateway import MessageEvent, WhatsAppGateway
    from .message_handler import MessageHandler
    from .permissions import Permissions
    from .web_client import PublicApiClient

LOCAL_JOKES: list[tuple[str, str]] = [
    ("Why don't scientists trust atoms?", "Because they make up everything!"),
    ("Why did the scarecrow win an award?", "He was outstanding in his field!"),
    ("Why don't eggs tell jokes?", "They'd crack each other up!"),
    ("What do you call a fake noodle?", "An impasta!"),
    ("Why did the math book look so sad?", "Because it was full of problems!"),
    ("What do you call a bear with no teeth?", "A gummy bear!"),
    ("Why can't a bicycle stand up by itself?", "It's two tired!"),
    ("What do you call a sleeping bull?", "A bulldozer!"),
]

LOCAL_QUOTES: list[tuple[str, str]] = [
    ("The only way to do great work is to love what you do.", "Steve Jobs"),
    ("It always seems impossible until it's done.", "Nelson Mandela"),
    ("Success is not final, failure is not fatal: it is the courage to continue that counts.", "Winston Churchill"),
    ("The best time to plant a tree was 20 years ago. The second best time is now.", "Chinese Proverb"),
    ("Don't watch the clock; do what it does. Keep going.", "Sam Levenson"),
    ("Whether you think you can or you think you can't, you're right.", "Henry Ford"),
]

CATEGORY_TITLES = {
    "general": "📌 General",
    "economy": "💰 Economy",
    "fun": "🎉 Fun",
    "utility": "🧰 Utility",
    "admin": "🛡️ Admin",
}


class UtilityCommands:
    """Small stateless plugins plus the admin panel."""

    def __init__(
        self,
        config: AppConfig,
        gateway: WhatsAppGateway,
        web_client: PublicApiClient,
        database: LedgerDatabase,
        locks: CommandLockManager,
        permissions: Permissions,
        message_handler: MessageHandler,
        logger: logging.Logger | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config
        self._gateway = gateway
        self._web = web_client
        self._db = database
        self._locks = locks
        self._permissions = permissions
        self._handler = message_handler
        self._logger = logger or logging.getLogger("economy.utility")
        self._rng = rng or random.Random()
        self._started_at = time.time()

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self._started_at

    def commands(self) -> list[Command]:
        p = self._config.bot.prefix
        plugins = self._config.plugins
        cmds = [Command("help", self._cmd_help, ("menu",), "Show available commands", f"{p}help [command]", "general")]
        if plugins.ping:
            cmds.append(Command("ping", self._cmd_ping, (), "Check if the bot is alive", f"{p}ping", "general"))
        if plugins.info:
            cmds.append(Command("info", self._cmd_info, (), "About this bot", f"{p}info", "general"))
        if plugins.admin:
            cmds.append(Command("admin", self._cmd_admin, (), "Admin panel", f"{p}admin [status|stats|config|help]", "admin", admin_only=True))
        if plugins.calculator:
            cmds.append(Command("calc", self._cmd_calc, ("calculate",), "Evaluate a math expression", f"{p}calc 2 * (3 + 4)", "utility"))
        if plugins.joke:
            cmds.append(Command("joke", self._cmd_joke, (), "Random joke", f"{p}joke", "fun"))
        if plugins.quote:
            cmds.append(Command("quote", self._cmd_quote, (), "Inspirational quote", f"{p}quote", "fun"))
        if plugins.weather:
            cmds.append(Command("weather", self._cmd_weather, (), "Current weather for a city", f"{p}weather <city>", "utility"))
        return cmds

    # ══════════════════════════════════════════════════════════
    #  General
    # ══════════════════════════════════════════════════════════

    async def _cmd_ping(self, event: MessageEvent, args: list[str]) -> str:
        await self._gateway.react(event, "🏓")
        latency_ms = max(0, int((now_utc() - event.timestamp).total_seconds() * 1000))
        return (
            f"🏓 *Pong!*\n"
            f"⚡ Latency: {latency_ms} ms\n"
            f"⏱️ Uptime: {format_duration(self.uptime_seconds)}"
        )

    async def _cmd_help(self, event: MessageEvent, args: list[str]) -> str:
        p = self._config.bot.prefix
        is_admin = self._permissions.is_admin(event.sender_id)

        if args:
            command = self._handler.lookup(args[0].lstrip(p))
            if command is None or ((command.admin_only or command.owner_only) and not is_admin):
                raise ValidationError(f"❓ No command named '{args[0]}'.")
            aliases = ", ".join(command.aliases) or "none"
            return (
                f"📖 *{command.name}*\n"
                f"{command.description}\n\n"
                f"Usage: {command.usage}\n"
                f"Aliases: {aliases}"
            )

        grouped: dict[str, list[str]] = {}
        for command in self._handler.commands:
            if (command.admin_only or command.owner_only) and not is_admin:
                continue
            grouped.setdefault(command.category, []).append(f"• {p}{command.name}: {command.description}")

        lines = [f"🤖 *{self._config.bot.name}*", ""]
        for category, entries in grouped.items():
            lines.append(f"*{CATEGORY_TITLES.get(category, category.title())}*")
            lines.extend(entries)
            lines.append("")
        lines.append(f"Type {p}help <command> for details.")
        return "\n".join(lines)

    async def _cmd_info(self, event: MessageEvent, args: list[str]) -> str:
        plugins = [name for name, enabled in self._config.plugins.model_dump().items() if enabled]
        return (
            f"🤖 *{self._config.bot.name}* v{__version__}\n\n"
            f"🐍 Python {platform.python_version()} on {platform.system()}\n"
            f"⏱️ Uptime: {format_duration(self.uptime_seconds)}\n"
            f"🔣 Prefix: {self._config.bot.prefix}\n"
            f"🧩 Plugins: {', '.join(plugins)}"
        )

    async def _cmd_admin(self, event: MessageEvent, args: list[str]) -> str:
        section = args[0].lower() if args else "status"
        if section == "status":
            db_ok = await self._db.ping()
            return (
                f"🛡️ *Bot Status*\n\n"
                f"📡 Gateway: {'connected' if self._gateway.connected else 'disconnected'}\n"
                f"🗄️ Database: {'ok' if db_ok else 'unreachable'}\n"
                f"🔒 Active command locks: {self._locks.active_count}\n"
                f"⏱️ Uptime: {format_duration(self.uptime_seconds)}"
            )
        if section == "stats":
            stats = await self._db.get_economy_stats()
            return (
                f"📊 *Bot Statistics*\n\n"
                f"💬 Messages seen: {self._handler.messages_seen:,}\n"
                f"⌨️ Commands processed: {self._handler.commands_processed:,}\n"
                f"⚠️ Command errors: {self._handler.command_errors:,}\n"
                f"👥 Accounts: {stats['accounts']:,}\n"
                f"💰 Circulation: {stats['circulation']:,}\n"
                f"🧾 Transactions: {stats['transactions']:,}"
            )
        if section == "config":
            cfg = self._config
            return (
                f"⚙️ *Configuration*\n\n"
                f"🔣 Prefix: {cfg.bot.prefix}\n"
                f"🕒 Timezone: {cfg.bot.timezone}\n"
                f"⏳ Rate limit: {cfg.commands.rate_limit_per_minute}/min\n"
                f"👮 Admins: {self._permissions.admin_count}\n"
                f"🌤️ Weather: {'enabled' if self._web.weather_enabled else 'not configured'}"
            )
        p = self._config.bot.prefix
        return (
            f"🛡️ *Admin Panel*\n\n"
            f"{p}admin status\n{p}admin stats\n{p}admin config\n\n"
            f"{p}ecosettings [key value]\n{p}ecoaddmoney <amount> @user\n"
            f"{p}ecosetbalance <amount> @user\n{p}ecoreset confirm (owner)"
        )

    # ══════════════════════════════════════════════════════════
    #  Utility & Fun
    # ══════════════════════════════════════════════════════════

    async def _cmd_calc(self, event: MessageEvent, args: list[str]) -> str:
        if not args:
            raise ValidationError(f"❓ Usage: {self._config.bot.prefix}calc <expression>")
        expression = " ".join(args)
        try:
            result = evaluate(expression)
        except CalculationError as e:
            return f"❌ Can't calculate that: {e}"
        return f"🧮 {expression} = *{format_result(result)}*"

    async def _cmd_joke(self, event: MessageEvent, args: list[str]) -> str:
        await self._gateway.react(event, "😂")
        joke = await self._web.fetch_joke()
        if joke is None:
            joke = self._rng.choice(LOCAL_JOKES)
        setup, punchline = joke
        return f"😂 *Random Joke*\n\n{setup}\n\n*{punchline}* 🤣"

    async def _cmd_quote(self, event: MessageEvent, args: list[str]) -> str:
        await self._gateway.react(event, "💭")
        quote = await self._web.fetch_quote()
        if quote is None:
            quote = self._rng.choice(LOCAL_QUOTES)
        content, author = quote
        return f"💭 *Quote of the Moment*\n\n_\"{content}\"_\n\n~ {author}"

    async def _cmd_weather(self, event: MessageEvent, args: list[str]) -> str:
        if not self._web.weather_enabled:
            return "❌ Weather service is not configured. Please contact the bot administrator."
        if not args:
            raise ValidationError(f"❓ Please provide a city name, e.g. {self._config.bot.prefix}weather London")

        city = " ".join(args)
        await self._gateway.react(event, "🌤️")
        try:
            report = await self._web.fetch_weather(city)
        except WeatherError as e:
            if e.kind == "not_found":
                return f"❌ City \"{city}\" not found. Please check the spelling and try again."
            if e.kind == "auth":
                return "❌ Weather service authentication failed. Please contact the administrator."
            return "❌ Unable to fetch weather data. Please try again later."

        visibility = f"{report.visibility_km:.1f} km" if report.visibility_km is not None else "N/A"
        return (
            f"🌤️ *Weather Report*\n\n"
            f"📍 Location: {report.city}, {report.country}\n"
            f"🌡️ Temperature: {round(report.temperature)}°C\n"
            f"🤔 Feels like: {round(report.feels_like)}°C\n"
            f"📊 Condition: {report.description}\n"
            f"💧 Humidity: {report.humidity}%\n"
            f"🌬️ Wind: {report.wind_speed} m/s\n"
            f"👁️ Visibility: {visibility}"
        )
