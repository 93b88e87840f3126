"""Bot orchestrator — BotApp.

config → DB init → settings load → wire components → register commands →
connect gateway → health server → run.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path

from . import __version__
from .account_registry import AccountRegistry
from .command_locks import CommandLockManager
from .config import AppConfig, load_config
from .cooldowns import CooldownTracker
from .database import LedgerDatabase
from .economy_commands import EconomyCommands
from .economy_engine import EconomyEngine
from .gateway import WhatsAppGateway
from .health_server import HealthServer
from .message_handler import MessageHandler
from .permissions import Permissions
from .settings_store import SettingsStore
from .utility_commands import UtilityCommands
from .web_client import PublicApiClient


class BotApp:
    """Top-level application orchestrator."""

    _HOUSEKEEPING_INTERVAL = 300  # seconds

    def __init__(self, config_path: str) -> None:
        self.config_path = Path(config_path)
        self.logger = logging.getLogger("economy")

        # Components (initialized in build())
        self.config: AppConfig | None = None
        self.db: LedgerDatabase | None = None
        self.settings_store: SettingsStore | None = None
        self.registry: AccountRegistry | None = None
        self.locks: CommandLockManager | None = None
        self.cooldowns: CooldownTracker | None = None
        self.permissions: Permissions | None = None
        self.engine: EconomyEngine | None = None
        self.gateway: WhatsAppGateway | None = None
        self.web_client: PublicApiClient | None = None
        self.message_handler: MessageHandler | None = None
        self.economy_commands: EconomyCommands | None = None
        self.utility_commands: UtilityCommands | None = None
        self.health_server: HealthServer | None = None

        # State
        self._running = False
        self._start_time: float | None = None
        self._housekeeping_task: asyncio.Task | None = None

    @property
    def uptime_seconds(self) -> float:
        if self._start_time is None:
            return 0.0
        return time.time() - self._start_time

    async def build(self) -> None:
        """Load config, open storage and wire every component. No network I/O."""
        self._start_time = time.time()

        # 1. Load and validate config
        self.config = load_config(str(self.config_path))
        cfg = self.config
        self.logger.info("Config loaded: %s (prefix '%s')", cfg.bot.name, cfg.bot.prefix)

        # 2. Initialize database
        self.db = LedgerDatabase(
            cfg.database.path,
            self.logger,
            busy_timeout=cfg.database.busy_timeout_seconds,
            transaction_timeout=cfg.database.transaction_timeout_seconds,
        )
        await self.db.initialize()
        self.logger.info("Database initialized: %s", cfg.database.path)

        # 3. Settings snapshot from storage, seeded by config defaults
        self.settings_store = SettingsStore(self.db, cfg.economy.defaults, self.logger)
        await self.settings_store.load()

        # 4. Economy components
        self.permissions = Permissions.from_config(cfg.admin)
        self.registry = AccountRegistry(self.db, self.settings_store, self.logger)
        self.locks = CommandLockManager(
            sweep_interval=cfg.locks.sweep_interval_seconds,
            stale_after=cfg.locks.stale_after_seconds,
            logger=self.logger,
        )
        self.cooldowns = CooldownTracker(self.db)
        self.engine = EconomyEngine(
            self.db,
            self.settings_store,
            self.registry,
            self.locks,
            self.cooldowns,
            self.permissions,
            cfg.economy.jobs,
            timezone_name=cfg.bot.timezone,
            logger=self.logger,
        )

        # 5. Messaging
        self.gateway = WhatsAppGateway(cfg.gateway, self.logger)
        self.web_client = PublicApiClient(cfg.public_apis, cfg.weather, self.logger)
        self.message_handler = MessageHandler(
            self.gateway,
            self.permissions,
            prefix=cfg.bot.prefix,
            rate_limit_per_minute=cfg.commands.rate_limit_per_minute,
            logger=self.logger,
        )

        # 6. Plugins → one lookup table
        self.utility_commands = UtilityCommands(
            cfg,
            self.gateway,
            self.web_client,
            self.db,
            self.locks,
            self.permissions,
            self.message_handler,
            logger=self.logger,
        )
        self.message_handler.register_all(self.utility_commands.commands())
        if cfg.plugins.economy:
            self.economy_commands = EconomyCommands(
                self.engine,
                self.registry,
                self.db,
                self.settings_store,
                self.locks,
                prefix=cfg.bot.prefix,
                logger=self.logger,
            )
            self.message_handler.register_all(self.economy_commands.commands())
        self.logger.info("Registered %d commands", len(self.message_handler.commands))

        self.gateway.on_message(self.message_handler.handle_message)

    async def start(self) -> None:
        """Start the bot and block until the gateway stream ends."""
        self.logger.info("Starting whatsapp-economy-bot...")
        await self.build()

        await self.gateway.start()
        await self.web_client.start()
        await self.locks.start()

        if self.config.health.enabled:
            self.health_server = HealthServer(
                self,
                host=self.config.health.host,
                port=self.config.health.port,
                logger=self.logger,
            )
            await self.health_server.start()

        self._housekeeping_task = asyncio.create_task(self._housekeeping_loop())

        self._running = True
        self.logger.info("whatsapp-economy-bot started successfully (v%s)", __version__)

        await self.gateway.run()

    async def stop(self) -> None:
        """Gracefully shut down all components in reverse order."""
        if not self._running:
            return
        self.logger.info("Shutting down whatsapp-economy-bot...")
        self._running = False

        if self._housekeeping_task:
            self._housekeeping_task.cancel()
            await asyncio.gather(self._housekeeping_task, return_exceptions=True)
        if self.health_server:
            await self.health_server.stop()
        if self.gateway:
            await self.gateway.stop()
        if self.locks:
            await self.locks.stop()
        if self.web_client:
            await self.web_client.stop()

        self.logger.info("whatsapp-economy-bot stopped.")

    async def _housekeeping_loop(self) -> None:
        """Periodically prune rate-limiter windows."""
        while True:
            await asyncio.sleep(self._HOUSEKEEPING_INTERVAL)
            try:
                self.message_handler.rate_limiter.cleanup()
            except Exception:
                self.logger.exception("Housekeeping failed")
