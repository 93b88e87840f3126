"""Shared test fixtures for whatsapp-economy-bot."""

from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from whatsapp_economy.account_registry import AccountRegistry
from whatsapp_economy.command_locks import CommandLockManager
from whatsapp_economy.config import AppConfig
from whatsapp_economy.cooldowns import CooldownTracker
from whatsapp_economy.database import LedgerDatabase
from whatsapp_economy.economy_engine import EconomyEngine
from whatsapp_economy.gateway import MessageEvent
from whatsapp_economy.permissions import Permissions
from whatsapp_economy.settings_store import SettingsStore

OWNER = "2348000000001@s.whatsapp.net"
ADMIN = "2348000000002@s.whatsapp.net"
ALICE = "2348000000101@s.whatsapp.net"
BOB = "2348000000102@s.whatsapp.net"
CAROL = "2348000000103@s.whatsapp.net"
GROUP = "120363000000000001@g.us"

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# ── Minimal config dict matching AppConfig schema ────────────

def make_config_dict(**overrides) -> dict:
    """Build a valid config dict with sensible test defaults."""
    base = {
        "bot": {"name": "TestBot", "prefix": "!", "timezone": "UTC"},
        "admin": {
            "owner_number": "+234 800 000 0001",
            "admin_numbers": ["2348000000002"],
        },
        "database": {"path": "economy.db", "busy_timeout_seconds": 5, "transaction_timeout_seconds": 10},
        "gateway": {"base_url": "http://bridge.test", "session_id": "test"},
        "economy": {
            "defaults": {
                "currency": "₦",
                "starting_balance": 1000,
                "starting_bank": 0,
                "daily_min": 500,
                "daily_max": 1500,
                "work_cooldown_minutes": 60,
                "rob_cooldown_minutes": 120,
                "rob_success_rate": 0.7,
                "rob_max_steal_percent": 0.3,
                "rob_min_target_balance": 500,
                "rob_min_robber_balance": 200,
                "rob_fail_penalty": 150,
                "gamble_min_bet": 100,
                "gamble_max_bet": 10000,
                "gamble_win_chance": 0.45,
                "gamble_multiplier": 1.8,
            },
            "jobs": [
                {"name": "Uber Driver", "min_pay": 200, "max_pay": 800},
                {"name": "Freelancer", "min_pay": 300, "max_pay": 1200},
            ],
        },
        "locks": {"sweep_interval_seconds": 60, "stale_after_seconds": 30},
        "commands": {"rate_limit_per_minute": 10},
        "weather": {"api_key": "test-key"},
        "health": {"enabled": False},
    }
    base.update(overrides)
    return base


class ScriptedRandom(random.Random):
    """Deterministic stand-in for random.Random.

    ``roll`` is returned by random(); randint() returns ``pick`` clamped to
    the range, or the lower bound; choice() returns the first element.
    """

    def __init__(self, roll: float = 0.0, pick: int | None = None) -> None:
        super().__init__(0)
        self.roll = roll
        self.pick = pick

    def random(self) -> float:
        return self.roll

    def randint(self, a: int, b: int) -> int:
        if self.pick is None:
            return a
        return max(a, min(b, self.pick))

    def choice(self, seq):
        return seq[0]


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_event(
    text: str,
    sender: str = ALICE,
    mentions: list[str] | None = None,
    quoted: str | None = None,
    chat: str = GROUP,
) -> MessageEvent:
    return MessageEvent(
        message_id="MSG-1",
        chat_id=chat,
        sender_id=sender,
        text=text,
        mentions=mentions or [],
        quoted_sender_id=quoted,
    )


@pytest.fixture
def sample_config_dict() -> dict:
    """Return a config dict suitable for tests."""
    return make_config_dict()


@pytest.fixture
def sample_config(sample_config_dict: dict) -> AppConfig:
    """Return a parsed AppConfig."""
    return AppConfig(**sample_config_dict)


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> str:
    """Return a temporary SQLite database path."""
    return str(tmp_path / "test_economy.db")


@pytest_asyncio.fixture
async def database(tmp_db_path: str) -> AsyncGenerator[LedgerDatabase, None]:
    """Provide an initialized database with temp file."""
    db = LedgerDatabase(tmp_db_path, logging.getLogger("test"))
    await db.initialize()
    yield db


@pytest_asyncio.fixture
async def settings_store(database: LedgerDatabase, sample_config: AppConfig) -> SettingsStore:
    store = SettingsStore(database, sample_config.economy.defaults, logging.getLogger("test"))
    await store.load()
    return store


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def rng() -> ScriptedRandom:
    return ScriptedRandom(roll=0.0)


@pytest.fixture
def permissions(sample_config: AppConfig) -> Permissions:
    return Permissions.from_config(sample_config.admin)


@pytest.fixture
def registry(database: LedgerDatabase, settings_store: SettingsStore, clock: FrozenClock) -> AccountRegistry:
    return AccountRegistry(database, settings_store, logging.getLogger("test"), clock=clock)


@pytest.fixture
def locks() -> CommandLockManager:
    return CommandLockManager(logger=logging.getLogger("test"))


@pytest.fixture
def cooldowns(database: LedgerDatabase, clock: FrozenClock) -> CooldownTracker:
    return CooldownTracker(database, clock=clock)


@pytest.fixture
def engine(
    sample_config: AppConfig,
    database: LedgerDatabase,
    settings_store: SettingsStore,
    registry: AccountRegistry,
    locks: CommandLockManager,
    cooldowns: CooldownTracker,
    permissions: Permissions,
    rng: ScriptedRandom,
    clock: FrozenClock,
) -> EconomyEngine:
    """EconomyEngine with scripted randomness and a frozen clock."""
    return EconomyEngine(
        database,
        settings_store,
        registry,
        locks,
        cooldowns,
        permissions,
        sample_config.economy.jobs,
        timezone_name=sample_config.bot.timezone,
        rng=rng,
        clock=clock,
        logger=logging.getLogger("test"),
    )


@pytest.fixture
def mock_gateway() -> MagicMock:
    """Return a mock WhatsAppGateway with async methods."""
    gateway = MagicMock()
    gateway.reply = AsyncMock(return_value=True)
    gateway.react = AsyncMock(return_value=True)
    gateway.send_message = AsyncMock(return_value=True)
    gateway.start = AsyncMock()
    gateway.stop = AsyncMock()
    gateway.run = AsyncMock()
    gateway.connected = True
    return gateway


async def fund(database: LedgerDatabase, user_id: str, balance: int, bank: int = 0) -> None:
    """Set balances directly, bypassing the engine."""
    import asyncio

    loop = asyncio.get_running_loop()

    def _set() -> None:
        conn = database._get_connection()
        try:
            conn.execute(
                "UPDATE users SET balance = ?, bank = ? WHERE user_id = ?",
                (balance, bank, user_id),
            )
        finally:
            conn.close()

    await loop.run_in_executor(None, _set)


async def count_transactions(database: LedgerDatabase, user_id: str | None = None) -> int:
    import asyncio

    loop = asyncio.get_running_loop()

    def _count() -> int:
        conn = database._get_connection()
        try:
            if user_id is None:
                row = conn.execute("SELECT COUNT(*) AS cnt FROM transactions").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) AS cnt FROM transactions WHERE user_id = ?", (user_id,)
                ).fetchone()
            return row["cnt"]
        finally:
            conn.close()

    return await loop.run_in_executor(None, _count)
