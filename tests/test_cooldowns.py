"""Tests for CooldownTracker."""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import ALICE, T0, FrozenClock
from whatsapp_economy.account_registry import AccountRegistry
from whatsapp_economy.cooldowns import CooldownTracker, cooldown_column
from whatsapp_economy.database import LedgerDatabase, UnitOfWork


class TestCheck:
    """Pure cooldown arithmetic."""

    def test_never_used(self):
        status = CooldownTracker.check(None, 60, T0)
        assert status.can_use is True
        assert status.remaining_minutes == 0

    def test_within_cooldown(self):
        status = CooldownTracker.check(T0, 60, T0 + timedelta(minutes=30))
        assert status.can_use is False
        assert status.remaining_minutes == 30

    def test_remaining_rounds_up(self):
        status = CooldownTracker.check(T0, 60, T0 + timedelta(minutes=59, seconds=30))
        assert status.can_use is False
        assert status.remaining_minutes == 1

    def test_boundary_is_available(self):
        status = CooldownTracker.check(T0, 60, T0 + timedelta(minutes=60))
        assert status.can_use is True

    def test_accepts_stored_string(self):
        status = CooldownTracker.check(T0.isoformat(), 120, T0 + timedelta(minutes=20))
        assert status.can_use is False
        assert status.remaining_minutes == 100

    def test_unparseable_string_treated_as_unused(self):
        assert CooldownTracker.check("not-a-date", 60, T0).can_use is True


class TestColumns:
    def test_known_actions(self):
        assert cooldown_column("work") == "last_work_at"
        assert cooldown_column("rob") == "last_rob_at"
        assert cooldown_column("gamble") == "last_gamble_at"

    def test_unknown_action(self):
        with pytest.raises(ValueError):
            cooldown_column("daily")


class TestCheckCooldown:
    """Fast-path lookup against stored timestamps."""

    async def test_unknown_user_may_act(self, cooldowns: CooldownTracker):
        status = await cooldowns.check_cooldown(ALICE, "work", 60)
        assert status.can_use is True

    async def test_reads_stored_stamp(
        self,
        cooldowns: CooldownTracker,
        registry: AccountRegistry,
        database: LedgerDatabase,
        clock: FrozenClock,
    ):
        await registry.ensure_account(ALICE)

        def _stamp(uow: UnitOfWork) -> None:
            uow.lock_accounts(ALICE)
            uow.stamp(ALICE, last_rob_at=clock.now.isoformat())

        await database.run_unit_of_work(_stamp)
        clock.advance(minutes=45)
        status = await cooldowns.check_cooldown(ALICE, "rob", 120)
        assert status.can_use is False
        assert status.remaining_minutes == 75
        # Other actions are tracked independently
        assert (await cooldowns.check_cooldown(ALICE, "work", 60)).can_use is True
