"""Cooldown tracker — per-user, per-action cooldown checks.

Checks are read-only. Timestamps are written by the engine inside the same
transaction that grants the reward.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from .database import LedgerDatabase
from .utils import now_utc, parse_timestamp

# action → account column holding the last use
COOLDOWN_COLUMNS: dict[str, str] = {
    "work": "last_work_at",
    "rob": "last_rob_at",
    "gamble": "last_gamble_at",
}


@dataclass(frozen=True)
class CooldownStatus:
    can_use: bool
    remaining_minutes: int


def cooldown_column(action: str) -> str:
    try:
        return COOLDOWN_COLUMNS[action]
    except KeyError:
        raise ValueError(f"No cooldown tracked for action '{action}'") from None


class CooldownTracker:
    def __init__(
        self,
        database: LedgerDatabase,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._db = database
        self._clock = clock

    @staticmethod
    def check(
        last_used: datetime | str | None,
        cooldown_minutes: int,
        now: datetime,
    ) -> CooldownStatus:
        if isinstance(last_used, str):
            last_used = parse_timestamp(last_used)
        if last_used is None:
            return CooldownStatus(can_use=True, remaining_minutes=0)

        elapsed = (now - last_used).total_seconds() / 60
        if elapsed >= cooldown_minutes:
            return CooldownStatus(can_use=True, remaining_minutes=0)
        return CooldownStatus(
            can_use=False,
            remaining_minutes=max(0, math.ceil(cooldown_minutes - elapsed)),
        )

    async def check_cooldown(
        self,
        user_id: str,
        action: str,
        cooldown_minutes: int,
    ) -> CooldownStatus:
        """Fast-path check against the stored timestamp; unknown users may act."""
        column = cooldown_column(action)
        account = await self._db.get_account(user_id)
        last_used = account[column] if account else None
        return self.check(last_used, cooldown_minutes, self._clock())
