"""Account registry — lazily creates accounts before any balance operation."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from .database import LedgerDatabase, UnitOfWork
from .errors import StorageUnavailable, TransactionFailed
from .settings_store import SettingsStore
from .utils import now_utc


class AccountRegistry:
    """Idempotent account creation via a single upsert.

    ``touch=True`` marks the user as active (last_seen, commands_used); use
    ``touch=False`` for counterparties who did not issue the command.
    """

    def __init__(
        self,
        database: LedgerDatabase,
        settings_store: SettingsStore,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._db = database
        self._settings = settings_store
        self._logger = logger or logging.getLogger("economy.accounts")
        self._clock = clock

    async def ensure_account(self, user_id: str, *, touch: bool = True) -> dict[str, Any]:
        settings = self._settings.snapshot()
        now = self._clock()

        def _work(uow: UnitOfWork) -> dict[str, Any]:
            return uow.upsert_account(
                user_id,
                settings.starting_balance,
                settings.starting_bank,
                now,
                touch=touch,
            )

        try:
            account = await self._db.run_unit_of_work(_work)
        except TransactionFailed as e:
            self._logger.error("ensure_account failed for %s: %s", user_id, e.__cause__ or e)
            raise StorageUnavailable() from e

        if account["first_seen"] == now.isoformat():
            self._logger.info("Created account %s", user_id)
        return account

    async def get_account(self, user_id: str) -> dict[str, Any] | None:
        """Read an account without creating it."""
        return await self._db.get_account(user_id)
