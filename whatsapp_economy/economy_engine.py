"""Economy engine — every balance-changing operation of the economy game.

Each operation follows the same shape:

1. take the command lock for (actor, operation), rejecting duplicates;
2. snapshot the settings and make sure every involved account exists;
3. run one unit of work: lock the accounts in id order, re-read them,
   validate against that pre-state, apply deltas, append log entries;
4. commit, or roll back on any exception.

Business rejections are raised as ``EconomyError`` subclasses from inside
the unit of work so that nothing is written when they fire. Randomness and
time are injected so outcomes can be forced in tests.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from datetime import time as dtime
from typing import Any, Callable, Sequence
from zoneinfo import ZoneInfo

from .account_registry import AccountRegistry
from .command_locks import CommandLockManager
from .config import EconomySettings, JobConfig
from .cooldowns import CooldownTracker, cooldown_column
from .database import MAX_AMOUNT, LedgerDatabase, TransactionType, UnitOfWork
from .errors import (
    CooldownActive,
    InsufficientFunds,
    InvalidTarget,
    PermissionDenied,
    ValidationError,
)
from .permissions import Permissions
from .settings_store import SettingsStore
from .utils import local_date, now_utc


# ═══════════════════════════════════════════════════════════════
#  Results
# ═══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class WorkResult:
    job: str
    earned: int
    balance: int


@dataclass(frozen=True)
class DailyResult:
    amount: int
    streak: int
    longest_streak: int
    balance: int


@dataclass(frozen=True)
class TransferResult:
    sender_id: str
    recipient_id: str
    amount: int
    sender_balance: int
    recipient_balance: int


@dataclass(frozen=True)
class BankResult:
    amount: int
    balance: int
    bank: int


@dataclass(frozen=True)
class GambleResult:
    won: bool
    bet: int
    delta: int
    balance: int


@dataclass(frozen=True)
class RobResult:
    success: bool
    target_id: str
    amount: int
    balance: int
    target_balance: int


@dataclass(frozen=True)
class AdminAdjustResult:
    target_id: str
    previous_balance: int
    new_balance: int
    delta: int


@dataclass(frozen=True)
class ResetResult:
    accounts_reset: int
    transactions_purged: int


ALL = "all"


def _check_limit(amount: int) -> None:
    if amount > MAX_AMOUNT:
        raise ValidationError(f"❌ Amount is too large. The limit is {MAX_AMOUNT:,}.")


# ═══════════════════════════════════════════════════════════════
#  Engine
# ═══════════════════════════════════════════════════════════════


class EconomyEngine:
    """Transactional operations over the ledger."""

    def __init__(
        self,
        database: LedgerDatabase,
        settings_store: SettingsStore,
        registry: AccountRegistry,
        locks: CommandLockManager,
        cooldowns: CooldownTracker,
        permissions: Permissions,
        jobs: Sequence[JobConfig],
        *,
        timezone_name: str = "UTC",
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = now_utc,
        logger: logging.Logger | None = None,
    ) -> None:
        if not jobs:
            raise ValueError("At least one job is required")
        self._db = database
        self._settings = settings_store
        self._registry = registry
        self._locks = locks
        self._cooldowns = cooldowns
        self._permissions = permissions
        self._jobs = list(jobs)
        self._tz = ZoneInfo(timezone_name)
        self._rng = rng or random.Random()
        self._clock = clock
        self._logger = logger or logging.getLogger("economy.engine")

    # ══════════════════════════════════════════════════════════
    #  Earning
    # ══════════════════════════════════════════════════════════

    async def work(self, user_id: str) -> WorkResult:
        async with self._locks.hold(user_id, "work"):
            settings = self._settings.snapshot()
            await self._registry.ensure_account(user_id)
            await self._precheck_cooldown(user_id, "work", settings.work_cooldown_minutes)
            now = self._clock()

            def _work(uow: UnitOfWork) -> WorkResult:
                account = uow.lock_accounts(user_id)[user_id]
                self._require_cooldown(account, "work", settings.work_cooldown_minutes, now)

                job = self._rng.choice(self._jobs)
                earned = self._rng.randint(job.min_pay, job.max_pay)
                uow.adjust(user_id, balance=earned, total_earned=earned, work_count=1)
                uow.stamp(user_id, last_work_at=now.isoformat())
                uow.log(user_id, TransactionType.WORK, earned, now, {"job": job.name})
                return WorkResult(job=job.name, earned=earned, balance=account["balance"] + earned)

            result = await self._db.run_unit_of_work(_work)

        self._logger.info("work: %s earned %d as %s", user_id, result.earned, result.job)
        return result

    async def daily(self, user_id: str) -> DailyResult:
        async with self._locks.hold(user_id, "daily"):
            settings = self._settings.snapshot()
            await self._registry.ensure_account(user_id)
            now = self._clock()
            today = local_date(now, self._tz)
            yesterday = today - timedelta(days=1)

            def _work(uow: UnitOfWork) -> DailyResult:
                account = uow.lock_accounts(user_id)[user_id]
                if account["last_daily"] == today.isoformat():
                    raise CooldownActive("claim your daily reward", self._minutes_until_tomorrow(now, today))

                streak = account["streak"] + 1 if account["last_daily"] == yesterday.isoformat() else 1
                longest = max(account["longest_streak"], streak)
                amount = self._rng.randint(settings.daily_min, settings.daily_max)

                uow.adjust(user_id, balance=amount, total_earned=amount, total_attendances=1)
                uow.stamp(
                    user_id,
                    last_daily=today.isoformat(),
                    streak=streak,
                    longest_streak=longest,
                )
                uow.log(user_id, TransactionType.DAILY, amount, now, {"streak": streak})
                return DailyResult(
                    amount=amount,
                    streak=streak,
                    longest_streak=longest,
                    balance=account["balance"] + amount,
                )

            result = await self._db.run_unit_of_work(_work)

        self._logger.info("daily: %s claimed %d (streak %d)", user_id, result.amount, result.streak)
        return result

    # ══════════════════════════════════════════════════════════
    #  Transfers & Banking
    # ══════════════════════════════════════════════════════════

    async def transfer(self, sender_id: str, recipient_id: str, amount: int) -> TransferResult:
        if amount <= 0:
            raise ValidationError("❌ Amount must be a positive number.")
        _check_limit(amount)
        if sender_id == recipient_id:
            raise InvalidTarget("❌ You can't send money to yourself.")

        async with self._locks.hold(sender_id, "transfer"):
            await self._registry.ensure_account(sender_id)
            await self._registry.ensure_account(recipient_id, touch=False)
            now = self._clock()

            def _work(uow: UnitOfWork) -> TransferResult:
                accounts = uow.lock_accounts(sender_id, recipient_id)
                sender = accounts[sender_id]
                recipient = accounts[recipient_id]
                if sender["balance"] < amount:
                    raise InsufficientFunds(sender["balance"], amount)

                uow.adjust(sender_id, balance=-amount, total_spent=amount)
                uow.adjust(recipient_id, balance=amount, total_earned=amount)
                uow.log(sender_id, TransactionType.TRANSFER_OUT, -amount, now, {"to": recipient_id})
                uow.log(recipient_id, TransactionType.TRANSFER_IN, amount, now, {"from": sender_id})
                return TransferResult(
                    sender_id=sender_id,
                    recipient_id=recipient_id,
                    amount=amount,
                    sender_balance=sender["balance"] - amount,
                    recipient_balance=recipient["balance"] + amount,
                )

            result = await self._db.run_unit_of_work(_work)

        self._logger.info("transfer: %s -> %s %d", sender_id, recipient_id, amount)
        return result

    async def deposit(self, user_id: str, amount: int | str) -> BankResult:
        return await self._move_to_bank(user_id, amount, to_bank=True)

    async def withdraw(self, user_id: str, amount: int | str) -> BankResult:
        return await self._move_to_bank(user_id, amount, to_bank=False)

    async def _move_to_bank(self, user_id: str, amount: int | str, to_bank: bool) -> BankResult:
        take_all = isinstance(amount, str) and amount.lower() == ALL
        if not take_all and (not isinstance(amount, int) or amount <= 0):
            raise ValidationError("❌ Amount must be a positive number or 'all'.")
        if not take_all:
            _check_limit(amount)

        operation = "deposit" if to_bank else "withdraw"
        async with self._locks.hold(user_id, operation):
            await self._registry.ensure_account(user_id)
            now = self._clock()

            def _work(uow: UnitOfWork) -> BankResult:
                account = uow.lock_accounts(user_id)[user_id]
                source = "balance" if to_bank else "bank"
                available = account[source]
                value = available if take_all else int(amount)
                if value <= 0:
                    raise ValidationError(f"❌ You have nothing to {operation}.")
                if available < value:
                    raise InsufficientFunds(available, value, account="wallet" if to_bank else "bank")

                sign = 1 if to_bank else -1
                uow.adjust(user_id, balance=-sign * value, bank=sign * value)
                uow.log(
                    user_id,
                    TransactionType.DEPOSIT if to_bank else TransactionType.WITHDRAWAL,
                    -sign * value,
                    now,
                )
                return BankResult(
                    amount=value,
                    balance=account["balance"] - sign * value,
                    bank=account["bank"] + sign * value,
                )

            result = await self._db.run_unit_of_work(_work)

        self._logger.info("%s: %s moved %d", operation, user_id, result.amount)
        return result

    # ══════════════════════════════════════════════════════════
    #  Games of Chance
    # ══════════════════════════════════════════════════════════

    async def gamble(self, user_id: str, amount: int) -> GambleResult:
        settings = self._settings.snapshot()
        if amount < settings.gamble_min_bet or amount > settings.gamble_max_bet:
            raise ValidationError(
                f"❌ Bet must be between {settings.currency}{settings.gamble_min_bet:,} "
                f"and {settings.currency}{settings.gamble_max_bet:,}."
            )

        async with self._locks.hold(user_id, "gamble"):
            await self._registry.ensure_account(user_id)
            now = self._clock()

            def _work(uow: UnitOfWork) -> GambleResult:
                account = uow.lock_accounts(user_id)[user_id]
                if account["balance"] < amount:
                    raise InsufficientFunds(account["balance"], amount)

                won = self._rng.random() < settings.gamble_win_chance
                if won:
                    delta = math.floor(amount * settings.gamble_multiplier) - amount
                    uow.adjust(user_id, balance=delta, total_earned=delta)
                    uow.log(user_id, TransactionType.GAMBLE_WIN, delta, now, {"bet": amount})
                else:
                    delta = -amount
                    uow.adjust(user_id, balance=delta, total_spent=amount)
                    uow.log(user_id, TransactionType.GAMBLE_LOSS, delta, now, {"bet": amount})
                uow.stamp(user_id, last_gamble_at=now.isoformat())
                return GambleResult(won=won, bet=amount, delta=delta, balance=account["balance"] + delta)

            result = await self._db.run_unit_of_work(_work)

        self._logger.info("gamble: %s bet %d, delta %+d", user_id, amount, result.delta)
        return result

    async def rob(self, robber_id: str, target_id: str) -> RobResult:
        if robber_id == target_id:
            raise InvalidTarget("❌ You can't rob yourself.")

        async with self._locks.hold(robber_id, "rob"):
            settings = self._settings.snapshot()
            await self._registry.ensure_account(robber_id)
            await self._registry.ensure_account(target_id, touch=False)
            await self._precheck_cooldown(robber_id, "rob", settings.rob_cooldown_minutes)
            now = self._clock()

            def _work(uow: UnitOfWork) -> RobResult:
                accounts = uow.lock_accounts(robber_id, target_id)
                robber = accounts[robber_id]
                target = accounts[target_id]
                self._require_cooldown(robber, "rob", settings.rob_cooldown_minutes, now)
                if robber["balance"] < settings.rob_min_robber_balance:
                    raise InsufficientFunds(
                        robber["balance"],
                        settings.rob_min_robber_balance,
                        message=(
                            f"❌ You need at least {settings.currency}"
                            f"{settings.rob_min_robber_balance:,} in your wallet to rob someone."
                        ),
                    )
                if target["balance"] < settings.rob_min_target_balance:
                    raise ValidationError(
                        f"❌ Target is too poor to rob. They need at least "
                        f"{settings.currency}{settings.rob_min_target_balance:,} in their wallet."
                    )

                # Attempt is committed once validation passes, whatever the outcome
                uow.stamp(robber_id, last_rob_at=now.isoformat())

                if self._rng.random() < settings.rob_success_rate:
                    ceiling = max(1, math.floor(target["balance"] * settings.rob_max_steal_percent))
                    stolen = min(self._rng.randint(1, ceiling), target["balance"])
                    uow.adjust(robber_id, balance=stolen, total_earned=stolen, rob_count=1)
                    uow.adjust(target_id, balance=-stolen)
                    uow.log(robber_id, TransactionType.ROB_SUCCESS, stolen, now, {"target": target_id})
                    uow.log(target_id, TransactionType.ROBBED, -stolen, now, {"robber": robber_id})
                    return RobResult(
                        success=True,
                        target_id=target_id,
                        amount=stolen,
                        balance=robber["balance"] + stolen,
                        target_balance=target["balance"] - stolen,
                    )

                penalty = min(settings.rob_fail_penalty, robber["balance"])
                uow.adjust(robber_id, balance=-penalty, total_spent=penalty)
                uow.log(robber_id, TransactionType.ROB_FAIL, -penalty, now, {"target": target_id})
                return RobResult(
                    success=False,
                    target_id=target_id,
                    amount=penalty,
                    balance=robber["balance"] - penalty,
                    target_balance=target["balance"],
                )

            result = await self._db.run_unit_of_work(_work)

        self._logger.info(
            "rob: %s -> %s %s (%d)",
            robber_id, target_id, "success" if result.success else "failed", result.amount,
        )
        return result

    # ══════════════════════════════════════════════════════════
    #  Administration
    # ══════════════════════════════════════════════════════════

    async def admin_adjust(self, admin_id: str, target_id: str, amount: int) -> AdminAdjustResult:
        """Add (positive) or remove (negative) money; the balance floors at zero."""
        if not self._permissions.is_admin(admin_id):
            raise PermissionDenied()
        if amount == 0:
            raise ValidationError("❌ Amount cannot be zero.")
        _check_limit(abs(amount))

        async with self._locks.hold(admin_id, "admin"):
            await self._registry.ensure_account(target_id, touch=False)
            now = self._clock()

            def _work(uow: UnitOfWork) -> AdminAdjustResult:
                account = uow.lock_accounts(target_id)[target_id]
                previous = account["balance"]
                new_balance = max(0, previous + amount)
                _check_limit(new_balance)
                delta = new_balance - previous
                if delta > 0:
                    uow.adjust(target_id, balance=delta, total_earned=delta)
                elif delta < 0:
                    uow.adjust(target_id, balance=delta, total_spent=-delta)
                uow.log(
                    target_id,
                    TransactionType.ADMIN_ADD if amount > 0 else TransactionType.ADMIN_REMOVE,
                    delta,
                    now,
                    {"admin": admin_id, "requested": amount},
                )
                return AdminAdjustResult(
                    target_id=target_id,
                    previous_balance=previous,
                    new_balance=new_balance,
                    delta=delta,
                )

            result = await self._db.run_unit_of_work(_work)

        self._logger.info("admin_adjust: %s changed %s by %+d", admin_id, target_id, result.delta)
        return result

    async def admin_set_balance(self, admin_id: str, target_id: str, amount: int) -> AdminAdjustResult:
        if not self._permissions.is_admin(admin_id):
            raise PermissionDenied()
        if amount < 0:
            raise ValidationError("❌ Balance cannot be negative.")
        _check_limit(amount)

        async with self._locks.hold(admin_id, "admin"):
            await self._registry.ensure_account(target_id, touch=False)
            now = self._clock()

            def _work(uow: UnitOfWork) -> AdminAdjustResult:
                account = uow.lock_accounts(target_id)[target_id]
                previous = account["balance"]
                delta = amount - previous
                uow.adjust(target_id, balance=delta)
                uow.log(
                    target_id,
                    TransactionType.ADMIN_SETBALANCE,
                    delta,
                    now,
                    {"admin": admin_id, "previous_balance": previous, "new_balance": amount},
                )
                return AdminAdjustResult(
                    target_id=target_id,
                    previous_balance=previous,
                    new_balance=amount,
                    delta=delta,
                )

            result = await self._db.run_unit_of_work(_work)

        self._logger.info(
            "admin_set_balance: %s set %s from %d to %d",
            admin_id, target_id, result.previous_balance, result.new_balance,
        )
        return result

    async def reset(self, owner_id: str, confirmation: str | None) -> ResetResult:
        """Wipe the whole economy back to starting values. Owner only."""
        if not self._permissions.is_owner(owner_id):
            raise PermissionDenied("🚫 Only the bot owner can reset the economy.")
        if (confirmation or "").strip().lower() != "confirm":
            raise ValidationError(
                "⚠️ This wipes every balance and the whole transaction history. "
                "Repeat the command with 'confirm' to proceed."
            )

        async with self._locks.hold(owner_id, "admin"):
            settings = self._settings.snapshot()

            def _work(uow: UnitOfWork) -> ResetResult:
                accounts = uow.reset_accounts(settings.starting_balance, settings.starting_bank)
                purged = uow.purge_transactions()
                return ResetResult(accounts_reset=accounts, transactions_purged=purged)

            result = await self._db.run_unit_of_work(_work)

        self._logger.warning(
            "Economy reset by %s: %d accounts, %d transactions purged",
            owner_id, result.accounts_reset, result.transactions_purged,
        )
        return result

    # ══════════════════════════════════════════════════════════
    #  Internal Helpers
    # ══════════════════════════════════════════════════════════

    async def _precheck_cooldown(self, user_id: str, action: str, minutes: int) -> None:
        status = await self._cooldowns.check_cooldown(user_id, action, minutes)
        if not status.can_use:
            raise CooldownActive(action, status.remaining_minutes)

    def _require_cooldown(
        self,
        account: dict[str, Any],
        action: str,
        minutes: int,
        now: datetime,
    ) -> None:
        status = CooldownTracker.check(account[cooldown_column(action)], minutes, now)
        if not status.can_use:
            raise CooldownActive(action, status.remaining_minutes)

    def _minutes_until_tomorrow(self, now: datetime, today: date) -> int:
        midnight = datetime.combine(today + timedelta(days=1), dtime(), tzinfo=self._tz)
        return max(1, math.ceil((midnight - now).total_seconds() / 60))

    @property
    def settings(self) -> EconomySettings:
        return self._settings.snapshot()
