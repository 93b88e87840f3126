"""Economy command plugin — argument parsing and reply formatting.

All balance changes are delegated to ``EconomyEngine``; this module only
turns chat arguments into engine calls and engine results into chat text.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .database import MAX_AMOUNT
from .errors import InvalidTarget, TargetNotFound, ValidationError
from .message_handler import Command, Reply
from .settings_store import ECONOMY_NAMESPACE, SETTING_ALIASES
from .utils import find_number, format_money, mention_tag, wealth_rank

if TYPE_CHECKING:
    from .account_registry import AccountRegistry
    from .command_locks import CommandLockManager
    from .database import LedgerDatabase
    from .economy_engine import EconomyEngine
    from .gateway import MessageEvent
    from .settings_store import SettingsStore

MEDALS = ["🥇", "🥈", "🥉"]


def resolve_target(event: MessageEvent, args: list[str]) -> str | None:
    """Mentioned user, else the quoted message's author, else a phone number in the args."""
    if event.mentions:
        return event.mentions[0]
    if event.quoted_sender_id:
        return event.quoted_sender_id
    return find_number(" ".join(args))


def parse_amount(token: str, *, allow_all: bool = False, allow_negative: bool = False) -> int | str:
    """Parse '1,500' style amounts. Returns 'all' when permitted and given."""
    cleaned = token.strip().replace(",", "").replace("_", "")
    if allow_all and cleaned.lower() == "all":
        return "all"
    try:
        value = int(cleaned)
    except ValueError:
        raise ValidationError(f"❌ '{token}' is not a valid amount.") from None
    if value < 0 and not allow_negative:
        raise ValidationError("❌ Amount must be a positive number.")
    if abs(value) > MAX_AMOUNT:
        raise ValidationError(f"❌ Amount is too large. The limit is {MAX_AMOUNT:,}.")
    return value


def _split_amount(args: list[str]) -> tuple[str | None, list[str]]:
    """Pick the amount token from '<amount> @user' or '@user <amount>'."""
    if not args:
        return None, []
    if args[0].startswith("@") and len(args) > 1:
        return args[-1], args[:-1]
    return args[0], args[1:]


class EconomyCommands:
    """Chat surface of the economy game."""

    def __init__(
        self,
        engine: EconomyEngine,
        registry: AccountRegistry,
        database: LedgerDatabase,
        settings_store: SettingsStore,
        locks: CommandLockManager,
        prefix: str = "!",
        logger: logging.Logger | None = None,
    ) -> None:
        self._engine = engine
        self._registry = registry
        self._db = database
        self._settings = settings_store
        self._locks = locks
        self._prefix = prefix
        self._logger = logger or logging.getLogger("economy.commands")

    def commands(self) -> list[Command]:
        p = self._prefix
        return [
            Command("balance", self._cmd_balance, ("bal", "wallet"), "Check your wallet and bank", f"{p}balance [@user]", "economy"),
            Command("work", self._cmd_work, (), "Work a random job for money", f"{p}work", "economy"),
            Command("daily", self._cmd_daily, (), "Claim your daily reward", f"{p}daily", "economy"),
            Command("send", self._cmd_send, ("transfer", "pay"), "Send money to someone", f"{p}send <amount> @user", "economy"),
            Command("deposit", self._cmd_deposit, ("dep",), "Move money into your bank", f"{p}deposit <amount|all>", "economy"),
            Command("withdraw", self._cmd_withdraw, ("wd",), "Take money out of your bank", f"{p}withdraw <amount|all>", "economy"),
            Command("gamble", self._cmd_gamble, ("bet",), "Bet money for a chance to win more", f"{p}gamble <amount>", "economy"),
            Command("rob", self._cmd_rob, (), "Try to rob someone's wallet", f"{p}rob @user", "economy"),
            Command("leaderboard", self._cmd_leaderboard, ("lb", "top"), "Richest users", f"{p}leaderboard", "economy"),
            Command("profile", self._cmd_profile, ("stats",), "Economy profile", f"{p}profile [@user]", "economy"),
            Command("ecosettings", self._cmd_ecosettings, (), "View or change economy settings", f"{p}ecosettings [key value]", "admin", admin_only=True),
            Command("ecoaddmoney", self._cmd_addmoney, ("ecogive",), "Add or remove money", f"{p}ecoaddmoney <amount> @user", "admin", admin_only=True),
            Command("ecosetbalance", self._cmd_setbalance, (), "Set a wallet balance", f"{p}ecosetbalance <amount> @user", "admin", admin_only=True),
            Command("ecoreset", self._cmd_reset, (), "Reset the whole economy", f"{p}ecoreset confirm", "admin", owner_only=True),
        ]

    def _money(self, amount: int) -> str:
        return format_money(self._engine.settings.currency, amount)

    def _require_target(self, event: MessageEvent, args: list[str], usage: str) -> str:
        target = resolve_target(event, args)
        if not target:
            raise InvalidTarget(f"❌ Mention a user, reply to their message or give their number.\nUsage: {usage}")
        return target

    # ══════════════════════════════════════════════════════════
    #  Player Commands
    # ══════════════════════════════════════════════════════════

    async def _cmd_balance(self, event: MessageEvent, args: list[str]) -> Reply:
        own = await self._registry.ensure_account(event.sender_id)
        target = resolve_target(event, args) if (args or event.mentions) else None
        if target and target != event.sender_id:
            account = await self._registry.get_account(target)
            if account is None:
                raise TargetNotFound(f"❌ {mention_tag(target)} doesn't have an account yet.")
        else:
            target, account = event.sender_id, own

        wealth = account["balance"] + account["bank"]
        text = (
            f"💰 *Balance* of {mention_tag(target)}\n\n"
            f"💵 Wallet: {self._money(account['balance'])}\n"
            f"🏦 Bank: {self._money(account['bank'])}\n"
            f"💎 Net worth: {self._money(wealth)}\n"
            f"🏅 Rank: {wealth_rank(wealth)}"
        )
        return Reply(text, [target])

    async def _cmd_work(self, event: MessageEvent, args: list[str]) -> str:
        result = await self._engine.work(event.sender_id)
        return (
            f"💼 You worked as a *{result.job}* and earned {self._money(result.earned)}!\n"
            f"💵 Wallet: {self._money(result.balance)}"
        )

    async def _cmd_daily(self, event: MessageEvent, args: list[str]) -> str:
        result = await self._engine.daily(event.sender_id)
        days = "day" if result.streak == 1 else "days"
        return (
            f"🎁 Daily reward claimed: {self._money(result.amount)}\n"
            f"🔥 Streak: {result.streak} {days} (best: {result.longest_streak})\n"
            f"💵 Wallet: {self._money(result.balance)}"
        )

    async def _cmd_send(self, event: MessageEvent, args: list[str]) -> Reply:
        usage = f"{self._prefix}send <amount> @user"
        token, rest = _split_amount(args)
        if token is None:
            raise ValidationError(f"❓ Usage: {usage}")
        amount = parse_amount(token)
        recipient = self._require_target(event, rest, usage)
        result = await self._engine.transfer(event.sender_id, recipient, amount)
        text = (
            f"✅ Sent {self._money(result.amount)} to {mention_tag(recipient)}\n"
            f"💵 Your wallet: {self._money(result.sender_balance)}"
        )
        return Reply(text, [recipient])

    async def _cmd_deposit(self, event: MessageEvent, args: list[str]) -> str:
        if not args:
            raise ValidationError(f"❓ Usage: {self._prefix}deposit <amount|all>")
        result = await self._engine.deposit(event.sender_id, parse_amount(args[0], allow_all=True))
        return (
            f"🏦 Deposited {self._money(result.amount)}\n"
            f"💵 Wallet: {self._money(result.balance)}\n"
            f"🏦 Bank: {self._money(result.bank)}"
        )

    async def _cmd_withdraw(self, event: MessageEvent, args: list[str]) -> str:
        if not args:
            raise ValidationError(f"❓ Usage: {self._prefix}withdraw <amount|all>")
        result = await self._engine.withdraw(event.sender_id, parse_amount(args[0], allow_all=True))
        return (
            f"💸 Withdrew {self._money(result.amount)}\n"
            f"💵 Wallet: {self._money(result.balance)}\n"
            f"🏦 Bank: {self._money(result.bank)}"
        )

    async def _cmd_gamble(self, event: MessageEvent, args: list[str]) -> str:
        if not args:
            raise ValidationError(f"❓ Usage: {self._prefix}gamble <amount>")
        amount = parse_amount(args[0])
        result = await self._engine.gamble(event.sender_id, amount)
        if result.won:
            headline = f"🎰 You won {self._money(result.delta)}!"
        else:
            headline = f"🎰 You lost {self._money(result.bet)}."
        return f"{headline}\n💵 Wallet: {self._money(result.balance)}"

    async def _cmd_rob(self, event: MessageEvent, args: list[str]) -> Reply:
        target = self._require_target(event, args, f"{self._prefix}rob @user")
        result = await self._engine.rob(event.sender_id, target)
        if result.success:
            text = (
                f"🦹 Success! You stole {self._money(result.amount)} from {mention_tag(target)}\n"
                f"💵 Wallet: {self._money(result.balance)}"
            )
        else:
            text = (
                f"🚓 You got caught trying to rob {mention_tag(target)} "
                f"and paid a {self._money(result.amount)} fine.\n"
                f"💵 Wallet: {self._money(result.balance)}"
            )
        return Reply(text, [target])

    async def _cmd_leaderboard(self, event: MessageEvent, args: list[str]) -> Reply:
        rows = await self._db.get_leaderboard(10)
        if not rows:
            return Reply("📊 Nobody has an account yet.")
        lines = ["🏆 *Richest Users*", ""]
        for i, row in enumerate(rows):
            badge = MEDALS[i] if i < len(MEDALS) else f"{i + 1}."
            lines.append(f"{badge} {mention_tag(row['user_id'])}: {self._money(row['wealth'])}")
        return Reply("\n".join(lines), [r["user_id"] for r in rows])

    async def _cmd_profile(self, event: MessageEvent, args: list[str]) -> Reply:
        own = await self._registry.ensure_account(event.sender_id)
        target = resolve_target(event, args) if (args or event.mentions) else None
        if target and target != event.sender_id:
            account = await self._registry.get_account(target)
            if account is None:
                raise TargetNotFound(f"❌ {mention_tag(target)} doesn't have an account yet.")
        else:
            target, account = event.sender_id, own

        position = await self._db.get_wealth_position(target)
        wealth = account["balance"] + account["bank"]
        text = (
            f"👤 *Profile* of {mention_tag(target)}\n\n"
            f"🏅 Rank: {wealth_rank(wealth)} (#{position})\n"
            f"💎 Net worth: {self._money(wealth)}\n"
            f"📈 Total earned: {self._money(account['total_earned'])}\n"
            f"📉 Total spent: {self._money(account['total_spent'])}\n"
            f"💼 Jobs worked: {account['work_count']}\n"
            f"🦹 Successful robberies: {account['rob_count']}\n"
            f"🔥 Daily streak: {account['streak']} (best: {account['longest_streak']})\n"
            f"📅 Daily claims: {account['total_attendances']}\n"
            f"⌨️ Commands used: {account['commands_used']}\n"
            f"🗓️ Member since: {account['first_seen'][:10]}"
        )
        return Reply(text, [target])

    # ══════════════════════════════════════════════════════════
    #  Admin Commands
    # ══════════════════════════════════════════════════════════

    async def _cmd_ecosettings(self, event: MessageEvent, args: list[str]) -> str:
        if len(args) >= 2:
            key = self._settings.resolve_key(args[0])
            updated = await self._settings.set(ECONOMY_NAMESPACE, key, " ".join(args[1:]))
            self._logger.info("Admin %s set %s", event.sender_id, key)
            return f"✅ *{key}* is now {getattr(updated, key)}"

        values = self._settings.get(ECONOMY_NAMESPACE)
        if len(args) == 1:
            key = self._settings.resolve_key(args[0])
            return f"⚙️ *{key}* = {values[key]}"

        stats = await self._db.get_economy_stats()
        lines = ["⚙️ *Economy Settings*", ""]
        for alias, key in SETTING_ALIASES.items():
            lines.append(f"• {alias}: {values[key]}")
        lines += [
            "",
            "📊 *Economy Stats*",
            f"• Accounts: {stats['accounts']:,}",
            f"• Circulation: {self._money(stats['circulation'])}",
            f"• Transactions: {stats['transactions']:,}",
            f"• Active command locks: {self._locks.active_count}",
            "",
            f"Change a value with {self._prefix}ecosettings <key> <value>",
        ]
        return "\n".join(lines)

    async def _cmd_addmoney(self, event: MessageEvent, args: list[str]) -> Reply:
        usage = f"{self._prefix}ecoaddmoney <amount> @user"
        token, rest = _split_amount(args)
        if token is None:
            raise ValidationError(f"❓ Usage: {usage}")
        amount = parse_amount(token, allow_negative=True)
        target = self._require_target(event, rest, usage)
        result = await self._engine.admin_adjust(event.sender_id, target, amount)
        verb = "Added" if result.delta >= 0 else "Removed"
        text = (
            f"✅ {verb} {self._money(abs(result.delta))} "
            f"{'to' if result.delta >= 0 else 'from'} {mention_tag(target)}\n"
            f"💵 Wallet: {self._money(result.previous_balance)} → {self._money(result.new_balance)}"
        )
        return Reply(text, [target])

    async def _cmd_setbalance(self, event: MessageEvent, args: list[str]) -> Reply:
        usage = f"{self._prefix}ecosetbalance <amount> @user"
        token, rest = _split_amount(args)
        if token is None:
            raise ValidationError(f"❓ Usage: {usage}")
        amount = parse_amount(token)
        target = self._require_target(event, rest, usage)
        result = await self._engine.admin_set_balance(event.sender_id, target, amount)
        text = (
            f"✅ Set {mention_tag(target)}'s wallet to {self._money(result.new_balance)}\n"
            f"(was {self._money(result.previous_balance)})"
        )
        return Reply(text, [target])

    async def _cmd_reset(self, event: MessageEvent, args: list[str]) -> str:
        result = await self._engine.reset(event.sender_id, args[0] if args else None)
        return (
            f"♻️ Economy reset complete.\n"
            f"• Accounts reset: {result.accounts_reset:,}\n"
            f"• Transactions purged: {result.transactions_purged:,}"
        )
