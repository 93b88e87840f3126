"""Shared utility helpers for whatsapp-economy-bot."""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

USER_SUFFIX = "@s.whatsapp.net"

_DIGIT_RUN = re.compile(r"\d{10,}")

# (minimum wealth, label), highest first
WEALTH_RANKS: list[tuple[int, str]] = [
    (1_000_000, "💎 Millionaire"),
    (500_000, "💠 Diamond"),
    (100_000, "🥇 Gold"),
    (50_000, "🥈 Silver"),
    (10_000, "🥉 Bronze"),
    (5_000, "📈 Rising"),
    (0, "🌱 Newbie"),
]


def now_utc() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def parse_timestamp(ts: str | None) -> datetime | None:
    """Parse a stored ISO timestamp to a timezone-aware datetime, or None."""
    if not ts:
        return None
    try:
        dt = datetime.fromisoformat(ts)
        # Naive values are stored as UTC
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except (ValueError, TypeError):
        return None


def local_date(dt: datetime, tz: ZoneInfo | timezone) -> date:
    """Calendar date of ``dt`` in the bot's timezone."""
    return dt.astimezone(tz).date()


def normalize_number(raw: str) -> str:
    """Strip everything but digits from a phone number or user id."""
    return re.sub(r"\D", "", raw.split("@", 1)[0])


def user_id_from_number(raw: str) -> str:
    return normalize_number(raw) + USER_SUFFIX


def find_number(text: str) -> str | None:
    """Return the first run of 10+ digits in ``text`` as a user id."""
    match = _DIGIT_RUN.search(text.replace(" ", "").replace("-", "").replace("+", ""))
    if not match:
        return None
    return match.group(0) + USER_SUFFIX


def mention_tag(user_id: str) -> str:
    """Render a user id as an in-chat @mention."""
    return "@" + user_id.split("@", 1)[0]


def format_money(currency: str, amount: int) -> str:
    sign = "-" if amount < 0 else ""
    return f"{sign}{currency}{abs(amount):,}"


def wealth_rank(total: int) -> str:
    for minimum, label in WEALTH_RANKS:
        if total >= minimum:
            return label
    return WEALTH_RANKS[-1][1]


def format_duration(seconds: float) -> str:
    """Human duration like '2d 3h 4m 5s'."""
    seconds = int(seconds)
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    parts.append(f"{seconds}s")
    return " ".join(parts)
