"""Tests for utils, permissions and error messages."""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from whatsapp_economy.errors import CooldownActive, InsufficientFunds, PermissionDenied
from whatsapp_economy.permissions import Permissions
from whatsapp_economy.utils import (
    find_number,
    format_duration,
    format_money,
    local_date,
    mention_tag,
    normalize_number,
    parse_timestamp,
    user_id_from_number,
    wealth_rank,
)


class TestNumbers:

    def test_normalize(self):
        assert normalize_number("+234 800-000-0101") == "2348000000101"
        assert normalize_number("2348000000101@s.whatsapp.net") == "2348000000101"

    def test_user_id(self):
        assert user_id_from_number("+234 800 000 0101") == "2348000000101@s.whatsapp.net"

    def test_find_number(self):
        assert find_number("pay +234-800-000-0101 now") == "2348000000101@s.whatsapp.net"
        assert find_number("call 12345") is None

    def test_mention_tag(self):
        assert mention_tag("2348000000101@s.whatsapp.net") == "@2348000000101"


class TestFormatting:

    @pytest.mark.parametrize("amount,text", [(0, "₦0"), (1500, "₦1,500"), (-250, "-₦250")])
    def test_money(self, amount: int, text: str):
        assert format_money("₦", amount) == text

    @pytest.mark.parametrize("total,label", [
        (0, "🌱 Newbie"),
        (5_000, "📈 Rising"),
        (99_999, "🥈 Silver"),
        (2_000_000, "💎 Millionaire"),
    ])
    def test_wealth_rank(self, total: int, label: str):
        assert wealth_rank(total) == label

    def test_duration(self):
        assert format_duration(5) == "5s"
        assert format_duration(93784) == "1d 2h 3m 4s"


class TestTime:

    def test_parse_timestamp(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp("garbage") is None
        naive = parse_timestamp("2026-03-01T12:00:00")
        assert naive.tzinfo == timezone.utc

    def test_local_date_crosses_midnight(self):
        dt = datetime(2026, 3, 1, 23, 30, tzinfo=timezone.utc)
        assert local_date(dt, timezone.utc).isoformat() == "2026-03-01"
        assert local_date(dt, ZoneInfo("Africa/Lagos")).isoformat() == "2026-03-02"


class TestPermissions:

    def test_owner_and_admins(self):
        perms = Permissions("+234 800 000 0001", ["2348000000002"])
        assert perms.is_owner("2348000000001@s.whatsapp.net")
        assert perms.is_admin("2348000000001@s.whatsapp.net")
        assert perms.is_admin("2348000000002@s.whatsapp.net")
        assert not perms.is_owner("2348000000002@s.whatsapp.net")
        assert not perms.is_admin("2348000000003@s.whatsapp.net")
        assert perms.admin_count == 2

    def test_no_owner_configured(self):
        perms = Permissions("", [])
        assert not perms.is_owner("@s.whatsapp.net")
        assert perms.admin_count == 0


class TestErrorMessages:

    def test_cooldown_hours_and_minutes(self):
        assert CooldownActive("work", 95).message == "⏰ You can work again in 1h 35m."
        assert CooldownActive("rob", 120).message == "⏰ You can rob again in 2h."
        assert CooldownActive("work", 5).message == "⏰ You can work again in 5m."

    def test_insufficient_funds(self):
        err = InsufficientFunds(1000, 1500, account="bank")
        assert err.message == "❌ Insufficient bank balance. You have 1,000 but need 1,500."

    def test_permission_default(self):
        assert str(PermissionDenied()).startswith("🚫")
