"""Settings store — write-through cache of admin-adjustable parameters.

Values live in the ``settings`` table as strings, keyed by namespace. The
``economy`` namespace is validated through ``EconomySettings``; operations
read an immutable snapshot taken when they start, so a concurrent admin
change never alters an operation half-way through.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .config import EconomySettings
from .database import LedgerDatabase
from .errors import ValidationError

ECONOMY_NAMESPACE = "economy"

# Short names accepted by the admin ``ecosettings`` command
SETTING_ALIASES: dict[str, str] = {
    "currency": "currency",
    "startbalance": "starting_balance",
    "startbank": "starting_bank",
    "dailymin": "daily_min",
    "dailymax": "daily_max",
    "workcooldown": "work_cooldown_minutes",
    "robcooldown": "rob_cooldown_minutes",
    "robsuccess": "rob_success_rate",
    "robsteal": "rob_max_steal_percent",
    "robmintarget": "rob_min_target_balance",
    "robminrobber": "rob_min_robber_balance",
    "robpenalty": "rob_fail_penalty",
    "gamblemin": "gamble_min_bet",
    "gamblemax": "gamble_max_bet",
    "gamblechance": "gamble_win_chance",
    "gamblemultiplier": "gamble_multiplier",
}


def _first_error(exc: PydanticValidationError) -> str:
    err = exc.errors()[0]
    msg = str(err.get("msg", "invalid value"))
    return msg.removeprefix("Value error, ")


class SettingsStore:
    """Cached settings with write-through persistence."""

    def __init__(
        self,
        database: LedgerDatabase,
        defaults: EconomySettings | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._db = database
        self._defaults = defaults or EconomySettings()
        self._logger = logger or logging.getLogger("economy.settings")
        self._snapshot = self._defaults
        self._cache: dict[str, dict[str, str]] = {
            ECONOMY_NAMESPACE: self._as_strings(self._defaults),
        }

    async def load(self) -> EconomySettings:
        """Populate the cache from storage. Call once at startup."""
        stored = await self._db.get_settings(ECONOMY_NAMESPACE)
        known = {k: v for k, v in stored.items() if k in EconomySettings.model_fields}
        for key in set(stored) - set(known):
            self._logger.warning("Ignoring unknown stored setting economy.%s", key)

        try:
            snapshot = EconomySettings(**{**self._defaults.model_dump(), **known})
        except PydanticValidationError as e:
            raise ValidationError(f"Stored economy settings are invalid: {_first_error(e)}") from e

        self._snapshot = snapshot
        self._cache[ECONOMY_NAMESPACE] = self._as_strings(snapshot)
        self._logger.info("Loaded economy settings (%d overridden)", len(known))
        return snapshot

    def snapshot(self) -> EconomySettings:
        """Immutable view of the current economy settings."""
        return self._snapshot

    def get(self, namespace: str = ECONOMY_NAMESPACE) -> dict[str, str]:
        return dict(self._cache.get(namespace, {}))

    @staticmethod
    def resolve_key(name: str) -> str:
        """Map an admin alias or a full setting name to the setting name."""
        lowered = name.strip().lower()
        if lowered in SETTING_ALIASES:
            return SETTING_ALIASES[lowered]
        if lowered in EconomySettings.model_fields:
            return lowered
        raise ValidationError(
            f"❓ Unknown setting '{name}'. Valid keys: {', '.join(SETTING_ALIASES)}"
        )

    async def set(self, namespace: str, key: str, value: Any) -> EconomySettings:
        """Validate and persist one value, then refresh the cache.

        Invalid values raise ``ValidationError`` and nothing is written.
        """
        if namespace != ECONOMY_NAMESPACE:
            await self._db.put_setting(namespace, key, str(value))
            self._cache.setdefault(namespace, {})[key] = str(value)
            return self._snapshot

        key = self.resolve_key(key)
        raw = value.strip() if isinstance(value, str) else value
        try:
            candidate = EconomySettings(**{**self._snapshot.model_dump(), key: raw})
        except PydanticValidationError as e:
            raise ValidationError(f"❌ Invalid value for {key}: {_first_error(e)}") from e

        stored = str(getattr(candidate, key))
        await self._db.put_setting(namespace, key, stored)
        self._snapshot = candidate
        self._cache[ECONOMY_NAMESPACE] = self._as_strings(candidate)
        self._logger.info("Setting economy.%s changed to %s", key, stored)
        return candidate

    @staticmethod
    def _as_strings(settings: EconomySettings) -> dict[str, str]:
        return {k: str(v) for k, v in settings.model_dump().items()}
