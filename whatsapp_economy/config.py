"""Configuration system for whatsapp-economy-bot.

All Pydantic models are defined here with sensible defaults. The
``economy.defaults`` section seeds the admin-adjustable settings; once an
admin changes a value through ``ecosettings`` the stored value wins.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ═══════════════════════════════════════════════════════════════
#  Bot & Access
# ═══════════════════════════════════════════════════════════════

class BotConfig(BaseModel):
    name: str = "Economy Bot"
    prefix: str = "!"
    timezone: str = "UTC"

    @field_validator("prefix")
    @classmethod
    def _prefix_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("prefix must not be blank")
        return v.strip()


class AdminConfig(BaseModel):
    owner_number: str = ""
    admin_numbers: list[str] = Field(default_factory=list)

    @field_validator("admin_numbers", mode="before")
    @classmethod
    def _split_numbers(cls, v: Any) -> Any:
        # Env expansion yields "123,456" for list-valued settings
        if isinstance(v, str):
            return [n.strip() for n in v.split(",") if n.strip()]
        return v


# ═══════════════════════════════════════════════════════════════
#  Infrastructure
# ═══════════════════════════════════════════════════════════════

class DatabaseConfig(BaseModel):
    path: str = "economy.db"
    busy_timeout_seconds: float = 5.0
    transaction_timeout_seconds: float = 10.0


class GatewayConfig(BaseModel):
    """WhatsApp Web bridge sidecar connection."""
    base_url: str = "http://localhost:8080"
    session_id: str = "default"
    api_token: str = ""
    request_timeout_seconds: float = 15.0
    reconnect_initial_seconds: float = 1.0
    reconnect_max_seconds: float = 60.0


class LocksConfig(BaseModel):
    sweep_interval_seconds: float = 60.0
    stale_after_seconds: float = 30.0


class CommandsConfig(BaseModel):
    rate_limit_per_minute: int = 10


class PluginsConfig(BaseModel):
    economy: bool = True
    ping: bool = True
    info: bool = True
    admin: bool = True
    calculator: bool = True
    joke: bool = True
    quote: bool = True
    weather: bool = True


class WeatherConfig(BaseModel):
    api_key: str = ""
    base_url: str = "https://api.openweathermap.org"


class PublicApisConfig(BaseModel):
    joke_url: str = "https://official-joke-api.appspot.com/random_joke"
    quote_url: str = "https://api.quotable.io/random"
    timeout_seconds: float = 5.0


class HealthConfig(BaseModel):
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 3000


# ═══════════════════════════════════════════════════════════════
#  Economy
# ═══════════════════════════════════════════════════════════════

class JobConfig(BaseModel):
    name: str
    min_pay: int = Field(ge=0)
    max_pay: int = Field(ge=0)

    @model_validator(mode="after")
    def _range(self) -> "JobConfig":
        if self.min_pay > self.max_pay:
            raise ValueError(f"job '{self.name}': min_pay exceeds max_pay")
        return self


DEFAULT_JOBS: list[dict[str, Any]] = [
    {"name": "Uber Driver", "min_pay": 200, "max_pay": 800},
    {"name": "Food Delivery", "min_pay": 150, "max_pay": 600},
    {"name": "Freelancer", "min_pay": 300, "max_pay": 1200},
    {"name": "Content Creator", "min_pay": 250, "max_pay": 900},
    {"name": "Tech Support", "min_pay": 180, "max_pay": 700},
    {"name": "Online Tutor", "min_pay": 400, "max_pay": 1000},
]


class EconomySettings(BaseModel):
    """Admin-adjustable economy parameters. Immutable; replace to change."""

    model_config = ConfigDict(frozen=True)

    currency: str = Field(default="₦", min_length=1)
    starting_balance: int = Field(default=1000, ge=0)
    starting_bank: int = Field(default=0, ge=0)
    daily_min: int = Field(default=500, ge=0)
    daily_max: int = Field(default=1500, ge=0)
    work_cooldown_minutes: int = Field(default=60, ge=1, le=1440)
    rob_cooldown_minutes: int = Field(default=120, ge=1, le=1440)
    rob_success_rate: float = Field(default=0.7, ge=0, le=1)
    rob_max_steal_percent: float = Field(default=0.3, ge=0, le=1)
    rob_min_target_balance: int = Field(default=500, ge=0)
    rob_min_robber_balance: int = Field(default=200, ge=0)
    rob_fail_penalty: int = Field(default=150, ge=0)
    gamble_min_bet: int = Field(default=100, ge=1)
    gamble_max_bet: int = Field(default=10000, ge=1)
    gamble_win_chance: float = Field(default=0.45, ge=0, le=1)
    gamble_multiplier: float = Field(default=1.8, ge=1)

    @model_validator(mode="after")
    def _ranges(self) -> "EconomySettings":
        if self.daily_min > self.daily_max:
            raise ValueError(
                "daily_min cannot exceed daily_max; to raise both, change daily_max first"
            )
        if self.gamble_min_bet > self.gamble_max_bet:
            raise ValueError(
                "gamble_min_bet cannot exceed gamble_max_bet; to raise both, change gamble_max_bet first"
            )
        return self


class EconomyConfig(BaseModel):
    defaults: EconomySettings = Field(default_factory=EconomySettings)
    jobs: list[JobConfig] = Field(
        default_factory=lambda: [JobConfig(**j) for j in DEFAULT_JOBS],
        min_length=1,
    )


# ═══════════════════════════════════════════════════════════════
#  Top-level
# ═══════════════════════════════════════════════════════════════

class AppConfig(BaseModel):
    bot: BotConfig = Field(default_factory=BotConfig)
    admin: AdminConfig = Field(default_factory=AdminConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    economy: EconomyConfig = Field(default_factory=EconomyConfig)
    locks: LocksConfig = Field(default_factory=LocksConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
    plugins: PluginsConfig = Field(default_factory=PluginsConfig)
    weather: WeatherConfig = Field(default_factory=WeatherConfig)
    public_apis: PublicApisConfig = Field(default_factory=PublicApisConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)

    @field_validator("bot")
    @classmethod
    def _known_timezone(cls, v: BotConfig) -> BotConfig:
        try:
            ZoneInfo(v.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone: {v.timezone}") from e
        return v


# ═══════════════════════════════════════════════════════════════
#  Config Loading
# ═══════════════════════════════════════════════════════════════

def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand ${VAR} and ${VAR:-default} in string values."""
    if isinstance(obj, str):
        return re.sub(
            r"\$\{([^}:]+)(?::-(.*?))?\}",
            lambda m: os.environ.get(m.group(1), m.group(2) or ""),
            obj,
        )
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


def load_config(config_path: str) -> AppConfig:
    """Load and validate YAML config file into AppConfig."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError("Config file must contain a YAML mapping at the top level.")

    raw = _expand_env_vars(raw)
    return AppConfig(**raw)
