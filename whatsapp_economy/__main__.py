"""CLI entry point for whatsapp-economy-bot.

Config lookup order: ``--config``, ``$WHATSAPP_ECONOMY_CONFIG``, the system
path, the per-user path, then ``./config.yaml``.
"""
import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Mapping

from .config import AppConfig, load_config
from .main import BotApp

CONFIG_ENV_VAR = "WHATSAPP_ECONOMY_CONFIG"

CONFIG_CANDIDATES = [
    "/etc/whatsapp-economy-bot/config.yaml",
    "~/.config/whatsapp-economy-bot/config.yaml",
    "./config.yaml",
]

# Silenced unless --log-level DEBUG
NOISY_LOGGERS = ("aiohttp.access",)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if level.upper() != "DEBUG":
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="whatsapp-economy-bot",
        description="WhatsApp group bot with a transactional economy game",
    )
    parser.add_argument("--config", type=str, help=f"Path to config.yaml (or set ${CONFIG_ENV_VAR})")
    parser.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument(
        "--validate-config",
        action="store_true",
        help="Load the config, print a summary of it and exit",
    )
    return parser.parse_args(argv)


def find_config(explicit: str | None, environ: Mapping[str, str] | None = None) -> str | None:
    if explicit:
        return explicit
    env = os.environ if environ is None else environ
    if env.get(CONFIG_ENV_VAR):
        return env[CONFIG_ENV_VAR]
    for candidate in CONFIG_CANDIDATES:
        if Path(candidate).expanduser().exists():
            return candidate
    return None


def describe_config(config: AppConfig) -> list[str]:
    """Summary lines printed by ``--validate-config``."""
    enabled = [name for name, on in config.plugins.model_dump().items() if on]
    lines = [
        f"bot: {config.bot.name} (prefix '{config.bot.prefix}', timezone {config.bot.timezone})",
        f"gateway: {config.gateway.base_url} session '{config.gateway.session_id}'",
        f"database: {config.database.path}",
        f"owner: {config.admin.owner_number or 'not set'}, admins: {len(config.admin.admin_numbers)}",
        f"plugins: {', '.join(enabled) if enabled else 'none'}",
        f"jobs: {len(config.economy.jobs)}",
    ]
    if config.plugins.weather and not config.weather.api_key:
        lines.append("warning: weather plugin enabled without weather.api_key; the command will be disabled")
    if config.health.enabled:
        lines.append(f"health: http://{config.health.host}:{config.health.port}/health")
    return lines


def validate(config_path: str, logger: logging.Logger) -> int:
    try:
        config = load_config(config_path)
    except Exception as e:
        logger.error("Config validation failed for %s: %s", config_path, e)
        return 1
    logger.info("Config %s is valid.", config_path)
    for line in describe_config(config):
        logger.info("  %s", line)
    return 0


def install_signal_handlers(app: BotApp) -> None:
    """SIGTERM / SIGINT trigger one graceful stop. No-op on Windows."""
    if sys.platform == "win32":
        return
    loop = asyncio.get_running_loop()
    stopping: list[asyncio.Task] = []

    def _request_stop(sig: signal.Signals) -> None:
        if stopping:
            return
        logging.getLogger("economy").info("Received %s, shutting down", sig.name)
        stopping.append(loop.create_task(app.stop()))

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_stop, sig)


async def main_async(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)
    logger = logging.getLogger("economy")

    config_path = find_config(args.config)
    if not config_path:
        logger.error(
            "No config file found. Use --config, set $%s or place config.yaml in CWD.",
            CONFIG_ENV_VAR,
        )
        return 1
    config_path = str(Path(config_path).expanduser())

    if args.validate_config:
        return validate(config_path, logger)

    app = BotApp(config_path)
    install_signal_handlers(app)
    try:
        await app.start()
    finally:
        await app.stop()
    return 0


def main() -> None:
    """Sync entry point for pyproject.toml [project.scripts]."""
    try:
        sys.exit(asyncio.run(main_async()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
