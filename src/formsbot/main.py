"""Main entry point for formsbot."""

import argparse
import asyncio
import logging
import sys

from .config import BotConfig
from .discord_bot import create_bot
from .state import create_state_store

logger = logging.getLogger(__name__)


async def run_formsbot(config: BotConfig) -> None:
    """Run the bot until it is stopped.

    Args:
        config: Loaded configuration, including the bot token
    """
    store = create_state_store(config.store.url, **config.store_kwargs())
    logger.info(f"Using store at {config.store.url.split('@')[-1]}")

    bot = create_bot(config, store)
    try:
        await bot.start(config.discord_token)
    finally:
        if not bot.is_closed():
            await bot.close()
        store.close()


def cli() -> None:
    """Command-line interface entry point."""
    parser = argparse.ArgumentParser(
        description="formsbot - Discord forms with private-thread responses",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # SQLite store next to the config (default)
  formsbot --discord-token $DISCORD_TOKEN

  # Redis store
  formsbot --store-url redis://localhost:6379/0

Environment variables:
  DISCORD_TOKEN   Required unless --discord-token is given.
"""
    )

    parser.add_argument(
        "--config",
        default=".formsbot/config.yaml",
        help="Path to config file (default: .formsbot/config.yaml)"
    )

    parser.add_argument(
        "--discord-token",
        help="Discord bot token (or set DISCORD_TOKEN env var)"
    )

    parser.add_argument(
        "--store-url",
        help="Override the store URL from the config (sqlite:///path or redis://host)"
    )

    parser.add_argument(
        "--log-level",
        help="Override the log level from the config (e.g. DEBUG)"
    )

    args = parser.parse_args()

    config = BotConfig.load(args.config)
    if args.discord_token:
        config.discord_token = args.discord_token
    if args.store_url:
        config.store.url = args.store_url
    if args.log_level:
        config.log_level = args.log_level.upper()

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not config.discord_token:
        print("Error: Discord token required. Use --discord-token or set DISCORD_TOKEN")
        sys.exit(1)

    try:
        asyncio.run(run_formsbot(config))
    except KeyboardInterrupt:
        print("\nShutting down...")


if __name__ == "__main__":
    cli()
