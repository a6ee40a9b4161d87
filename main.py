#!/usr/bin/env python3
"""
Poll Quiz Bot - Main Entry Point

Runs the Discord poll quiz bot. Configure the bot token and AI provider keys
in config.json or through environment variables.

Usage:
    python main.py [path/to/config.json]

Environment Variables:
    DISCORD_BOT_TOKEN: Your Discord bot token (overrides config.json)
    GROQ_API_KEY, GROQ_API_KEY_2, ...: AI provider keys, rotated on rate limits
"""

import asyncio
import json
import logging
import os
import sys
from pathlib import Path

DEFAULT_CONFIG_PATH = "config.json"


def load_config(config_path: str = DEFAULT_CONFIG_PATH):
    """Load configuration from a JSON file; a missing file means defaults."""
    path = Path(config_path)

    if not path.exists():
        print(f"ℹ️  {config_path} not found, using defaults and environment variables")
        return {}

    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        print(f"❌ Error: Invalid JSON in {config_path}: {e}")
        sys.exit(1)
    except OSError as e:
        print(f"❌ Error loading {config_path}: {e}")
        sys.exit(1)


def get_bot_token(config):
    """Get bot token from environment variable or config file."""
    # Environment variable takes precedence
    token = os.getenv('DISCORD_BOT_TOKEN')
    if token:
        return token

    token = config.get('bot', {}).get('token')
    if not token or token == "YOUR_DISCORD_BOT_TOKEN_HERE":
        print("❌ Error: Discord bot token not configured!")
        print("Either:")
        print("  1. Set DISCORD_BOT_TOKEN environment variable")
        print("  2. Update the 'token' field in config.json")
        sys.exit(1)

    return token


def setup_logging_from_config(config):
    """Set up logging based on configuration."""
    log_config = config.get('logging', {})
    log_level = getattr(logging, log_config.get('level', 'INFO').upper(), logging.INFO)
    log_directory = Path(log_config.get('log_directory', './logs/'))

    log_directory.mkdir(parents=True, exist_ok=True)

    formatter = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    logging.basicConfig(
        level=log_level,
        format=formatter,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_directory / "bot.log", encoding='utf-8')
        ]
    )

    error_handler = logging.FileHandler(log_directory / "errors.log", encoding='utf-8')
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter(formatter))
    logging.getLogger().addHandler(error_handler)

    # Reduce discord.py and HTTP client noise
    logging.getLogger('discord').setLevel(logging.WARNING)
    logging.getLogger('discord.http').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)


async def run_bot_with_config(config_path: str = DEFAULT_CONFIG_PATH):
    """Run the bot with configuration."""
    config = load_config(config_path)
    setup_logging_from_config(config)
    token = get_bot_token(config)

    from pollquiz.bot import run_bot
    await run_bot(token, config)


def main():
    config_path = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_CONFIG_PATH
    try:
        print("🤖 Starting Poll Quiz Bot...")
        asyncio.run(run_bot_with_config(config_path))
    except KeyboardInterrupt:
        print("\n👋 Bot stopped by user")
    except Exception as e:
        logging.getLogger(__name__).critical(f"Bot crashed: {e}", exc_info=True)
        print(f"❌ Failed to run bot: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
