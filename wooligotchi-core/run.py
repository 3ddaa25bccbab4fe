#!/usr/bin/env python3
"""
Headless entry point for the Wooligotchi core.

Runs the pet simulation and remote reconciliation loops for the wallet whose
key is configured locally.
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Optional

# Add the current directory to Python path for local imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from wooligotchi.config import GameConfig
from wooligotchi.events import EventKind
from wooligotchi.game_session import GameSession
from wooligotchi.local_store import LocalStore
from wooligotchi.remote_api import LivesAuthorityClient, RewardAuthorityClient
from wooligotchi.wallet import WalletConfig, Web3Wallet

DEFAULT_VERSION = "0.1.0"


def setup_logging() -> logging.Logger:
    """Format: [YYYY-MM-DD HH:MM:SS,mmm] [LOG_LEVEL] [wooligotchi] message"""
    log_format = "[%(asctime)s] [%(levelname)s] [wooligotchi] %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    logging.basicConfig(
        level=logging.INFO,
        format=log_format,
        datefmt=date_format,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    logger = logging.getLogger("wooligotchi")
    logger.setLevel(logging.DEBUG if os.environ.get("WOOLIGOTCHI_DEBUG") else logging.INFO)
    return logger


def read_private_key(key_file: Optional[Path], fallback: Optional[str]) -> Optional[str]:
    """Read the owner key from ``key_file`` if given, else the configured value."""
    if key_file is not None:
        try:
            key = key_file.read_text(encoding="utf-8").strip()
            if key:
                return key
        except Exception as exc:
            logging.error("Failed to read private key from %s: %s", key_file, exc)
    if fallback and fallback.strip():
        return fallback.strip()
    logging.warning("Owner private key not found (checked --owner-key-file and ETH_PRIVATE_KEY)")
    return None


def build_wallet(
    config: GameConfig, private_key: Optional[str], logger: logging.Logger
) -> Optional[Web3Wallet]:
    if not private_key:
        return None
    try:
        return Web3Wallet(
            WalletConfig(
                rpc_url=config.rpc_url,
                private_key=private_key,
                vault_address=config.vault_address,
                nft_contract=config.nft_contract,
                chain_id=config.chain_id,
            ),
            logger_=logger,
        )
    except ValueError as exc:
        logger.error(f"Invalid wallet configuration: {exc}")
        return None


async def main(key_file: Optional[Path] = None, ticks: Optional[int] = None) -> None:
    logger = setup_logging()
    logger.info("🚀 Starting Wooligotchi core")

    config = GameConfig.from_env(Path(__file__).parent / ".env")
    logger.info(f"Configuration: {config.describe()}")

    wallet = build_wallet(config, read_private_key(key_file, config.private_key), logger)
    session = GameSession(
        LocalStore(config.store_path, logger_=logger),
        reward_authority=RewardAuthorityClient(config.wool_api_base, logger_=logger),
        lives_authority=LivesAuthorityClient(config.lives_api_base, logger_=logger),
        wallet=wallet,
        test_mode=config.test_mode,
        tick_ms=config.tick_ms,
        poll_interval_seconds=config.poll_interval_seconds,
        logger_=logger,
    )
    session.bus.subscribe(
        EventKind.STATUS_MESSAGE,
        lambda _kind, data: logger.info(f"💬 {data.get('message')}"),
    )
    if wallet is not None:
        session.connect(wallet.address, wallet.network_id)
    else:
        logger.warning("No wallet configured; running in no-wallet phase")

    try:
        await session.run(max_ticks=ticks)
    except KeyboardInterrupt:
        logger.info("🛑 Shutdown requested by user")
    except Exception as e:
        logger.error(f"💥 Critical error in game session: {e}", exc_info=True)
        raise


def get_version() -> str:
    return os.environ.get("WOOLIGOTCHI_VERSION", DEFAULT_VERSION)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the Wooligotchi core headlessly.")
    parser.add_argument(
        "--owner-key-file",
        type=Path,
        help="File holding the owner's hex private key.",
    )
    parser.add_argument(
        "--ticks",
        type=int,
        help="Stop after this many simulation ticks.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    return parser.parse_args()


if __name__ == "__main__":
    cli_args = parse_args()

    if cli_args.version:
        print(f"Wooligotchi Core {get_version()}")
        sys.exit(0)

    try:
        asyncio.run(main(key_file=cli_args.owner_key_file, ticks=cli_args.ticks))
    except KeyboardInterrupt:
        print("\n🛑 Stopped by user")
        sys.exit(0)
    except Exception as e:
        print(f"💥 Fatal error: {e}")
        sys.exit(1)
