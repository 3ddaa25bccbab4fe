"""Runtime configuration resolved from the environment (and an optional ``.env``)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .constants import (
    DEFAULT_CHAIN_ID,
    DEFAULT_NFT_CONTRACT,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_TICK_MS,
)
from .remote_api import DEFAULT_WOOL_API_BASE

logger = logging.getLogger(__name__)

DEFAULT_STORE_PATH = "~/.wooligotchi"
_TRUTHY = {"1", "true", "yes", "on"}


def load_env_file(path: Optional[Path] = None) -> bool:
    """Load a ``.env`` file into ``os.environ`` without overriding set values."""
    if path is not None:
        if not path.exists():
            return False
        return load_dotenv(dotenv_path=path)
    return load_dotenv()


def _env_str(name: str, default: str = "") -> str:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip(), 0)
    except (TypeError, ValueError):
        logger.warning("Invalid %s=%r; using default %s", name, raw, default)
        return default
    if value < minimum:
        logger.warning("%s=%s below minimum %s; using default %s", name, value, minimum, default)
        return default
    return value


def _env_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw.strip())
    except (TypeError, ValueError):
        logger.warning("Invalid %s=%r; using default %s", name, raw, default)
        return default
    if value < minimum:
        logger.warning("%s=%s below minimum %s; using default %s", name, value, minimum, default)
        return default
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


@dataclass
class GameConfig:
    wool_api_base: str = DEFAULT_WOOL_API_BASE
    lives_api_base: str = ""
    rpc_url: str = ""
    chain_id: int = DEFAULT_CHAIN_ID
    vault_address: str = ""
    nft_contract: str = DEFAULT_NFT_CONTRACT
    store_path: Path = Path(DEFAULT_STORE_PATH).expanduser()
    tick_ms: int = DEFAULT_TICK_MS
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    test_mode: bool = False
    private_key: Optional[str] = None

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "GameConfig":
        load_env_file(env_file)
        private_key = _env_str("ETH_PRIVATE_KEY") or None
        return cls(
            wool_api_base=_env_str("WOOL_API_BASE", DEFAULT_WOOL_API_BASE),
            lives_api_base=_env_str("LIVES_API_BASE"),
            rpc_url=_env_str("RPC_URL"),
            chain_id=_env_int("CHAIN_ID", DEFAULT_CHAIN_ID, minimum=1),
            vault_address=_env_str("VAULT_ADDRESS"),
            nft_contract=_env_str("NFT_CONTRACT", DEFAULT_NFT_CONTRACT),
            store_path=Path(_env_str("STORE_PATH", DEFAULT_STORE_PATH)).expanduser(),
            tick_ms=_env_int("TICK_MS", DEFAULT_TICK_MS, minimum=1),
            poll_interval_seconds=_env_float(
                "POLL_INTERVAL_SECONDS", DEFAULT_POLL_INTERVAL_SECONDS, minimum=1.0
            ),
            test_mode=_env_bool("WOOLIGOTCHI_TEST_MODE"),
            private_key=private_key,
        )

    def describe(self) -> str:
        """One-line summary for startup logs; never includes the key."""
        return (
            f"chain={self.chain_id} rpc={'set' if self.rpc_url else 'unset'} "
            f"wool_api={self.wool_api_base} lives_api={self.lives_api_base or 'unset'} "
            f"store={self.store_path} tick_ms={self.tick_ms} "
            f"test_mode={self.test_mode} key={'found' if self.private_key else 'missing'}"
        )
