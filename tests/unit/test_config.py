"""Unit tests for environment-driven configuration."""

import os
import sys
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "wooligotchi-core"))

from wooligotchi.config import GameConfig
from wooligotchi.constants import DEFAULT_CHAIN_ID, DEFAULT_TICK_MS
from wooligotchi.remote_api import DEFAULT_WOOL_API_BASE


class TestGameConfig:
    @pytest.fixture
    def temp_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    def test_defaults(self, temp_dir):
        with patch.dict(os.environ, {}, clear=True):
            config = GameConfig.from_env(temp_dir / ".env")

        assert config.chain_id == DEFAULT_CHAIN_ID
        assert config.tick_ms == DEFAULT_TICK_MS
        assert config.wool_api_base == DEFAULT_WOOL_API_BASE
        assert config.test_mode is False
        assert config.private_key is None

    def test_reads_environment(self, temp_dir):
        env = {
            "CHAIN_ID": "1",
            "TICK_MS": "100",
            "POLL_INTERVAL_SECONDS": "5",
            "WOOLIGOTCHI_TEST_MODE": "true",
            "STORE_PATH": str(temp_dir / "saves"),
            "LIVES_API_BASE": "https://lives.example",
            "ETH_PRIVATE_KEY": " 0xabc ",
        }
        with patch.dict(os.environ, env, clear=True):
            config = GameConfig.from_env(temp_dir / ".env")

        assert config.chain_id == 1
        assert config.tick_ms == 100
        assert config.poll_interval_seconds == 5.0
        assert config.test_mode is True
        assert config.store_path == temp_dir / "saves"
        assert config.lives_api_base == "https://lives.example"
        assert config.private_key == "0xabc"

    def test_invalid_numbers_fall_back(self, temp_dir):
        env = {"CHAIN_ID": "monad", "TICK_MS": "0", "POLL_INTERVAL_SECONDS": "-3"}
        with patch.dict(os.environ, env, clear=True):
            config = GameConfig.from_env(temp_dir / ".env")

        assert config.chain_id == DEFAULT_CHAIN_ID
        assert config.tick_ms == DEFAULT_TICK_MS
        assert config.poll_interval_seconds == 60.0

    def test_loads_dotenv_file(self, temp_dir):
        env_file = temp_dir / ".env"
        env_file.write_text("CHAIN_ID=143\nVAULT_ADDRESS=0xvault\n", encoding="utf-8")
        with patch.dict(os.environ, {}, clear=True):
            config = GameConfig.from_env(env_file)

        assert config.chain_id == 143
        assert config.vault_address == "0xvault"

    def test_describe_hides_key(self, temp_dir):
        with patch.dict(os.environ, {"ETH_PRIVATE_KEY": "0xsecret"}, clear=True):
            config = GameConfig.from_env(temp_dir / ".env")
        assert "0xsecret" not in config.describe()
        assert "key=found" in config.describe()
