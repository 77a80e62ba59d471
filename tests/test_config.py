"""Unit tests for Config and related Pydantic models (create_datadao.config).

Tests cover:
- NetworkConfig / PollingConfig / RetryConfig defaults and validation
- Config derived paths (properties)
- save / load round trip
- from_env
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from create_datadao.config import Config, GitHubConfig, NetworkConfig, PollingConfig, RetryConfig


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------


class TestSubModels:
    @pytest.mark.unit
    def test_network_defaults(self):
        network = NetworkConfig()
        assert network.name == "moksha"
        assert network.rpc_url.startswith("https://")
        assert network.registry_address.startswith("0x")

    @pytest.mark.unit
    def test_key_polling_budget_is_thirty_minutes(self):
        polling = PollingConfig()
        assert polling.key_interval_ms * polling.key_max_attempts == 30 * 60 * 1000

    @pytest.mark.unit
    def test_retry_defaults(self):
        retry = RetryConfig()
        assert (retry.initial_delay_ms, retry.multiplier, retry.max_attempts) == (1000, 2.0, 3)

    @pytest.mark.unit
    def test_attempts_must_be_positive(self):
        with pytest.raises(ValidationError):
            PollingConfig(key_max_attempts=0)
        with pytest.raises(ValidationError):
            RetryConfig(max_attempts=0)

    @pytest.mark.unit
    def test_visibility_restricted(self):
        assert GitHubConfig(visibility="private").visibility == "private"
        with pytest.raises(ValidationError):
            GitHubConfig(visibility="internal")


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


class TestConfig:
    @pytest.mark.unit
    def test_derived_paths(self, tmp_path: Path):
        config = Config(project_dir=tmp_path)
        assert config.state_path == tmp_path / "deployment.json"
        assert config.contracts_dir == tmp_path / "contracts"
        assert config.proof_dir == tmp_path / "proof"
        assert config.refiner_dir == tmp_path / "refiner"
        assert config.ui_dir == tmp_path / "ui"

    @pytest.mark.unit
    def test_custom_state_file(self, tmp_path: Path):
        assert Config(project_dir=tmp_path, state_file="progress.json").state_path.name == "progress.json"

    @pytest.mark.unit
    def test_save_and_load(self, tmp_path: Path):
        config = Config(
            project_dir=tmp_path,
            network=NetworkConfig(rpc_url="http://localhost:8545"),
            polling=PollingConfig(key_max_attempts=5),
        )
        path = config.save()

        assert path == tmp_path / "datadao.config.json"
        assert json.loads(path.read_text(encoding="utf-8"))["network"]["rpc_url"] == "http://localhost:8545"
        loaded = Config.load(path)
        assert loaded.network.rpc_url == "http://localhost:8545"
        assert loaded.polling.key_max_attempts == 5


class TestFromEnv:
    @pytest.mark.unit
    def test_defaults_without_env(self, tmp_path: Path):
        with patch.dict(os.environ, {}, clear=True):
            config = Config.from_env(tmp_path)
        assert config.project_dir == tmp_path
        assert config.network == NetworkConfig()

    @pytest.mark.unit
    def test_reads_overrides(self, tmp_path: Path):
        env = {
            "DATADAO_PROJECT_DIR": str(tmp_path),
            "DATADAO_RPC_URL": "http://localhost:8545",
            "DATADAO_RPC_TIMEOUT": "5",
            "DATADAO_KEY_POLL_INTERVAL_MS": "1000",
            "DATADAO_KEY_POLL_ATTEMPTS": "2",
            "DATADAO_RETRY_ATTEMPTS": "1",
            "DATADAO_RETRY_INITIAL_DELAY_MS": "0",
            "DATADAO_GH_BINARY": "/usr/local/bin/gh",
            "DATADAO_REPO_VISIBILITY": "private",
        }
        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.project_dir == tmp_path
        assert config.network.rpc_url == "http://localhost:8545"
        assert config.network.timeout == 5
        assert config.polling.key_interval_ms == 1000
        assert config.polling.key_max_attempts == 2
        assert config.retry.max_attempts == 1
        assert config.retry.initial_delay_ms == 0
        assert config.github.binary == "/usr/local/bin/gh"
        assert config.github.visibility == "private"

    @pytest.mark.unit
    def test_invalid_value_rejected(self):
        with patch.dict(os.environ, {"DATADAO_KEY_POLL_ATTEMPTS": "0"}, clear=True):
            with pytest.raises(ValidationError):
                Config.from_env()
