"""Tests for the configuration system."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from artguard.config import (
    ArtguardConfig,
    ContractConfig,
    ContractSettings,
    RetrySettings,
    RollbackSettings,
    get_config,
    get_config_path,
    load_config,
    reload_config,
    reset_config,
)
from artguard.recovery.strategies import RecoveryLevel


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("ARTGUARD_CONFIG", "ARTGUARD_RECOVERY_LEVEL", "ARTGUARD_MAX_ATTEMPTS", "ARTGUARD_STATE_DIR"):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config_file(tmp_path: Path, monkeypatch) -> Path:
    path = tmp_path / "config.toml"
    monkeypatch.setenv("ARTGUARD_CONFIG", str(path))
    return path


# =============================================================================
# Section Tests
# =============================================================================


class TestSections:
    """Tests for configuration sections."""

    def test_contract_defaults(self):
        """Test default contract settings."""
        settings = ContractSettings()
        assert settings.source == ".wave/artifact.json"
        assert settings.recovery_level == "progressive"
        assert settings.allow_recovery is True
        assert settings.must_pass is True

    def test_retry_from_dict_coerces(self):
        """Numeric values are coerced."""
        settings = RetrySettings.from_dict({"max_attempts": "5", "base_delay": 2})
        assert settings.max_attempts == 5
        assert settings.base_delay == 2.0
        assert settings.max_delay == 30.0

    def test_round_trip(self):
        """to_dict output rebuilds the same config."""
        config = ArtguardConfig(
            contract=ContractSettings(recovery_level="aggressive"),
            rollback=RollbackSettings(state_dir="/tmp/state"),
        )
        assert ArtguardConfig.from_dict(config.to_dict()).to_dict() == config.to_dict()

    def test_dotted_get(self):
        """Values are reachable by dotted path."""
        config = ArtguardConfig()
        assert config.get("retry.max_attempts") == 3
        assert config.get("contract.nope", "fallback") == "fallback"


# =============================================================================
# Loading Tests
# =============================================================================


class TestLoadConfig:
    """Tests for load_config and the singleton."""

    def test_config_path_override(self, config_file):
        """ARTGUARD_CONFIG selects the file."""
        assert get_config_path() == config_file

    def test_missing_file_defaults(self, config_file):
        """A missing file gives defaults."""
        config = load_config()
        assert config.to_dict() == ArtguardConfig().to_dict()
        assert config.config_path == config_file
        assert config.last_modified is None

    def test_load_toml(self, config_file):
        """Sections are read from TOML."""
        config_file.write_text(
            '[contract]\nrecovery_level = "aggressive"\nmust_pass = false\n'
            "[retry]\nmax_attempts = 5\n"
            '[rollback]\nstate_dir = "/var/state"\n'
        )
        config = load_config()
        assert config.contract.recovery_level == "aggressive"
        assert config.contract.must_pass is False
        assert config.retry.max_attempts == 5
        assert config.rollback.state_dir == "/var/state"
        assert config.last_modified is not None

    def test_invalid_toml_defaults(self, config_file):
        """Broken files fall back to defaults."""
        config_file.write_text("[contract\nnope")
        assert load_config().to_dict() == ArtguardConfig().to_dict()

    def test_env_overrides(self, config_file, monkeypatch):
        """Environment variables win over the file."""
        config_file.write_text("[retry]\nmax_attempts = 5\n")
        monkeypatch.setenv("ARTGUARD_MAX_ATTEMPTS", "7")
        monkeypatch.setenv("ARTGUARD_RECOVERY_LEVEL", "conservative")
        monkeypatch.setenv("ARTGUARD_STATE_DIR", "/env/state")

        config = load_config()
        assert config.retry.max_attempts == 7
        assert config.contract.recovery_level == "conservative"
        assert config.rollback.state_dir == "/env/state"

    def test_invalid_env_ignored(self, config_file, monkeypatch):
        """A non-numeric attempt budget is ignored."""
        monkeypatch.setenv("ARTGUARD_MAX_ATTEMPTS", "many")
        assert load_config().retry.max_attempts == 3

    def test_singleton(self, config_file):
        """get_config caches until reloaded."""
        first = get_config()
        assert get_config() is first

        config_file.write_text("[retry]\nmax_attempts = 9\n")
        assert get_config().retry.max_attempts == 3
        assert reload_config().retry.max_attempts == 9


# =============================================================================
# Contract Tests
# =============================================================================


class TestContractConfig:
    """Tests for ContractConfig."""

    def test_defaults(self):
        """A bare contract is a progressive json_schema contract."""
        contract = ContractConfig()
        assert contract.type == "json_schema"
        assert contract.recovery_level == RecoveryLevel.PROGRESSIVE
        assert contract.schema_document is None

    def test_schema_alias(self):
        """The inline schema is given as 'schema'."""
        contract = ContractConfig.model_validate({"schema": {"type": "object"}})
        assert contract.schema_document == {"type": "object"}

    @pytest.mark.parametrize("level", ["aggressive", "AGGRESSIVE", 2, RecoveryLevel.AGGRESSIVE])
    def test_recovery_level_parsed(self, level):
        """Levels parse from names and integers."""
        assert ContractConfig(recovery_level=level).recovery_level == RecoveryLevel.AGGRESSIVE

    def test_invalid_level(self):
        """Unknown levels are rejected."""
        with pytest.raises(PydanticValidationError):
            ContractConfig(recovery_level="reckless")

    def test_max_attempts_positive(self):
        """At least one attempt."""
        with pytest.raises(PydanticValidationError):
            ContractConfig(max_attempts=0)

    def test_from_settings(self):
        """Configuration defaults fill the contract."""
        config = ArtguardConfig(
            contract=ContractSettings(schema_path="schema.json", recovery_level="conservative"),
            retry=RetrySettings(max_attempts=4),
        )
        contract = ContractConfig.from_settings(config)
        assert contract.schema_path == "schema.json"
        assert contract.recovery_level == RecoveryLevel.CONSERVATIVE
        assert contract.max_attempts == 4

    def test_from_settings_overrides(self):
        """Overrides win; None leaves the default."""
        contract = ContractConfig.from_settings(ArtguardConfig(), source="out.json", max_attempts=None)
        assert contract.source == "out.json"
        assert contract.max_attempts == 3
        assert contract.schema_path is None
