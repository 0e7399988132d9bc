"""
Tests for the configuration module.
"""

import pytest

import veil_client.config as cfg
from veil_client.config import (
    HARDHAT_CHAIN_ID,
    SEPOLIA_CHAIN_ID,
    ActivityConfig,
    DecryptionConfig,
    DeltaLimits,
    NetworkConfig,
    RetryConfig,
    Settings,
    configure,
    get_settings,
    load_env,
)
from veil_client.contract import ContractDeployments

CONTRACT = "0x5FbDB2315678afecb367f032d93F642f64180aa3"


class TestSectionConfigs:
    """Test individual configuration sections."""

    def test_retry_defaults(self):
        config = RetryConfig()
        assert config.max_attempts == 3
        assert config.backoff == 0.5
        assert config.confirmation_timeout == 60.0

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_attempts": 0}, {"backoff": -1.0}, {"confirmation_timeout": 0}],
    )
    def test_retry_validation(self, kwargs):
        with pytest.raises(ValueError):
            RetryConfig(**kwargs)

    def test_delta_defaults(self):
        limits = DeltaLimits()
        assert (limits.minimum, limits.maximum) == (-10, 20)

    def test_delta_must_include_zero(self):
        with pytest.raises(ValueError):
            DeltaLimits(minimum=1, maximum=5)

    def test_decryption_ttl_positive(self):
        assert DecryptionConfig().authorization_ttl == 86400.0
        with pytest.raises(ValueError):
            DecryptionConfig(authorization_ttl=0)

    def test_activity_capacity(self):
        assert ActivityConfig().max_entries == 50
        with pytest.raises(ValueError):
            ActivityConfig(max_entries=0)

    def test_network_defaults(self, monkeypatch):
        monkeypatch.delenv("VEIL_LOCAL_RPC_URL", raising=False)
        monkeypatch.setenv("VEIL_SEPOLIA_RPC_URL", "https://sepolia.example/rpc")

        network = NetworkConfig()

        assert network.rpc_urls[HARDHAT_CHAIN_ID] == "http://127.0.0.1:8545"
        assert network.rpc_urls[SEPOLIA_CHAIN_ID] == "https://sepolia.example/rpc"
        assert network.is_mock_chain(HARDHAT_CHAIN_ID)
        assert not network.is_mock_chain(SEPOLIA_CHAIN_ID)
        assert network.rpc_url_for(HARDHAT_CHAIN_ID) == network.mock_chains[HARDHAT_CHAIN_ID]
        assert network.rpc_url_for(SEPOLIA_CHAIN_ID) == "https://sepolia.example/rpc"
        assert network.rpc_url_for(1) is None


class TestSettings:
    """Test master Settings class."""

    def test_from_env(self, monkeypatch):
        """Test loading from environment variables."""
        monkeypatch.setenv("VEIL_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("VEIL_RETRY_BACKOFF", "0.1")
        monkeypatch.setenv("VEIL_CONFIRMATION_TIMEOUT", "off")
        monkeypatch.setenv("VEIL_AUTHORIZATION_TTL", "3600")
        monkeypatch.setenv(f"VEIL_CONTRACT_{HARDHAT_CHAIN_ID}", CONTRACT)
        monkeypatch.setenv("VEIL_ACTIVITY_MAX_ENTRIES", "10")
        monkeypatch.setenv("VEIL_LOG_LEVEL", "debug")
        monkeypatch.setenv("VEIL_LOG_FORMAT", "JSON")

        settings = Settings.from_env()

        assert settings.retry.max_attempts == 5
        assert settings.retry.backoff == 0.1
        assert settings.retry.confirmation_timeout is None
        assert settings.decryption.authorization_ttl == 3600.0
        assert settings.deployments.contracts == {HARDHAT_CHAIN_ID: CONTRACT}
        assert settings.activity.max_entries == 10
        assert settings.logging.level == "DEBUG"
        assert settings.logging.format == "json"

    def test_from_env_rejects_invalid_values(self, monkeypatch):
        monkeypatch.setenv("VEIL_MAX_ATTEMPTS", "0")
        with pytest.raises(ValueError):
            Settings.from_env()

    def test_from_yaml_file(self, tmp_path):
        """Test loading from YAML file with bare integer chain ids."""
        pytest.importorskip("yaml")
        config_path = tmp_path / "veil.yaml"
        config_path.write_text(f"""
retry:
  max_attempts: 4
  backoff: 1.5
delta:
  minimum: -5
  maximum: 5
deployments:
  contracts:
    31337: "{CONTRACT}"
logging:
  level: DEBUG
""")

        settings = Settings.from_file(config_path)

        assert settings.retry.max_attempts == 4
        assert settings.retry.backoff == 1.5
        assert settings.delta.maximum == 5
        assert settings.deployments.contracts == {HARDHAT_CHAIN_ID: CONTRACT}
        assert settings.logging.level == "DEBUG"

    def test_from_toml_file(self, tmp_path):
        config_path = tmp_path / "veil.toml"
        config_path.write_text(f"""
[decryption]
authorization_ttl = 600

[network.rpc_urls]
"11155111" = "https://sepolia.example/rpc"

[deployments.contracts]
"11155111" = "{CONTRACT}"
""")

        settings = Settings.from_file(config_path)

        assert settings.decryption.authorization_ttl == 600
        assert settings.network.rpc_urls == {SEPOLIA_CHAIN_ID: "https://sepolia.example/rpc"}
        assert settings.deployments.contracts[SEPOLIA_CHAIN_ID] == CONTRACT

    def test_schema_rejects_bad_address(self, tmp_path):
        config_path = tmp_path / "veil.yaml"
        config_path.write_text("deployments:\n  contracts:\n    31337: not-an-address\n")

        with pytest.raises(ValueError, match="Configuration validation failed"):
            Settings.from_file(config_path)

    def test_schema_rejects_unknown_section(self, tmp_path):
        config_path = tmp_path / "veil.yaml"
        config_path.write_text("openai:\n  api_key: sk-test\n")

        with pytest.raises(ValueError, match="Configuration validation failed"):
            Settings.from_file(config_path)

    def test_unsupported_format(self, tmp_path):
        config_path = tmp_path / "veil.ini"
        config_path.write_text("[retry]\n")

        with pytest.raises(ValueError, match="Unsupported config file format"):
            Settings.from_file(config_path)

    def test_file_not_found(self):
        """Test error for missing file."""
        with pytest.raises(FileNotFoundError):
            Settings.from_file("/nonexistent/veil.yaml")

    def test_to_dict(self):
        d = Settings().to_dict()
        assert d["retry"]["max_attempts"] == 3
        assert d["delta"] == {"minimum": -10, "maximum": 20}
        assert "deployments" in d

    def test_deployments_from_settings(self):
        settings = Settings()
        settings.deployments.contracts[HARDHAT_CHAIN_ID] = CONTRACT

        deployments = ContractDeployments.from_config(settings.deployments)

        assert deployments.address_for(HARDHAT_CHAIN_ID) == CONTRACT
        assert not deployments.is_deployed(SEPOLIA_CHAIN_ID)


class TestGlobalSettings:
    """Test global settings functions."""

    def test_get_settings(self, monkeypatch):
        """Test getting global settings."""
        monkeypatch.setattr(cfg, "_global_settings", None)

        settings = get_settings()

        assert isinstance(settings, Settings)
        assert get_settings() is settings

    def test_configure(self, monkeypatch):
        """Test configuration helper."""
        monkeypatch.setattr(cfg, "_global_settings", None)

        settings = configure(retry=RetryConfig(max_attempts=7))

        assert settings.retry.max_attempts == 7
        assert get_settings() is settings

    def test_load_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("VEIL_RETRY_BACKOFF", "0.5")
        env_file = tmp_path / ".env"
        env_file.write_text("VEIL_RETRY_BACKOFF=2.5\n")

        assert load_env(str(env_file), override=True)
        assert Settings.from_env().retry.backoff == 2.5
