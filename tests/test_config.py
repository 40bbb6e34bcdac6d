"""Tests for configuration loading."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from reconcile_scope.config import (
    DEFAULT_PATCH_TIMEOUT_SECONDS,
    Config,
    ConfigurationError,
)
from reconcile_scope.retry import DEFAULT_BACKOFF


class TestConfig:
    """Tests for Config class."""

    def test_defaults(self) -> None:
        """Test that the default configuration is valid."""
        config = Config()

        assert config.patch_timeout_seconds == DEFAULT_PATCH_TIMEOUT_SECONDS == 10
        assert config.provider_id_scheme == "ionos"
        assert config.retry_policy() == DEFAULT_BACKOFF

    def test_provider_machine_kind(self) -> None:
        config = Config(provider_machine_plural="acmemachines", provider_machine_version="v1beta1")
        kind = config.provider_machine_kind()

        assert kind.group == "infrastructure.cluster.x-k8s.io"
        assert kind.version == "v1beta1"
        assert kind.plural == "acmemachines"

    def test_retry_cap(self) -> None:
        config = Config(retry_cap_seconds=2.5)
        assert config.retry_policy().cap_seconds == 2.5

    def test_missing_kubeconfig(self, tmp_path: Path) -> None:
        """Test that a non-existent kubeconfig is rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(kubeconfig=tmp_path / "missing")

        assert "KUBECONFIG" in str(exc_info.value)

    def test_in_cluster_and_kubeconfig_exclusive(self, tmp_path: Path) -> None:
        kubeconfig = tmp_path / "config"
        kubeconfig.write_text("")

        with pytest.raises(ConfigurationError) as exc_info:
            Config(kubeconfig=kubeconfig, in_cluster=True)

        assert "mutually exclusive" in str(exc_info.value)

    def test_invalid_patch_timeout(self) -> None:
        """Test that out-of-range commit deadline raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(patch_timeout_seconds=0.1)

        assert "PATCH_TIMEOUT" in str(exc_info.value)

    def test_all_errors_reported(self) -> None:
        """Test that every invalid field is listed at once."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(retry_steps=0, retry_factor=0.5, provider_id_scheme="1bad", log_level="TRACE")

        message = str(exc_info.value)
        assert "RETRY_STEPS" in message
        assert "RETRY_FACTOR" in message
        assert "PROVIDER_ID_SCHEME" in message
        assert "LOG_LEVEL" in message

    def test_invalid_group(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(provider_machine_group="Not A Group")

        assert "PROVIDER_MACHINE_GROUP" in str(exc_info.value)

    def test_from_env(self) -> None:
        """Test loading configuration from environment."""
        env = {
            "PROVIDER_ID_SCHEME": "acme",
            "PROVIDER_MACHINE_PLURAL": "acmemachines",
            "PATCH_TIMEOUT": "15",
            "RETRY_STEPS": "6",
            "RETRY_JITTER": "0",
            "IN_CLUSTER": "true",
            "LOG_LEVEL": "debug",
            "JSON_LOGS": "false",
        }

        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.provider_id_scheme == "acme"
        assert config.provider_machine_plural == "acmemachines"
        assert config.patch_timeout_seconds == 15.0
        assert config.retry_steps == 6
        assert config.retry_jitter == 0.0
        assert config.in_cluster is True
        assert config.log_level == "DEBUG"
        assert config.json_logs is False

    def test_from_env_invalid_integer(self) -> None:
        with patch.dict(os.environ, {"RETRY_STEPS": "many"}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "RETRY_STEPS must be an integer" in str(exc_info.value)

    def test_from_env_invalid_number(self) -> None:
        with patch.dict(os.environ, {"PATCH_TIMEOUT": "soon"}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "PATCH_TIMEOUT must be a number" in str(exc_info.value)
