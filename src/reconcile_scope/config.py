"""Configuration management with validation.

Bounds on the commit deadline and the retry schedule are enforced at
configuration load time so a misconfigured controller fails on startup
instead of during its first reconciliation.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

from .models import ResourceKind
from .retry import DEFAULT_BACKOFF, RetryPolicy


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_PATCH_TIMEOUT_SECONDS = 10.0
MIN_PATCH_TIMEOUT_SECONDS = 1.0
MAX_PATCH_TIMEOUT_SECONDS = 120.0

DEFAULT_RETRY_STEPS = DEFAULT_BACKOFF.steps
DEFAULT_RETRY_BASE_DELAY_SECONDS = DEFAULT_BACKOFF.base_delay_seconds
DEFAULT_RETRY_FACTOR = DEFAULT_BACKOFF.factor
DEFAULT_RETRY_JITTER = DEFAULT_BACKOFF.jitter
DEFAULT_RETRY_CAP_SECONDS = 0.0  # 0 disables the cap
MAX_RETRY_STEPS = 20

DEFAULT_PROVIDER_ID_SCHEME = "ionos"
DEFAULT_PROVIDER_MACHINE_GROUP = "infrastructure.cluster.x-k8s.io"
DEFAULT_PROVIDER_MACHINE_VERSION = "v1alpha1"
DEFAULT_PROVIDER_MACHINE_PLURAL = "ionoscloudmachines"
DEFAULT_PROVIDER_MACHINE_KIND = "IonosCloudMachine"

# Input validation patterns
VALID_SCHEME_PATTERN = r"^[a-z][a-z0-9+.-]*$"
VALID_GROUP_PATTERN = r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$"
VALID_PLURAL_PATTERN = r"^[a-z][a-z0-9]*$"
VALID_VERSION_PATTERN = r"^v[0-9]+((alpha|beta)[0-9]+)?$"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(frozen=True)
class Config:
    """Controller configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Store access
    kubeconfig: Path | None = None
    in_cluster: bool = False

    # Provider machine resource coordinates
    provider_machine_group: str = DEFAULT_PROVIDER_MACHINE_GROUP
    provider_machine_version: str = DEFAULT_PROVIDER_MACHINE_VERSION
    provider_machine_plural: str = DEFAULT_PROVIDER_MACHINE_PLURAL
    provider_id_scheme: str = DEFAULT_PROVIDER_ID_SCHEME

    # Commit
    patch_timeout_seconds: float = DEFAULT_PATCH_TIMEOUT_SECONDS

    # Finalize retry schedule
    retry_steps: int = DEFAULT_RETRY_STEPS
    retry_base_delay_seconds: float = DEFAULT_RETRY_BASE_DELAY_SECONDS
    retry_factor: float = DEFAULT_RETRY_FACTOR
    retry_jitter: float = DEFAULT_RETRY_JITTER
    retry_cap_seconds: float = DEFAULT_RETRY_CAP_SECONDS

    # Logging
    log_level: str = "INFO"
    json_logs: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if self.in_cluster and self.kubeconfig is not None:
            errors.append("IN_CLUSTER and KUBECONFIG are mutually exclusive")
        if self.kubeconfig is not None and not self.kubeconfig.exists():
            errors.append(f"KUBECONFIG file does not exist: {self.kubeconfig}")

        if not re.match(VALID_GROUP_PATTERN, self.provider_machine_group):
            errors.append(
                f"PROVIDER_MACHINE_GROUP must be a DNS subdomain: {self.provider_machine_group}"
            )
        if not re.match(VALID_VERSION_PATTERN, self.provider_machine_version):
            errors.append(
                f"PROVIDER_MACHINE_VERSION must look like v1, v1beta1: "
                f"{self.provider_machine_version}"
            )
        if not re.match(VALID_PLURAL_PATTERN, self.provider_machine_plural):
            errors.append(
                f"PROVIDER_MACHINE_PLURAL must be lowercase alphanumeric: "
                f"{self.provider_machine_plural}"
            )
        if not re.match(VALID_SCHEME_PATTERN, self.provider_id_scheme):
            errors.append(f"PROVIDER_ID_SCHEME must be a URI scheme: {self.provider_id_scheme}")

        if not (
            MIN_PATCH_TIMEOUT_SECONDS <= self.patch_timeout_seconds <= MAX_PATCH_TIMEOUT_SECONDS
        ):
            errors.append(
                f"PATCH_TIMEOUT must be between {MIN_PATCH_TIMEOUT_SECONDS} "
                f"and {MAX_PATCH_TIMEOUT_SECONDS} seconds"
            )

        if not (1 <= self.retry_steps <= MAX_RETRY_STEPS):
            errors.append(f"RETRY_STEPS must be between 1 and {MAX_RETRY_STEPS}")
        if self.retry_base_delay_seconds < 0:
            errors.append("RETRY_BASE_DELAY cannot be negative")
        if self.retry_factor < 1.0:
            errors.append("RETRY_FACTOR must be at least 1.0")
        if not (0.0 <= self.retry_jitter <= 1.0):
            errors.append("RETRY_JITTER must be between 0.0 and 1.0")
        if self.retry_cap_seconds < 0:
            errors.append("RETRY_CAP cannot be negative")

        if self.log_level not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def log_level_value(self) -> int:
        """Numeric logging level for the configured name."""
        return logging.getLevelName(self.log_level)

    def provider_machine_kind(self) -> ResourceKind:
        """Resource coordinates of the provider machine custom resource."""
        return ResourceKind(
            group=self.provider_machine_group,
            version=self.provider_machine_version,
            plural=self.provider_machine_plural,
            kind=DEFAULT_PROVIDER_MACHINE_KIND,
        )

    def retry_policy(self) -> RetryPolicy:
        """Backoff schedule used by MachineScope.finalize."""
        return RetryPolicy(
            base_delay_seconds=self.retry_base_delay_seconds,
            factor=self.retry_factor,
            jitter=self.retry_jitter,
            steps=self.retry_steps,
            cap_seconds=self.retry_cap_seconds or None,
        )

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            KUBECONFIG: Path to a kubeconfig file (default: client default lookup)
            IN_CLUSTER: If "true", use the pod service account (default: false)
            PROVIDER_MACHINE_GROUP: API group of the provider machine CRD
            PROVIDER_MACHINE_VERSION: API version of the provider machine CRD
            PROVIDER_MACHINE_PLURAL: Plural resource name of the provider machine CRD
            PROVIDER_ID_SCHEME: Scheme used for spec.providerID (default: ionos)
            PATCH_TIMEOUT: Commit deadline in seconds (default: 10)

        Retry Variables:
            RETRY_STEPS: Total commit attempts in finalize (default: 4)
            RETRY_BASE_DELAY: First backoff delay in seconds (default: 0.01)
            RETRY_FACTOR: Backoff multiplier (default: 5.0)
            RETRY_JITTER: Jitter fraction added to each delay (default: 0.1)
            RETRY_CAP: Maximum delay in seconds, 0 for none (default: 0)

        Logging Variables:
            LOG_LEVEL: DEBUG, INFO, WARNING or ERROR (default: INFO)
            JSON_LOGS: Emit JSON log lines (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        kubeconfig = os.environ.get("KUBECONFIG")

        return cls(
            kubeconfig=Path(kubeconfig) if kubeconfig else None,
            in_cluster=get_bool("IN_CLUSTER", False),
            provider_machine_group=os.environ.get(
                "PROVIDER_MACHINE_GROUP", DEFAULT_PROVIDER_MACHINE_GROUP
            ),
            provider_machine_version=os.environ.get(
                "PROVIDER_MACHINE_VERSION", DEFAULT_PROVIDER_MACHINE_VERSION
            ),
            provider_machine_plural=os.environ.get(
                "PROVIDER_MACHINE_PLURAL", DEFAULT_PROVIDER_MACHINE_PLURAL
            ),
            provider_id_scheme=os.environ.get("PROVIDER_ID_SCHEME", DEFAULT_PROVIDER_ID_SCHEME),
            patch_timeout_seconds=get_float("PATCH_TIMEOUT", DEFAULT_PATCH_TIMEOUT_SECONDS),
            retry_steps=get_int("RETRY_STEPS", DEFAULT_RETRY_STEPS),
            retry_base_delay_seconds=get_float(
                "RETRY_BASE_DELAY", DEFAULT_RETRY_BASE_DELAY_SECONDS
            ),
            retry_factor=get_float("RETRY_FACTOR", DEFAULT_RETRY_FACTOR),
            retry_jitter=get_float("RETRY_JITTER", DEFAULT_RETRY_JITTER),
            retry_cap_seconds=get_float("RETRY_CAP", DEFAULT_RETRY_CAP_SECONDS),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            json_logs=get_bool("JSON_LOGS", True),
        )
