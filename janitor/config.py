"""Janitor configuration."""

from dataclasses import dataclass

from pydantic_settings import BaseSettings

# Fallback used when no reboot timeout is configured (seconds)
DEFAULT_REBOOT_TIMEOUT = 30 * 60


class Settings(BaseSettings):
    """Janitor settings loaded from environment variables."""

    # Controller identity
    controller_id: str = "janitor"

    # Reboot behaviour
    manual_mode: bool = False  # Outside actor sends the reboot signal
    reboot_timeout: float = DEFAULT_REBOOT_TIMEOUT  # seconds

    # CSP actuator
    csp_provider: str = "kind"
    csp_operation_timeout: float = 120.0  # seconds

    # Resource store
    store_backend: str = "kubernetes"  # "kubernetes" or "memory"
    kubeconfig_path: str = ""  # In-cluster config if empty
    crd_group: str = "janitor.dgxc.nvidia.com"
    crd_version: str = "v1alpha1"
    crd_plural: str = "rebootnodes"

    # Work queue
    workers: int = 4
    resync_interval: float = 300.0  # seconds

    # HTTP (health + metrics)
    host: str = "0.0.0.0"
    port: int = 8080

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # "json" or "text"

    class Config:
        env_prefix = "JANITOR_"


@dataclass(frozen=True)
class RebootNodeControllerConfig:
    """Per-reconciler view of the reboot settings."""

    manual_mode: bool = False
    timeout: float = DEFAULT_REBOOT_TIMEOUT

    @property
    def reboot_timeout(self) -> float:
        """Overall reboot timeout, falling back to the default when unset."""
        if not self.timeout:
            return DEFAULT_REBOOT_TIMEOUT
        return self.timeout

    @classmethod
    def from_settings(cls, source: Settings) -> "RebootNodeControllerConfig":
        return cls(manual_mode=source.manual_mode, timeout=source.reboot_timeout)


settings = Settings()
