"""CSP client registry and selector."""

from __future__ import annotations

import logging
from typing import Callable, Generic, TypeVar

from janitor.config import settings
from janitor.csp.base import CSPClient
from janitor.csp.kind import KindCSPClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LazySingleton(Generic[T]):
    """Build one instance on first use from a factory."""

    def __init__(self, factory: Callable[[], T]):
        self._factory = factory
        self._instance: T | None = None

    def get(self) -> T:
        if self._instance is None:
            self._instance = self._factory()
        return self._instance

    def reset(self) -> None:
        self._instance = None


_FACTORIES: dict[str, Callable[[], CSPClient]] = {
    "kind": KindCSPClient,
}


def register_csp_client(name: str, factory: Callable[[], CSPClient]) -> None:
    """Register a provider factory under a configuration name."""
    _FACTORIES[name.lower()] = factory


def list_csp_clients() -> list[str]:
    return sorted(_FACTORIES)


def create_csp_client(name: str) -> CSPClient:
    """Build a new client for the named provider.

    Raises:
        ValueError: If no provider is registered under the name
    """
    factory = _FACTORIES.get((name or "").lower())
    if factory is None:
        raise ValueError(
            f"Unsupported CSP provider '{name}'. Available: {list_csp_clients()}"
        )
    logger.info(f"Using CSP provider: {name}")
    return factory()


_configured_client: LazySingleton[CSPClient] = LazySingleton(
    lambda: create_csp_client(settings.csp_provider)
)


def get_csp_client() -> CSPClient:
    """Return the client for the configured provider, built on first use."""
    return _configured_client.get()


def reset_csp_client() -> None:
    """Forget the configured client (mainly for testing)."""
    _configured_client.reset()
