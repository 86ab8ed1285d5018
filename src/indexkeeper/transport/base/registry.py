"""Transport registry — Maps backend names to transport classes.

The registry lets configuration pick a backend by name and builds an
initialized transport from :class:`~indexkeeper.config.settings.TransportSettings`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from indexkeeper.transport.base.transport import SearchTransport

if TYPE_CHECKING:
    from indexkeeper.config.settings import TransportSettings

logger = logging.getLogger(__name__)


class TransportNotFoundError(Exception):
    """Raised when a requested transport backend is not registered."""


class TransportRegistry:
    """Registry of transport classes by backend name.

    Example:
        >>> registry = TransportRegistry()
        >>> registry.register("opensearch", OpenSearchTransport)
        >>> transport = await registry.create("opensearch", hosts=["https://localhost:9200"])
    """

    def __init__(self) -> None:
        self._classes: dict[str, type[SearchTransport]] = {}

    def register(self, name: str, transport_class: type[SearchTransport]) -> None:
        """Register a transport class under a backend name."""
        if name in self._classes:
            logger.warning("Overwriting existing transport registration: %s", name)
        self._classes[name] = transport_class
        logger.debug("Registered transport: %s", name)

    async def create(self, name: str, **kwargs: Any) -> SearchTransport:
        """Instantiate and initialize a transport.

        Raises:
            TransportNotFoundError: If no transport is registered under this name.
        """
        if name not in self._classes:
            raise TransportNotFoundError(
                f"No transport registered with name '{name}'. "
                f"Available transports: {list(self._classes.keys())}"
            )
        transport = self._classes[name](**kwargs)
        await transport.initialize()
        logger.info("Initialized transport: %s", name)
        return transport

    async def from_settings(self, settings: TransportSettings) -> SearchTransport:
        """Build the transport selected by ``settings.backend``."""
        if settings.backend == "memory":
            return await self.create("memory")
        return await self.create(
            settings.backend,
            hosts=settings.hosts,
            username=settings.username,
            password=settings.password,
            verify_certs=settings.verify_certs,
            request_timeout=settings.request_timeout,
            **settings.extra,
        )

    @property
    def registered_transports(self) -> list[str]:
        """List all registered backend names."""
        return list(self._classes.keys())


def default_registry() -> TransportRegistry:
    """Return a registry with the built-in transports registered."""
    from indexkeeper.transport.memory.transport import MemoryTransport
    from indexkeeper.transport.opensearch.transport import OpenSearchTransport

    registry = TransportRegistry()
    registry.register("opensearch", OpenSearchTransport)
    registry.register("memory", MemoryTransport)
    return registry
