"""Base transport interface — Abstract classes for search engine backends."""

from indexkeeper.transport.base.registry import TransportRegistry, default_registry
from indexkeeper.transport.base.transport import SearchTransport, TransportHealth, WriteResult

__all__ = ["SearchTransport", "TransportHealth", "TransportRegistry", "WriteResult", "default_registry"]
