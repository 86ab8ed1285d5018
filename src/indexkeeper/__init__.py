"""indexkeeper — Zero-downtime index management for OpenSearch-compatible engines."""

__version__ = "0.1.0"
