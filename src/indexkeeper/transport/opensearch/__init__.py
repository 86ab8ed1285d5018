"""OpenSearch transport."""
