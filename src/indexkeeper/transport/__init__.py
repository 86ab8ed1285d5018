"""Search transport layer — Backends the persistence layer talks to.

Built-in transports:
  - opensearch: OpenSearch v2+ / Elasticsearch-compatible clusters (opensearch-py, async)
  - memory: In-process engine with the same versioning and alias semantics
"""
