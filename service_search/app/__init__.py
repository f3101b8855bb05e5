"""Search service package.

Layout:
- ``api``: HTTP endpoints for search, metrics and history.
- ``encoders``: embedding provider clients.
- ``history``: best-effort search history sinks.
- ``hybrid``: semantic + lexical search orchestration.
- ``intelligence``: query normalization.
- ``ranking``: score fusion.
- ``repositories``: candidate document lookup.
- ``retrievers``: vector and keyword retrievers plus the result cache.
- ``runtime``: search counters and latency tracking.
"""
