"""Shared libraries for the document search platform.

Subpackages:
- ``libs.common``: configuration, logging, and metrics.
- ``libs.vector_store``: vector store abstractions and concrete backends.

Notes:
- Avoid service-specific logic; keep modules cohesive and broadly useful.
"""
