"""API subpackage for the search service.

Routers expose endpoints for search, search metrics, cache control and
search history. Transport layer remains thin and delegates to ``SearchManager``.
"""
