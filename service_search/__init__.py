"""Document search service distribution.

The service code lives in ``service_search.app``.
"""
