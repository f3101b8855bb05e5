"""Hybrid search components for semantic + lexical ranking.

Includes the ``SearchManager`` which coordinates vector similarity (semantic)
and keyword relevance (lexical) signals and merges results.
"""
