"""Query understanding components.

``query_normalizer`` derives the canonical query variants shared by the
vector and keyword retrievers.
"""
