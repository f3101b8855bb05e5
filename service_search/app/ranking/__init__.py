"""Search ranking and result fusion components.

Contents
- ``fusion``: boosted weighted fusion of vector and keyword scores
"""
