"""Query encoders.

``embedding_client`` turns query text into a fixed-dimension vector, either
through the embedding service over HTTP or with a local hash placeholder.
"""
