"""Search retrievers for keyword and vector workflows.

Retrievers encapsulate how candidates are fetched from the document
repository and the vector store before fusion. ``cache_manager`` holds the
in-process result cache shared by all search types.
"""
