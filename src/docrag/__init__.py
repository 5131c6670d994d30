"""
docrag — document ingestion, vector retrieval, and cited question answering.

Documents are extracted, chunked, embedded and stored in a similarity index;
questions are answered by retrieving the closest chunks and conditioning a
chat model on them.
"""

__version__ = "0.1.0"
