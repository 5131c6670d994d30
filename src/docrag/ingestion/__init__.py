"""
Ingestion — extraction, chunking, embedding and the document lifecycle.

This package turns an uploaded or downloaded source file into a
``completed`` document whose chunks and vectors are searchable.  The
work itself runs in the background on :class:`IngestionPipeline`'s
worker pool.
"""
