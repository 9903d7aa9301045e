"""Event type constants for Footnoter."""

# Chunk lifecycle events
CHUNK_STARTED = "chunk_started"
CHUNK_CACHE_HIT = "chunk_cache_hit"
CHUNK_RETRYING = "chunk_retrying"
CHUNK_SHRINKING = "chunk_shrinking"
CHUNK_COMPLETED = "chunk_completed"
CHUNK_FAILED = "chunk_failed"

# Document lifecycle events
DOCUMENT_STARTED = "document_started"
DOCUMENT_COMPLETED = "document_completed"
