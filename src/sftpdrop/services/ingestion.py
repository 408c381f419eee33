"""Chunk ingestion: validate one chunk and persist it."""

import logging

from sftpdrop.core.exceptions import ChunkStoreError, ChunkTooLargeError, InvalidChunkIndexError
from sftpdrop.models.upload import ChunkAck, ChunkMetadata
from sftpdrop.storage.base import ChunkStore

logger = logging.getLogger(__name__)


async def ingest_chunk(
    store: ChunkStore,
    metadata: ChunkMetadata,
    data: bytes,
    max_chunk_bytes: int,
    max_total_chunks: int,
) -> ChunkAck:
    """Validate bounds and store a single chunk.

    No ordering is implied: the acknowledgement only confirms that this
    chunk is durably stored.

    Raises:
        ChunkTooLargeError: If the chunk exceeds ``max_chunk_bytes``
        InvalidChunkIndexError: If the index or count is out of range
        ChunkStoreError: If the store fails to persist the chunk
    """
    upload_id = str(metadata.upload_id)

    if len(data) > max_chunk_bytes:
        raise ChunkTooLargeError(
            f"Chunk too large. Maximum {max_chunk_bytes / 1024 / 1024:g}MB"
        )
    if metadata.total_chunks > max_total_chunks:
        raise InvalidChunkIndexError(
            f"Too many chunks: {metadata.total_chunks} (maximum {max_total_chunks})"
        )
    if metadata.chunk_index >= metadata.total_chunks:
        raise InvalidChunkIndexError(
            f"Chunk index {metadata.chunk_index} out of range for {metadata.total_chunks} chunks"
        )

    try:
        await store.put(upload_id, metadata.chunk_index, data)
    except Exception as e:
        logger.error(
            "Failed to store chunk",
            extra={
                "upload_id": upload_id,
                "chunk_index": metadata.chunk_index,
                "backend": store.get_backend_name(),
                "error": str(e),
            },
            exc_info=True,
        )
        raise ChunkStoreError("Failed to store chunk") from e

    logger.debug(
        "Chunk stored",
        extra={
            "upload_id": upload_id,
            "chunk_index": metadata.chunk_index,
            "total_chunks": metadata.total_chunks,
            "size_bytes": len(data),
        },
    )

    return ChunkAck(
        success=True,
        message=f"Chunk {metadata.chunk_index + 1}/{metadata.total_chunks} received",
        chunk_index=metadata.chunk_index,
    )
