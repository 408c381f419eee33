"""Reassembly of stored chunks into one payload."""

import logging
from dataclasses import dataclass

from sftpdrop.core.exceptions import MissingChunkError, SizeMismatchError
from sftpdrop.storage.base import ChunkStore

logger = logging.getLogger(__name__)


@dataclass
class AssembledFile:
    """Contiguous payload rebuilt from every chunk of one upload."""

    data: bytes
    actual_size: int


async def reassemble(
    store: ChunkStore, upload_id: str, total_chunks: int, declared_size: int
) -> AssembledFile:
    """Fetch chunks ``0..total_chunks-1`` in order and concatenate them.

    The caller is responsible for purging the chunks on failure.

    Raises:
        MissingChunkError: If any chunk is missing or unreadable
        SizeMismatchError: If the concatenated size differs from ``declared_size``
    """
    parts: list[bytes] = []
    total_size = 0

    for index in range(total_chunks):
        try:
            chunk = await store.get(upload_id, index)
        except Exception as e:
            logger.error(
                "Failed to read chunk",
                extra={"upload_id": upload_id, "chunk_index": index, "error": str(e)},
            )
            raise MissingChunkError(index) from e

        if chunk is None:
            logger.warning(
                "Chunk missing during reassembly",
                extra={"upload_id": upload_id, "chunk_index": index, "total_chunks": total_chunks},
            )
            raise MissingChunkError(index)

        parts.append(chunk)
        total_size += len(chunk)

    if total_size != declared_size:
        logger.warning(
            "Reassembled size does not match declared size",
            extra={"upload_id": upload_id, "expected": declared_size, "actual": total_size},
        )
        raise SizeMismatchError(declared_size, total_size)

    return AssembledFile(data=b"".join(parts), actual_size=total_size)
