"""Upload finalization: reassemble, transfer, record metadata, clean up."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sftpdrop.core.config import SFTPConfig
from sftpdrop.core.exceptions import (
    DeclaredSizeTooLargeError,
    InvalidBatchIdError,
    InvalidChunkIndexError,
    MetadataWriteError,
    RemoteUploadError,
    UnsupportedMimeTypeError,
    UploadError,
)
from sftpdrop.metadata.base import MetadataStore
from sftpdrop.remote.base import RemoteSession, RemoteTransferClient
from sftpdrop.services.naming import (
    generate_remote_name,
    is_valid_uuid,
    mime_type_allowed,
    sanitize_filename,
)
from sftpdrop.services.reassembly import reassemble
from sftpdrop.storage.base import ChunkStore

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass
class PendingFile:
    """A whole file ready to be written to the remote server."""

    file_name: str
    mime_type: str
    data: bytes


class UploadFinalizer:
    """Turns stored chunks into a remote file plus one metadata row.

    Each call owns one remote session for its whole duration. If the metadata
    insert fails after the remote write, the remote file is deleted again so
    that no remote object exists without a matching row.
    """

    def __init__(
        self,
        chunk_store: ChunkStore,
        remote_client: RemoteTransferClient,
        metadata_store: MetadataStore,
        *,
        max_file_bytes: int,
        max_total_chunks: int,
        remote_dir: str,
        table: str = "files",
        allowed_mime_types: Optional[List[str]] = None,
    ):
        self.chunk_store = chunk_store
        self.remote_client = remote_client
        self.metadata_store = metadata_store
        self.max_file_bytes = max_file_bytes
        self.max_total_chunks = max_total_chunks
        self.remote_dir = remote_dir.rstrip("/") or "/"
        self.table = table
        self.allowed_mime_types = allowed_mime_types

    def validate_batch_id(self, batch_id: Optional[str]) -> None:
        if batch_id and not is_valid_uuid(batch_id):
            raise InvalidBatchIdError("Invalid upload batch id")

    def validate_mime_type(self, mime_type: str) -> None:
        if mime_type and not mime_type_allowed(mime_type, self.allowed_mime_types):
            raise UnsupportedMimeTypeError(f"Content type {mime_type} not allowed")

    async def finalize(
        self,
        upload_id: str,
        file_name: str,
        file_size: int,
        mime_type: str,
        total_chunks: int,
        config: SFTPConfig,
        batch_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Complete a chunked upload.

        Returns:
            The persisted metadata record

        Raises:
            ClientInputError: Rejected before the chunk store is touched
            CorruptionError: Missing chunk or size mismatch; chunks are purged
            TransientInfrastructureError: Remote connection or transfer failed
            ConsistencyError: Metadata write failed; the remote file was removed
        """
        self.validate_batch_id(batch_id)
        if file_size > self.max_file_bytes:
            raise DeclaredSizeTooLargeError(
                f"File too large (maximum {self.max_file_bytes // (1024 * 1024)}MB)"
            )
        if total_chunks < 1 or total_chunks > self.max_total_chunks:
            raise InvalidChunkIndexError(
                f"Invalid chunk count {total_chunks} (maximum {self.max_total_chunks})"
            )
        self.validate_mime_type(mime_type)

        logger.info(
            "Finalizing chunked upload",
            extra={"upload_id": upload_id, "total_chunks": total_chunks, "file_size": file_size},
        )

        try:
            assembled = await reassemble(self.chunk_store, upload_id, total_chunks, file_size)
            pending = PendingFile(file_name=file_name, mime_type=mime_type, data=assembled.data)

            session = await self.remote_client.connect(config)
            try:
                await self._ensure_remote_dir(session)
                record = await self._store_one(session, pending, batch_id)
            finally:
                await self._close(session)
        finally:
            await self._purge(upload_id, total_chunks)

        logger.info(
            "Chunked upload finalized",
            extra={"upload_id": upload_id, "remote_path": record["file_path"], "file_size": file_size},
        )
        return record

    async def store_files(
        self,
        files: List[PendingFile],
        config: SFTPConfig,
        batch_id: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], List[str]]:
        """Write several whole files over a single remote session.

        A failure on one file does not stop the others.

        Returns:
            Tuple of (persisted records, per-file error messages)
        """
        self.validate_batch_id(batch_id)

        records: List[Dict[str, Any]] = []
        errors: List[str] = []

        session = await self.remote_client.connect(config)
        try:
            await self._ensure_remote_dir(session)
            for pending in files:
                try:
                    self.validate_mime_type(pending.mime_type)
                    records.append(await self._store_one(session, pending, batch_id))
                except UploadError as e:
                    errors.append(f"{pending.file_name}: {e.message}")
        finally:
            await self._close(session)

        return records, errors

    async def _ensure_remote_dir(self, session: RemoteSession) -> None:
        try:
            await session.mkdir(self.remote_dir, recursive=True)
        except Exception as e:
            logger.error(
                "Failed to create remote directory",
                extra={"remote_dir": self.remote_dir, "error": str(e)},
            )
            raise RemoteUploadError("Failed to prepare remote directory") from e

    async def _store_one(
        self, session: RemoteSession, pending: PendingFile, batch_id: Optional[str]
    ) -> Dict[str, Any]:
        original_name = sanitize_filename(pending.file_name)
        remote_name = generate_remote_name(pending.file_name)
        remote_path = f"{self.remote_dir.rstrip('/')}/{remote_name}"

        try:
            await session.put(pending.data, remote_path)
        except Exception as e:
            logger.error(
                "Failed to write file to remote server",
                extra={"remote_path": remote_path, "error": str(e)},
                exc_info=True,
            )
            raise RemoteUploadError("Failed to upload file to remote server") from e

        record: Dict[str, Any] = {
            "filename": remote_name,
            "original_filename": original_name,
            "file_path": remote_path,
            "file_size": len(pending.data),
            "mime_type": pending.mime_type or DEFAULT_MIME_TYPE,
        }
        if batch_id:
            record["upload_batch_id"] = batch_id

        try:
            return await self.metadata_store.insert(self.table, record)
        except Exception as e:
            logger.error(
                "Failed to save file metadata",
                extra={"remote_path": remote_path, "error": str(e)},
                exc_info=True,
            )
            await self._compensate(session, remote_path)
            raise MetadataWriteError("Failed to save file metadata") from e

    async def _compensate(self, session: RemoteSession, remote_path: str) -> None:
        try:
            await session.delete(remote_path)
            logger.info("Removed orphaned remote file", extra={"remote_path": remote_path})
        except Exception as e:
            logger.error(
                "Failed to remove orphaned remote file",
                extra={"remote_path": remote_path, "error": str(e)},
            )

    async def _purge(self, upload_id: str, total_chunks: int) -> None:
        try:
            removed = await self.chunk_store.delete_all(upload_id, total_chunks)
            logger.debug("Purged chunks", extra={"upload_id": upload_id, "removed": removed})
        except Exception as e:
            logger.warning(
                "Failed to purge chunks",
                extra={"upload_id": upload_id, "error": str(e)},
            )

    async def _close(self, session: RemoteSession) -> None:
        try:
            await session.end()
        except Exception as e:
            logger.warning("Failed to close remote session", extra={"error": str(e)})
