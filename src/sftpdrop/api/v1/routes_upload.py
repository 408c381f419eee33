"""SFTP upload API routes."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from pydantic import ValidationError

from sftpdrop.api.deps import get_chunk_store, get_finalizer, get_rate_limiter
from sftpdrop.api.errors import error_response, upload_error_response
from sftpdrop.core.config import resolve_sftp_config, settings
from sftpdrop.core.exceptions import (
    ClientInputError,
    InvalidConfigError,
    RateLimitError,
    UploadError,
)
from sftpdrop.core.logging import upload_id_context
from sftpdrop.models.upload import (
    ChunkAck,
    ChunkMetadata,
    FileMetadata,
    FinalizeRequest,
    FinalizeResponse,
    PartialSFTPConfig,
    UploadFilesResponse,
)
from sftpdrop.services.finalizer import PendingFile, UploadFinalizer
from sftpdrop.services.ingestion import ingest_chunk
from sftpdrop.services.rate_limit import RateLimiter, client_address
from sftpdrop.storage.base import ChunkStore

router = APIRouter(prefix="/api/v1/sftp", tags=["upload"])
logger = logging.getLogger(__name__)


async def _enforce_rate_limit(
    limiter: RateLimiter, request: Request, scope: str, max_requests: int
) -> None:
    key = f"{scope}:{client_address(request)}"
    if not await limiter.allow(key, max_requests, settings.RATE_LIMIT_WINDOW_SECONDS):
        raise RateLimitError("Too many requests. Try again later.")


@router.post("/upload-chunk", response_model=ChunkAck)
async def upload_chunk(
    request: Request,
    chunk: Optional[UploadFile] = File(None),
    metadata: Optional[str] = Form(None),
    store: ChunkStore = Depends(get_chunk_store),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Accept one chunk of a chunked upload, in any order."""
    token = None
    try:
        await _enforce_rate_limit(limiter, request, "chunk", settings.RATE_LIMIT_CHUNK_REQUESTS)

        if chunk is None or not metadata:
            raise ClientInputError("Missing chunk or metadata")

        try:
            chunk_metadata = ChunkMetadata.model_validate_json(metadata)
        except ValidationError as e:
            logger.warning("Malformed chunk metadata", extra={"error": str(e)})
            raise ClientInputError("Invalid chunk metadata") from e

        token = upload_id_context.set(str(chunk_metadata.upload_id))
        data = await chunk.read()

        return await ingest_chunk(
            store,
            chunk_metadata,
            data,
            max_chunk_bytes=settings.max_chunk_bytes,
            max_total_chunks=settings.MAX_TOTAL_CHUNKS,
        )

    except UploadError as e:
        return upload_error_response(e)
    except Exception as e:
        logger.error("Unexpected error during chunk upload", extra={"error": str(e)}, exc_info=True)
        return error_response("Failed to upload chunk", 500)
    finally:
        if token is not None:
            upload_id_context.reset(token)


@router.post("/complete-upload", response_model=FinalizeResponse)
async def complete_upload(
    request: Request,
    body: FinalizeRequest,
    finalizer: UploadFinalizer = Depends(get_finalizer),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Reassemble a chunked upload, transfer it and record its metadata."""
    upload_id = str(body.upload_id)
    token = upload_id_context.set(upload_id)
    try:
        await _enforce_rate_limit(
            limiter, request, "finalize", settings.RATE_LIMIT_FINALIZE_REQUESTS
        )

        config = resolve_sftp_config(
            body.config.model_dump(exclude_none=True) if body.config else None
        )

        record = await finalizer.finalize(
            upload_id=upload_id,
            file_name=body.file_name,
            file_size=body.file_size,
            mime_type=body.mime_type,
            total_chunks=body.total_chunks,
            config=config,
            batch_id=body.upload_batch_id,
        )

        return FinalizeResponse(
            success=True,
            message="File uploaded successfully",
            file=FileMetadata(**record),
        )

    except UploadError as e:
        if e.status_code >= 500:
            logger.error(
                "Upload finalization failed",
                extra={"error": e.message, "error_type": type(e).__name__},
            )
        return upload_error_response(e)
    except Exception as e:
        logger.error("Unexpected error during upload finalization", extra={"error": str(e)}, exc_info=True)
        return error_response("Failed to complete upload", 500)
    finally:
        upload_id_context.reset(token)


@router.post("/upload", response_model=UploadFilesResponse, response_model_exclude_none=True)
async def upload_files(
    request: Request,
    files: Optional[List[UploadFile]] = File(None),
    config: Optional[str] = Form(None),
    upload_batch_id: Optional[str] = Form(None, alias="uploadBatchId"),
    finalizer: UploadFinalizer = Depends(get_finalizer),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Upload small files in a single request over one remote session."""
    try:
        await _enforce_rate_limit(limiter, request, "upload", settings.RATE_LIMIT_UPLOAD_REQUESTS)

        if not files:
            raise ClientInputError("No files provided")
        if len(files) > settings.MAX_FILES_PER_REQUEST:
            raise ClientInputError(f"Maximum {settings.MAX_FILES_PER_REQUEST} files allowed")

        partial = None
        if config:
            try:
                partial = PartialSFTPConfig.model_validate_json(config).model_dump(exclude_none=True)
            except ValidationError as e:
                raise InvalidConfigError("Invalid SFTP configuration") from e
        sftp_config = resolve_sftp_config(partial)

        pending: List[PendingFile] = []
        oversized: List[str] = []
        for upload in files:
            data = await upload.read()
            name = upload.filename or "unnamed"
            if len(data) > settings.max_simple_upload_bytes:
                oversized.append(f"{name} ({len(data) / 1024 / 1024:.2f}MB)")
                continue
            pending.append(PendingFile(file_name=name, mime_type=upload.content_type or "", data=data))

        if oversized:
            return error_response(
                f"Some files exceed the maximum size of {settings.MAX_SIMPLE_UPLOAD_MB}MB",
                400,
                errors=oversized,
            )

        records, errors = await finalizer.store_files(pending, sftp_config, batch_id=upload_batch_id)

        if not records:
            logger.error("No file could be uploaded", extra={"errors": errors})
            return error_response("No file could be uploaded", 500, errors=errors)

        logger.info(
            "Files uploaded",
            extra={"stored": len(records), "failed": len(errors), "upload_batch_id": upload_batch_id},
        )

        return UploadFilesResponse(
            success=True,
            message=f"{len(records)} file(s) uploaded successfully",
            files=[FileMetadata(**record) for record in records],
            errors=errors or None,
        )

    except UploadError as e:
        return upload_error_response(e)
    except Exception as e:
        logger.error("Unexpected error during file upload", extra={"error": str(e)}, exc_info=True)
        return error_response("Failed to upload files", 500)
