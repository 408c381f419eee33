"""Upload data models."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ChunkMetadata(BaseModel):
    """Sidecar metadata sent with every chunk."""

    model_config = ConfigDict(populate_by_name=True)

    upload_id: UUID = Field(..., alias="uploadId")
    chunk_index: int = Field(..., alias="chunkIndex", ge=0)
    total_chunks: int = Field(..., alias="totalChunks", ge=1)
    file_name: str = Field(..., alias="fileName", min_length=1)
    file_size: int = Field(..., alias="fileSize", ge=0)
    mime_type: str = Field("", alias="mimeType")


class ChunkAck(BaseModel):
    """Acknowledgement for one durably stored chunk."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str
    chunk_index: int = Field(..., alias="chunkIndex")


class PartialSFTPConfig(BaseModel):
    """Client-supplied connection overrides, merged with server defaults."""

    host: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None


class FinalizeRequest(BaseModel):
    """Request model for completing a chunked upload."""

    model_config = ConfigDict(populate_by_name=True)

    upload_id: UUID = Field(..., alias="uploadId")
    file_name: str = Field(..., alias="fileName", min_length=1)
    file_size: int = Field(..., alias="fileSize", ge=0)
    mime_type: str = Field("", alias="mimeType")
    total_chunks: int = Field(..., alias="totalChunks", ge=1)
    config: Optional[PartialSFTPConfig] = None
    upload_batch_id: Optional[str] = Field(None, alias="uploadBatchId")


class FileMetadata(BaseModel):
    """Persisted metadata row for a file stored on the remote server."""

    id: str
    filename: str
    original_filename: str
    file_path: str
    file_size: int
    mime_type: str
    upload_batch_id: Optional[str] = None
    created_at: Optional[datetime] = None


class FinalizeResponse(BaseModel):
    """Response model for a completed chunked upload."""

    success: bool = True
    message: str
    file: FileMetadata


class UploadFilesResponse(BaseModel):
    """Response model for the simple whole-file upload."""

    success: bool
    message: str
    files: list[FileMetadata] = Field(default_factory=list)
    errors: Optional[list[str]] = None


class ErrorResponse(BaseModel):
    """Body of every failed request."""

    success: bool = False
    message: str
    errors: Optional[list[str]] = None
