"""Exception hierarchy for the upload pipeline.

Every failure the pipeline reports is one of five kinds. Route handlers map the
kind to an HTTP status; the message is always written by this service and is
safe to return to the caller.
"""


class UploadError(Exception):
    """Base exception for the upload pipeline."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ClientInputError(UploadError):
    """Request rejected at the boundary before touching storage."""

    status_code = 400


class ChunkTooLargeError(ClientInputError):
    """Exception raised when a chunk exceeds the ingestion ceiling."""
    pass


class InvalidChunkIndexError(ClientInputError):
    """Exception raised when a chunk index or count is out of range."""
    pass


class DeclaredSizeTooLargeError(ClientInputError):
    """Exception raised when the declared file size exceeds the maximum."""
    pass


class InvalidBatchIdError(ClientInputError):
    """Exception raised when the upload batch identifier is malformed."""
    pass


class InvalidConfigError(ClientInputError):
    """Exception raised when the remote connection config is incomplete."""
    pass


class UnsupportedMimeTypeError(ClientInputError):
    """Exception raised when the MIME type is not on the allow-list."""
    pass


class CorruptionError(UploadError):
    """Reassembly could not reproduce the declared file; the upload must restart."""

    status_code = 400


class MissingChunkError(CorruptionError):
    """Exception raised when a chunk is missing or unreadable during reassembly."""

    def __init__(self, index: int):
        super().__init__(f"Chunk {index} missing or corrupt")
        self.index = index


class SizeMismatchError(CorruptionError):
    """Exception raised when the reassembled size differs from the declared size."""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"File size mismatch. Expected: {expected}, received: {actual}"
        )
        self.expected = expected
        self.actual = actual


class TransientInfrastructureError(UploadError):
    """Backend unavailable; surfaced as a server error once retries are exhausted."""

    status_code = 500


class ChunkStoreError(TransientInfrastructureError):
    """Exception raised when the chunk store cannot persist a chunk."""
    pass


class RemoteConnectionError(TransientInfrastructureError):
    """Exception raised when the remote server cannot be reached."""
    pass


class RemoteUploadError(TransientInfrastructureError):
    """Exception raised when transferring the payload to the remote server fails."""
    pass


class ConsistencyError(UploadError):
    """A later step failed after the remote object was written."""

    status_code = 500


class MetadataWriteError(ConsistencyError):
    """Exception raised when the metadata row cannot be written."""
    pass


class RateLimitError(UploadError):
    """Exception raised when a client exceeds its request budget."""

    status_code = 429
