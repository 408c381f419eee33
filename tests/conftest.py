"""Pytest configuration and shared fixtures."""

import uuid
from typing import Any, Dict, List, Optional, Set

import pytest

from sftpdrop.core.config import SFTPConfig
from sftpdrop.core.exceptions import RemoteConnectionError
from sftpdrop.metadata.base import MetadataStore
from sftpdrop.metadata.sql import SQLMetadataStore
from sftpdrop.remote.base import RemoteSession, RemoteTransferClient
from sftpdrop.services.finalizer import UploadFinalizer
from sftpdrop.storage.memory import MemoryChunkStore

MB = 1024 * 1024


class FakeRemoteSession(RemoteSession):
    """Session writing into the owning FakeRemoteClient's ``objects`` dict."""

    def __init__(self, client: "FakeRemoteClient"):
        self.client = client
        self.end_calls = 0

    async def mkdir(self, path: str, recursive: bool = True) -> None:
        if self.client.fail_mkdir:
            raise OSError("permission denied")
        self.client.directories.add(path)

    async def put(self, data: bytes, remote_path: str) -> None:
        self.client.put_calls.append(remote_path)
        if self.client.fail_put:
            raise OSError("disk full")
        self.client.objects[remote_path] = bytes(data)

    async def delete(self, remote_path: str) -> None:
        self.client.delete_calls.append(remote_path)
        if self.client.fail_delete:
            raise OSError("delete refused")
        self.client.objects.pop(remote_path, None)

    async def end(self) -> None:
        self.end_calls += 1


class FakeRemoteClient(RemoteTransferClient):
    """In-memory stand-in for the SFTP server."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.directories: Set[str] = set()
        self.sessions: List[FakeRemoteSession] = []
        self.put_calls: List[str] = []
        self.delete_calls: List[str] = []
        self.connect_configs: List[SFTPConfig] = []
        self.fail_connect = False
        self.fail_mkdir = False
        self.fail_put = False
        self.fail_delete = False

    async def connect(self, config: SFTPConfig) -> RemoteSession:
        self.connect_configs.append(config)
        if self.fail_connect:
            raise RemoteConnectionError("Failed to connect to SFTP server")
        session = FakeRemoteSession(self)
        self.sessions.append(session)
        return session


class FailingMetadataStore(MetadataStore):
    """Metadata store whose inserts always fail."""

    def __init__(self):
        self.attempts: List[Dict[str, Any]] = []

    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        self.attempts.append(record)
        raise RuntimeError("database unavailable")


def split_chunks(data: bytes, chunk_size: int) -> List[bytes]:
    """Slice ``data`` the way the client does."""
    if not data:
        return [b""]
    return [data[i:i + chunk_size] for i in range(0, len(data), chunk_size)]


@pytest.fixture
def upload_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def chunk_store() -> MemoryChunkStore:
    return MemoryChunkStore()


@pytest.fixture
def remote_client() -> FakeRemoteClient:
    return FakeRemoteClient()


@pytest.fixture
def metadata_store() -> SQLMetadataStore:
    """Fresh in-memory SQLite metadata store."""
    return SQLMetadataStore.from_url("sqlite://")


@pytest.fixture
def sftp_config() -> SFTPConfig:
    return SFTPConfig(host="sftp.example.com", port=22, username="uploader", password="s3cret")


def make_finalizer(
    chunk_store,
    remote_client,
    metadata_store,
    max_file_bytes: int = 500 * MB,
    max_total_chunks: int = 1024,
    allowed_mime_types: Optional[List[str]] = None,
) -> UploadFinalizer:
    return UploadFinalizer(
        chunk_store,
        remote_client,
        metadata_store,
        max_file_bytes=max_file_bytes,
        max_total_chunks=max_total_chunks,
        remote_dir="/uploads/test",
        allowed_mime_types=allowed_mime_types,
    )


@pytest.fixture
def finalizer(chunk_store, remote_client, metadata_store) -> UploadFinalizer:
    return make_finalizer(chunk_store, remote_client, metadata_store)
