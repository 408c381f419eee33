"""SFTP remote client built on paramiko."""

import asyncio
import errno
import io
import logging
import posixpath
import socket
from typing import Optional

import paramiko

from sftpdrop.core.config import SFTPConfig
from sftpdrop.core.exceptions import RemoteConnectionError
from sftpdrop.core.retry import RetryPolicy, retry_async
from sftpdrop.remote.base import RemoteSession, RemoteTransferClient

logger = logging.getLogger(__name__)


class ParamikoSFTPSession(RemoteSession):
    """Blocking paramiko calls run in worker threads."""

    def __init__(self, transport: paramiko.Transport, sftp: paramiko.SFTPClient):
        self._transport = transport
        self._sftp = sftp
        self._closed = False

    def _exists(self, path: str) -> bool:
        try:
            self._sftp.stat(path)
            return True
        except IOError as e:
            if getattr(e, "errno", None) == errno.ENOENT or isinstance(e, FileNotFoundError):
                return False
            raise

    def _mkdir(self, path: str, recursive: bool) -> None:
        targets = [path]
        if recursive:
            targets = []
            current = path
            while current not in ("", "/", "."):
                targets.append(current)
                current = posixpath.dirname(current)
            targets.reverse()

        for target in targets:
            if self._exists(target):
                continue
            try:
                self._sftp.mkdir(target)
            except IOError:
                # Created concurrently by another session
                if not self._exists(target):
                    raise

    def _put(self, data: bytes, remote_path: str) -> None:
        self._sftp.putfo(io.BytesIO(data), remote_path, file_size=len(data), confirm=True)

    async def mkdir(self, path: str, recursive: bool = True) -> None:
        await asyncio.to_thread(self._mkdir, path, recursive)

    async def put(self, data: bytes, remote_path: str) -> None:
        await asyncio.to_thread(self._put, data, remote_path)
        logger.info(
            "File written to SFTP server",
            extra={"remote_path": remote_path, "size_bytes": len(data)},
        )

    async def delete(self, remote_path: str) -> None:
        await asyncio.to_thread(self._sftp.remove, remote_path)

    async def end(self) -> None:
        if self._closed:
            return
        self._closed = True

        def _close() -> None:
            try:
                self._sftp.close()
            finally:
                self._transport.close()

        await asyncio.to_thread(_close)


class ParamikoSFTPClient(RemoteTransferClient):
    """Opens password-authenticated SFTP sessions with bounded retries."""

    def __init__(
        self,
        retry_policy: Optional[RetryPolicy] = None,
        keepalive_seconds: int = 10,
        timeout_seconds: float = 15.0,
    ):
        self.retry_policy = retry_policy or RetryPolicy()
        self.keepalive_seconds = keepalive_seconds
        self.timeout_seconds = timeout_seconds

    def _open(self, config: SFTPConfig) -> ParamikoSFTPSession:
        sock = socket.create_connection((config.host, config.port), timeout=self.timeout_seconds)
        transport = paramiko.Transport(sock)
        try:
            transport.use_compression(True)
            transport.set_keepalive(self.keepalive_seconds)
            try:
                transport.connect(username=config.username, password=config.password)
            except paramiko.AuthenticationException as e:
                # Not retryable
                raise RemoteConnectionError("SFTP authentication failed") from e
            sftp = paramiko.SFTPClient.from_transport(transport)
            if sftp is None:
                raise paramiko.SSHException("Could not open SFTP channel")
        except BaseException:
            transport.close()
            raise
        return ParamikoSFTPSession(transport, sftp)

    async def _open_async(self, config: SFTPConfig) -> ParamikoSFTPSession:
        return await asyncio.to_thread(self._open, config)

    async def connect(self, config: SFTPConfig) -> RemoteSession:
        try:
            session = await retry_async(
                self.retry_policy,
                self._open_async,
                config,
                retry_on=(paramiko.SSHException, OSError, EOFError),
            )
        except (paramiko.SSHException, OSError, EOFError) as e:
            logger.error(
                "SFTP connection failed after retries",
                extra={
                    "host": config.host,
                    "port": config.port,
                    "attempts": self.retry_policy.max_attempts,
                    "error": str(e),
                },
            )
            raise RemoteConnectionError("Failed to connect to SFTP server") from e

        logger.info("Connected to SFTP server", extra={"host": config.host, "port": config.port})
        return session
