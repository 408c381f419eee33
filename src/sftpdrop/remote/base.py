"""Remote file-transfer client interface."""

from abc import ABC, abstractmethod

from sftpdrop.core.config import SFTPConfig


class RemoteSession(ABC):
    """One open connection to the remote server, owned by a single caller."""

    @abstractmethod
    async def mkdir(self, path: str, recursive: bool = True) -> None:
        """Create ``path``. An existing directory is not an error."""
        pass

    @abstractmethod
    async def put(self, data: bytes, remote_path: str) -> None:
        """Write ``data`` to ``remote_path``, replacing any existing file."""
        pass

    @abstractmethod
    async def delete(self, remote_path: str) -> None:
        """Remove ``remote_path``."""
        pass

    @abstractmethod
    async def end(self) -> None:
        """Close the connection. Safe to call more than once."""
        pass


class RemoteTransferClient(ABC):
    """Factory for remote sessions."""

    @abstractmethod
    async def connect(self, config: SFTPConfig) -> RemoteSession:
        """Open a session, retrying per the client's policy.

        Raises:
            RemoteConnectionError: If every attempt fails
        """
        pass
