"""Metadata database client interface."""

from abc import ABC, abstractmethod
from typing import Any, Dict


class MetadataStore(ABC):
    """Insert-only view of the metadata database."""

    @abstractmethod
    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Insert one row and return it as persisted (with generated fields).

        Raises:
            Exception: Any backend error; callers treat every failure alike
        """
        pass
