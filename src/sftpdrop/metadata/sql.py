"""SQLAlchemy-backed metadata store."""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Type

from sqlalchemy import BigInteger, DateTime, String, create_engine, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from sftpdrop.metadata.base import MetadataStore

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class FileRecord(Base):
    """A file stored on the remote server."""

    __tablename__ = "files"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    filename: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    upload_batch_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "original_filename": self.original_filename,
            "file_path": self.file_path,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "upload_batch_id": self.upload_batch_id,
            "created_at": self.created_at,
        }


TABLES: Dict[str, Type[FileRecord]] = {
    FileRecord.__tablename__: FileRecord,
}


def build_engine(database_url: str) -> Engine:
    """Create an engine usable from worker threads."""
    if database_url.startswith("sqlite"):
        kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


class SQLMetadataStore(MetadataStore):
    """Writes metadata rows through a SQLAlchemy session per insert."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        Base.metadata.create_all(engine)

    @classmethod
    def from_url(cls, database_url: str) -> "SQLMetadataStore":
        if database_url.startswith("sqlite:///") and not database_url.startswith("sqlite:///:"):
            Path(database_url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
        return cls(build_engine(database_url))

    def _insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        model = TABLES[table]
        values = {"id": str(uuid.uuid4()), "created_at": datetime.now(timezone.utc), **record}
        with self._session_factory() as session:
            row = model(**values)
            session.add(row)
            session.commit()
            return row.to_dict()

    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        result = await asyncio.to_thread(self._insert, table, record)
        logger.debug("Metadata row inserted", extra={"table": table, "id": result["id"]})
        return result

    def count(self, table: str = "files") -> int:
        model = TABLES[table]
        with self._session_factory() as session:
            return session.scalar(select(func.count()).select_from(model)) or 0
