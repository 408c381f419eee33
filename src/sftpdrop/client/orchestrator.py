"""Client-side upload orchestration: strategy choice, chunk loop, cancellation."""

import asyncio
import json
import logging
import math
import mimetypes
import uuid
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, List, Mapping, Optional, Sequence, Union

import httpx

from sftpdrop.client.http import CHUNK_UPLOAD_PATH, COMPLETE_UPLOAD_PATH, SIMPLE_UPLOAD_PATH

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Upload cancelled"
UNEXPECTED_ERROR_MESSAGE = "Upload failed"

ProgressCallback = Callable[[int, str], None]
PathLike = Union[str, Path]


@dataclass
class UploadResult:
    """Terminal outcome of one file upload. Never carries a traceback."""

    success: bool
    upload_id: str
    file: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class _UploadFailed(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UploadHandle:
    """A running upload. ``cancel()`` aborts the in-flight request."""

    def __init__(self, upload_id: str, task: "asyncio.Task[UploadResult]"):
        self.upload_id = upload_id
        self._task = task
        self._cancel_requested = False

    def cancel(self) -> None:
        if not self._task.done():
            self._cancel_requested = True
            self._task.cancel()

    def done(self) -> bool:
        return self._task.done()

    async def result(self) -> UploadResult:
        try:
            return await self._task
        except asyncio.CancelledError:
            if not self._cancel_requested:
                raise
            return UploadResult(success=False, upload_id=self.upload_id, error=CANCELLED_MESSAGE)


class UploadOrchestrator:
    """Drives uploads against the service, choosing a strategy per file.

    Files at or below ``large_file_threshold`` go through the whole-file
    endpoint and may run concurrently. Larger files are split into
    ``chunk_size`` slices submitted strictly in order, and only one chunked
    upload runs at a time per orchestrator.
    """

    def __init__(self, client: httpx.AsyncClient, chunk_size: int, large_file_threshold: int):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.client = client
        self.chunk_size = chunk_size
        self.large_file_threshold = large_file_threshold
        self._handles: Dict[str, UploadHandle] = {}
        self._large_file_lock = asyncio.Lock()

    def start_upload(
        self,
        path: PathLike,
        batch_id: Optional[str] = None,
        config: Optional[Mapping[str, Any]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadHandle:
        upload_id = str(uuid.uuid4())
        task = asyncio.create_task(
            self._run(upload_id, Path(path), batch_id, config, on_progress),
            name=f"upload-{upload_id}",
        )
        handle = UploadHandle(upload_id, task)
        self._handles[upload_id] = handle
        task.add_done_callback(lambda _: self._handles.pop(upload_id, None))
        return handle

    async def upload_file(
        self,
        path: PathLike,
        batch_id: Optional[str] = None,
        config: Optional[Mapping[str, Any]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        handle = self.start_upload(path, batch_id=batch_id, config=config, on_progress=on_progress)
        return await handle.result()

    async def upload_many(
        self,
        paths: Sequence[PathLike],
        batch_id: Optional[str] = None,
        config: Optional[Mapping[str, Any]] = None,
        on_progress: Optional[Callable[[Path, int, str], None]] = None,
    ) -> List[UploadResult]:
        """Upload several files; one failure does not stop the rest.

        Results are returned in the order of ``paths``.
        """
        handles = [
            self.start_upload(
                path,
                batch_id=batch_id,
                config=config,
                on_progress=partial(on_progress, Path(path)) if on_progress else None,
            )
            for path in paths
        ]
        return list(await asyncio.gather(*(handle.result() for handle in handles)))

    def cancel(self, upload_id: str) -> bool:
        handle = self._handles.get(upload_id)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> None:
        for handle in list(self._handles.values()):
            handle.cancel()

    async def _run(
        self,
        upload_id: str,
        path: Path,
        batch_id: Optional[str],
        config: Optional[Mapping[str, Any]],
        on_progress: Optional[ProgressCallback],
    ) -> UploadResult:
        report = partial(self._report, on_progress)
        try:
            size = path.stat().st_size
            mime_type = mimetypes.guess_type(path.name)[0] or ""

            if size <= self.large_file_threshold:
                return await self._upload_small(upload_id, path, mime_type, batch_id, config, report)

            async with self._large_file_lock:
                return await self._upload_chunked(
                    upload_id, path, size, mime_type, batch_id, config, report
                )

        except _UploadFailed as e:
            logger.warning("Upload failed", extra={"upload_id": upload_id, "error": e.message})
            return UploadResult(success=False, upload_id=upload_id, error=e.message)
        except httpx.HTTPError as e:
            logger.warning("Upload request failed", extra={"upload_id": upload_id, "error": str(e)})
            return UploadResult(success=False, upload_id=upload_id, error=str(e) or "Network error")
        except OSError as e:
            logger.warning("Could not read file", extra={"upload_id": upload_id, "error": str(e)})
            return UploadResult(success=False, upload_id=upload_id, error=f"Could not read file: {path.name}")
        except Exception as e:
            logger.error(
                "Unexpected upload error", extra={"upload_id": upload_id, "error": str(e)}, exc_info=True
            )
            return UploadResult(success=False, upload_id=upload_id, error=UNEXPECTED_ERROR_MESSAGE)

    async def _upload_small(
        self,
        upload_id: str,
        path: Path,
        mime_type: str,
        batch_id: Optional[str],
        config: Optional[Mapping[str, Any]],
        report: Callable[[int, str], None],
    ) -> UploadResult:
        report(0, "Uploading file...")
        data = await asyncio.to_thread(path.read_bytes)

        form: Dict[str, str] = {}
        if config:
            form["config"] = json.dumps(dict(config))
        if batch_id:
            form["uploadBatchId"] = batch_id

        response = await self.client.post(
            SIMPLE_UPLOAD_PATH,
            files={"files": (path.name, data, mime_type or "application/octet-stream")},
            data=form,
        )
        body = self._parse(response, "Failed to upload file")

        report(100, "Completed")
        files = body.get("files") or []
        return UploadResult(success=True, upload_id=upload_id, file=files[0] if files else None)

    async def _upload_chunked(
        self,
        upload_id: str,
        path: Path,
        size: int,
        mime_type: str,
        batch_id: Optional[str],
        config: Optional[Mapping[str, Any]],
        report: Callable[[int, str], None],
    ) -> UploadResult:
        total_chunks = max(1, math.ceil(size / self.chunk_size))
        report(0, f"Preparing upload ({total_chunks} parts)...")
        logger.info(
            "Starting chunked upload",
            extra={"upload_id": upload_id, "file_size": size, "total_chunks": total_chunks},
        )

        with open(path, "rb") as fh:
            for index in range(total_chunks):
                start = index * self.chunk_size
                length = min(self.chunk_size, size - start)
                chunk = await asyncio.to_thread(self._read_slice, fh, start, length)

                metadata = {
                    "uploadId": upload_id,
                    "chunkIndex": index,
                    "totalChunks": total_chunks,
                    "fileName": path.name,
                    "fileSize": size,
                    "mimeType": mime_type,
                }
                response = await self.client.post(
                    CHUNK_UPLOAD_PATH,
                    files={"chunk": (f"{path.name}.part{index}", chunk, "application/octet-stream")},
                    data={"metadata": json.dumps(metadata)},
                )
                self._parse(response, f"Failed to upload part {index + 1}")

                report(round((index + 1) / total_chunks * 90), f"Uploading part {index + 1}/{total_chunks}...")

        report(90, "Finalizing upload...")
        payload: Dict[str, Any] = {
            "uploadId": upload_id,
            "fileName": path.name,
            "fileSize": size,
            "mimeType": mime_type,
            "totalChunks": total_chunks,
        }
        if config:
            payload["config"] = dict(config)
        if batch_id:
            payload["uploadBatchId"] = batch_id

        response = await self.client.post(COMPLETE_UPLOAD_PATH, json=payload)
        body = self._parse(response, "Failed to finalize upload", require_success=True)

        report(100, "Completed")
        logger.info("Chunked upload completed", extra={"upload_id": upload_id})
        return UploadResult(success=True, upload_id=upload_id, file=body.get("file"))

    @staticmethod
    def _read_slice(fh: BinaryIO, start: int, length: int) -> bytes:
        fh.seek(start)
        return fh.read(length)

    @staticmethod
    def _parse(response: httpx.Response, fallback: str, require_success: bool = False) -> Dict[str, Any]:
        """Return the JSON body of a successful response.

        With ``require_success`` the body must explicitly carry ``success: true``.
        """
        try:
            body = response.json()
        except ValueError:
            body = None

        if not isinstance(body, dict):
            if response.is_success and not require_success:
                return {}
            raise _UploadFailed(fallback)

        if not response.is_success or body.get("success") is False:
            raise _UploadFailed(body.get("message") or fallback)
        if require_success and body.get("success") is not True:
            raise _UploadFailed(fallback)
        return body

    @staticmethod
    def _report(callback: Optional[ProgressCallback], percent: int, status: str) -> None:
        if callback is None:
            return
        try:
            callback(percent, status)
        except Exception as e:
            logger.warning("Progress callback failed", extra={"error": str(e)})
