"""Tests for the client upload orchestrator."""

import asyncio
import json
import re

import httpx
import pytest

from sftpdrop.client.http import CHUNK_UPLOAD_PATH, COMPLETE_UPLOAD_PATH, SIMPLE_UPLOAD_PATH
from sftpdrop.client.orchestrator import CANCELLED_MESSAGE, UNEXPECTED_ERROR_MESSAGE, UploadOrchestrator

CHUNK_SIZE = 1024
THRESHOLD = 2048


def _form_parts(request: httpx.Request) -> dict:
    boundary = request.headers["content-type"].split("boundary=")[1].encode()
    parts = {}
    for raw in request.content.split(b"--" + boundary):
        head, sep, body = raw.partition(b"\r\n\r\n")
        if not sep:
            continue
        name = re.search(rb'name="([^"]+)"', head).group(1).decode()
        parts[name] = body[:-2]
    return parts


class FakeUploadServer:
    """Minimal stand-in for the upload API, served through httpx.MockTransport."""

    def __init__(self):
        self.paths = []
        self.chunks = {}
        self.chunk_order = []
        self.finalized = []
        self.simple_uploads = []
        self.fail_chunk_index = None
        self.finalize_error = None
        self.finalize_without_body = False
        self.raise_on_chunk = None
        self.chunk_started = asyncio.Event()
        self.release_chunks = None
        self.expected_small = None
        self.small_inflight = 0
        self.max_small_inflight = 0
        self.all_small_arrived = asyncio.Event()
        self.active_chunked = 0
        self.max_active_chunked = 0

    async def handler(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        path = request.url.path
        self.paths.append(path)

        if path == CHUNK_UPLOAD_PATH:
            return await self._chunk(request)
        if path == COMPLETE_UPLOAD_PATH:
            return self._complete(request)
        if path == SIMPLE_UPLOAD_PATH:
            return await self._simple(request)
        return httpx.Response(404, json={"success": False, "message": "Not found"})

    async def _chunk(self, request):
        parts = _form_parts(request)
        meta = json.loads(parts["metadata"])
        self.chunk_started.set()
        if self.raise_on_chunk is not None:
            raise self.raise_on_chunk
        if self.release_chunks is not None:
            await self.release_chunks.wait()
        if meta["chunkIndex"] == 0:
            self.active_chunked += 1
            self.max_active_chunked = max(self.max_active_chunked, self.active_chunked)
        await asyncio.sleep(0)
        if meta["chunkIndex"] == self.fail_chunk_index:
            return httpx.Response(500, json={"success": False, "message": "Failed to store chunk"})
        self.chunks[(meta["uploadId"], meta["chunkIndex"])] = parts["chunk"]
        self.chunk_order.append(meta["chunkIndex"])
        return httpx.Response(
            200,
            json={
                "success": True,
                "message": f"Chunk {meta['chunkIndex'] + 1}/{meta['totalChunks']} received",
                "chunkIndex": meta["chunkIndex"],
            },
        )

    def _complete(self, request):
        body = json.loads(request.content)
        self.active_chunked -= 1
        if self.finalize_error is not None:
            status, message = self.finalize_error
            return httpx.Response(status, json={"success": False, "message": message})
        if self.finalize_without_body:
            return httpx.Response(200)
        data = b"".join(self.chunks[(body["uploadId"], i)] for i in range(body["totalChunks"]))
        self.finalized.append((body, data))
        return httpx.Response(
            200,
            json={
                "success": True,
                "message": "File uploaded successfully",
                "file": {"original_filename": body["fileName"], "file_size": len(data)},
            },
        )

    async def _simple(self, request):
        parts = _form_parts(request)
        self.small_inflight += 1
        self.max_small_inflight = max(self.max_small_inflight, self.small_inflight)
        if self.expected_small and self.small_inflight >= self.expected_small:
            self.all_small_arrived.set()
        if self.expected_small:
            await asyncio.wait_for(self.all_small_arrived.wait(), timeout=2)
        self.small_inflight -= 1
        self.simple_uploads.append(parts)
        return httpx.Response(
            200,
            json={
                "success": True,
                "message": "1 file(s) uploaded successfully",
                "files": [{"original_filename": "f", "file_size": len(parts["files"])}],
            },
        )


def _client(server):
    return httpx.AsyncClient(transport=httpx.MockTransport(server.handler), base_url="http://testserver")


def _write(tmp_path, name, size):
    path = tmp_path / name
    path.write_bytes(bytes(i % 251 for i in range(size)))
    return path


@pytest.mark.asyncio
async def test_large_file_is_sent_in_ordered_chunks(tmp_path):
    server = FakeUploadServer()
    path = _write(tmp_path, "clip.mp4", 3000)

    async with _client(server) as client:
        orchestrator = UploadOrchestrator(client, CHUNK_SIZE, THRESHOLD)
        result = await orchestrator.upload_file(path)

    assert result.success is True
    assert result.error is None
    assert result.file == {"original_filename": "clip.mp4", "file_size": 3000}
    assert server.chunk_order == [0, 1, 2]
    assert server.paths[-1] == COMPLETE_UPLOAD_PATH

    body, data = server.finalized[0]
    assert data == path.read_bytes()
    assert body["uploadId"] == result.upload_id
    assert body["totalChunks"] == 3
    assert body["fileSize"] == 3000
    assert body["mimeType"] == "video/mp4"
    assert "config" not in body


@pytest.mark.asyncio
async def test_progress_reporting(tmp_path):
    server = FakeUploadServer()
    path = _write(tmp_path, "clip.bin", 3000)
    events = []

    async with _client(server) as client:
        orchestrator = UploadOrchestrator(client, CHUNK_SIZE, THRESHOLD)
        await orchestrator.upload_file(path, on_progress=lambda pct, status: events.append((pct, status)))

    assert events == [
        (0, "Preparing upload (3 parts)..."),
        (30, "Uploading part 1/3..."),
        (60, "Uploading part 2/3..."),
        (90, "Uploading part 3/3..."),
        (90, "Finalizing upload..."),
        (100, "Completed"),
    ]


@pytest.mark.asyncio
async def test_broken_progress_callback_does_not_stop_upload(tmp_path):
    server = FakeUploadServer()
    path = _write(tmp_path, "clip.bin", 3000)

    def explode(pct, status):
        raise RuntimeError("ui gone")

    async with _client(server) as client:
        result = await UploadOrchestrator(client, CHUNK_SIZE, THRESHOLD).upload_file(path, on_progress=explode)

    assert result.success is True


@pytest.mark.asyncio
async def test_config_and_batch_id_are_forwarded(tmp_path):
    server = FakeUploadServer()
    path = _write(tmp_path, "clip.bin", 3000)

    async with _client(server) as client:
        orchestrator = UploadOrchestrator(client, CHUNK_SIZE, THRESHOLD)
        await orchestrator.upload_file(path, batch_id="b-1", config={"host": "sftp.example.com"})

    body, _ = server.finalized[0]
    assert body["uploadBatchId"] == "b-1"
    assert body["config"] == {"host": "sftp.example.com"}


@pytest.mark.asyncio
async def test_small_file_uses_single_request(tmp_path):
    server = FakeUploadServer()
    path = _write(tmp_path, "note.txt", THRESHOLD)
    events = []

    async with _client(server) as client:
        orchestrator = UploadOrchestrator(client, CHUNK_SIZE, THRESHOLD)
        result = await orchestrator.upload_file(
            path, batch_id="b-2", config={"port": 2222}, on_progress=lambda p, s: events.append((p, s))
        )

    assert result.success is True
    assert server.paths == [SIMPLE_UPLOAD_PATH]
    parts = server.simple_uploads[0]
    assert parts["files"] == path.read_bytes()
    assert parts["uploadBatchId"] == b"b-2"
    assert json.loads(parts["config"]) == {"port": 2222}
    assert events[-1] == (100, "Completed")


@pytest.mark.asyncio
async def test_chunk_failure_aborts_upload(tmp_path):
    server = FakeUploadServer()
    server.fail_chunk_index = 1
    path = _write(tmp_path, "clip.bin", 5000)

    async with _client(server) as client:
        result = await UploadOrchestrator(client, CHUNK_SIZE, THRESHOLD).upload_file(path)

    assert result.success is False
    assert result.error == "Failed to store chunk"
    assert server.chunk_order == [0]
    assert COMPLETE_UPLOAD_PATH not in server.paths


@pytest.mark.asyncio
async def test_finalize_error_is_surfaced_verbatim(tmp_path):
    server = FakeUploadServer()
    server.finalize_error = (400, "Chunk 1 missing or corrupt")
    path = _write(tmp_path, "clip.bin", 3000)

    async with _client(server) as client:
        result = await UploadOrchestrator(client, CHUNK_SIZE, THRESHOLD).upload_file(path)

    assert result.success is False
    assert result.error == "Chunk 1 missing or corrupt"


@pytest.mark.asyncio
async def test_transport_error_becomes_message(tmp_path):
    server = FakeUploadServer()
    server.raise_on_chunk = httpx.ConnectError("connection refused")
    path = _write(tmp_path, "clip.bin", 3000)

    async with _client(server) as client:
        result = await UploadOrchestrator(client, CHUNK_SIZE, THRESHOLD).upload_file(path)

    assert result.success is False
    assert result.error == "connection refused"


@pytest.mark.asyncio
async def test_missing_local_file(tmp_path):
    server = FakeUploadServer()

    async with _client(server) as client:
        result = await UploadOrchestrator(client, CHUNK_SIZE, THRESHOLD).upload_file(tmp_path / "gone.bin")

    assert result.success is False
    assert result.error == "Could not read file: gone.bin"
    assert server.paths == []


@pytest.mark.asyncio
async def test_cancel_aborts_in_flight_chunk(tmp_path):
    server = FakeUploadServer()
    server.release_chunks = asyncio.Event()
    path = _write(tmp_path, "clip.bin", 3000)

    async with _client(server) as client:
        orchestrator = UploadOrchestrator(client, CHUNK_SIZE, THRESHOLD)
        handle = orchestrator.start_upload(path)
        await asyncio.wait_for(server.chunk_started.wait(), timeout=2)

        assert orchestrator.cancel(handle.upload_id) is True
        result = await handle.result()

    assert result.success is False
    assert result.error == CANCELLED_MESSAGE
    assert result.upload_id == handle.upload_id
    assert COMPLETE_UPLOAD_PATH not in server.paths
    assert orchestrator.cancel(handle.upload_id) is False


@pytest.mark.asyncio
async def test_cancel_all(tmp_path):
    server = FakeUploadServer()
    server.release_chunks = asyncio.Event()
    paths = [_write(tmp_path, f"clip{i}.bin", 3000) for i in range(2)]

    async with _client(server) as client:
        orchestrator = UploadOrchestrator(client, CHUNK_SIZE, THRESHOLD)
        handles = [orchestrator.start_upload(p) for p in paths]
        await asyncio.wait_for(server.chunk_started.wait(), timeout=2)

        orchestrator.cancel_all()
        results = [await h.result() for h in handles]

    assert [r.error for r in results] == [CANCELLED_MESSAGE, CANCELLED_MESSAGE]


@pytest.mark.asyncio
async def test_upload_many_keeps_order_and_serialises_large_files(tmp_path):
    server = FakeUploadServer()
    paths = [
        _write(tmp_path, "big1.bin", 3000),
        _write(tmp_path, "small.txt", 100),
        _write(tmp_path, "big2.bin", 4000),
        _write(tmp_path, "big3.bin", 2500),
    ]

    async with _client(server) as client:
        orchestrator = UploadOrchestrator(client, CHUNK_SIZE, THRESHOLD)
        results = await orchestrator.upload_many(paths)

    assert [r.success for r in results] == [True, True, True, True]
    assert [r.file["file_size"] for r in results] == [3000, 100, 4000, 2500]
    assert server.max_active_chunked == 1
    assert len(server.finalized) == 3


@pytest.mark.asyncio
async def test_upload_many_runs_small_files_concurrently(tmp_path):
    server = FakeUploadServer()
    server.expected_small = 3
    paths = [_write(tmp_path, f"s{i}.txt", 10 + i) for i in range(3)]
    progress = []

    async with _client(server) as client:
        orchestrator = UploadOrchestrator(client, CHUNK_SIZE, THRESHOLD)
        results = await orchestrator.upload_many(
            paths, on_progress=lambda path, pct, status: progress.append((path.name, pct))
        )

    assert all(r.success for r in results)
    assert server.max_small_inflight == 3
    assert ("s0.txt", 100) in progress


@pytest.mark.asyncio
async def test_one_failure_does_not_stop_batch(tmp_path):
    server = FakeUploadServer()
    server.fail_chunk_index = 0
    paths = [_write(tmp_path, "big.bin", 3000), _write(tmp_path, "small.txt", 10)]

    async with _client(server) as client:
        results = await UploadOrchestrator(client, CHUNK_SIZE, THRESHOLD).upload_many(paths)

    assert [r.success for r in results] == [False, True]


@pytest.mark.asyncio
async def test_unexpected_error_becomes_failed_result(tmp_path):
    server = FakeUploadServer()
    path = _write(tmp_path, "note.txt", 10)

    async with _client(server) as client:
        result = await UploadOrchestrator(client, CHUNK_SIZE, THRESHOLD).upload_file(
            path, config={"port": object()}
        )

    assert result.success is False
    assert result.error == UNEXPECTED_ERROR_MESSAGE
    assert server.paths == []


@pytest.mark.asyncio
async def test_unexpected_error_does_not_stop_batch(tmp_path):
    server = FakeUploadServer()
    paths = [str(tmp_path / "bad\0name.txt"), _write(tmp_path, "small.txt", 10)]

    async with _client(server) as client:
        results = await UploadOrchestrator(client, CHUNK_SIZE, THRESHOLD).upload_many(paths)

    assert [r.success for r in results] == [False, True]
    assert results[0].error == UNEXPECTED_ERROR_MESSAGE


@pytest.mark.asyncio
async def test_finalize_without_body_is_failure(tmp_path):
    server = FakeUploadServer()
    server.finalize_without_body = True
    path = _write(tmp_path, "clip.bin", 3000)

    async with _client(server) as client:
        result = await UploadOrchestrator(client, CHUNK_SIZE, THRESHOLD).upload_file(path)

    assert result.success is False
    assert result.error == "Failed to finalize upload"


def test_chunk_size_must_be_positive():
    with pytest.raises(ValueError):
        UploadOrchestrator(object(), 0, THRESHOLD)
