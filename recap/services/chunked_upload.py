from __future__ import annotations

import logging
import math
import time
from dataclasses import asdict, dataclass, field
from typing import Callable, Optional

import httpx

from recap.services.errors import (
    ChunkUploadFailed,
    IncompleteUpload,
    MalformedResponse,
    ServiceError,
    UploadSessionNotFound,
    ValidationError,
)
from recap.services.http_client import client_scope, send
from recap.services.retry import RetryPolicy

CHUNK_SIZE = 5 * 1024 * 1024
UPLOAD_RETRIES = 2
UPLOAD_RETRY_DELAY = 2.0


def upload_percentage(uploaded: int, total: int) -> int:
    """Whole percent uploaded, rounding halves up."""
    if not total:
        return 100
    return math.floor(uploaded * 100 / total + 0.5)


@dataclass
class UploadSession:
    upload_id: str
    file_name: str
    total_size: int
    chunk_size: int = CHUNK_SIZE
    uploaded_chunks: set[int] = field(default_factory=set)
    etags: dict[int, str] = field(default_factory=dict)

    @property
    def total_chunks(self) -> int:
        return max(1, math.ceil(self.total_size / self.chunk_size))

    def chunk_length(self, index: int) -> int:
        start = index * self.chunk_size
        return max(0, min(self.chunk_size, self.total_size - start))

    @property
    def uploaded_bytes(self) -> int:
        return sum(self.chunk_length(i) for i in self.uploaded_chunks)

    def missing_chunks(self) -> list[int]:
        return [i for i in range(self.total_chunks) if i not in self.uploaded_chunks]

    def is_complete(self) -> bool:
        return not self.missing_chunks()


@dataclass(frozen=True)
class UploadProgress:
    uploaded_bytes: int
    total_bytes: int
    percentage: int
    current_chunk: int
    total_chunks: int
    stage: str
    message: str

    def to_dict(self) -> dict:
        return asdict(self)


UploadProgressCallback = Callable[[UploadProgress], None]


class ChunkedUploadManager:
    """Client side of the resumable chunked upload protocol.

    The manager owns its sessions: one per upload id, created by
    ``initiate`` or rebuilt by ``resume``, and dropped on ``finalize`` or
    ``cancel``.
    """

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        *,
        chunk_size: int = CHUNK_SIZE,
        retry_policy: Optional[RetryPolicy] = None,
        on_progress: Optional[UploadProgressCallback] = None,
        timeout: float = 120.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._chunk_size = chunk_size
        self._retry = retry_policy or RetryPolicy(retries=UPLOAD_RETRIES, delay=UPLOAD_RETRY_DELAY)
        self._on_progress = on_progress
        self._timeout = timeout
        self._sessions: dict[str, UploadSession] = {}
        self._logger = logging.getLogger("recap.upload")

    def _url(self, action: str) -> str:
        return f"{self._base_url}/api/uploads/{action}"

    async def _send(self, method: str, action: str, **kwargs) -> dict:
        async with client_scope(self._client, self._timeout) as client:
            response = await send(
                client,
                method,
                self._url(action),
                service="Upload service",
                timeout=self._timeout,
                **kwargs,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedResponse(f"Upload {action} response is not JSON") from exc
        if not isinstance(payload, dict):
            raise MalformedResponse(f"Upload {action} response is not an object")
        return payload

    def _emit(self, session: UploadSession, current_chunk: int, stage: str, message: str) -> None:
        if self._on_progress is None:
            return
        uploaded = session.total_size if stage in ("processing", "completed") else session.uploaded_bytes
        progress = UploadProgress(
            uploaded_bytes=uploaded,
            total_bytes=session.total_size,
            percentage=upload_percentage(uploaded, session.total_size),
            current_chunk=current_chunk,
            total_chunks=session.total_chunks,
            stage=stage,
            message=message,
        )
        try:
            self._on_progress(progress)
        except Exception:
            self._logger.exception("Upload progress callback failed")

    def _require(self, upload_id: str) -> UploadSession:
        session = self._sessions.get(upload_id)
        if session is None:
            raise UploadSessionNotFound(f"Upload session not found: {upload_id}")
        return session

    def get_session(self, upload_id: str) -> Optional[UploadSession]:
        return self._sessions.get(upload_id)

    def cancel(self, upload_id: str) -> None:
        if self._sessions.pop(upload_id, None) is not None:
            self._logger.info("Upload cancelled: id=%s", upload_id)

    async def initiate(self, file_name: str, size: int, mime_type: str) -> str:
        if size <= 0:
            raise ValidationError("Cannot upload an empty file")
        payload = await self._send(
            "POST",
            "initiate",
            json={
                "fileName": file_name,
                "fileSize": size,
                "mimeType": mime_type,
                "chunkSize": self._chunk_size,
            },
        )
        upload_id = payload.get("uploadId")
        if not upload_id:
            raise MalformedResponse("Upload initiate response missing uploadId")
        session = UploadSession(
            upload_id=upload_id,
            file_name=file_name,
            total_size=size,
            chunk_size=self._chunk_size,
        )
        self._sessions[upload_id] = session
        self._logger.info(
            "Upload initiated: id=%s size=%d chunks=%d", upload_id, size, session.total_chunks
        )
        return upload_id

    async def upload_chunk(self, upload_id: str, index: int, data: bytes) -> str:
        session = self._require(upload_id)

        async def call() -> dict:
            return await self._send(
                "POST",
                "chunk",
                data={"uploadId": upload_id, "chunkIndex": str(index)},
                files={"chunk": (f"chunk_{index}", data, "application/octet-stream")},
            )

        started = time.perf_counter()
        try:
            payload = await self._retry.run(call, label=f"chunk {index}")
        except Exception as exc:
            self._logger.error("Chunk %d failed after retries: %s", index, exc)
            raise ChunkUploadFailed(index) from exc

        etag = str(payload.get("etag") or "")
        session.uploaded_chunks.add(index)
        if etag:
            session.etags[index] = etag
        self._logger.debug(
            "Chunk uploaded: id=%s index=%d bytes=%d (%.0fms)",
            upload_id,
            index,
            len(data),
            (time.perf_counter() - started) * 1000,
        )
        self._emit(
            session,
            index + 1,
            "uploading",
            f"Uploading chunk {index + 1} of {session.total_chunks}",
        )
        return etag

    def _slice(self, session: UploadSession, data: bytes, index: int) -> bytes:
        start = index * session.chunk_size
        return data[start:start + session.chunk_size]

    async def resume(self, upload_id: str, data: bytes) -> UploadSession:
        """Rebuild the session from the server status and upload missing chunks."""
        try:
            status = await self._send("GET", "status", params={"uploadId": upload_id})
        except ServiceError as exc:
            if exc.status_code == 404:
                self._sessions.pop(upload_id, None)
                raise UploadSessionNotFound(f"Upload session not found: {upload_id}") from exc
            raise

        total_size = int(status.get("totalSize") or len(data))
        if total_size != len(data):
            raise ValidationError(
                f"Resume data is {len(data)} bytes, session expects {total_size}"
            )
        session = UploadSession(
            upload_id=upload_id,
            file_name=status.get("fileName") or "recording.wav",
            total_size=total_size,
            chunk_size=self._chunk_size,
            uploaded_chunks={int(i) for i in status.get("uploadedChunks") or []},
            etags={int(e["index"]): str(e["etag"]) for e in status.get("etags") or []},
        )
        expected = int(status.get("totalChunks") or session.total_chunks)
        if expected != session.total_chunks:
            raise ValidationError(
                f"Chunk count mismatch on resume: server={expected} local={session.total_chunks}"
            )
        self._sessions[upload_id] = session

        missing = session.missing_chunks()
        self._logger.info("Resuming upload: id=%s missing=%d", upload_id, len(missing))
        for index in missing:
            await self.upload_chunk(upload_id, index, self._slice(session, data, index))
        return session

    async def finalize(self, upload_id: str) -> str:
        session = self._require(upload_id)
        missing = session.missing_chunks()
        if missing:
            raise IncompleteUpload(missing)

        self._emit(session, session.total_chunks, "processing", "Finalizing upload...")
        payload = await self._send(
            "POST",
            "finalize",
            json={
                "uploadId": upload_id,
                "etags": [{"index": i, "etag": tag} for i, tag in sorted(session.etags.items())],
            },
        )
        file_key = payload.get("fileKey")
        if not file_key:
            raise MalformedResponse("Upload finalize response missing fileKey")
        self._sessions.pop(upload_id, None)
        self._emit(session, session.total_chunks, "completed", "Upload complete")
        self._logger.info("Upload finalized: id=%s key=%s", upload_id, file_key)
        return file_key

    async def upload(self, data: bytes, file_name: str, mime_type: str) -> str:
        """Upload ``data`` end to end and return the server file key."""
        upload_id = await self.initiate(file_name, len(data), mime_type)
        session = self._require(upload_id)
        try:
            for index in range(session.total_chunks):
                await self.upload_chunk(upload_id, index, self._slice(session, data, index))
            return await self.finalize(upload_id)
        except Exception:
            if upload_id in self._sessions:
                self._emit(session, len(session.uploaded_chunks), "error", "Upload failed")
            raise
