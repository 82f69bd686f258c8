from __future__ import annotations

import hashlib
import json
import logging
import math
import os
import re
import shutil
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from recap.services.errors import IncompleteUpload, UploadSessionNotFound, ValidationError

_SAFE_NAME = re.compile(r"[^a-zA-Z0-9._-]")
_SESSION_FILE = "session.json"


def _sanitize_filename(name: str) -> str:
    cleaned = _SAFE_NAME.sub("_", name or "")
    return cleaned or "audio.wav"


@dataclass
class StoredUpload:
    upload_id: str
    file_name: str
    total_size: int
    mime_type: str
    chunk_size: int
    created_at: str
    etags: dict[int, str] = field(default_factory=dict)

    @property
    def total_chunks(self) -> int:
        return max(1, math.ceil(self.total_size / self.chunk_size))

    def missing_chunks(self) -> list[int]:
        return [i for i in range(self.total_chunks) if i not in self.etags]

    def to_status(self) -> dict:
        indices = sorted(self.etags)
        return {
            "uploadId": self.upload_id,
            "fileName": self.file_name,
            "totalSize": self.total_size,
            "totalChunks": self.total_chunks,
            "uploadedChunks": indices,
            "etags": [{"index": i, "etag": self.etags[i]} for i in indices],
        }

    def to_dict(self) -> dict:
        return {
            "upload_id": self.upload_id,
            "file_name": self.file_name,
            "total_size": self.total_size,
            "mime_type": self.mime_type,
            "chunk_size": self.chunk_size,
            "created_at": self.created_at,
            "etags": {str(k): v for k, v in self.etags.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StoredUpload":
        return cls(
            upload_id=data["upload_id"],
            file_name=data["file_name"],
            total_size=int(data["total_size"]),
            mime_type=data.get("mime_type", "application/octet-stream"),
            chunk_size=int(data["chunk_size"]),
            created_at=data.get("created_at", ""),
            etags={int(k): v for k, v in (data.get("etags") or {}).items()},
        )


class UploadSessionRegistry:
    """Server side of the chunked upload protocol.

    Each session is a directory under ``uploads_dir`` holding
    ``session.json`` plus one ``chunk_<index>.part`` per received chunk, so an
    interrupted upload survives a server restart and can be resumed from its
    status.
    """

    def __init__(self, uploads_dir: str, chunk_size: int) -> None:
        self._uploads_dir = uploads_dir
        self._chunk_size = chunk_size
        self._lock = threading.RLock()
        self._logger = logging.getLogger("recap.upload.sessions")
        os.makedirs(self._uploads_dir, exist_ok=True)

    def _session_dir(self, upload_id: str) -> str:
        return os.path.join(self._uploads_dir, _sanitize_filename(upload_id))

    def _part_path(self, upload_id: str, index: int) -> str:
        return os.path.join(self._session_dir(upload_id), f"chunk_{index}.part")

    def _save(self, session: StoredUpload) -> None:
        path = os.path.join(self._session_dir(session.upload_id), _SESSION_FILE)
        temp_path = f"{path}.tmp"
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(session.to_dict(), f, indent=2)
        os.replace(temp_path, path)

    def get(self, upload_id: str) -> StoredUpload:
        path = os.path.join(self._session_dir(upload_id), _SESSION_FILE)
        with self._lock:
            if not os.path.exists(path):
                raise UploadSessionNotFound(f"Upload session not found: {upload_id}")
            with open(path, "r", encoding="utf-8") as f:
                return StoredUpload.from_dict(json.load(f))

    def initiate(
        self,
        file_name: str,
        file_size: int,
        mime_type: str,
        chunk_size: Optional[int] = None,
    ) -> StoredUpload:
        if file_size <= 0:
            raise ValidationError(f"Invalid upload size: {file_size}")
        upload_id = f"upload_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"
        session = StoredUpload(
            upload_id=upload_id,
            file_name=_sanitize_filename(file_name),
            total_size=file_size,
            mime_type=mime_type,
            chunk_size=chunk_size or self._chunk_size,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        with self._lock:
            os.makedirs(self._session_dir(upload_id), exist_ok=True)
            self._save(session)
        self._logger.info(
            "Upload initiated: id=%s file=%s size=%d chunks=%d",
            upload_id,
            session.file_name,
            file_size,
            session.total_chunks,
        )
        return session

    def store_chunk(self, upload_id: str, index: int, data: bytes) -> str:
        """Persist one chunk and return its etag (md5 of the bytes)."""
        with self._lock:
            session = self.get(upload_id)
            if index < 0 or index >= session.total_chunks:
                raise ValidationError(
                    f"Chunk index {index} outside 0..{session.total_chunks - 1}"
                )
            path = self._part_path(upload_id, index)
            temp_path = f"{path}.tmp"
            with open(temp_path, "wb") as f:
                f.write(data)
            os.replace(temp_path, path)
            etag = hashlib.md5(data).hexdigest()
            session.etags[index] = etag
            self._save(session)
        self._logger.debug("Chunk stored: id=%s index=%d bytes=%d", upload_id, index, len(data))
        return etag

    def status(self, upload_id: str) -> dict:
        return self.get(upload_id).to_status()

    def finalize(self, upload_id: str, etags: Optional[list[dict]] = None) -> dict:
        """Concatenate all parts in index order into ``uploads/<file_key>``."""
        with self._lock:
            session = self.get(upload_id)
            missing = session.missing_chunks()
            if missing:
                raise IncompleteUpload(missing)
            for entry in etags or []:
                index = int(entry.get("index", -1))
                if session.etags.get(index) != entry.get("etag"):
                    raise ValidationError(f"Etag mismatch for chunk {index}")

            file_key = f"audio_{upload_id}_{int(time.time() * 1000)}"
            target_path = os.path.join(self._uploads_dir, file_key)
            with open(target_path, "wb") as output:
                for index in range(session.total_chunks):
                    with open(self._part_path(upload_id, index), "rb") as part:
                        shutil.copyfileobj(part, output)
            file_size = os.path.getsize(target_path)
            shutil.rmtree(self._session_dir(upload_id), ignore_errors=True)

        self._logger.info("Upload finalized: id=%s key=%s size=%d", upload_id, file_key, file_size)
        return {
            "fileKey": file_key,
            "fileSize": file_size,
            "finalizedAt": datetime.now(timezone.utc).isoformat(),
        }

    def path_for_key(self, file_key: str) -> Optional[str]:
        path = os.path.join(self._uploads_dir, _sanitize_filename(file_key))
        return path if os.path.isfile(path) else None
