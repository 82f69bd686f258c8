from __future__ import annotations

import asyncio
import logging
import os
import re
import threading
from abc import ABC, abstractmethod
from typing import Optional

_SAFE_ID = re.compile(r"[^a-zA-Z0-9._-]")


class AudioStore(ABC):
    """Raw recorded audio keyed by meeting id.

    Retrieved bytes are byte-identical to what was stored; deleting a
    missing id is a no-op.
    """

    scheme = "audio"

    @abstractmethod
    async def store(self, meeting_id: str, data: bytes) -> str:
        """Persist ``data`` and return the opaque handle for ``Meeting.audio_uri``."""
        raise NotImplementedError

    @abstractmethod
    async def retrieve(self, meeting_id: str) -> Optional[bytes]:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, meeting_id: str) -> None:
        raise NotImplementedError

    def uri_for(self, meeting_id: str) -> str:
        return f"{self.scheme}://{meeting_id}"


class MemoryAudioStore(AudioStore):
    """Keyed in-process object store."""

    scheme = "memory"

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}
        self._lock = threading.Lock()

    async def store(self, meeting_id: str, data: bytes) -> str:
        with self._lock:
            self._blobs[meeting_id] = bytes(data)
        return self.uri_for(meeting_id)

    async def retrieve(self, meeting_id: str) -> Optional[bytes]:
        with self._lock:
            return self._blobs.get(meeting_id)

    async def delete(self, meeting_id: str) -> None:
        with self._lock:
            self._blobs.pop(meeting_id, None)


class FileAudioStore(AudioStore):
    """One file per meeting under the recordings directory."""

    scheme = "file"

    def __init__(self, recordings_dir: str, extension: str = ".wav") -> None:
        self._recordings_dir = recordings_dir
        self._extension = extension
        self._logger = logging.getLogger("recap.audio_store")
        os.makedirs(self._recordings_dir, exist_ok=True)

    def path_for(self, meeting_id: str) -> str:
        safe_id = _SAFE_ID.sub("_", meeting_id)
        return os.path.join(self._recordings_dir, f"{safe_id}{self._extension}")

    def uri_for(self, meeting_id: str) -> str:
        return f"{self.scheme}://{self.path_for(meeting_id)}"

    def _write(self, meeting_id: str, data: bytes) -> None:
        path = self.path_for(meeting_id)
        temp_path = f"{path}.tmp"
        with open(temp_path, "wb") as f:
            f.write(data)
        os.replace(temp_path, path)

    def _read(self, meeting_id: str) -> Optional[bytes]:
        path = self.path_for(meeting_id)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def _remove(self, meeting_id: str) -> None:
        try:
            os.remove(self.path_for(meeting_id))
        except FileNotFoundError:
            return

    async def store(self, meeting_id: str, data: bytes) -> str:
        await asyncio.to_thread(self._write, meeting_id, data)
        self._logger.info("Audio stored: meeting=%s bytes=%d", meeting_id, len(data))
        return self.uri_for(meeting_id)

    async def retrieve(self, meeting_id: str) -> Optional[bytes]:
        return await asyncio.to_thread(self._read, meeting_id)

    async def delete(self, meeting_id: str) -> None:
        await asyncio.to_thread(self._remove, meeting_id)
        self._logger.info("Audio deleted: meeting=%s", meeting_id)
