from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from recap.services.errors import RecapError


@dataclass(frozen=True)
class RawAudioHandle:
    data: bytes
    mime_type: str = "audio/wav"
    file_name: str = "recording.wav"

    @property
    def size(self) -> int:
        return len(self.data)


class CaptureDeviceError(RecapError):
    user_message = "Microphone unavailable: the audio input device could not be used."


class CaptureDevice(ABC):
    """Platform capture capability used by the recording session.

    The session never branches on the concrete strategy; it only drives
    this interface.
    """

    @abstractmethod
    async def start(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def pause(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def resume(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def stop(self) -> RawAudioHandle:
        """Stop capturing and return everything recorded since ``start``."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release the device without producing audio. Safe to call twice."""
        return None
