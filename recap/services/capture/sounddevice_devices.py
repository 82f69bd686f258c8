import asyncio
import io
import logging
import os
import queue
import threading
import uuid
from datetime import datetime, timezone
from typing import Optional

import numpy as np
import sounddevice as sd
import soundfile as sf

from recap.services.capture.base import CaptureDevice, CaptureDeviceError, RawAudioHandle

_BLOCKSIZE = 4096


def encode_wav(pcm: bytes, samplerate: int, channels: int) -> bytes:
    """Wrap raw int16 PCM in a WAV container."""
    frames = np.frombuffer(pcm, dtype=np.int16)
    if channels > 1:
        frames = frames.reshape(-1, channels)
    buffer = io.BytesIO()
    sf.write(buffer, frames, samplerate, format="WAV", subtype="PCM_16")
    return buffer.getvalue()


class _InputStreamDevice(CaptureDevice):
    """Shared RawInputStream handling for both strategies."""

    def __init__(
        self,
        device_index: Optional[int] = None,
        samplerate: int = 16000,
        channels: int = 1,
    ) -> None:
        self._device_index = device_index
        self._samplerate = samplerate
        self._channels = channels
        self._stream: Optional[sd.RawInputStream] = None
        self._lock = threading.RLock()
        self._callback_counter = 0
        self._logger = logging.getLogger("recap.capture")

    def _open_stream(self) -> None:
        # Pre-import numpy on the main thread to avoid callback-thread import crash on macOS.
        _ = np.__version__
        self._callback_counter = 0
        try:
            self._stream = sd.RawInputStream(
                device=self._device_index,
                samplerate=self._samplerate,
                channels=self._channels,
                dtype="int16",
                blocksize=_BLOCKSIZE,
                callback=self._audio_callback,
            )
            self._stream.start()
        except Exception as exc:
            self._logger.exception("Failed to start audio stream: %s", exc)
            self._stream = None
            raise CaptureDeviceError("Unable to open the microphone") from exc
        self._logger.info(
            "RawInputStream started: device=%s samplerate=%s channels=%s",
            self._device_index,
            self._samplerate,
            self._channels,
        )

    def _close_stream(self) -> None:
        with self._lock:
            stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
        self._logger.debug("RawInputStream closed")

    def _audio_callback(self, indata, frames, time, status) -> None:
        if status:
            self._logger.warning("Audio callback status: %s", status)
        self._callback_counter += 1
        if self._callback_counter % 50 == 0:
            self._logger.debug("Audio callback frames=%s", frames)
        self._consume(bytes(indata))

    def _consume(self, payload: bytes) -> None:
        raise NotImplementedError

    async def pause(self) -> None:
        with self._lock:
            if self._stream is not None:
                self._stream.stop()
        self._logger.debug("Capture paused")

    async def resume(self) -> None:
        with self._lock:
            if self._stream is not None:
                self._stream.start()
        self._logger.debug("Capture resumed")


class StreamingBufferDevice(_InputStreamDevice):
    """Buffers timed PCM segments in memory and encodes one WAV at stop."""

    def __init__(
        self,
        device_index: Optional[int] = None,
        samplerate: int = 16000,
        channels: int = 1,
        segment_seconds: float = 1.0,
    ) -> None:
        super().__init__(device_index, samplerate, channels)
        self._segment_bytes = max(2, int(samplerate * channels * 2 * segment_seconds))
        self._segments: list[bytes] = []
        self._pending = bytearray()

    def _consume(self, payload: bytes) -> None:
        with self._lock:
            self._pending.extend(payload)
            if len(self._pending) >= self._segment_bytes:
                self._segments.append(bytes(self._pending))
                self._pending.clear()

    async def start(self) -> None:
        with self._lock:
            self._segments = []
            self._pending = bytearray()
        self._open_stream()

    async def stop(self) -> RawAudioHandle:
        self._close_stream()
        with self._lock:
            if self._pending:
                self._segments.append(bytes(self._pending))
                self._pending.clear()
            pcm = b"".join(self._segments)
            segment_count = len(self._segments)
            self._segments = []
        if not pcm:
            self._logger.warning("Streaming capture produced no audio")
            return RawAudioHandle(data=b"")
        data = encode_wav(pcm, self._samplerate, self._channels)
        self._logger.info("Streaming capture stopped: segments=%d bytes=%d", segment_count, len(data))
        return RawAudioHandle(data=data)

    async def close(self) -> None:
        self._close_stream()
        with self._lock:
            self._segments = []
            self._pending.clear()


class SingleFileDevice(_InputStreamDevice):
    """Streams PCM to one WAV file through a writer thread."""

    def __init__(
        self,
        recordings_dir: str,
        device_index: Optional[int] = None,
        samplerate: int = 16000,
        channels: int = 1,
    ) -> None:
        super().__init__(device_index, samplerate, channels)
        self._recordings_dir = recordings_dir
        self._audio_queue: "queue.Queue[bytes]" = queue.Queue()
        self._stop_event = threading.Event()
        self._writer_thread: Optional[threading.Thread] = None
        self._file_path: Optional[str] = None

    def _consume(self, payload: bytes) -> None:
        self._audio_queue.put(payload)

    async def start(self) -> None:
        os.makedirs(self._recordings_dir, exist_ok=True)
        filename = f"capture-{datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%SZ')}-{uuid.uuid4().hex}.wav"
        self._file_path = os.path.join(self._recordings_dir, filename)
        self._stop_event.clear()
        self._writer_thread = threading.Thread(target=self._writer_loop, args=(self._file_path,), daemon=True)
        self._writer_thread.start()
        self._logger.debug("Writer thread started: %s", self._file_path)
        try:
            self._open_stream()
        except CaptureDeviceError:
            self._join_writer()
            self._discard_file()
            raise

    def _join_writer(self) -> None:
        self._stop_event.set()
        if self._writer_thread is not None:
            self._logger.debug("Waiting for writer thread (queue size=%s)", self._audio_queue.qsize())
            self._writer_thread.join(timeout=5)
            if self._writer_thread.is_alive():
                self._logger.warning("Writer thread still running after timeout")
            self._writer_thread = None

    def _discard_file(self) -> None:
        path, self._file_path = self._file_path, None
        if path and os.path.exists(path):
            os.remove(path)

    async def stop(self) -> RawAudioHandle:
        return await asyncio.to_thread(self._finish)

    def _finish(self) -> RawAudioHandle:
        self._close_stream()
        self._join_writer()
        path = self._file_path
        if not path or not os.path.exists(path):
            self._logger.warning("Capture file missing at stop: %s", path)
            self._file_path = None
            return RawAudioHandle(data=b"")
        with open(path, "rb") as f:
            data = f.read()
        self._discard_file()
        self._logger.info("File capture stopped: file=%s bytes=%d", path, len(data))
        return RawAudioHandle(data=data, file_name=os.path.basename(path))

    async def close(self) -> None:
        await asyncio.to_thread(self._release)

    def _release(self) -> None:
        self._close_stream()
        self._join_writer()
        self._discard_file()

    def _writer_loop(self, file_path: str) -> None:
        self._logger.debug("Writer loop start: %s", file_path)
        with sf.SoundFile(
            file_path,
            mode="w",
            samplerate=self._samplerate,
            channels=self._channels,
            subtype="PCM_16",
        ) as sound_file:
            while not self._stop_event.is_set() or not self._audio_queue.empty():
                try:
                    data = self._audio_queue.get(timeout=0.1)
                    frames = np.frombuffer(data, dtype=np.int16)
                    if self._channels > 1:
                        frames = frames.reshape(-1, self._channels)
                    sound_file.write(frames)
                except queue.Empty:
                    continue
                except Exception as exc:
                    self._logger.exception("Failed to write audio data: %s", exc)
                    break
        self._logger.debug("Writer loop complete: %s", file_path)
