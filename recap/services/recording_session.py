from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from recap.services.audio_store import AudioStore
from recap.services.capture import CaptureDevice, RawAudioHandle
from recap.services.deferred import DeferredTaskQueue
from recap.services.errors import ConsentRequired, SessionStateError
from recap.services.meeting_models import Meeting
from recap.services.meeting_store import MeetingStore

MAX_RECORDING_DURATION = 15 * 60

STATE_IDLE = "idle"
STATE_RECORDING = "recording"
STATE_PAUSED = "paused"
STATE_STOPPED = "stopped"


@dataclass
class _CaptureContext:
    """Device and timer for one meeting; released by ``dispose`` on every exit path."""

    meeting_id: str
    device: CaptureDevice
    duration: int = 0
    timer: Optional[asyncio.Task] = None
    auto_stop_requested: bool = False

    def cancel_timer(self) -> None:
        if self.timer is not None and not self.timer.done():
            self.timer.cancel()
        self.timer = None

    async def dispose(self, logger: logging.Logger) -> None:
        self.cancel_timer()
        try:
            await self.device.close()
        except Exception as exc:
            logger.warning("Capture device close failed: meeting=%s error=%s", self.meeting_id, exc)


class RecordingSession:
    """Recording lifecycle: Idle -> Recording <-> Paused -> Stopped -> Idle.

    One session drives one capture device. The meeting record is created at
    ``start`` and finalized at ``stop``; the 1 second tick enforces the
    maximum duration by scheduling ``stop`` on the deferred queue.
    """

    def __init__(
        self,
        meeting_store: MeetingStore,
        audio_store: AudioStore,
        device: CaptureDevice,
        *,
        deferred: Optional[DeferredTaskQueue] = None,
        max_duration: int = MAX_RECORDING_DURATION,
        tick_interval: float = 1.0,
    ) -> None:
        self._meeting_store = meeting_store
        self._audio_store = audio_store
        self._device = device
        self._deferred = deferred or DeferredTaskQueue()
        self._max_duration = max_duration
        self._tick_interval = tick_interval
        self._state = STATE_IDLE
        self._consent = False
        self._context: Optional[_CaptureContext] = None
        self._logger = logging.getLogger("recap.recording")

    @property
    def state(self) -> str:
        return self._state

    @property
    def deferred(self) -> DeferredTaskQueue:
        return self._deferred

    def status(self) -> dict:
        ctx = self._context
        return {
            "state": self._state,
            "meeting_id": ctx.meeting_id if ctx else None,
            "duration": ctx.duration if ctx else 0,
            "paused": self._state == STATE_PAUSED,
            "consent": self._consent,
            "max_duration": self._max_duration,
        }

    def set_consent(self, granted: bool) -> None:
        self._consent = bool(granted)
        self._logger.info("Recording consent %s", "granted" if self._consent else "revoked")

    async def start(self, title: Optional[str] = None, attendees: Optional[list[str]] = None) -> Meeting:
        if not self._consent:
            raise ConsentRequired("Recording consent has not been given")
        if self._state != STATE_IDLE:
            raise SessionStateError(f"Cannot start while {self._state}")

        meeting = Meeting(
            title=(title or "").strip() or f"Meeting {datetime.now().strftime('%Y-%m-%d %H:%M')}",
            attendees=[a.strip() for a in attendees or [] if a and a.strip()],
        )
        self._meeting_store.upsert(meeting)
        self._state = STATE_RECORDING
        ctx = _CaptureContext(meeting_id=meeting.id, device=self._device)
        self._context = ctx
        try:
            await self._device.start()
        except Exception:
            self._logger.exception("Capture start failed: meeting=%s", meeting.id)
            self._meeting_store.update(meeting.id, lambda m: m.mark_error())
            await ctx.dispose(self._logger)
            self._context = None
            self._state = STATE_IDLE
            raise

        ctx.timer = asyncio.get_running_loop().create_task(self._timer_loop(ctx))
        self._logger.info("Recording started: meeting=%s title=%s", meeting.id, meeting.title)
        return meeting

    async def pause(self) -> None:
        if self._state != STATE_RECORDING or self._context is None:
            raise SessionStateError(f"Cannot pause while {self._state}")
        ctx = self._context
        try:
            await ctx.device.pause()
        except Exception as exc:
            # Capture is still running, so the clock keeps counting.
            self._logger.warning("Capture pause failed, still recording: %s", exc)
            return
        ctx.cancel_timer()
        self._state = STATE_PAUSED
        self._logger.info("Recording paused: meeting=%s duration=%ds", ctx.meeting_id, ctx.duration)

    async def resume(self) -> None:
        if self._state != STATE_PAUSED or self._context is None:
            raise SessionStateError(f"Cannot resume while {self._state}")
        ctx = self._context
        try:
            await ctx.device.resume()
        except Exception as exc:
            self._logger.warning("Capture resume failed, still paused: %s", exc)
            return
        self._state = STATE_RECORDING
        ctx.timer = asyncio.get_running_loop().create_task(self._timer_loop(ctx))
        self._logger.info("Recording resumed: meeting=%s", ctx.meeting_id)

    async def _timer_loop(self, ctx: _CaptureContext) -> None:
        while self._context is ctx:
            await asyncio.sleep(self._tick_interval)
            self.tick()

    def tick(self) -> None:
        """Advance the recording clock by one second."""
        ctx = self._context
        if ctx is None or self._state != STATE_RECORDING:
            return
        ctx.duration = min(ctx.duration + 1, self._max_duration)
        if ctx.duration >= self._max_duration and not ctx.auto_stop_requested:
            ctx.auto_stop_requested = True
            self._logger.info("Maximum duration reached: meeting=%s, stopping", ctx.meeting_id)
            self._deferred.schedule(lambda: self._auto_stop(ctx), key=f"auto-stop:{ctx.meeting_id}")

    async def _auto_stop(self, ctx: _CaptureContext) -> None:
        if self._context is not ctx or self._state not in (STATE_RECORDING, STATE_PAUSED):
            return
        await self.stop()

    async def stop(self) -> Optional[str]:
        """Finish the recording and return the meeting id, or None if nothing could be saved."""
        ctx = self._context
        if ctx is None or self._state not in (STATE_RECORDING, STATE_PAUSED):
            raise SessionStateError(f"Cannot stop while {self._state}")
        self._state = STATE_STOPPED
        ctx.cancel_timer()
        meeting_id = ctx.meeting_id
        try:
            try:
                handle = await ctx.device.stop()
            except Exception:
                self._logger.exception("Capture stop failed: meeting=%s", meeting_id)
                handle = RawAudioHandle(data=b"")

            audio_uri = None
            if handle.data:
                try:
                    audio_uri = await self._audio_store.store(meeting_id, handle.data)
                except Exception as exc:
                    self._logger.exception("Audio store failed: meeting=%s error=%s", meeting_id, exc)

            duration = ctx.duration

            def finalize(meeting: Meeting) -> None:
                meeting.duration = duration
                meeting.audio_uri = audio_uri
                if audio_uri and duration > 0:
                    meeting.mark_processing()
                else:
                    meeting.mark_error()

            updated = self._meeting_store.update(meeting_id, finalize)
            if updated is None:
                return None
            self._logger.info(
                "Recording stopped: meeting=%s duration=%ds bytes=%d status=%s",
                meeting_id,
                duration,
                handle.size,
                updated.status,
            )
            return meeting_id
        except Exception as exc:
            self._logger.exception("Recording stop failed: meeting=%s error=%s", meeting_id, exc)
            return None
        finally:
            await ctx.dispose(self._logger)
            self._context = None
            self._state = STATE_IDLE
