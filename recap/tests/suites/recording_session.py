"""Recording session test suite."""
from __future__ import annotations

from recap.services.audio_store import MemoryAudioStore
from recap.services.capture import CaptureDeviceError
from recap.services.errors import ConsentRequired, SessionStateError
from recap.services.meeting_models import STATUS_ERROR, STATUS_PROCESSING, STATUS_RECORDING
from recap.services.recording_session import (
    STATE_IDLE,
    STATE_PAUSED,
    STATE_RECORDING,
    RecordingSession,
)
from recap.tests.base import TestSuite
from recap.tests.fakes import SAMPLE_AUDIO, FakeCaptureDevice, make_store

# Ticks are driven by hand; the background timer never fires.
MANUAL_TICKS = 3600.0


class RecordingSessionSuite(TestSuite):
    suite_id = "recording-session"
    name = "Recording Session"
    description = "Consent, state machine, duration clock, auto-stop and device cleanup"

    def _register_tests(self):
        self.add_test("RS-001", "Start requires consent", self._test_consent)
        self.add_test("RS-002", "Record, pause, resume and stop", self._test_lifecycle)
        self.add_test("RS-003", "Maximum duration stops the recording once", self._test_auto_stop)
        self.add_test("RS-004", "Invalid transitions are rejected", self._test_invalid_transitions)
        self.add_test("RS-005", "Device start failure leaves the session idle", self._test_start_failure)
        self.add_test("RS-006", "Device stop failure marks the meeting error", self._test_stop_failure)
        self.add_test("RS-007", "Zero-length recording is not processable", self._test_zero_duration)
        self.add_test("RS-008", "Failed device pause or resume keeps the current state", self._test_pause_resume_failure)

    def _session(self, ctx: dict, name: str, device=None, **kwargs):
        store = make_store(ctx["workspace"], f"{name}.json")
        audio = MemoryAudioStore()
        device = device or FakeCaptureDevice()
        kwargs.setdefault("tick_interval", MANUAL_TICKS)
        session = RecordingSession(store, audio, device, **kwargs)
        session.set_consent(True)
        return session, store, audio, device

    async def _test_consent(self, ctx: dict):
        session, store, _, device = self._session(ctx, "consent")
        session.set_consent(False)
        try:
            await session.start("No consent")
        except ConsentRequired:
            pass
        else:
            raise AssertionError("Expected ConsentRequired")
        assert store.list_meetings() == []
        assert device.calls == []
        assert session.status()["consent"] is False

    async def _test_lifecycle(self, ctx: dict):
        session, store, audio, device = self._session(ctx, "lifecycle")
        meeting = await session.start("  Planning  ", ["Alice", " ", "Bob "])
        assert meeting.title == "Planning"
        assert meeting.attendees == ["Alice", "Bob"]
        assert store.get_meeting(meeting.id).status == STATUS_RECORDING
        assert session.state == STATE_RECORDING

        for _ in range(5):
            session.tick()
        await session.pause()
        assert session.state == STATE_PAUSED
        session.tick()
        assert session.status()["duration"] == 5

        await session.resume()
        session.tick()
        session.tick()
        meeting_id = await session.stop()

        assert meeting_id == meeting.id
        assert session.state == STATE_IDLE
        assert session.status()["meeting_id"] is None
        stored = store.get_meeting(meeting.id)
        assert stored.status == STATUS_PROCESSING
        assert stored.duration == 7
        assert stored.audio_uri == f"memory://{meeting.id}"
        assert await audio.retrieve(meeting.id) == SAMPLE_AUDIO
        assert device.calls == ["start", "pause", "resume", "stop", "close"]

    async def _test_auto_stop(self, ctx: dict):
        session, store, _, device = self._session(ctx, "auto_stop", max_duration=3)
        meeting = await session.start("Long meeting")
        for _ in range(5):
            session.tick()
        assert session.deferred.pending() == 1
        await session.deferred.drain()

        assert session.state == STATE_IDLE
        stored = store.get_meeting(meeting.id)
        assert stored.duration == 3
        assert stored.status == STATUS_PROCESSING
        assert device.calls.count("stop") == 1

    async def _test_invalid_transitions(self, ctx: dict):
        session, _, _, _ = self._session(ctx, "transitions")
        for action in (session.pause, session.resume, session.stop):
            try:
                await action()
            except SessionStateError:
                pass
            else:
                raise AssertionError(f"{action.__name__} must fail while idle")

        await session.start()
        try:
            await session.start()
        except SessionStateError:
            pass
        else:
            raise AssertionError("Second start must fail")
        try:
            await session.resume()
        except SessionStateError:
            pass
        else:
            raise AssertionError("Resume while recording must fail")
        session.tick()
        await session.stop()

    async def _test_start_failure(self, ctx: dict):
        device = FakeCaptureDevice(fail_start=True)
        session, store, _, _ = self._session(ctx, "start_failure", device=device)
        try:
            await session.start("Broken mic")
        except CaptureDeviceError:
            pass
        else:
            raise AssertionError("Expected CaptureDeviceError")
        assert session.state == STATE_IDLE
        assert device.calls == ["start", "close"]
        meetings = store.list_meetings()
        assert len(meetings) == 1 and meetings[0].status == STATUS_ERROR

    async def _test_stop_failure(self, ctx: dict):
        device = FakeCaptureDevice(fail_stop=True)
        session, store, audio, _ = self._session(ctx, "stop_failure", device=device)
        meeting = await session.start("Lost device")
        session.tick()
        assert await session.stop() == meeting.id
        assert session.state == STATE_IDLE
        stored = store.get_meeting(meeting.id)
        assert stored.status == STATUS_ERROR
        assert stored.audio_uri is None
        assert await audio.retrieve(meeting.id) is None
        assert device.calls[-1] == "close"

    async def _test_zero_duration(self, ctx: dict):
        session, store, _, _ = self._session(ctx, "zero")
        meeting = await session.start()
        assert meeting.title.startswith("Meeting ")
        await session.stop()
        stored = store.get_meeting(meeting.id)
        assert stored.status == STATUS_ERROR
        assert stored.duration == 0
        assert stored.audio_uri is not None

    async def _test_pause_resume_failure(self, ctx: dict):
        session, store, _, device = self._session(ctx, "pause_failure", device=FakeCaptureDevice(fail_pause=True))
        meeting = await session.start("Stubborn mic")
        session.tick()
        await session.pause()
        assert session.state == STATE_RECORDING
        session.tick()
        assert session.status()["duration"] == 2

        device.fail_pause = False
        device.fail_resume = True
        await session.pause()
        assert session.state == STATE_PAUSED
        await session.resume()
        assert session.state == STATE_PAUSED
        session.tick()
        assert session.status()["duration"] == 2

        device.fail_resume = False
        await session.resume()
        assert session.state == STATE_RECORDING
        session.tick()
        await session.stop()
        assert store.get_meeting(meeting.id).duration == 3
        assert device.calls == ["start", "pause", "pause", "resume", "resume", "stop", "close"]
