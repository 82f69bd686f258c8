"""Audio window planning test suite."""
from __future__ import annotations

from recap.services.meeting_models import plan_audio_chunks
from recap.tests.base import TestSuite


class AudioChunkPlanSuite(TestSuite):
    suite_id = "audio-chunks"
    name = "Audio Window Planning"
    description = "Overlapping time windows over a recording"

    def _register_tests(self):
        self.add_test("AC-001", "Windows overlap by five seconds", self._test_overlap)
        self.add_test("AC-002", "Zero duration has no windows", self._test_empty)
        self.add_test("AC-003", "Short recording is one window", self._test_short)

    def _test_overlap(self, ctx: dict):
        windows = plan_audio_chunks(150)
        spans = [(w.start_time, w.end_time) for w in windows]
        assert spans == [(0.0, 60.0), (55.0, 120.0), (115.0, 150.0)], spans
        assert [w.id for w in windows] == ["chunk_0", "chunk_1", "chunk_2"]
        assert not any(w.processed for w in windows)

    def _test_empty(self, ctx: dict):
        assert plan_audio_chunks(0) == []
        assert plan_audio_chunks(-3) == []

    def _test_short(self, ctx: dict):
        windows = plan_audio_chunks(12, chunk_duration=60, overlap=5)
        assert len(windows) == 1
        assert (windows[0].start_time, windows[0].end_time) == (0.0, 12.0)
