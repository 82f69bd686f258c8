"""Meeting and audio storage test suite."""
from __future__ import annotations

import json
import os

from recap.services.audio_store import FileAudioStore, MemoryAudioStore
from recap.services.meeting_models import (
    STATUS_COMPLETED,
    STATUS_ERROR,
    STATUS_PROCESSING,
    ActionItem,
    Meeting,
    MeetingArtifacts,
    Summaries,
)
from recap.tests.base import TestSuite
from recap.tests.fakes import make_store, stored_meeting


class StorageSuite(TestSuite):
    suite_id = "storage"
    name = "Meeting and Audio Storage"
    description = "Whole-list meeting persistence, record invariants and the audio stores"

    def _register_tests(self):
        self.add_test("ST-001", "Empty store loads as an empty list", self._test_empty)
        self.add_test("ST-002", "Meetings round-trip through the store", self._test_round_trip)
        self.add_test("ST-003", "Update and remove by id", self._test_update_remove)
        self.add_test("ST-004", "Status transitions enforce audio and artifacts", self._test_transitions)
        self.add_test("ST-005", "Legacy records are normalised on load", self._test_legacy_record)
        self.add_test("ST-006", "File audio store keeps bytes intact", self._test_file_audio)
        self.add_test("ST-007", "Memory audio store", self._test_memory_audio)
        self.add_test("ST-008", "Summaries are bounded", self._test_bounded)

    def _test_empty(self, ctx: dict):
        store = make_store(ctx["workspace"], "empty.json")
        assert store.load() == []
        assert store.list_meetings() == []
        assert store.get_meeting("missing") is None

    def _test_round_trip(self, ctx: dict):
        store = make_store(ctx["workspace"], "round_trip.json")
        artifacts = MeetingArtifacts(
            action_items=[ActionItem(title="Send deck", assignee="Alice", id="a1")],
            summaries=Summaries(executive="Short.", detailed="Longer.", bullets=["One"]),
        )
        meeting = stored_meeting(store, artifacts=artifacts, transcript="Hello there.")
        loaded = store.get_meeting(meeting.id)
        assert loaded is not None
        assert loaded.to_dict() == meeting.to_dict()

        with open(store.path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        assert list(raw) == ["meetings"]
        assert raw["meetings"][0]["artifacts"]["summaries"]["bullet_12"] == ["One"]

    def _test_update_remove(self, ctx: dict):
        store = make_store(ctx["workspace"], "update.json")
        first = stored_meeting(store, title="First", date="2024-01-01T10:00:00+00:00")
        second = stored_meeting(store, title="Second", date="2024-02-01T10:00:00+00:00")
        assert [m.id for m in store.list_meetings()] == [second.id, first.id]

        updated = store.update(first.id, lambda m: setattr(m, "title", "Renamed"))
        assert updated.title == "Renamed"
        assert store.get_meeting(first.id).title == "Renamed"
        assert store.update("missing", lambda m: None) is None

        assert store.remove(first.id)
        assert not store.remove(first.id)
        assert [m.id for m in store.list_meetings()] == [second.id]

    def _test_transitions(self, ctx: dict):
        meeting = Meeting(title="No audio")
        try:
            meeting.mark_processing()
        except ValueError:
            pass
        else:
            raise AssertionError("processing without audio must be rejected")

        meeting.audio_uri = "memory://x"
        meeting.duration = 30
        meeting.mark_processing()
        assert meeting.status == STATUS_PROCESSING

        try:
            meeting.mark_completed()
        except ValueError:
            pass
        else:
            raise AssertionError("completed without artifacts must be rejected")
        meeting.mark_completed(MeetingArtifacts())
        assert meeting.status == STATUS_COMPLETED

        meeting.mark_error()
        assert meeting.status == STATUS_ERROR

    def _test_legacy_record(self, ctx: dict):
        path = os.path.join(ctx["workspace"], "legacy.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump(
                {
                    "meetings": [
                        {
                            "id": "m1",
                            "title": "Legacy",
                            "attendees": [{"name": "Alice"}, "Bob", {"email": "x@y"}],
                            "status": "weird",
                            "artifacts": {
                                "action_items": [{"title": "Do it", "priority": "high", "confidence": 7}],
                            },
                        },
                        {"title": "No id, skipped"},
                    ]
                },
                f,
            )
        store = make_store(ctx["workspace"], "legacy.json")
        meetings = store.list_meetings()
        assert len(meetings) == 1
        meeting = meetings[0]
        assert meeting.attendees == ["Alice", "Bob"]
        assert meeting.status == STATUS_ERROR
        item = meeting.artifacts.action_items[0]
        assert item.priority == "High"
        assert item.confidence == 1.0
        assert item.id == "action_0"

    async def _test_file_audio(self, ctx: dict):
        store = FileAudioStore(os.path.join(ctx["workspace"], "recordings"))
        data = bytes(range(256)) * 8
        uri = await store.store("meeting/1", data)
        assert uri.startswith("file://")
        assert os.path.basename(store.path_for("meeting/1")) == "meeting_1.wav"
        assert await store.retrieve("meeting/1") == data
        await store.delete("meeting/1")
        assert await store.retrieve("meeting/1") is None
        await store.delete("meeting/1")

    async def _test_memory_audio(self, ctx: dict):
        store = MemoryAudioStore()
        assert await store.store("m", b"abc") == "memory://m"
        assert await store.retrieve("m") == b"abc"
        await store.delete("m")
        await store.delete("m")
        assert await store.retrieve("m") is None

    def _test_bounded(self, ctx: dict):
        summaries = Summaries(
            executive="word " * 200,
            detailed="word " * 500,
            bullets=[f"b{i}" for i in range(20)] + [""],
        ).bounded()
        assert len(summaries.executive.split()) == 120
        assert len(summaries.detailed.split()) == 400
        assert summaries.bullets == [f"b{i}" for i in range(12)]
