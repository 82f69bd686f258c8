from __future__ import annotations

import json
import logging
import os
import threading
from typing import Callable, Optional

from recap.services.meeting_models import Meeting

MEETINGS_KEY = "meetings"


class MeetingStore:
    """Whole-list persistence for meetings.

    The store holds a single list under the ``"meetings"`` key. ``load``
    returns ``[]`` when nothing has been saved yet and ``save`` always
    overwrites the whole list; the helpers below are read-modify-write
    cycles over that contract, serialized by one lock.
    """

    def __init__(self, path: str) -> None:
        self._path = path
        self._lock = threading.RLock()
        self._logger = logging.getLogger("recap.meetings")
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    @property
    def path(self) -> str:
        return self._path

    def load(self) -> list[dict]:
        with self._lock:
            if not os.path.exists(self._path):
                return []
            try:
                with open(self._path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as exc:
                self._logger.warning("Failed to read meetings file: %s error=%s", self._path, exc)
                return []
            meetings = data.get(MEETINGS_KEY) if isinstance(data, dict) else None
            if not isinstance(meetings, list):
                return []
            return [m for m in meetings if isinstance(m, dict) and m.get("id")]

    def save(self, meetings: list[dict]) -> None:
        with self._lock:
            temp_path = f"{self._path}.tmp"
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump({MEETINGS_KEY: meetings}, f, indent=2)
            os.replace(temp_path, self._path)
            self._logger.debug("Meetings saved: count=%d", len(meetings))

    def list_meetings(self) -> list[Meeting]:
        meetings = [Meeting.from_dict(m) for m in self.load()]
        return sorted(meetings, key=lambda m: m.date, reverse=True)

    def get_meeting(self, meeting_id: str) -> Optional[Meeting]:
        for data in self.load():
            if data.get("id") == meeting_id:
                return Meeting.from_dict(data)
        return None

    def upsert(self, meeting: Meeting) -> Meeting:
        with self._lock:
            meetings = self.load()
            payload = meeting.to_dict()
            for index, data in enumerate(meetings):
                if data.get("id") == meeting.id:
                    meetings[index] = payload
                    break
            else:
                meetings.append(payload)
            self.save(meetings)
            return meeting

    def update(self, meeting_id: str, mutate: Callable[[Meeting], None]) -> Optional[Meeting]:
        """Apply ``mutate`` to the latest stored copy and save it back."""
        with self._lock:
            meeting = self.get_meeting(meeting_id)
            if meeting is None:
                self._logger.warning("Update for unknown meeting: %s", meeting_id)
                return None
            mutate(meeting)
            return self.upsert(meeting)

    def remove(self, meeting_id: str) -> bool:
        with self._lock:
            meetings = self.load()
            remaining = [m for m in meetings if m.get("id") != meeting_id]
            if len(remaining) == len(meetings):
                return False
            self.save(remaining)
            self._logger.info("Meeting removed: %s", meeting_id)
            return True
