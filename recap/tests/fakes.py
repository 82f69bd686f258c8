"""In-process stand-ins for the capture device, the completion service and HTTP."""
from __future__ import annotations

import json
import os
from collections import deque
from typing import Callable, Optional, Union

import httpx

from recap.services.capture import CaptureDevice, CaptureDeviceError, RawAudioHandle
from recap.services.llm import CompletionProvider
from recap.services.meeting_models import Meeting
from recap.services.meeting_store import MeetingStore

# Long enough to pass the minimum size check.
SAMPLE_AUDIO = b"RIFF" + bytes(4096)


async def no_sleep(_seconds: float) -> None:
    return None


class SleepRecorder:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeCaptureDevice(CaptureDevice):
    def __init__(
        self,
        audio: bytes = SAMPLE_AUDIO,
        fail_start: bool = False,
        fail_stop: bool = False,
        fail_pause: bool = False,
        fail_resume: bool = False,
    ):
        self.audio = audio
        self.fail_start = fail_start
        self.fail_stop = fail_stop
        self.fail_pause = fail_pause
        self.fail_resume = fail_resume
        self.calls: list[str] = []

    async def start(self) -> None:
        self.calls.append("start")
        if self.fail_start:
            raise CaptureDeviceError("No input device")

    async def pause(self) -> None:
        self.calls.append("pause")
        if self.fail_pause:
            raise CaptureDeviceError("Pause not supported")

    async def resume(self) -> None:
        self.calls.append("resume")
        if self.fail_resume:
            raise CaptureDeviceError("Resume not supported")

    async def stop(self) -> RawAudioHandle:
        self.calls.append("stop")
        if self.fail_stop:
            raise CaptureDeviceError("Device lost")
        return RawAudioHandle(data=self.audio)

    async def close(self) -> None:
        self.calls.append("close")


Reply = Union[str, dict, BaseException]


class ScriptedProvider(CompletionProvider):
    """Replies from a queue; dicts are sent as JSON, exceptions are raised.

    ``route`` picks a reply from the system prompt instead of the queue when
    set, which keeps order-independent tests readable.
    """

    def __init__(self, replies: Optional[list[Reply]] = None, route: Optional[Callable[[str, str], Reply]] = None):
        self.replies = deque(replies or [])
        self.route = route
        self.calls: list[tuple[str, str]] = []

    async def complete(self, system: str, user: str, *, json_mode: bool = True) -> str:
        self.calls.append((system, user))
        if self.route is not None:
            reply = self.route(system, user)
        elif self.replies:
            reply = self.replies.popleft()
        else:
            raise AssertionError("ScriptedProvider ran out of replies")
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, dict):
            return json.dumps(reply)
        return reply


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def json_response(status_code: int, payload) -> httpx.Response:
    return httpx.Response(status_code, json=payload)


def make_store(workspace: str, name: str = "meetings.json") -> MeetingStore:
    return MeetingStore(os.path.join(workspace, name))


def stored_meeting(store: MeetingStore, **fields) -> Meeting:
    fields.setdefault("title", "Weekly sync")
    fields.setdefault("attendees", ["Alice", "Bob"])
    meeting = Meeting(**fields)
    store.upsert(meeting)
    return meeting


def map_reply(summary: str, actions: Optional[list[dict]] = None, decisions: Optional[list[dict]] = None) -> dict:
    return {
        "chunk_summary": summary,
        "action_items": actions or [],
        "decisions": decisions or [],
        "open_questions": [],
    }


def reduce_reply(summary: str, actions: Optional[list[dict]] = None) -> dict:
    return {
        "section_summary": summary,
        "action_items": actions or [],
        "decisions": [],
        "open_questions": [],
    }


def refine_reply(executive: str = "The team agreed on the launch plan.", **extra) -> dict:
    payload = {
        "summaries": {
            "executive_120w": executive,
            "detailed_400w": f"{executive} Details followed.",
            "bullet_12": ["Launch plan agreed"],
        },
    }
    payload.update(extra)
    return payload


def email_reply(subject: str = "Notes & next steps", body: str = "Hi all,\n\nThanks for joining.") -> dict:
    return {
        "subject": subject,
        "body_markdown": body,
        "recipients_suggested": ["alice@example.com"],
        "cc_suggested": [],
    }


def stage_router(
    *,
    map_reply_for: Callable[[str], Reply] = lambda user: map_reply("Discussed the launch."),
    reduce: Reply = None,
    refine: Reply = None,
    email: Reply = None,
) -> Callable[[str, str], Reply]:
    """Route provider calls by prompt type."""

    def route(system: str, user: str) -> Reply:
        if system.startswith("Extract facts"):
            return map_reply_for(user)
        if system.startswith("Merge and deduplicate"):
            return reduce if reduce is not None else reduce_reply("Merged section.")
        if system.startswith("Produce final meeting artifacts"):
            return refine if refine is not None else refine_reply()
        return email if email is not None else email_reply()

    return route
