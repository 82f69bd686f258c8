from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

STATUS_RECORDING = "recording"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_ERROR = "error"
MEETING_STATUSES = (STATUS_RECORDING, STATUS_PROCESSING, STATUS_COMPLETED, STATUS_ERROR)

PRIORITIES = ("High", "Medium", "Low")
ACTION_STATUSES = ("Not Started", "In Progress", "Blocked", "Done")

EXECUTIVE_MAX_WORDS = 120
DETAILED_MAX_WORDS = 400
MAX_BULLETS = 12

DEFAULT_CONFIDENCE = 0.8


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


def _optional_text(value: Any) -> Optional[str]:
    text = _text(value)
    return text or None


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


def _confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_CONFIDENCE
    if math.isnan(value):
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, float(value)))


def truncate_words(text: str, max_words: int) -> str:
    words = text.split()
    if len(words) <= max_words:
        return " ".join(words)
    return " ".join(words[:max_words])


@dataclass
class ActionItem:
    title: str
    assignee: str = "Unassigned"
    priority: str = "Medium"
    status: str = "Not Started"
    due_date: Optional[str] = None
    assignee_email: Optional[str] = None
    dependencies: list[str] = field(default_factory=list)
    source_quote: str = ""
    confidence: float = DEFAULT_CONFIDENCE
    tags: list[str] = field(default_factory=list)
    id: str = ""

    @classmethod
    def from_dict(cls, data: dict, default_id: str = "") -> "ActionItem":
        priority = _text(data.get("priority"), "Medium").capitalize()
        status = _text(data.get("status"), "Not Started")
        return cls(
            id=_text(data.get("id"), default_id),
            title=_text(data.get("title"), "Untitled Action Item"),
            assignee=_text(data.get("assignee"), "Unassigned"),
            priority=priority if priority in PRIORITIES else "Medium",
            status=status if status in ACTION_STATUSES else "Not Started",
            due_date=_optional_text(data.get("due_date")),
            assignee_email=_optional_text(data.get("assignee_email")),
            dependencies=_str_list(data.get("dependencies")),
            source_quote=_text(data.get("source_quote")),
            confidence=_confidence(data.get("confidence")),
            tags=_str_list(data.get("tags")),
        )

    def dedupe_key(self) -> str:
        return f"{normalize_key(self.title)}|{normalize_key(self.assignee)}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "assignee": self.assignee,
            "assignee_email": self.assignee_email,
            "due_date": self.due_date,
            "priority": self.priority,
            "dependencies": list(self.dependencies),
            "status": self.status,
            "source_quote": self.source_quote,
            "confidence": self.confidence,
            "tags": list(self.tags),
        }


@dataclass
class Decision:
    statement: str
    rationale: Optional[str] = None
    source_quote: str = ""
    confidence: float = DEFAULT_CONFIDENCE
    tags: list[str] = field(default_factory=list)
    id: str = ""

    @classmethod
    def from_dict(cls, data: dict, default_id: str = "") -> "Decision":
        return cls(
            id=_text(data.get("id"), default_id),
            statement=_text(data.get("statement"), "Decision not specified"),
            rationale=_optional_text(data.get("rationale")),
            source_quote=_text(data.get("source_quote")),
            confidence=_confidence(data.get("confidence")),
            tags=_str_list(data.get("tags")),
        )

    def dedupe_key(self) -> str:
        return normalize_key(self.statement)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "statement": self.statement,
            "rationale": self.rationale,
            "source_quote": self.source_quote,
            "confidence": self.confidence,
            "tags": list(self.tags),
        }


@dataclass
class OpenQuestion:
    question: str
    owner: Optional[str] = None
    needed_by: Optional[str] = None
    source_quote: str = ""
    confidence: float = DEFAULT_CONFIDENCE
    id: str = ""

    @classmethod
    def from_dict(cls, data: dict, default_id: str = "") -> "OpenQuestion":
        return cls(
            id=_text(data.get("id"), default_id),
            question=_text(data.get("question"), "Question not specified"),
            owner=_optional_text(data.get("owner")),
            needed_by=_optional_text(data.get("needed_by")),
            source_quote=_text(data.get("source_quote")),
            confidence=_confidence(data.get("confidence")),
        )

    def dedupe_key(self) -> str:
        return normalize_key(self.question)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "question": self.question,
            "owner": self.owner,
            "needed_by": self.needed_by,
            "source_quote": self.source_quote,
            "confidence": self.confidence,
        }


def normalize_key(text: Optional[str]) -> str:
    cleaned = "".join(ch if ch.isalnum() else " " for ch in (text or "").lower())
    return " ".join(cleaned.split())


@dataclass
class Summaries:
    executive: str = ""
    detailed: str = ""
    bullets: list[str] = field(default_factory=list)

    def bounded(self) -> "Summaries":
        return Summaries(
            executive=truncate_words(self.executive, EXECUTIVE_MAX_WORDS),
            detailed=truncate_words(self.detailed, DETAILED_MAX_WORDS),
            bullets=[b for b in self.bullets if b][:MAX_BULLETS],
        )

    @classmethod
    def from_dict(cls, data: dict) -> "Summaries":
        return cls(
            executive=_text(data.get("executive_120w")),
            detailed=_text(data.get("detailed_400w")),
            bullets=_str_list(data.get("bullet_12")),
        )

    def to_dict(self) -> dict:
        return {
            "executive_120w": self.executive,
            "detailed_400w": self.detailed,
            "bullet_12": list(self.bullets),
        }


@dataclass
class EmailDraft:
    subject: str
    body_markdown: str
    recipients_suggested: list[str] = field(default_factory=list)
    cc_suggested: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "EmailDraft":
        return cls(
            subject=_text(data.get("subject")),
            body_markdown=_text(data.get("body_markdown")),
            recipients_suggested=_str_list(data.get("recipients_suggested")),
            cc_suggested=_str_list(data.get("cc_suggested")),
        )

    def to_dict(self) -> dict:
        return {
            "subject": self.subject,
            "body_markdown": self.body_markdown,
            "recipients_suggested": list(self.recipients_suggested),
            "cc_suggested": list(self.cc_suggested),
        }


@dataclass
class MeetingArtifacts:
    action_items: list[ActionItem] = field(default_factory=list)
    decisions: list[Decision] = field(default_factory=list)
    open_questions: list[OpenQuestion] = field(default_factory=list)
    summaries: Summaries = field(default_factory=Summaries)
    email_draft: Optional[EmailDraft] = None

    @classmethod
    def from_dict(cls, data: dict) -> "MeetingArtifacts":
        email = data.get("email_draft")
        return cls(
            action_items=[
                ActionItem.from_dict(item, f"action_{i}")
                for i, item in enumerate(data.get("action_items") or [])
                if isinstance(item, dict)
            ],
            decisions=[
                Decision.from_dict(item, f"decision_{i}")
                for i, item in enumerate(data.get("decisions") or [])
                if isinstance(item, dict)
            ],
            open_questions=[
                OpenQuestion.from_dict(item, f"question_{i}")
                for i, item in enumerate(data.get("open_questions") or [])
                if isinstance(item, dict)
            ],
            summaries=Summaries.from_dict(data.get("summaries") or {}),
            email_draft=EmailDraft.from_dict(email) if isinstance(email, dict) else None,
        )

    def to_dict(self) -> dict:
        payload = {
            "action_items": [a.to_dict() for a in self.action_items],
            "decisions": [d.to_dict() for d in self.decisions],
            "open_questions": [q.to_dict() for q in self.open_questions],
            "summaries": self.summaries.to_dict(),
        }
        if self.email_draft is not None:
            payload["email_draft"] = self.email_draft.to_dict()
        return payload


@dataclass
class ChunkSummary:
    id: str
    summary: str
    action_items: list[ActionItem] = field(default_factory=list)
    decisions: list[Decision] = field(default_factory=list)
    questions: list[OpenQuestion] = field(default_factory=list)
    fallback: bool = False


@dataclass
class SectionSummary:
    id: str
    summary: str
    chunk_ids: list[str]
    action_items: list[ActionItem] = field(default_factory=list)
    decisions: list[Decision] = field(default_factory=list)
    questions: list[OpenQuestion] = field(default_factory=list)
    fallback: bool = False


@dataclass
class AudioChunk:
    """Time window of a recording, used by the legacy time-windowed path."""

    id: str
    start_time: float
    end_time: float
    data: Optional[bytes] = None
    uri: Optional[str] = None
    transcript: Optional[str] = None
    processed: bool = False


def plan_audio_chunks(
    duration: float, chunk_duration: float = 60.0, overlap: float = 5.0
) -> list[AudioChunk]:
    """Split ``duration`` seconds into windows; each window after the first
    starts ``overlap`` seconds early so words at a boundary are not lost."""
    if duration <= 0:
        return []
    total = math.ceil(duration / chunk_duration)
    chunks = []
    for i in range(total):
        start = max(0.0, i * chunk_duration - (overlap if i > 0 else 0.0))
        end = min(float(duration), (i + 1) * chunk_duration)
        chunks.append(AudioChunk(id=f"chunk_{i}", start_time=start, end_time=end))
    return chunks


@dataclass
class Meeting:
    title: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    date: str = field(default_factory=utc_now_iso)
    duration: int = 0
    attendees: list[str] = field(default_factory=list)
    status: str = STATUS_RECORDING
    audio_uri: Optional[str] = None
    artifacts: Optional[MeetingArtifacts] = None
    transcript: Optional[str] = None
    upload_key: Optional[str] = None

    def mark_processing(self) -> None:
        if not self.audio_uri or self.duration <= 0:
            raise ValueError(
                f"Meeting {self.id} cannot be processed without audio and duration"
            )
        self.status = STATUS_PROCESSING

    def mark_completed(self, artifacts: Optional[MeetingArtifacts] = None) -> None:
        if artifacts is not None:
            self.artifacts = artifacts
        if self.artifacts is None:
            raise ValueError(f"Meeting {self.id} cannot complete without artifacts")
        self.status = STATUS_COMPLETED

    def mark_error(self) -> None:
        self.status = STATUS_ERROR

    @classmethod
    def from_dict(cls, data: dict) -> "Meeting":
        attendees = []
        for entry in data.get("attendees") or []:
            # Older records stored attendees as {"name": ...}
            name = entry.get("name") if isinstance(entry, dict) else entry
            if name:
                attendees.append(str(name))
        artifacts = data.get("artifacts")
        status = data.get("status") or STATUS_RECORDING
        return cls(
            id=str(data["id"]),
            title=_text(data.get("title"), "Untitled Meeting"),
            date=_text(data.get("date"), utc_now_iso()),
            duration=int(data.get("duration") or 0),
            attendees=attendees,
            status=status if status in MEETING_STATUSES else STATUS_ERROR,
            audio_uri=data.get("audio_uri") or None,
            artifacts=MeetingArtifacts.from_dict(artifacts) if isinstance(artifacts, dict) else None,
            transcript=data.get("transcript") if isinstance(data.get("transcript"), str) else None,
            upload_key=data.get("upload_key") or None,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "date": self.date,
            "duration": self.duration,
            "attendees": list(self.attendees),
            "status": self.status,
            "audio_uri": self.audio_uri,
            "artifacts": self.artifacts.to_dict() if self.artifacts else None,
            "transcript": self.transcript,
            "upload_key": self.upload_key,
        }
