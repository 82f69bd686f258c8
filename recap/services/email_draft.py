from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Optional

from recap.services.errors import ParseError
from recap.services.llm import CompletionProvider, parse_or_default
from recap.services.llm.base import require_object
from recap.services.meeting_models import EmailDraft, Meeting, MeetingArtifacts
from recap.services.progress import STAGE_GENERATING_EMAIL, ProgressReporter
from recap.services.retry import RetryPolicy, retry_transient

SYSTEM_PROMPT = """You are a professional executive assistant. Create an email note for attendees.
Output format:
{
  "subject": "Notes & next steps — <Meeting Title> — <YYYY-MM-DD>",
  "body_markdown": "<markdown body>",
  "recipients_suggested": ["a@x.com","b@y.com"],
  "cc_suggested": []
}
Rules:
- Be concise, neutral, and factual.
- Use a table for action items: Assignee | Item | Due | Priority | Status.
- Include decisions and open questions sections.
- Never send automatically; the user must approve.
- Ensure the response is valid JSON."""

FAILURE_NOTICE = "*Email generation failed. Please review the meeting artifacts manually.*"


def meeting_day(date: str) -> str:
    """``YYYY-MM-DD`` for an ISO timestamp, or the raw prefix if unparseable."""
    try:
        return datetime.fromisoformat(date.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return date[:10]


def default_subject(title: str, date: str) -> str:
    return f"Notes & next steps — {title} — {meeting_day(date)}"


def fallback_draft(title: str, date: str, attendees: list[str]) -> EmailDraft:
    body = (
        f"# Meeting Notes: {title}\n\n"
        f"**Date:** {date}\n"
        f"**Attendees:** {', '.join(attendees)}\n\n"
        f"{FAILURE_NOTICE}"
    )
    return EmailDraft(subject=default_subject(title, date), body_markdown=body)


class EmailDraftGenerator:
    """Drafts the follow-up email for a processed meeting. Never raises."""

    def __init__(self, provider: CompletionProvider, retry_policy: Optional[RetryPolicy] = None) -> None:
        self._provider = provider
        self._retry = retry_policy or RetryPolicy(retries=2, delay=3.0, should_retry=retry_transient)
        self._logger = logging.getLogger("recap.email")

    def _user_prompt(self, meeting: Meeting, artifacts: MeetingArtifacts) -> str:
        return (
            f"Meeting: {meeting.title}\n"
            f"Date: {meeting.date}\n"
            f"Attendees: {', '.join(meeting.attendees)}\n\n"
            f"Action Items: {json.dumps([a.to_dict() for a in artifacts.action_items], indent=2)}\n"
            f"Decisions: {json.dumps([d.to_dict() for d in artifacts.decisions], indent=2)}\n"
            f"Open Questions: {json.dumps([q.to_dict() for q in artifacts.open_questions], indent=2)}\n"
            f"Summary: {artifacts.summaries.executive}"
        )

    async def generate(
        self,
        meeting: Meeting,
        artifacts: MeetingArtifacts,
        reporter: Optional[ProgressReporter] = None,
    ) -> EmailDraft:
        if reporter is not None:
            reporter.emit(STAGE_GENERATING_EMAIL, 0, "Drafting email...")

        def build(data: Any) -> EmailDraft:
            obj = require_object(data)
            body = obj.get("body_markdown")
            if not isinstance(body, str) or not body.strip():
                raise ParseError("Missing 'body_markdown'")
            draft = EmailDraft.from_dict(obj)
            if not draft.subject:
                draft.subject = default_subject(meeting.title, meeting.date)
            return draft

        try:
            user = self._user_prompt(meeting, artifacts)
            parsed = await parse_or_default(
                lambda: self._retry.run(
                    lambda: self._provider.complete(SYSTEM_PROMPT, user), label="email draft"
                ),
                build,
                lambda exc: fallback_draft(meeting.title, meeting.date, meeting.attendees),
                logger=self._logger,
                label="Email draft",
            )
            draft, used_fallback = parsed.value, parsed.fallback_used
        except Exception as exc:
            self._logger.exception("Email draft generation crashed: %s", exc)
            draft, used_fallback = fallback_draft(meeting.title, meeting.date, meeting.attendees), True

        if reporter is not None:
            message = "Email draft ready (fallback)" if used_fallback else "Email draft ready"
            try:
                reporter.emit(STAGE_GENERATING_EMAIL, 100, message)
            except ValueError as exc:
                self._logger.warning("Progress update rejected: %s", exc)
        self._logger.info("Email draft generated: meeting=%s fallback=%s", meeting.id, used_fallback)
        return draft
