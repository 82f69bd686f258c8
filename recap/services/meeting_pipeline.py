from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

from recap.services.audio_store import AudioStore
from recap.services.chunked_upload import ChunkedUploadManager
from recap.services.chunker import split_transcript
from recap.services.email_draft import EmailDraftGenerator
from recap.services.errors import (
    AudioMissing,
    MeetingNotFound,
    ProcessingFailed,
    ProcessingInProgress,
    classify_error,
)
from recap.services.map_reduce import MapReduceAnalyzer
from recap.services.meeting_models import EmailDraft, Meeting, MeetingArtifacts
from recap.services.meeting_store import MeetingStore
from recap.services.pipeline_config import PipelineConfig
from recap.services.progress import (
    STAGE_CHUNKING,
    STAGE_COMPLETED,
    STAGE_GENERATING_EMAIL,
    STAGE_TRANSCRIBING,
    ProcessingProgress,
    ProgressCallback,
    ProgressReporter,
)
from recap.services.recording_session import RecordingSession
from recap.services.transcription_client import TranscriptionClient


def meeting_context(meeting: Meeting) -> str:
    return (
        f"Meeting: {meeting.title}\n"
        f"Date: {meeting.date}\n"
        f"Attendees: {', '.join(meeting.attendees)}"
    )


@dataclass
class ProcessingResult:
    meeting_id: str
    transcript: Optional[str]
    artifacts: MeetingArtifacts
    email_draft: Optional[EmailDraft]

    def to_dict(self) -> dict:
        return {
            "meeting_id": self.meeting_id,
            "transcript": self.transcript,
            "artifacts": self.artifacts.to_dict(),
            "email_draft": self.email_draft.to_dict() if self.email_draft else None,
        }


class MeetingPipeline:
    """Collaborator-facing entry points: recording controls and meeting processing.

    ``process_meeting`` runs transcription, chunking, map/reduce/refine and
    the email draft in sequence. At most one run per meeting id is in flight
    in this process; any error that escapes marks the meeting ``error`` and is
    re-raised as a single :class:`ProcessingFailed`.
    """

    def __init__(
        self,
        config: PipelineConfig,
        meeting_store: MeetingStore,
        audio_store: AudioStore,
        transcription: TranscriptionClient,
        analyzer: MapReduceAnalyzer,
        email_generator: EmailDraftGenerator,
        uploader: Optional[ChunkedUploadManager] = None,
        recording: Optional[RecordingSession] = None,
    ) -> None:
        self._config = config
        self._meeting_store = meeting_store
        self._audio_store = audio_store
        self._transcription = transcription
        self._analyzer = analyzer
        self._email_generator = email_generator
        self._uploader = uploader
        self._recording = recording
        self._in_flight: set[str] = set()
        self._reporters: dict[str, ProgressReporter] = {}
        self._logger = logging.getLogger("recap.pipeline")

    @property
    def recording(self) -> RecordingSession:
        if self._recording is None:
            raise RuntimeError("No recording session configured")
        return self._recording

    # ── Recording ──────────────────────────────────────────────────────

    async def start_recording(self, title: Optional[str] = None, attendees: Optional[list[str]] = None) -> Meeting:
        return await self.recording.start(title, attendees)

    async def pause_recording(self) -> None:
        await self.recording.pause()

    async def resume_recording(self) -> None:
        await self.recording.resume()

    async def stop_recording(self) -> Optional[str]:
        return await self.recording.stop()

    # ── Processing ─────────────────────────────────────────────────────

    def is_processing(self, meeting_id: str) -> bool:
        return meeting_id in self._in_flight

    def get_progress(self, meeting_id: str) -> Optional[ProcessingProgress]:
        reporter = self._reporters.get(meeting_id)
        return reporter.latest if reporter else None

    def _require_meeting(self, meeting_id: str) -> Meeting:
        meeting = self._meeting_store.get_meeting(meeting_id)
        if meeting is None:
            raise MeetingNotFound(f"Meeting not found: {meeting_id}")
        return meeting

    async def process_meeting(
        self,
        meeting_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ProcessingResult:
        if meeting_id in self._in_flight:
            raise ProcessingInProgress(f"Meeting {meeting_id} is already being processed")
        meeting = self._require_meeting(meeting_id)

        self._in_flight.add(meeting_id)
        reporter = ProgressReporter(on_progress)
        self._reporters[meeting_id] = reporter
        started = time.perf_counter()
        try:
            result = await self._process(meeting, reporter)
            self._logger.info(
                "Meeting processed: id=%s in %.0fms",
                meeting_id,
                (time.perf_counter() - started) * 1000,
            )
            return result
        except Exception as exc:
            message = classify_error(exc)
            self._logger.exception("Meeting processing failed: id=%s reason=%s", meeting_id, message)
            self._meeting_store.update(meeting_id, lambda m: m.mark_error())
            raise ProcessingFailed(str(exc), user_message=message) from exc
        finally:
            self._in_flight.discard(meeting_id)

    async def _load_audio(self, meeting: Meeting) -> Optional[bytes]:
        if not meeting.audio_uri:
            return None
        return await self._audio_store.retrieve(meeting.id)

    async def _process(self, meeting: Meeting, reporter: ProgressReporter) -> ProcessingResult:
        audio = await self._load_audio(meeting)
        if audio is None:
            if meeting.artifacts is not None:
                return await self._regenerate_email(meeting, reporter)
            raise AudioMissing(f"No audio for meeting {meeting.id}")

        meeting = self._meeting_store.update(meeting.id, lambda m: m.mark_processing()) or meeting
        transcript = await self._transcribe(meeting, audio, reporter)
        self._meeting_store.update(meeting.id, lambda m: setattr(m, "transcript", transcript))

        reporter.emit(STAGE_CHUNKING, 0, "Preparing transcript")
        chunks = split_transcript(
            transcript,
            max_length=self._config.max_transcript_length,
            chunk_size_limit=self._config.chunk_size_limit,
            min_chunk_length=self._config.min_chunk_length,
        ) or [transcript]
        reporter.emit(STAGE_CHUNKING, 100, f"Transcript split into {len(chunks)} section(s)", total_chunks=len(chunks))

        artifacts = await self._analyzer.analyze(chunks, meeting_context(meeting), reporter)
        artifacts.email_draft = await self._email_generator.generate(meeting, artifacts, reporter)

        def complete(m: Meeting) -> None:
            m.transcript = transcript
            m.mark_completed(artifacts)

        self._meeting_store.update(meeting.id, complete)
        reporter.emit(STAGE_COMPLETED, 100, "Processing complete")
        return ProcessingResult(meeting.id, transcript, artifacts, artifacts.email_draft)

    async def _transcribe(self, meeting: Meeting, audio: bytes, reporter: ProgressReporter) -> str:
        file_name = f"{meeting.id}.wav"
        if self._uploader is not None and len(audio) > self._config.chunked_upload_threshold:
            reporter.emit(STAGE_TRANSCRIBING, 0, "Uploading audio...")
            self._logger.info("Large recording, using chunked upload: id=%s bytes=%d", meeting.id, len(audio))
            self._transcription.validate_audio(audio)
            file_key = await self._uploader.upload(audio, file_name, "audio/wav")
            self._meeting_store.update(meeting.id, lambda m: setattr(m, "upload_key", file_key))
            reporter.emit(STAGE_TRANSCRIBING, 50, "Transcribing audio...")
        else:
            reporter.emit(STAGE_TRANSCRIBING, 0, "Transcribing audio...")
        # The speech service only accepts the audio itself.
        result = await self._transcription.transcribe(
            audio,
            file_name=file_name,
            language=self._config.language,
        )
        reporter.emit(STAGE_TRANSCRIBING, 100, "Transcription complete")
        return result.text

    async def _regenerate_email(self, meeting: Meeting, reporter: ProgressReporter) -> ProcessingResult:
        self._logger.info("Audio unavailable, regenerating email only: id=%s", meeting.id)
        artifacts = meeting.artifacts
        reporter.emit(STAGE_GENERATING_EMAIL, 0, "Regenerating email draft")
        artifacts.email_draft = await self._email_generator.generate(meeting, artifacts, reporter)
        self._meeting_store.update(meeting.id, lambda m: m.mark_completed(artifacts))
        reporter.emit(STAGE_COMPLETED, 100, "Processing complete")
        return ProcessingResult(meeting.id, meeting.transcript, artifacts, artifacts.email_draft)

    async def retry_processing(
        self,
        meeting_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ProcessingResult:
        meeting = self._require_meeting(meeting_id)
        if meeting_id in self._in_flight:
            raise ProcessingInProgress(f"Meeting {meeting_id} is already being processed")
        if meeting.audio_uri and meeting.duration > 0:
            self._meeting_store.update(meeting_id, lambda m: m.mark_processing())
        self._logger.info("Retrying processing: id=%s", meeting_id)
        return await self.process_meeting(meeting_id, on_progress)

    # ── Lifecycle ──────────────────────────────────────────────────────

    async def delete_meeting(self, meeting_id: str) -> None:
        if meeting_id in self._in_flight:
            raise ProcessingInProgress(f"Meeting {meeting_id} is being processed")
        self._require_meeting(meeting_id)
        try:
            await self._audio_store.delete(meeting_id)
        except Exception as exc:
            self._logger.warning("Audio delete failed, removing meeting anyway: id=%s error=%s", meeting_id, exc)
        self._meeting_store.remove(meeting_id)
        self._reporters.pop(meeting_id, None)
