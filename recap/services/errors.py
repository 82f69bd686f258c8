"""Error taxonomy for the capture, upload and analysis pipeline.

Every error raised by recap services derives from :class:`RecapError` and
carries a ``user_message`` suitable for showing next to a meeting.  Errors in
the analysis sub-steps (:class:`ParseError`) are always recovered inside the
pipeline; everything else can reach ``process_meeting``, which converts it
into a single :class:`ProcessingFailed` via :func:`classify_error`.
"""

from __future__ import annotations

from typing import Optional


class RecapError(RuntimeError):
    user_message = "Meeting processing failed. Please try again."
    retryable = False
    http_status = 400

    def __init__(self, message: str = "", *, user_message: Optional[str] = None) -> None:
        super().__init__(message or self.user_message)
        if user_message:
            self.user_message = user_message


# ── Validation ─────────────────────────────────────────────────────────


class ValidationError(RecapError):
    user_message = (
        "Empty recording: the audio appears to be silent, empty, or too short. "
        "Please try recording again."
    )


class EmptyAudio(ValidationError):
    pass


class AudioTooSmall(ValidationError):
    pass


class EmptyTranscript(ValidationError):
    pass


class AudioMissing(ValidationError):
    user_message = (
        "Audio file missing: the recording file could not be found. "
        "Please try recording again."
    )


# ── Network / service ──────────────────────────────────────────────────


class NetworkError(RecapError):
    user_message = (
        "Network error: the service could not be reached. "
        "Please check your internet connection and try again."
    )
    retryable = True
    http_status = 502


_STATUS_MESSAGES = {
    400: "Invalid audio format: the service could not read the recording.",
    413: "Recording too large: the audio file exceeds the service limit.",
    415: "Unsupported audio codec: the recording format is not supported.",
}
_UNAVAILABLE_MESSAGE = (
    "Service unavailable: the service is temporarily unavailable. "
    "Please try again later."
)


class ServiceError(RecapError):
    """Non-2xx response from one of the external services."""

    http_status = 502

    def __init__(self, status_code: int, detail: str = "", *, service: str = "service") -> None:
        self.status_code = status_code
        self.detail = detail
        self.service = service
        super().__init__(
            f"{service} error ({status_code}): {detail}".rstrip(": "),
            user_message=self.message_for_status(status_code),
        )

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.status_code == 429 or self.status_code >= 500

    @staticmethod
    def message_for_status(status_code: int) -> str:
        if status_code in _STATUS_MESSAGES:
            return _STATUS_MESSAGES[status_code]
        if status_code >= 500:
            return _UNAVAILABLE_MESSAGE
        return f"Request rejected by the service (HTTP {status_code})."


class ServiceTimeout(RecapError):
    user_message = (
        "Processing timeout: the recording is too long or the service stalled. "
        "Please try with a shorter recording."
    )
    http_status = 504


class MalformedResponse(RecapError):
    user_message = (
        "Transcription failed: the audio could not be processed. "
        "Please check your internet connection and try again."
    )
    http_status = 502


class ParseError(RecapError):
    """Analysis response was not valid JSON or missed required fields."""


# ── Recording ──────────────────────────────────────────────────────────


class ConsentRequired(RecapError):
    user_message = "Recording consent required before starting a recording."
    http_status = 403


class SessionStateError(RecapError):
    user_message = "The recorder is not in a state that allows this action."
    http_status = 409


# ── Upload ─────────────────────────────────────────────────────────────


class UploadSessionNotFound(RecapError):
    user_message = "Upload session not found."
    http_status = 404


class ChunkUploadFailed(RecapError):
    user_message = "Upload failed: a part of the recording could not be uploaded."

    def __init__(self, index: int, message: str = "") -> None:
        self.index = index
        super().__init__(message or f"Failed to upload chunk {index}")


class IncompleteUpload(RecapError):
    user_message = "Upload incomplete: some parts of the recording are missing."

    def __init__(self, missing: list[int]) -> None:
        self.missing = missing
        super().__init__(f"Upload incomplete, missing chunks: {missing[:20]}")


# ── Pipeline ───────────────────────────────────────────────────────────


class MeetingNotFound(RecapError):
    user_message = "Meeting not found."
    http_status = 404


class ProcessingInProgress(RecapError):
    user_message = "This meeting is already being processed."
    http_status = 409


class ProcessingFailed(RecapError):
    http_status = 422


def classify_error(exc: BaseException) -> str:
    """Return the user-facing message for the first recap error in the cause chain."""
    seen: set[int] = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, RecapError) and not isinstance(current, ProcessingFailed):
            return current.user_message
        current = current.__cause__ or current.__context__
    return RecapError.user_message
