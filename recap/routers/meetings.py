import logging
import time

from fastapi import APIRouter, BackgroundTasks, HTTPException

from recap.services.errors import MeetingNotFound, ProcessingFailed, ProcessingInProgress, RecapError
from recap.services.meeting_pipeline import MeetingPipeline
from recap.services.meeting_store import MeetingStore


def create_meetings_router(meeting_store: MeetingStore, pipeline: MeetingPipeline) -> APIRouter:
    router = APIRouter()
    logger = logging.getLogger("recap.api.meetings")

    def _http_error(exc: RecapError) -> HTTPException:
        return HTTPException(status_code=exc.http_status, detail=exc.user_message)

    async def _process_in_background(meeting_id: str) -> None:
        try:
            await pipeline.process_meeting(meeting_id)
        except ProcessingFailed as exc:
            logger.warning("Background processing failed: id=%s reason=%s", meeting_id, exc.user_message)

    @router.get("/api/meetings")
    def list_meetings() -> list[dict]:
        return [m.to_dict() for m in meeting_store.list_meetings()]

    @router.get("/api/meetings/{meeting_id}")
    def get_meeting(meeting_id: str) -> dict:
        meeting = meeting_store.get_meeting(meeting_id)
        if meeting is None:
            raise HTTPException(status_code=404, detail="Meeting not found")
        payload = meeting.to_dict()
        payload["processing"] = pipeline.is_processing(meeting_id)
        return payload

    @router.delete("/api/meetings/{meeting_id}")
    async def delete_meeting(meeting_id: str) -> dict:
        try:
            await pipeline.delete_meeting(meeting_id)
        except RecapError as exc:
            raise _http_error(exc) from exc
        logger.info("Meeting deleted: id=%s", meeting_id)
        return {"status": "ok", "meeting_id": meeting_id}

    @router.post("/api/meetings/{meeting_id}/process")
    def process_meeting(meeting_id: str, background_tasks: BackgroundTasks) -> dict:
        if meeting_store.get_meeting(meeting_id) is None:
            raise _http_error(MeetingNotFound())
        if pipeline.is_processing(meeting_id):
            raise _http_error(ProcessingInProgress())
        background_tasks.add_task(_process_in_background, meeting_id)
        logger.info("Processing queued: id=%s", meeting_id)
        return {"status": "queued", "meeting_id": meeting_id}

    @router.post("/api/meetings/{meeting_id}/retry")
    async def retry_processing(meeting_id: str) -> dict:
        start_time = time.perf_counter()
        try:
            result = await pipeline.retry_processing(meeting_id)
        except RecapError as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.warning("retry_processing failed in %.2f ms: %s", duration_ms, exc)
            raise _http_error(exc) from exc
        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info("retry_processing completed in %.2f ms", duration_ms)
        return result.to_dict()

    @router.get("/api/meetings/{meeting_id}/progress")
    def get_progress(meeting_id: str) -> dict:
        if meeting_store.get_meeting(meeting_id) is None:
            raise _http_error(MeetingNotFound())
        progress = pipeline.get_progress(meeting_id)
        return {
            "meeting_id": meeting_id,
            "processing": pipeline.is_processing(meeting_id),
            "progress": progress.to_dict() if progress else None,
        }

    return router
