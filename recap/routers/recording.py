import logging
import time
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from recap.services.errors import RecapError
from recap.services.meeting_pipeline import MeetingPipeline


class ConsentRequest(BaseModel):
    granted: bool = Field(..., description="Whether all participants consented to recording")


class StartRecordingRequest(BaseModel):
    title: Optional[str] = Field(None, description="Meeting title; defaults to a timestamped name")
    attendees: list[str] = Field(default_factory=list, description="Attendee names")


def create_recording_router(pipeline: MeetingPipeline) -> APIRouter:
    router = APIRouter()
    logger = logging.getLogger("recap.api.recording")

    async def run(name: str, action) -> dict:
        start_time = time.perf_counter()
        try:
            result = await action()
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info("%s completed in %.2f ms", name, duration_ms)
            return result
        except RecapError as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.warning("%s failed in %.2f ms: %s", name, duration_ms, exc)
            raise HTTPException(status_code=exc.http_status, detail=exc.user_message) from exc
        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.exception("%s error in %.2f ms: %s", name, duration_ms, exc)
            raise HTTPException(status_code=500, detail="Internal Server Error") from exc

    @router.get("/api/recording/status")
    def recording_status() -> dict:
        return pipeline.recording.status()

    @router.post("/api/recording/consent")
    def set_consent(payload: ConsentRequest) -> dict:
        pipeline.recording.set_consent(payload.granted)
        return pipeline.recording.status()

    @router.post("/api/recording/start")
    async def start_recording(payload: StartRecordingRequest) -> dict:
        logger.debug("start_recording received: %s", payload.model_dump())

        async def action() -> dict:
            meeting = await pipeline.start_recording(payload.title, payload.attendees)
            return {"meeting": meeting.to_dict(), "status": pipeline.recording.status()}

        return await run("start_recording", action)

    @router.post("/api/recording/pause")
    async def pause_recording() -> dict:
        async def action() -> dict:
            await pipeline.pause_recording()
            return pipeline.recording.status()

        return await run("pause_recording", action)

    @router.post("/api/recording/resume")
    async def resume_recording() -> dict:
        async def action() -> dict:
            await pipeline.resume_recording()
            return pipeline.recording.status()

        return await run("resume_recording", action)

    @router.post("/api/recording/stop")
    async def stop_recording() -> dict:
        async def action() -> dict:
            meeting_id = await pipeline.stop_recording()
            return {"meeting_id": meeting_id, "status": pipeline.recording.status()}

        return await run("stop_recording", action)

    return router
