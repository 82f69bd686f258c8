import logging
import os
from typing import Optional

from fastapi import FastAPI

from recap.context import AppContext
from recap.routers.meetings import create_meetings_router
from recap.routers.recording import create_recording_router
from recap.routers.testing import create_testing_router
from recap.routers.uploads import create_uploads_router
from recap.services.audio_store import FileAudioStore
from recap.services.capture import create_capture_device
from recap.services.chunked_upload import ChunkedUploadManager
from recap.services.deferred import DeferredTaskQueue
from recap.services.email_draft import EmailDraftGenerator
from recap.services.llm import create_provider
from recap.services.logging_setup import configure_logging
from recap.services.map_reduce import MapReduceAnalyzer
from recap.services.meeting_pipeline import MeetingPipeline
from recap.services.meeting_store import MeetingStore
from recap.services.pipeline_config import PipelineConfig, load_pipeline_config, read_config_file
from recap.services.recording_session import RecordingSession
from recap.services.retry import RetryPolicy, retry_transient
from recap.services.transcription_client import TranscriptionClient
from recap.services.upload_sessions import UploadSessionRegistry

VERSION = "0.1.0"


def _build_recording(
    config: PipelineConfig,
    ctx: AppContext,
    meeting_store: MeetingStore,
    audio_store: FileAudioStore,
    logger: logging.Logger,
) -> Optional[RecordingSession]:
    try:
        device = create_capture_device(config, ctx.recordings_dir)
    except (ImportError, OSError) as exc:
        # sounddevice raises OSError when the PortAudio library is missing.
        logger.warning("Boot: audio capture unavailable, recording disabled: %s", exc)
        return None
    return RecordingSession(
        meeting_store,
        audio_store,
        device,
        deferred=DeferredTaskQueue(),
        max_duration=config.max_recording_duration,
    )


def create_app() -> FastAPI:
    cwd = os.getcwd()
    configure_logging(os.path.join(cwd, "logs"))
    logger = logging.getLogger("recap.boot")
    logger.info("Boot: starting create_app cwd=%s", cwd)

    data_dir = os.environ.get("RECAP_DATA_DIR") or os.path.join(cwd, "data")
    os.makedirs(data_dir, exist_ok=True)
    config_path = os.path.join(data_dir, "config.json")
    config = read_config_file(config_path)
    logger.info("Boot: config_path=%s keys=%s", config_path, sorted(config.keys()))

    ctx = AppContext(cwd=cwd, data_dir=data_dir, config_path=config_path)
    ctx.ensure_dirs()
    pipeline_config = load_pipeline_config(config)

    meeting_store = MeetingStore(ctx.meetings_path)
    audio_store = FileAudioStore(ctx.recordings_dir)
    recording = _build_recording(pipeline_config, ctx, meeting_store, audio_store, logger)

    transcription = TranscriptionClient(
        pipeline_config.transcribe_url,
        timeout=pipeline_config.transcription_timeout,
        retry_policy=RetryPolicy(
            retries=pipeline_config.transcription_retries,
            delay=pipeline_config.transcription_retry_delay,
            should_retry=retry_transient,
        ),
        min_audio_bytes=pipeline_config.min_audio_bytes,
        min_transcript_length=pipeline_config.min_transcript_length,
    )
    uploader = ChunkedUploadManager(
        pipeline_config.upload_base_url,
        chunk_size=pipeline_config.upload_chunk_size,
        retry_policy=RetryPolicy(
            retries=pipeline_config.upload_retries,
            delay=pipeline_config.upload_retry_delay,
        ),
    )
    analysis_retry = RetryPolicy(
        retries=pipeline_config.analysis_retries,
        delay=pipeline_config.analysis_retry_delay,
        should_retry=retry_transient,
    )
    provider = create_provider(pipeline_config)
    pipeline = MeetingPipeline(
        pipeline_config,
        meeting_store,
        audio_store,
        transcription,
        MapReduceAnalyzer(
            provider,
            retry_policy=analysis_retry,
            sections_per_group=pipeline_config.sections_per_group,
            inter_chunk_delay=pipeline_config.inter_chunk_delay,
        ),
        EmailDraftGenerator(provider, analysis_retry),
        uploader=uploader,
        recording=recording,
    )
    logger.info("Boot: pipeline ready provider=%s", pipeline_config.provider)

    app = FastAPI(title="Recap", version=VERSION)
    app.state.ctx = ctx
    app.state.pipeline = pipeline

    if recording is not None:
        app.include_router(create_recording_router(pipeline))
        logger.info("Boot: recording router mounted")
    app.include_router(create_meetings_router(meeting_store, pipeline))
    logger.info("Boot: meetings router mounted")
    app.include_router(
        create_uploads_router(UploadSessionRegistry(ctx.uploads_dir, pipeline_config.upload_chunk_size))
    )
    logger.info("Boot: uploads router mounted")
    app.include_router(create_testing_router(ctx))
    logger.info("Boot: testing router mounted")

    @app.get("/api/health")
    def health() -> dict:
        return {
            "status": "ok",
            "version": VERSION,
            "recording_available": recording is not None,
        }

    logger.info("Boot: create_app complete")
    return app
