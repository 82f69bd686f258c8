from __future__ import annotations

import json
import logging
import os
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

_logger = logging.getLogger("recap.config")

MiB = 1024 * 1024


class PipelineConfig(BaseModel):
    """Tunables for recording, upload and analysis.

    Loaded from the ``pipeline`` section of ``config.json``; every field has a
    default so an empty or missing config file is valid.
    """

    model_config = ConfigDict(extra="ignore")

    # External services
    service_base_url: str = "https://toolkit.rork.com"
    completion_path: str = "/text/llm/"
    transcribe_path: str = "/stt/transcribe/"
    upload_base_url: str = "http://127.0.0.1:6684"
    provider: Literal["completion", "openai"] = "completion"
    openai_base_url: str = "https://api.openai.com"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    language: Optional[str] = None

    # Recording
    max_recording_duration: int = Field(15 * 60, gt=0)
    capture_strategy: Literal["streaming", "file"] = "file"
    samplerate: int = Field(16000, gt=0)
    channels: int = Field(1, ge=1)
    device_index: Optional[int] = None

    # Transcription
    min_audio_bytes: int = Field(1024, ge=1)
    min_transcript_length: int = Field(10, ge=1)
    transcription_timeout: float = Field(15 * 60, gt=0)
    transcription_retries: int = Field(3, ge=0)
    transcription_retry_delay: float = Field(3.0, ge=0)

    # Chunked upload
    upload_chunk_size: int = Field(5 * MiB, gt=0)
    chunked_upload_threshold: int = Field(10 * MiB, gt=0)
    upload_retries: int = Field(2, ge=0)
    upload_retry_delay: float = Field(2.0, ge=0)

    # Analysis
    max_transcript_length: int = Field(8000, gt=0)
    chunk_size_limit: int = Field(2000, gt=0)
    min_chunk_length: int = Field(20, ge=0)
    sections_per_group: int = Field(3, ge=1)
    inter_chunk_delay: float = Field(0.5, ge=0)
    analysis_retries: int = Field(2, ge=0)
    analysis_retry_delay: float = Field(3.0, ge=0)
    analysis_timeout: float = Field(120.0, gt=0)

    @property
    def completion_url(self) -> str:
        return self.service_base_url.rstrip("/") + self.completion_path

    @property
    def transcribe_url(self) -> str:
        return self.service_base_url.rstrip("/") + self.transcribe_path


def read_config_file(config_path: str) -> dict:
    """Read config from file, returning empty dict if not found."""
    if not os.path.exists(config_path):
        return {}
    with open(config_path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_pipeline_config(config: dict) -> PipelineConfig:
    section = config.get("pipeline", {}) or {}
    pipeline_config = PipelineConfig.model_validate(section)
    _logger.info(
        "Pipeline config: provider=%s capture=%s max_duration=%ss",
        pipeline_config.provider,
        pipeline_config.capture_strategy,
        pipeline_config.max_recording_duration,
    )
    return pipeline_config
