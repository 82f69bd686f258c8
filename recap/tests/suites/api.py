"""HTTP API test suite: recording, meeting and test-harness routes over an in-process app."""
from __future__ import annotations

import os

import httpx
from fastapi import FastAPI

from recap.context import AppContext
from recap.routers.meetings import create_meetings_router
from recap.routers.recording import create_recording_router
from recap.routers.testing import create_testing_router
from recap.services.audio_store import MemoryAudioStore
from recap.services.email_draft import EmailDraftGenerator
from recap.services.map_reduce import MapReduceAnalyzer
from recap.services.meeting_pipeline import MeetingPipeline
from recap.services.pipeline_config import PipelineConfig
from recap.services.recording_session import RecordingSession
from recap.services.retry import RetryPolicy, retry_transient
from recap.services.transcription_client import TranscriptionClient
from recap.tests.base import TestSuite
from recap.tests.fakes import (
    FakeCaptureDevice,
    ScriptedProvider,
    json_response,
    make_store,
    no_sleep,
    stage_router,
)

BASE_URL = "http://recap.test"


class ApiSuite(TestSuite):
    suite_id = "api"
    name = "HTTP API"
    description = "Recording controls, meeting listing, processing and error mapping over HTTP"

    def _register_tests(self):
        self.add_test("API-001", "Start without consent is forbidden", self._test_consent_required)
        self.add_test("API-002", "Record, stop and process a meeting", self._test_record_and_process)
        self.add_test("API-003", "Invalid recorder transitions return 409", self._test_conflict)
        self.add_test("API-004", "Unknown meetings return 404", self._test_not_found)
        self.add_test("API-005", "Test harness routes list and run suites", self._test_harness_routes)
        self.add_test("API-006", "App context paths are fixed at boot", self._test_context_paths)

    async def setup(self):
        store = make_store(self.context["workspace"])
        audio = MemoryAudioStore()
        policy = RetryPolicy(retries=1, delay=0.0, should_retry=retry_transient, sleep=no_sleep)
        stt_http = httpx.AsyncClient(
            transport=httpx.MockTransport(
                lambda request: json_response(200, {"text": "We agreed to ship on Friday. Alice owns the deck."})
            )
        )
        provider = ScriptedProvider(route=stage_router())
        recording = RecordingSession(store, audio, FakeCaptureDevice(), tick_interval=3600.0)
        pipeline = MeetingPipeline(
            PipelineConfig(),
            store,
            audio,
            TranscriptionClient("https://stt.test/", stt_http, retry_policy=policy),
            MapReduceAnalyzer(provider, retry_policy=policy, sleep=no_sleep),
            EmailDraftGenerator(provider, policy),
            recording=recording,
        )
        app = FastAPI()
        app.include_router(create_recording_router(pipeline))
        app.include_router(create_meetings_router(store, pipeline))
        workspace = self.context["workspace"]
        app.include_router(
            create_testing_router(
                AppContext(
                    cwd=workspace,
                    data_dir=os.path.join(workspace, "data"),
                    config_path=os.path.join(workspace, "data", "config.json"),
                )
            )
        )
        self.context.update(
            store=store,
            recording=recording,
            stt_http=stt_http,
            http=httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=BASE_URL),
        )

    async def teardown(self):
        await self.context["http"].aclose()
        await self.context["stt_http"].aclose()

    async def _test_consent_required(self, ctx: dict):
        http: httpx.AsyncClient = ctx["http"]
        response = await http.post("/api/recording/start", json={"title": "Standup"})
        assert response.status_code == 403, response.text
        assert "consent" in response.json()["detail"].lower()

    async def _test_record_and_process(self, ctx: dict):
        http: httpx.AsyncClient = ctx["http"]
        response = await http.post("/api/recording/consent", json={"granted": True})
        assert response.json()["consent"] is True

        response = await http.post("/api/recording/start", json={"title": "Standup", "attendees": ["Alice"]})
        assert response.status_code == 200, response.text
        meeting_id = response.json()["meeting"]["id"]
        assert response.json()["status"]["state"] == "recording"

        for _ in range(3):
            ctx["recording"].tick()
        assert (await http.post("/api/recording/pause")).json()["state"] == "paused"
        assert (await http.post("/api/recording/resume")).json()["state"] == "recording"

        response = await http.post("/api/recording/stop")
        assert response.json()["meeting_id"] == meeting_id
        assert (await http.get("/api/recording/status")).json()["state"] == "idle"

        listed = (await http.get("/api/meetings")).json()
        assert [m["id"] for m in listed] == [meeting_id]
        assert listed[0]["status"] == "processing"
        assert listed[0]["duration"] == 3

        response = await http.post(f"/api/meetings/{meeting_id}/retry")
        assert response.status_code == 200, response.text
        assert response.json()["artifacts"]["summaries"]["executive_120w"]

        meeting = (await http.get(f"/api/meetings/{meeting_id}")).json()
        assert meeting["status"] == "completed"
        assert meeting["processing"] is False
        progress = (await http.get(f"/api/meetings/{meeting_id}/progress")).json()
        assert progress["progress"]["stage"] == "completed"

        response = await http.delete(f"/api/meetings/{meeting_id}")
        assert response.status_code == 200
        assert (await http.get("/api/meetings")).json() == []

    async def _test_conflict(self, ctx: dict):
        http: httpx.AsyncClient = ctx["http"]
        for action in ("pause", "resume", "stop"):
            response = await http.post(f"/api/recording/{action}")
            assert response.status_code == 409, f"{action}: {response.status_code}"

    async def _test_not_found(self, ctx: dict):
        http: httpx.AsyncClient = ctx["http"]
        assert (await http.get("/api/meetings/missing")).status_code == 404
        assert (await http.post("/api/meetings/missing/process")).status_code == 404
        assert (await http.post("/api/meetings/missing/retry")).status_code == 404
        assert (await http.get("/api/meetings/missing/progress")).status_code == 404
        assert (await http.delete("/api/meetings/missing")).status_code == 404

    async def _test_harness_routes(self, ctx: dict):
        http: httpx.AsyncClient = ctx["http"]
        suites = (await http.get("/api/test/suites")).json()["suites"]
        assert "retry" in {s["suite_id"] for s in suites}

        response = await http.post("/api/test/run", params={"suite": "retry"})
        body = response.json()
        assert body["status"] == "ok", body
        assert body["result"]["failed"] == 0 and body["result"]["error"] == 0
        assert os.path.exists(body["log_file"])

        unknown = (await http.get("/api/test/run", params={"suite": "nope"})).json()
        assert unknown["status"] == "error"
        assert "retry" in unknown["available"]
        assert (await http.get("/api/test/run")).json()["status"] == "error"

    def _test_context_paths(self, ctx: dict):
        workspace = ctx["workspace"]
        data_dir = os.path.join(workspace, "boot-data")
        app_ctx = AppContext(cwd=workspace, data_dir=data_dir, config_path=os.path.join(data_dir, "config.json"))
        app_ctx.ensure_dirs()

        assert app_ctx.meetings_path == os.path.join(data_dir, "meetings.json")
        assert app_ctx.logs_dir == os.path.join(workspace, "logs")
        for path in (app_ctx.recordings_dir, app_ctx.uploads_dir, app_ctx.logs_dir):
            assert os.path.isdir(path), path
        try:
            app_ctx.data_dir = workspace
        except AttributeError:
            pass
        else:
            raise AssertionError("data_dir should be read-only")
        assert app_ctx.data_dir == data_dir
