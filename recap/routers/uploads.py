import logging
from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field

from recap.services.errors import RecapError
from recap.services.upload_sessions import UploadSessionRegistry


class InitiateUploadRequest(BaseModel):
    fileName: str = Field(..., min_length=1)
    fileSize: int = Field(..., gt=0)
    mimeType: str = "application/octet-stream"
    chunkSize: Optional[int] = Field(None, gt=0)


class EtagEntry(BaseModel):
    index: int
    etag: str


class FinalizeUploadRequest(BaseModel):
    uploadId: str
    etags: list[EtagEntry] = Field(default_factory=list)


def create_uploads_router(registry: UploadSessionRegistry) -> APIRouter:
    router = APIRouter()
    logger = logging.getLogger("recap.api.uploads")

    def _http_error(exc: RecapError) -> HTTPException:
        return HTTPException(status_code=exc.http_status, detail=str(exc))

    @router.post("/api/uploads/initiate")
    def initiate_upload(payload: InitiateUploadRequest) -> dict:
        try:
            session = registry.initiate(
                payload.fileName,
                payload.fileSize,
                payload.mimeType,
                chunk_size=payload.chunkSize,
            )
        except RecapError as exc:
            raise _http_error(exc) from exc
        return {
            "uploadId": session.upload_id,
            "fileName": session.file_name,
            "fileSize": session.total_size,
            "mimeType": session.mime_type,
            "chunkSize": session.chunk_size,
            "totalChunks": session.total_chunks,
            "createdAt": session.created_at,
        }

    @router.post("/api/uploads/chunk")
    async def upload_chunk(
        uploadId: str = Form(...),
        chunkIndex: int = Form(...),
        chunk: UploadFile = File(...),
    ) -> dict:
        contents = await chunk.read()
        try:
            etag = registry.store_chunk(uploadId, chunkIndex, contents)
        except RecapError as exc:
            logger.warning("Chunk rejected: id=%s index=%s error=%s", uploadId, chunkIndex, exc)
            raise _http_error(exc) from exc
        return {"uploadId": uploadId, "chunkIndex": chunkIndex, "etag": etag, "success": True}

    @router.get("/api/uploads/status")
    def upload_status(uploadId: str = Query(...)) -> dict:
        try:
            return registry.status(uploadId)
        except RecapError as exc:
            raise _http_error(exc) from exc

    @router.post("/api/uploads/finalize")
    def finalize_upload(payload: FinalizeUploadRequest) -> dict:
        try:
            return registry.finalize(payload.uploadId, [e.model_dump() for e in payload.etags])
        except RecapError as exc:
            logger.warning("Finalize rejected: id=%s error=%s", payload.uploadId, exc)
            raise _http_error(exc) from exc

    return router
