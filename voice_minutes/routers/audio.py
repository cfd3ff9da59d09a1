"""
音声ファイルのアップロード・処理API
"""
import logging
from typing import Optional

from fastapi import APIRouter, File, Form, Query, UploadFile
from starlette.concurrency import run_in_threadpool

from voice_minutes.errors import UploadError
from voice_minutes.services.document_service import normalize_formats
from voice_minutes.services.intake import StoredFile
from voice_minutes.services.pipeline import STATUS_PROGRESS
from voice_minutes.utils.responses import ok


def create_audio_router(services) -> APIRouter:
    router = APIRouter(prefix="/api/audio")
    logger = logging.getLogger("voice_minutes.api.audio")
    intake = services.intake
    pipeline = services.pipeline
    repo = services.repository

    async def _store(upload: UploadFile) -> StoredFile:
        return await run_in_threadpool(intake.store, upload.file, upload.filename or "", upload.content_type)

    @router.post("/upload")
    async def upload_audio(
        audioFile: UploadFile = File(...),
        language: Optional[str] = Form(None),
        format_: str = Form("all", alias="format"),
        publish: bool = Form(True),
    ):
        formats = normalize_formats(format_)
        stored = await _store(audioFile)
        logger.info("Upload received: %s (%d bytes)", stored.original_name, stored.file_size)
        result = await run_in_threadpool(pipeline.process, stored, language, formats, publish)
        return ok(result.to_dict(), message="音声ファイルの処理が完了しました")

    @router.post("/transcribe")
    async def transcribe_audio(
        audioFile: UploadFile = File(...),
        language: Optional[str] = Form(None),
    ):
        stored = await _store(audioFile)
        result = await run_in_threadpool(pipeline.transcribe_only, stored, language)
        return ok(
            {
                "original_name": stored.original_name,
                "text": result.text,
                "language": result.language,
                "duration_seconds": result.duration_seconds,
                "segments": result.segments,
            },
            message="文字起こしが完了しました",
        )

    @router.post("/batch")
    async def batch_upload(
        audioFiles: list[UploadFile] = File(...),
        language: Optional[str] = Form(None),
        publish: bool = Form(True),
    ):
        intake.check_count(len(audioFiles))
        for upload in audioFiles:
            intake.validate(upload.filename or "", upload.content_type)

        stored_files: list[StoredFile] = []
        try:
            for upload in audioFiles:
                stored_files.append(await _store(upload))
        except UploadError:
            for stored in stored_files:
                intake.discard(stored)
            raise

        report = await run_in_threadpool(pipeline.process_batch, stored_files, language, publish)
        return ok(
            report.to_dict(),
            message=f"{report.total}件中{report.successful}件の処理が完了しました",
        )

    @router.get("/files")
    async def list_files(limit: int = Query(20, ge=1, le=100), offset: int = Query(0, ge=0)):
        page = await run_in_threadpool(repo.list_audio_assets, limit, offset)
        return ok(page["items"], pagination={"total": page["total"], "limit": limit, "offset": offset})

    @router.get("/files/{audio_id}")
    async def get_file(audio_id: int):
        return ok(await run_in_threadpool(repo.get_audio_asset, audio_id))

    @router.get("/status/{audio_id}")
    async def get_status(audio_id: int):
        asset = await run_in_threadpool(repo.get_audio_asset, audio_id)
        status = asset["upload_status"]
        return ok({
            "id": asset["id"],
            "file_name": asset["original_name"],
            "status": status,
            "progress": STATUS_PROGRESS.get(status, 0),
            "error_message": asset["error_message"],
            "created_at": asset["created_at"],
            "processed_at": asset["processed_at"],
            "meetings": [{"id": m["id"], "title": m["title"]} for m in asset["meetings"]],
        })

    @router.get("/stats")
    async def get_stats():
        return ok(await run_in_threadpool(repo.get_statistics))

    return router
