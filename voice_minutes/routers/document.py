"""
議事録ドキュメントAPI
"""
import json
import logging
from typing import Any, Optional, Union

from fastapi import APIRouter
from fastapi.responses import FileResponse, HTMLResponse
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError
from starlette.concurrency import run_in_threadpool

from voice_minutes.errors import ValidationError
from voice_minutes.models import StructuredMeeting
from voice_minutes.utils.responses import ok


class GenerateRequest(BaseModel):
    meeting_id: Optional[int] = None
    structured_data: Optional[dict[str, Any]] = None
    formats: Union[str, list[str]] = "all"
    template: str = "default"


def create_document_router(services) -> APIRouter:
    router = APIRouter(prefix="/api/document")
    logger = logging.getLogger("voice_minutes.api.document")
    renderer = services.renderer
    pipeline = services.pipeline

    @router.post("/generate")
    async def generate(body: GenerateRequest):
        template_ids = {t["id"] for t in renderer.templates()}
        if body.template not in template_ids:
            raise ValidationError(f"不明なテンプレートです: {body.template}")

        if body.meeting_id is not None:
            result = await run_in_threadpool(pipeline.regenerate_documents, body.meeting_id, body.formats, body.template)
            return ok(result, message="議事録ドキュメントが生成されました")

        if body.structured_data is None:
            raise ValidationError(
                "meeting_id または structured_data が必要です",
                user_message="meeting_id または structured_data を指定してください",
            )
        # 保存されていない構造化データからの直接生成（DBには記録しない）
        try:
            structured = StructuredMeeting.model_validate(body.structured_data)
        except SchemaError as exc:
            raise ValidationError("構造化データがスキーマに一致しません", detail=exc.errors(include_url=False, include_context=False)) from exc
        report = await run_in_threadpool(pipeline.render_structure, structured, body.formats)
        logger.info("Documents generated from request data: %s", ",".join(report.documents) or "-")
        return ok({"documents": report.to_dict()["documents"], "errors": dict(report.errors)},
                  message="議事録ドキュメントが生成されました")

    @router.get("")
    async def list_documents():
        files = await run_in_threadpool(renderer.list_documents)
        return ok(files, total=len(files))

    @router.get("/templates")
    async def list_templates():
        return ok(renderer.templates())

    @router.get("/download/{file_name}")
    async def download(file_name: str):
        path = renderer.resolve(file_name)
        return FileResponse(path, media_type=renderer.content_type(file_name), filename=file_name)

    @router.get("/preview/{file_name}")
    async def preview(file_name: str):
        path = renderer.resolve(file_name)
        suffix = path.suffix.lower()
        if suffix == ".html":
            return HTMLResponse(path.read_text(encoding="utf-8"))
        if suffix == ".json":
            return ok(json.loads(path.read_text(encoding="utf-8")))
        raise ValidationError(
            f"プレビューできない形式です: {suffix}",
            user_message="プレビューはHTMLとJSONのみ対応しています",
        )

    @router.delete("/{file_name}")
    async def delete(file_name: str):
        await run_in_threadpool(renderer.delete, file_name)
        return ok(message="ドキュメントが削除されました")

    return router
