"""
会議（議事録）管理API
"""
import logging
from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from voice_minutes.utils.responses import ok


class MeetingCreateRequest(BaseModel):
    title: str
    meeting_date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    location: Optional[str] = None
    meeting_type: str = "定例会議"


class MeetingUpdateRequest(BaseModel):
    title: Optional[str] = None
    meeting_date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    location: Optional[str] = None
    meeting_type: Optional[str] = None


class ApprovalRequest(BaseModel):
    status: Literal["approved", "rejected", "archived"]
    approved_by: Optional[str] = None


class ActionItemUpdateRequest(BaseModel):
    status: Optional[Literal["open", "completed"]] = None
    notes: Optional[str] = None
    completion_date: Optional[date] = None


def create_meeting_router(services) -> APIRouter:
    router = APIRouter(prefix="/api/meeting")
    logger = logging.getLogger("voice_minutes.api.meeting")
    repo = services.repository

    @router.get("")
    async def list_meetings(
        limit: int = Query(20, ge=1, le=100),
        offset: int = Query(0, ge=0),
        status: Optional[str] = None,
    ):
        page = await run_in_threadpool(repo.get_meeting_list, limit, offset, status)
        return ok(page["items"], pagination={"total": page["total"], "limit": limit, "offset": offset})

    @router.get("/stats")
    async def meeting_stats():
        return ok(await run_in_threadpool(repo.get_statistics))

    @router.post("")
    async def create_meeting(body: MeetingCreateRequest):
        meeting = await run_in_threadpool(
            repo.create_meeting, body.title, body.meeting_date, body.start_time,
            body.end_time, body.location, body.meeting_type,
        )
        logger.info("Meeting created manually: id=%s", meeting["id"])
        return ok(meeting, message="会議が作成されました", status_code=201)

    @router.get("/actions/pending")
    async def list_pending_action_items(limit: int = Query(20, ge=1, le=100)):
        items = await run_in_threadpool(repo.get_pending_action_items, None, limit)
        return ok(items, total=len(items))

    @router.patch("/actions/{action_id}")
    async def update_action_item(action_id: int, body: ActionItemUpdateRequest):
        item = await run_in_threadpool(
            repo.update_action_item, action_id, body.status, body.notes, body.completion_date
        )
        return ok(item, message="アクションアイテムが更新されました")

    @router.get("/{meeting_id}")
    async def get_meeting(meeting_id: int):
        return ok(await run_in_threadpool(repo.get_meeting_by_id, meeting_id))

    @router.put("/{meeting_id}")
    async def update_meeting(meeting_id: int, body: MeetingUpdateRequest):
        fields = body.model_dump(exclude_unset=True)
        meeting = await run_in_threadpool(repo.update_meeting, meeting_id, fields)
        return ok(meeting, message="会議情報が更新されました")

    @router.delete("/{meeting_id}")
    async def delete_meeting(meeting_id: int):
        await run_in_threadpool(repo.delete_meeting, meeting_id)
        return ok(message="会議が削除されました")

    @router.patch("/{meeting_id}/approval")
    async def update_approval(meeting_id: int, body: ApprovalRequest):
        meeting = await run_in_threadpool(repo.update_approval_status, meeting_id, body.status, body.approved_by)
        labels = {"approved": "承認", "rejected": "却下", "archived": "アーカイブ"}
        return ok(meeting, message=f"議事録が{labels[body.status]}されました")

    @router.get("/{meeting_id}/actions")
    async def list_action_items(meeting_id: int):
        result = await run_in_threadpool(repo.get_action_items, meeting_id)
        return ok(result["items"], summary={
            "total": result["total"], "open": result["open"], "completed": result["completed"],
        })

    return router
