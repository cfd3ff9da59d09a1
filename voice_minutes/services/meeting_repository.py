"""
議事録データの永続化（audio_files / meetings / participants / agendas / action_items /
generated_documents / voice_analysis）

session_factory を受け取り、呼び出しごとにセッションを開いて閉じる。
戻り値はセッション外でも使える dict に変換して返す。
"""
import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from voice_minutes.errors import NotFoundError, PersistenceError, ValidationError
from voice_minutes.models import (
    StructuredMeeting,
    TranscriptionResult,
    speaking_frequency_from_fraction,
)
from voice_minutes.services.db import (
    ActionItemRow,
    AgendaRow,
    AudioFileRow,
    GeneratedDocumentRow,
    MeetingRow,
    ParticipantRow,
    VoiceAnalysisRow,
)

logger = logging.getLogger("voice_minutes.repository")

# 音声ファイルの状態遷移（failed は終了していない状態からのみ）
AUDIO_TRANSITIONS = {
    "uploaded": {"processing", "failed"},
    "processing": {"completed", "failed"},
}
AUDIO_STATUSES = ("uploaded", "processing", "completed", "failed")

# 議事録の承認フロー
MEETING_TRANSITIONS = {
    "draft": {"approved", "rejected"},
    "approved": {"archived"},
    "rejected": {"archived"},
}
MEETING_STATUSES = ("draft", "approved", "rejected", "archived")

ACTION_STATUSES = ("open", "completed")

MEETING_EDITABLE_FIELDS = {
    "title": "title",
    "meeting_date": "meeting_date",
    "start_time": "start_time",
    "end_time": "end_time",
    "location": "location",
    "meeting_type": "meeting_type",
}


class SaveMeetingResult:
    """save_meeting の結果。失敗した参加者・議題・アクションは記録して処理を続ける。"""

    def __init__(self, meeting: dict):
        self.meeting = meeting
        self.failed_participants: list[dict] = []
        self.failed_agendas: list[dict] = []
        self.failed_action_items: list[dict] = []

    @property
    def complete(self) -> bool:
        return not (self.failed_participants or self.failed_agendas or self.failed_action_items)

    def to_dict(self) -> dict:
        return {
            "meeting": self.meeting,
            "failed_participants": self.failed_participants,
            "failed_agendas": self.failed_agendas,
            "failed_action_items": self.failed_action_items,
        }


# =========================
# 行 → dict 変換
# =========================
def _iso(value: Any) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _audio_to_dict(row: AudioFileRow) -> dict:
    return {
        "id": row.id,
        "file_name": row.file_name,
        "original_name": row.original_name,
        "file_path": row.file_path,
        "file_size": row.file_size,
        "mime_type": row.mime_type,
        "upload_status": row.upload_status,
        "error_message": row.error_message,
        "created_at": _iso(row.created_at),
        "processed_at": _iso(row.processed_at),
    }


def _meeting_to_dict(row: MeetingRow) -> dict:
    return {
        "id": row.id,
        "audio_file_id": row.audio_file_id,
        "title": row.title,
        "meeting_date": row.meeting_date,
        "start_time": row.start_time,
        "end_time": row.end_time,
        "location": row.location,
        "meeting_type": row.meeting_type,
        "status": row.status,
        "approved_by": row.approved_by,
        "approved_at": _iso(row.approved_at),
        "created_at": _iso(row.created_at),
        "updated_at": _iso(row.updated_at),
    }


def _participant_to_dict(row: ParticipantRow) -> dict:
    return {
        "id": row.id,
        "participant_name": row.participant_name,
        "department": row.department,
        "role": row.role,
        "speaking_time": row.speaking_time,
        "key_contributions": list(row.key_contributions or []),
    }


def _action_to_dict(row: ActionItemRow) -> dict:
    return {
        "id": row.id,
        "meeting_id": row.meeting_id,
        "agenda_id": row.agenda_id,
        "task_description": row.task_description,
        "assignee": row.assignee,
        "due_date": _iso(row.due_date),
        "priority": row.priority,
        "status": row.status,
        "notes": row.notes,
        "completion_date": _iso(row.completion_date),
        "created_at": _iso(row.created_at),
    }


def _agenda_to_dict(row: AgendaRow) -> dict:
    return {
        "id": row.id,
        "agenda_order": row.agenda_order,
        "title": row.title,
        "discussion": row.discussion,
        "key_points": list(row.key_points or []),
        "decisions": row.decisions,
        "action_items": [_action_to_dict(a) for a in row.action_items],
    }


def _document_to_dict(row: GeneratedDocumentRow) -> dict:
    return {
        "id": row.id,
        "meeting_id": row.meeting_id,
        "document_type": row.document_type,
        "file_name": row.file_name,
        "file_path": row.file_path,
        "file_format": row.file_format,
        "template_used": row.template_used,
        "approval_status": row.approval_status,
        "created_at": _iso(row.created_at),
    }


def _analysis_to_dict(row: VoiceAnalysisRow) -> dict:
    return {
        "id": row.id,
        "audio_file_id": row.audio_file_id,
        "transcription_text": row.transcription_text,
        "summary_text": row.summary_text,
        "key_topics": list(row.key_topics or []),
        "sentiment_analysis": dict(row.sentiment_analysis or {}),
        "speaker_analysis": dict(row.speaker_analysis or {}),
        "confidence_score": row.confidence_score,
        "processing_time": row.processing_time,
        "created_at": _iso(row.created_at),
    }


def _parse_date(value: Any, field: str) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as exc:
        raise ValidationError(f"{field} の日付形式が不正です: {value}") from exc


class MeetingRepository:
    """議事録関連テーブルの読み書き"""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def _session(self) -> Session:
        return self._session_factory()

    def check_connection(self) -> bool:
        try:
            with self._session() as session:
                session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as exc:
            logger.error("Database connection failed: %s", exc)
            return False

    # =========================
    # 音声ファイル
    # =========================
    def save_audio_asset(self, file_name: str, original_name: str, file_path: str,
                         file_size: int, mime_type: Optional[str]) -> dict:
        try:
            with self._session() as session:
                row = AudioFileRow(
                    file_name=file_name,
                    original_name=original_name,
                    file_path=str(file_path),
                    file_size=file_size,
                    mime_type=mime_type,
                    upload_status="uploaded",
                )
                session.add(row)
                session.commit()
                logger.info("Audio file saved: id=%s name=%s", row.id, original_name)
                return _audio_to_dict(row)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"音声ファイル情報の保存に失敗しました: {exc}") from exc

    def update_audio_asset_status(self, audio_asset_id: int, status: str,
                                  error_message: Optional[str] = None) -> dict:
        if status not in AUDIO_STATUSES:
            raise ValidationError(f"不正なステータスです: {status}")
        try:
            with self._session() as session:
                row = session.get(AudioFileRow, audio_asset_id)
                if row is None:
                    raise NotFoundError(f"音声ファイルが見つかりません: {audio_asset_id}")
                allowed = AUDIO_TRANSITIONS.get(row.upload_status, set())
                if status not in allowed:
                    raise ValidationError(
                        f"ステータスを {row.upload_status} から {status} に変更できません",
                        detail={"current": row.upload_status, "requested": status},
                    )
                if status == "completed":
                    count = session.scalar(
                        select(func.count(MeetingRow.id)).where(MeetingRow.audio_file_id == audio_asset_id)
                    )
                    if not count:
                        raise PersistenceError(f"議事録が保存されていない音声ファイルは完了にできません: {audio_asset_id}")
                    row.processed_at = datetime.now()
                row.upload_status = status
                row.error_message = error_message
                session.commit()
                logger.info("Audio file %s status -> %s", audio_asset_id, status)
                return _audio_to_dict(row)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"ステータスの更新に失敗しました: {exc}") from exc

    def list_audio_assets(self, limit: int = 20, offset: int = 0) -> dict:
        try:
            with self._session() as session:
                total = session.scalar(select(func.count(AudioFileRow.id))) or 0
                rows = session.scalars(
                    select(AudioFileRow).order_by(AudioFileRow.created_at.desc(), AudioFileRow.id.desc())
                    .limit(limit).offset(offset)
                ).all()
                return {"items": [_audio_to_dict(r) for r in rows], "total": total, "limit": limit, "offset": offset}
        except SQLAlchemyError as exc:
            raise PersistenceError(f"音声ファイル一覧の取得に失敗しました: {exc}") from exc

    def get_audio_asset(self, audio_asset_id: int) -> dict:
        try:
            with self._session() as session:
                row = session.get(AudioFileRow, audio_asset_id)
                if row is None:
                    raise NotFoundError(f"音声ファイルが見つかりません: {audio_asset_id}")
                data = _audio_to_dict(row)
                data["meetings"] = [_meeting_to_dict(m) for m in row.meetings]
                data["voice_analysis"] = [_analysis_to_dict(a) for a in row.analyses]
                return data
        except SQLAlchemyError as exc:
            raise PersistenceError(f"音声ファイル情報の取得に失敗しました: {exc}") from exc

    # =========================
    # 会議データ
    # =========================
    def save_meeting(self, structured: StructuredMeeting, audio_asset_id: Optional[int] = None) -> SaveMeetingResult:
        """
        構造化された議事録を保存する

        会議 → 参加者（1件ずつ）→ 議題（1件ずつ）→ アクションアイテム（1件ずつ）の順に書き込む。
        参加者・議題・アクションの保存に失敗した場合はその1件だけロールバックして記録し、残りを続ける。

        Raises:
            PersistenceError: 会議レコード自体の保存に失敗した場合
        """
        info = structured.meeting_info
        with self._session() as session:
            try:
                meeting = MeetingRow(
                    audio_file_id=audio_asset_id,
                    title=info.title,
                    meeting_date=info.estimated_date,
                    start_time=info.estimated_start_time,
                    end_time=info.estimated_end_time,
                    location=info.location,
                    meeting_type=info.meeting_type,
                    status="draft",
                    key_outcomes=structured.key_outcomes.model_dump(mode="json"),
                    analysis_metadata=structured.analysis_metadata.model_dump(mode="json"),
                )
                session.add(meeting)
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                raise PersistenceError(f"会議情報の保存に失敗しました: {exc}") from exc

            meeting_id = meeting.id
            result = SaveMeetingResult(_meeting_to_dict(meeting))
            logger.info("Meeting saved: id=%s title=%s", meeting_id, info.title)

            for p in structured.participants:
                try:
                    session.add(ParticipantRow(
                        meeting_id=meeting_id,
                        participant_name=p.name,
                        department=p.department,
                        role=p.role,
                        speaking_time=p.speaking_time_fraction,
                        key_contributions=list(p.key_contributions),
                    ))
                    session.commit()
                except SQLAlchemyError as exc:
                    session.rollback()
                    logger.error("Participant save failed (meeting=%s, name=%s): %s", meeting_id, p.name, exc)
                    result.failed_participants.append({"name": p.name, "error": str(exc)})

            for agenda in structured.agendas:
                agenda_id: Optional[int] = None
                try:
                    agenda_row = AgendaRow(
                        meeting_id=meeting_id,
                        agenda_order=agenda.order,
                        title=agenda.title,
                        discussion=agenda.discussion,
                        key_points=list(agenda.key_points or []),
                        decisions=agenda.decisions,
                    )
                    session.add(agenda_row)
                    session.commit()
                    agenda_id = agenda_row.id
                except SQLAlchemyError as exc:
                    session.rollback()
                    logger.error("Agenda save failed (meeting=%s, order=%s): %s", meeting_id, agenda.order, exc)
                    result.failed_agendas.append({"order": agenda.order, "title": agenda.title, "error": str(exc)})

                # 議題の保存に失敗してもアクションアイテムは会議に紐付けて保存する
                for item in agenda.action_items:
                    try:
                        session.add(ActionItemRow(
                            meeting_id=meeting_id,
                            agenda_id=agenda_id,
                            task_description=item.task,
                            assignee=item.assignee,
                            due_date=item.deadline,
                            priority=item.priority,
                            status="open",
                        ))
                        session.commit()
                    except SQLAlchemyError as exc:
                        session.rollback()
                        logger.error("Action item save failed (meeting=%s): %s", meeting_id, exc)
                        result.failed_action_items.append({"task": item.task, "error": str(exc)})

        if not result.complete:
            logger.warning(
                "Meeting %s saved partially: %d participant(s), %d agenda(s), %d action item(s) failed",
                meeting_id, len(result.failed_participants), len(result.failed_agendas), len(result.failed_action_items),
            )
        return result

    def save_voice_analysis(self, audio_asset_id: int, transcription: TranscriptionResult,
                            structured: StructuredMeeting, processing_seconds: Optional[float] = None) -> dict:
        """文字起こしと分析結果の保存"""
        outcomes = structured.key_outcomes
        topics = [a.title for a in structured.agendas][:10] or structured.analysis_metadata.keywords[:10]
        summary = "; ".join(outcomes.main_decisions) or (structured.agendas[0].discussion if structured.agendas else "")
        try:
            with self._session() as session:
                row = VoiceAnalysisRow(
                    audio_file_id=audio_asset_id,
                    transcription_text=transcription.text,
                    summary_text=summary or None,
                    key_topics=topics,
                    sentiment_analysis={
                        "overall": outcomes.overall_sentiment,
                        "effectiveness": outcomes.meeting_effectiveness,
                    },
                    speaker_analysis={
                        "participants": [
                            {"name": p.name, "speaking_frequency": p.speaking_frequency}
                            for p in structured.participants
                        ],
                        "language": transcription.language,
                        "duration_seconds": transcription.duration_seconds,
                    },
                    confidence_score=structured.analysis_metadata.confidence_score,
                    processing_time=processing_seconds,
                )
                session.add(row)
                session.commit()
                return _analysis_to_dict(row)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"音声分析結果の保存に失敗しました: {exc}") from exc

    def save_generated_document(self, meeting_id: int, file_name: str, file_path: str, file_format: str,
                                document_type: str = "meeting_minutes", template: str = "default") -> dict:
        try:
            with self._session() as session:
                row = GeneratedDocumentRow(
                    meeting_id=meeting_id,
                    document_type=document_type,
                    file_name=file_name,
                    file_path=str(file_path),
                    file_format=file_format,
                    template_used=template,
                    approval_status="pending",
                )
                session.add(row)
                session.commit()
                return _document_to_dict(row)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"ドキュメント情報の保存に失敗しました: {exc}") from exc

    def get_meeting_list(self, limit: int = 20, offset: int = 0, status: Optional[str] = None) -> dict:
        if status is not None and status not in MEETING_STATUSES:
            raise ValidationError(f"不正なステータスです: {status}")
        try:
            with self._session() as session:
                stmt = select(MeetingRow)
                count_stmt = select(func.count(MeetingRow.id))
                if status:
                    stmt = stmt.where(MeetingRow.status == status)
                    count_stmt = count_stmt.where(MeetingRow.status == status)
                total = session.scalar(count_stmt) or 0
                rows = session.scalars(
                    stmt.order_by(MeetingRow.created_at.desc(), MeetingRow.id.desc()).limit(limit).offset(offset)
                ).all()
                items = []
                for row in rows:
                    data = _meeting_to_dict(row)
                    data["audio_file"] = (
                        {"file_name": row.audio_file.file_name, "original_name": row.audio_file.original_name}
                        if row.audio_file else None
                    )
                    data["participant_count"] = len(row.participants)
                    data["agenda_count"] = len(row.agendas)
                    data["action_item_count"] = len(row.action_items)
                    items.append(data)
                return {"items": items, "total": total, "limit": limit, "offset": offset}
        except SQLAlchemyError as exc:
            raise PersistenceError(f"会議一覧の取得に失敗しました: {exc}") from exc

    def get_meeting_by_id(self, meeting_id: int) -> dict:
        """会議の詳細（音声ファイル・参加者・議題とアクション・ドキュメント・分析結果）"""
        try:
            with self._session() as session:
                row = session.get(MeetingRow, meeting_id)
                if row is None:
                    raise NotFoundError(f"会議が見つかりません: {meeting_id}", user_message="会議が見つかりません")
                data = _meeting_to_dict(row)
                data["key_outcomes"] = dict(row.key_outcomes or {})
                data["analysis_metadata"] = dict(row.analysis_metadata or {})
                data["audio_file"] = _audio_to_dict(row.audio_file) if row.audio_file else None
                data["participants"] = [_participant_to_dict(p) for p in row.participants]
                data["agendas"] = [_agenda_to_dict(a) for a in row.agendas]
                data["action_items"] = [_action_to_dict(a) for a in row.action_items]
                data["documents"] = [_document_to_dict(d) for d in row.documents]
                data["voice_analysis"] = (
                    [_analysis_to_dict(a) for a in row.audio_file.analyses] if row.audio_file else []
                )
                return data
        except SQLAlchemyError as exc:
            raise PersistenceError(f"会議情報の取得に失敗しました: {exc}") from exc

    def get_statistics(self) -> dict:
        try:
            with self._session() as session:
                total_meetings = session.scalar(select(func.count(MeetingRow.id))) or 0
                total_files = session.scalar(select(func.count(AudioFileRow.id))) or 0
                completed = session.scalar(
                    select(func.count(AudioFileRow.id)).where(AudioFileRow.upload_status == "completed")
                ) or 0
                failed = session.scalar(
                    select(func.count(AudioFileRow.id)).where(AudioFileRow.upload_status == "failed")
                ) or 0
                week_ago = datetime.now() - timedelta(days=7)
                recent = session.scalar(
                    select(func.count(MeetingRow.id)).where(MeetingRow.created_at >= week_ago)
                ) or 0
        except SQLAlchemyError as exc:
            raise PersistenceError(f"統計情報の取得に失敗しました: {exc}") from exc

        return {
            "total_meetings": total_meetings,
            "total_audio_files": total_files,
            "completed_files": completed,
            "failed_files": failed,
            "recent_meetings": recent,
            "success_rate": round(completed / total_files * 100, 2) if total_files else 0.0,
        }

    # =========================
    # 会議の管理
    # =========================
    def create_meeting(self, title: str, meeting_date: Optional[str] = None, start_time: Optional[str] = None,
                       end_time: Optional[str] = None, location: Optional[str] = None,
                       meeting_type: str = "定例会議") -> dict:
        """音声なしで会議を手動登録する"""
        if not title or not title.strip():
            raise ValidationError("会議名は必須です", user_message="会議名は必須です")
        try:
            with self._session() as session:
                row = MeetingRow(
                    title=title.strip(),
                    meeting_date=meeting_date,
                    start_time=start_time,
                    end_time=end_time,
                    location=location,
                    meeting_type=meeting_type or "定例会議",
                    status="draft",
                    key_outcomes={},
                    analysis_metadata={},
                )
                session.add(row)
                session.commit()
                return _meeting_to_dict(row)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"会議の作成に失敗しました: {exc}") from exc

    def update_meeting(self, meeting_id: int, fields: dict) -> dict:
        updates = {k: v for k, v in fields.items() if k in MEETING_EDITABLE_FIELDS}
        if not updates:
            raise ValidationError("更新する項目がありません")
        if "title" in updates and not (updates["title"] or "").strip():
            raise ValidationError("会議名は必須です", user_message="会議名は必須です")
        if "meeting_type" in updates and not (updates["meeting_type"] or "").strip():
            raise ValidationError("会議種別は空にできません", user_message="会議種別は空にできません")
        try:
            with self._session() as session:
                row = session.get(MeetingRow, meeting_id)
                if row is None:
                    raise NotFoundError(f"会議が見つかりません: {meeting_id}", user_message="会議が見つかりません")
                for key, value in updates.items():
                    setattr(row, MEETING_EDITABLE_FIELDS[key], value)
                session.commit()
                return _meeting_to_dict(row)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"会議の更新に失敗しました: {exc}") from exc

    def delete_meeting(self, meeting_id: int) -> None:
        try:
            with self._session() as session:
                row = session.get(MeetingRow, meeting_id)
                if row is None:
                    raise NotFoundError(f"会議が見つかりません: {meeting_id}", user_message="会議が見つかりません")
                session.delete(row)
                session.commit()
                logger.info("Meeting deleted: id=%s", meeting_id)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"会議の削除に失敗しました: {exc}") from exc

    def update_approval_status(self, meeting_id: int, status: str, approved_by: Optional[str] = None) -> dict:
        """draft → approved / rejected、approved / rejected → archived"""
        if status not in MEETING_STATUSES:
            raise ValidationError(f"不正な承認ステータスです: {status}")
        try:
            with self._session() as session:
                row = session.get(MeetingRow, meeting_id)
                if row is None:
                    raise NotFoundError(f"会議が見つかりません: {meeting_id}", user_message="会議が見つかりません")
                if status not in MEETING_TRANSITIONS.get(row.status, set()):
                    raise ValidationError(
                        f"ステータスを {row.status} から {status} に変更できません",
                        detail={"current": row.status, "requested": status},
                    )
                row.status = status
                if status in ("approved", "rejected"):
                    row.approved_by = approved_by
                    row.approved_at = datetime.now()
                    for doc in row.documents:
                        doc.approval_status = status
                session.commit()
                logger.info("Meeting %s status -> %s (%s)", meeting_id, status, approved_by or "-")
                return _meeting_to_dict(row)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"承認ステータスの更新に失敗しました: {exc}") from exc

    # =========================
    # アクションアイテム
    # =========================
    def get_pending_action_items(self, exclude_meeting_id: Optional[int] = None, limit: int = 20) -> list[dict]:
        """
        未完了のアクションアイテムを会議をまたいで取得する（期限の近い順、期限なしは最後）

        Args:
            exclude_meeting_id: 除外する会議（再生成中の会議自身など）
            limit: 最大件数
        """
        stmt = (
            select(ActionItemRow, MeetingRow.title, MeetingRow.meeting_date)
            .join(MeetingRow, ActionItemRow.meeting_id == MeetingRow.id)
            .where(ActionItemRow.status != "completed")
            .order_by(ActionItemRow.due_date.is_(None), ActionItemRow.due_date, ActionItemRow.id)
            .limit(limit)
        )
        if exclude_meeting_id is not None:
            stmt = stmt.where(ActionItemRow.meeting_id != exclude_meeting_id)
        try:
            with self._session() as session:
                return [
                    {**_action_to_dict(row), "meeting_title": title, "meeting_date": meeting_date}
                    for row, title, meeting_date in session.execute(stmt).all()
                ]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"未完了アクションアイテムの取得に失敗しました: {exc}") from exc

    def get_action_items(self, meeting_id: int) -> dict:
        try:
            with self._session() as session:
                if session.get(MeetingRow, meeting_id) is None:
                    raise NotFoundError(f"会議が見つかりません: {meeting_id}", user_message="会議が見つかりません")
                rows = session.scalars(
                    select(ActionItemRow).where(ActionItemRow.meeting_id == meeting_id).order_by(ActionItemRow.id)
                ).all()
                items = [_action_to_dict(r) for r in rows]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"アクションアイテムの取得に失敗しました: {exc}") from exc
        return {
            "items": items,
            "total": len(items),
            "open": sum(1 for i in items if i["status"] == "open"),
            "completed": sum(1 for i in items if i["status"] == "completed"),
        }

    def update_action_item(self, action_id: int, status: Optional[str] = None, notes: Optional[str] = None,
                           completion_date: Any = None) -> dict:
        if status is not None and status not in ACTION_STATUSES:
            raise ValidationError(f"不正なステータスです: {status}")
        completion = _parse_date(completion_date, "completion_date")
        try:
            with self._session() as session:
                row = session.get(ActionItemRow, action_id)
                if row is None:
                    raise NotFoundError(f"アクションアイテムが見つかりません: {action_id}")
                if status is not None:
                    row.status = status
                    if status == "completed":
                        row.completion_date = completion or date.today()
                    else:
                        row.completion_date = None
                elif completion is not None:
                    row.completion_date = completion
                if notes is not None:
                    row.notes = notes
                session.commit()
                return _action_to_dict(row)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"アクションアイテムの更新に失敗しました: {exc}") from exc

    # =========================
    # 保存データからの再構成
    # =========================
    @staticmethod
    def reconstruct_structure(meeting: dict) -> StructuredMeeting:
        """get_meeting_by_id の結果から StructuredMeeting を組み立て直す"""
        agenda_ids = {a["id"] for a in meeting.get("agendas", [])}
        agendas = []
        for a in meeting.get("agendas", []):
            agendas.append({
                "order": a.get("agenda_order"),
                "title": a.get("title"),
                "discussion": a.get("discussion"),
                "key_points": a.get("key_points") or [],
                "decisions": a.get("decisions"),
                "action_items": [
                    {
                        "task": i["task_description"],
                        "assignee": i.get("assignee"),
                        "deadline": i.get("due_date"),
                        "priority": i.get("priority"),
                    }
                    for i in a.get("action_items", [])
                ],
            })
        # 議題に紐付かないアクションアイテム
        orphans = [i for i in meeting.get("action_items", []) if i.get("agenda_id") not in agenda_ids]
        if orphans:
            agendas.append({
                "order": len(agendas) + 1,
                "title": "その他のアクションアイテム",
                "action_items": [
                    {
                        "task": i["task_description"],
                        "assignee": i.get("assignee"),
                        "deadline": i.get("due_date"),
                        "priority": i.get("priority"),
                    }
                    for i in orphans
                ],
            })

        return StructuredMeeting.model_validate({
            "meeting_info": {
                "title": meeting.get("title"),
                "estimated_date": meeting.get("meeting_date"),
                "estimated_start_time": meeting.get("start_time"),
                "estimated_end_time": meeting.get("end_time"),
                "location": meeting.get("location"),
                "meeting_type": meeting.get("meeting_type"),
            },
            "participants": [
                {
                    "name": p.get("participant_name"),
                    "department": p.get("department"),
                    "role": p.get("role"),
                    "speaking_frequency": speaking_frequency_from_fraction(p.get("speaking_time")),
                    "key_contributions": p.get("key_contributions") or [],
                }
                for p in meeting.get("participants", [])
            ],
            "agendas": agendas,
            "key_outcomes": meeting.get("key_outcomes") or {},
            "analysis_metadata": meeting.get("analysis_metadata") or {},
        })
