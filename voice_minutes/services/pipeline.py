"""
音声 → 議事録 パイプライン

uploaded → transcribing → structuring → rendering → persisting → publishing → completed
いずれかのステージで失敗した場合は音声ファイルを failed にして PipelineFailure を送出する。
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Protocol, Union

from voice_minutes.errors import MinutesError, PersistenceError, PipelineFailure, PublicationError, RenderError
from voice_minutes.models import StructuredMeeting, TranscriptionResult
from voice_minutes.services.document_service import DocumentRenderer, RenderReport
from voice_minutes.services.intake import AudioIntake, StoredFile
from voice_minutes.services.meeting_repository import MeetingRepository
from voice_minutes.services.minutes_text import render_markdown
from voice_minutes.services.openai_service import MeetingStructurer, Transcriber
from voice_minutes.services.slack_service import SlackPublisher
from voice_minutes.services.webhook_service import WebhookNotifier, build_payload
from voice_minutes.services.wiki_service import WikiPublisher
from voice_minutes.utils.storage import atomic_write_text

logger = logging.getLogger("voice_minutes.pipeline")

STAGES = ("uploaded", "transcribing", "structuring", "rendering", "persisting", "publishing", "completed")

# 音声ファイルのステータスごとの進捗（%）
STATUS_PROGRESS = {"uploaded": 25, "processing": 75, "completed": 100, "failed": 0}

BATCH_FORMATS = "html"


class MinutesWriter(Protocol):
    def generate(self, structured: StructuredMeeting, pending_actions: Optional[list[dict]] = None) -> str: ...


@dataclass
class Publishers:
    wiki: Optional[WikiPublisher] = None
    webhook: Optional[WebhookNotifier] = None
    slack: Optional[SlackPublisher] = None


@dataclass
class PipelineResult:
    audio_file: dict
    meeting: dict
    transcription: TranscriptionResult
    structured: StructuredMeeting
    used_fallback: bool
    minutes_text: str
    render: RenderReport
    document_rows: list[dict] = field(default_factory=list)
    failed_participants: list[dict] = field(default_factory=list)
    failed_agendas: list[dict] = field(default_factory=list)
    failed_action_items: list[dict] = field(default_factory=list)
    pending_action_items: list[dict] = field(default_factory=list)
    publication: dict = field(default_factory=dict)
    processing_seconds: float = 0.0

    def to_dict(self) -> dict:
        return {
            "audio_file": self.audio_file,
            "meeting": self.meeting,
            "transcription": {
                "text": self.transcription.text,
                "language": self.transcription.language,
                "duration_seconds": self.transcription.duration_seconds,
            },
            "structured_data": self.structured.model_dump(mode="json"),
            "used_fallback": self.used_fallback,
            "minutes_text": self.minutes_text,
            "documents": self.render.to_dict()["documents"],
            "document_errors": dict(self.render.errors),
            "failed_participants": self.failed_participants,
            "failed_agendas": self.failed_agendas,
            "failed_action_items": self.failed_action_items,
            "pending_action_items": self.pending_action_items,
            "publication": self.publication,
            "processing_seconds": round(self.processing_seconds, 2),
        }


@dataclass
class BatchItemOutcome:
    file_name: str
    success: bool
    audio_file_id: Optional[int] = None
    meeting_id: Optional[int] = None
    title: Optional[str] = None
    documents: dict = field(default_factory=dict)
    stage: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "file_name": self.file_name,
            "success": self.success,
            "audio_file_id": self.audio_file_id,
            "meeting_id": self.meeting_id,
            "title": self.title,
            "documents": self.documents,
            "stage": self.stage,
            "error": self.error,
        }


@dataclass
class BatchReport:
    results: list[BatchItemOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return self.total - self.successful

    @property
    def success_rate(self) -> float:
        return round(self.successful / self.total * 100, 2) if self.total else 0.0

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "summary": {
                "total": self.total,
                "successful": self.successful,
                "failed": self.failed,
                "success_rate": self.success_rate,
            },
        }


class MinutesPipeline:
    """アップロード済みの音声ファイルから議事録を作る一連の処理"""

    def __init__(
        self,
        repository: MeetingRepository,
        transcriber: Transcriber,
        structurer: MeetingStructurer,
        minutes_writer: MinutesWriter,
        renderer: DocumentRenderer,
        publishers: Optional[Publishers] = None,
        transcripts_dir: Optional[Path] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._repo = repository
        self._transcriber = transcriber
        self._structurer = structurer
        self._writer = minutes_writer
        self._renderer = renderer
        self._publishers = publishers or Publishers()
        self._transcripts_dir = Path(transcripts_dir) if transcripts_dir else None
        self._clock = clock

    # =========================
    # 単一ファイル
    # =========================
    def process(self, stored: StoredFile, language: Optional[str] = None,
                formats: Union[str, list[str], None] = "all", publish: bool = True) -> PipelineResult:
        """
        1ファイルを最後まで処理する

        Raises:
            PipelineFailure: いずれかのステージで失敗した場合（stage と audio_file_id を保持）
        """
        started = time.monotonic()
        stage = "uploaded"
        asset_id: Optional[int] = None
        try:
            asset = self._repo.save_audio_asset(
                file_name=stored.file_name,
                original_name=stored.original_name,
                file_path=str(stored.file_path),
                file_size=stored.file_size,
                mime_type=stored.mime_type,
            )
            asset_id = asset["id"]
            self._repo.update_audio_asset_status(asset_id, "processing")

            stage = "transcribing"
            transcription = self._transcriber.transcribe(Path(stored.file_path), language)
            self._save_transcript(asset_id, transcription)

            stage = "structuring"
            structured, used_fallback = self._structurer.extract_structure_or_fallback(transcription.text)

            stage = "rendering"
            generated_at = self._clock()
            pending_actions = self._pending_actions()
            minutes_text = self._writer.generate(structured, pending_actions=pending_actions)
            report = self._renderer.render(structured, minutes_text, formats, generated_at=generated_at)
            if not report.documents:
                raise RenderError(
                    "すべてのフォーマットでドキュメント生成に失敗しました", detail=dict(report.errors)
                )

            stage = "persisting"
            saved = self._repo.save_meeting(structured, audio_asset_id=asset_id)
            meeting_id = saved.meeting["id"]
            self._repo.save_voice_analysis(
                asset_id, transcription, structured, processing_seconds=time.monotonic() - started
            )
            document_rows = [
                self._repo.save_generated_document(meeting_id, doc.file_name, str(doc.file_path), fmt)
                for fmt, doc in report.documents.items()
            ]

            stage = "publishing"
            publication = {}
            if publish:
                publication = self._publish(structured, minutes_text, report, meeting_id, stored.original_name)

            stage = "completed"
            audio_file = self._repo.update_audio_asset_status(asset_id, "completed")
        except Exception as exc:
            self._fail(stage, exc, asset_id, stored)
            raise PipelineFailure(stage, exc, asset_id) from exc

        elapsed = time.monotonic() - started
        logger.info(
            "Pipeline completed: audio=%s meeting=%s fallback=%s (%.1fs)",
            asset_id, meeting_id, used_fallback, elapsed,
        )
        return PipelineResult(
            audio_file=audio_file,
            meeting=saved.meeting,
            transcription=transcription,
            structured=structured,
            used_fallback=used_fallback,
            minutes_text=minutes_text,
            render=report,
            document_rows=document_rows,
            failed_participants=saved.failed_participants,
            failed_agendas=saved.failed_agendas,
            failed_action_items=saved.failed_action_items,
            pending_action_items=pending_actions,
            publication=publication,
            processing_seconds=elapsed,
        )

    def _fail(self, stage: str, exc: Exception, asset_id: Optional[int], stored: StoredFile) -> None:
        if isinstance(exc, MinutesError):
            logger.error("Pipeline failed at %s (audio=%s): %s", stage, asset_id, exc)
        else:
            logger.exception("Pipeline failed at %s (audio=%s)", stage, asset_id)
        if asset_id is not None:
            try:
                self._repo.update_audio_asset_status(asset_id, "failed", error_message=str(exc))
            except MinutesError as status_exc:
                logger.error("Failed to mark audio %s as failed: %s", asset_id, status_exc)
        # 保存済みの行とドキュメントは残し、アップロードされた音声だけ削除する
        AudioIntake.discard(stored)

    def _save_transcript(self, asset_id: int, transcription: TranscriptionResult) -> None:
        if self._transcripts_dir is None:
            return
        try:
            atomic_write_text(self._transcripts_dir / f"{asset_id}.txt", transcription.text)
        except OSError as exc:
            logger.warning("Transcript file write failed (audio=%s): %s", asset_id, exc)

    def _pending_actions(self, exclude_meeting_id: Optional[int] = None) -> list[dict]:
        """過去の会議の未完了アクション。取得できなくても議事録の作成は続ける"""
        try:
            return self._repo.get_pending_action_items(exclude_meeting_id=exclude_meeting_id)
        except PersistenceError as exc:
            logger.warning("Pending action items unavailable: %s", exc)
            return []

    def _publish(self, structured: StructuredMeeting, minutes_text: str, report: RenderReport,
                 meeting_id: int, source_file: str) -> dict:
        """公開先ごとに独立して実行し、失敗は結果に記録する"""
        title = structured.meeting_info.title
        html_doc = report.documents.get("html")
        minutes_url = html_doc.url if html_doc else None
        results: dict = {}

        wiki = self._publishers.wiki
        if wiki is not None and wiki.configured:
            try:
                results["wiki"] = {"success": True, **wiki.publish(title, render_markdown(structured)).to_dict()}
            except PublicationError as exc:
                results["wiki"] = {"success": False, "error": str(exc)}

        webhook = self._publishers.webhook
        if webhook is not None and webhook.configured:
            documents = {fmt: doc.url for fmt, doc in report.documents.items()}
            payload = build_payload(structured, minutes_text, documents, meeting_id, source_file)
            results["webhook"] = webhook.notify(payload).to_dict()

        slack = self._publishers.slack
        if slack is not None and slack.configured:
            try:
                results["slack"] = {"success": True, **slack.publish(title, structured, minutes_url).to_dict()}
            except PublicationError as exc:
                results["slack"] = {"success": False, "error": str(exc)}

        failed = [sink for sink, r in results.items() if not r.get("success")]
        if failed:
            logger.warning("Publication failed for: %s (meeting=%s)", ", ".join(failed), meeting_id)
        return results

    # =========================
    # 文字起こしのみ
    # =========================
    def transcribe_only(self, stored: StoredFile, language: Optional[str] = None) -> TranscriptionResult:
        """文字起こしだけを行い、アップロードされたファイルは必ず削除する"""
        try:
            return self._transcriber.transcribe(Path(stored.file_path), language)
        finally:
            AudioIntake.discard(stored)

    # =========================
    # 一括処理
    # =========================
    def process_batch(self, files: list[StoredFile], language: Optional[str] = None,
                      publish: bool = True) -> BatchReport:
        """
        複数ファイルを1件ずつ順番に処理する（HTMLのみ生成）
        1件の失敗で残りを中断しない
        """
        report = BatchReport()
        for index, stored in enumerate(files, start=1):
            logger.info("Batch %d/%d: %s", index, len(files), stored.original_name)
            try:
                result = self.process(stored, language=language, formats=BATCH_FORMATS, publish=publish)
            except PipelineFailure as exc:
                report.results.append(BatchItemOutcome(
                    file_name=stored.original_name,
                    success=False,
                    audio_file_id=exc.audio_asset_id,
                    stage=exc.stage,
                    error=exc.message,
                ))
                continue
            report.results.append(BatchItemOutcome(
                file_name=stored.original_name,
                success=True,
                audio_file_id=result.audio_file["id"],
                meeting_id=result.meeting["id"],
                title=result.structured.meeting_info.title,
                documents={fmt: doc.url for fmt, doc in result.render.documents.items()},
            ))
        logger.info(
            "Batch finished: %d/%d succeeded (%.1f%%)", report.successful, report.total, report.success_rate
        )
        return report

    # =========================
    # 保存済みデータからの再生成
    # =========================
    def render_structure(self, structured: StructuredMeeting,
                         formats: Union[str, list[str], None] = "all",
                         exclude_meeting_id: Optional[int] = None) -> RenderReport:
        minutes_text = self._writer.generate(structured, pending_actions=self._pending_actions(exclude_meeting_id))
        return self._renderer.render(structured, minutes_text, formats, generated_at=self._clock())

    def regenerate_documents(self, meeting_id: int, formats: Union[str, list[str], None] = "all",
                             template: str = "default") -> dict:
        meeting = self._repo.get_meeting_by_id(meeting_id)
        structured = self._repo.reconstruct_structure(meeting)
        report = self.render_structure(structured, formats, exclude_meeting_id=meeting_id)
        rows = [
            self._repo.save_generated_document(meeting_id, doc.file_name, str(doc.file_path), fmt, template=template)
            for fmt, doc in report.documents.items()
        ]
        return {
            "meeting_id": meeting_id,
            "documents": report.to_dict()["documents"],
            "errors": dict(report.errors),
            "document_rows": rows,
        }
