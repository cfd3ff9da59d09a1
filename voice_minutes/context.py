"""
プロセス起動時に一度だけ組み立てるサービス群

ルーターやCLIはモジュールレベルのクライアントを参照せず、このオブジェクトを受け取る。
"""
import logging
from dataclasses import dataclass
from typing import Optional

from openai import OpenAI

from voice_minutes.config import Settings
from voice_minutes.services.db import create_engine_for, create_session_factory
from voice_minutes.services.document_service import DocumentRenderer
from voice_minutes.services.intake import AudioIntake
from voice_minutes.services.meeting_repository import MeetingRepository
from voice_minutes.services.openai_service import (
    LLMMinutesWriter,
    MeetingStructurer,
    TemplateMinutesWriter,
    Transcriber,
    check_openai_connection,
    create_openai_client,
)
from voice_minutes.services.pipeline import MinutesPipeline, Publishers
from voice_minutes.services.slack_service import SlackPublisher
from voice_minutes.services.webhook_service import WebhookNotifier
from voice_minutes.services.wiki_service import WikiPublisher

logger = logging.getLogger("voice_minutes.context")


@dataclass
class Services:
    settings: Settings
    repository: MeetingRepository
    intake: AudioIntake
    renderer: DocumentRenderer
    pipeline: MinutesPipeline
    publishers: Publishers
    openai_client: Optional[OpenAI] = None

    def health_checks(self) -> dict:
        """GET /health と起動時に並列実行するチェック"""
        wiki = self.publishers.wiki
        return {
            "openai": (lambda: check_openai_connection(self.openai_client)) if self.openai_client else None,
            "database": self.repository.check_connection,
            "wiki": wiki.check_connection if wiki is not None and wiki.configured else None,
        }


def build_publishers(settings: Settings) -> Publishers:
    """設定のある公開先だけを有効にする"""
    publishers = Publishers()
    if settings.wiki_base_url and settings.wiki_api_token:
        publishers.wiki = WikiPublisher(
            settings.wiki_base_url, settings.wiki_api_token, settings.wiki_space_key, timeout=settings.publish_timeout
        )
    if settings.n8n_webhook_url:
        publishers.webhook = WebhookNotifier(settings.n8n_webhook_url, timeout=settings.publish_timeout)
    if settings.slack_bot_token and settings.slack_channel_id:
        publishers.slack = SlackPublisher(settings.slack_bot_token, settings.slack_channel_id)
    return publishers


def build_services(settings: Settings, openai_client: Optional[OpenAI] = None) -> Services:
    settings.ensure_dirs()
    client = openai_client or create_openai_client(
        settings.openai_api_key, timeout=settings.openai_timeout, max_retries=settings.openai_max_retries
    )
    engine = create_engine_for(settings.database_url)
    repository = MeetingRepository(create_session_factory(engine))
    renderer = DocumentRenderer(settings.summ_dir)
    intake = AudioIntake(settings.upload_dir, settings.upload_max_size, settings.max_files_per_request)
    publishers = build_publishers(settings)

    if settings.minutes_narrative_mode == "llm":
        writer = LLMMinutesWriter(client, settings.structure_model)
    else:
        writer = TemplateMinutesWriter()

    pipeline = MinutesPipeline(
        repository=repository,
        transcriber=Transcriber(client, settings.whisper_model, settings.transcribe_language),
        structurer=MeetingStructurer(client, settings.structure_model),
        minutes_writer=writer,
        renderer=renderer,
        publishers=publishers,
        transcripts_dir=settings.trans_dir,
    )
    logger.info(
        "Services ready: db=%s narrative=%s sinks=%s",
        engine.url.get_backend_name(),
        settings.minutes_narrative_mode,
        ",".join(n for n in ("wiki", "webhook", "slack") if getattr(publishers, n)) or "-",
    )
    return Services(
        settings=settings,
        repository=repository,
        intake=intake,
        renderer=renderer,
        pipeline=pipeline,
        publishers=publishers,
        openai_client=client,
    )
