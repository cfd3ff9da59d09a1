import json
from datetime import datetime
from pathlib import Path
from types import SimpleNamespace

import pytest
from openai import OpenAIError

from voice_minutes.config import Settings
from voice_minutes.context import Services
from voice_minutes.errors import TranscriptionError
from voice_minutes.models import TranscriptionResult
from voice_minutes.services.db import create_engine_for, create_session_factory
from voice_minutes.services.document_service import DocumentRenderer
from voice_minutes.services.intake import AudioIntake
from voice_minutes.services.meeting_repository import MeetingRepository
from voice_minutes.services.openai_service import MeetingStructurer, TemplateMinutesWriter
from voice_minutes.services.pipeline import MinutesPipeline, Publishers

FIXED_NOW = datetime(2025, 10, 25, 15, 30, 0)

SAMPLE_TRANSCRIPT = (
    "Kim: Let's start the weekly sync. First topic is the budget. "
    "Lee: We agreed to keep the budget flat. Kim, please send the report by November first."
)

SAMPLE_STRUCTURE = {
    "meeting_info": {
        "title": "Weekly Sync",
        "estimated_date": "2025-10-25",
        "estimated_start_time": "14:00",
        "estimated_end_time": "15:00",
        "location": "会議室A",
        "meeting_type": "定例会議",
    },
    "participants": [
        {"name": "Kim", "department": "Finance", "role": "Lead", "speaking_frequency": "high",
         "key_contributions": ["予算の据え置きを提案"]},
        {"name": "Lee", "department": "Sales", "role": "Member", "speaking_frequency": "low"},
    ],
    "agendas": [
        {
            "order": 2,
            "title": "Hiring",
            "discussion": "採用計画について議論した。",
            "key_points": ["エンジニア1名"],
            "decisions": None,
            "action_items": [
                {"task": "Post job listing", "assignee": "", "deadline": "来週中", "priority": "低"},
            ],
        },
        {
            "order": 1,
            "title": "Budget",
            "discussion": "来期予算について議論した。",
            "key_points": ["予算は据え置き"],
            "decisions": "Keep the budget flat",
            "action_items": [
                {"task": "Send report", "assignee": "Kim", "deadline": "2025-11-01", "priority": "high"},
            ],
        },
    ],
    "key_outcomes": {
        "main_decisions": ["Keep the budget flat"],
        "unresolved_issues": ["採用予算の上限"],
        "next_meeting_items": ["採用状況の確認"],
        "overall_sentiment": "positive",
        "meeting_effectiveness": "high",
    },
    "analysis_metadata": {"confidence_score": 0.9, "processing_notes": ""},
}


class FakeTranscriptions:
    def __init__(self, text):
        self.text = text
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if isinstance(self.text, Exception):
            raise self.text
        return SimpleNamespace(
            text=self.text,
            language="ja",
            duration=61.5,
            words=[{"word": "Kim", "start": 0.0, "end": 0.4}],
            segments=[SimpleNamespace(model_dump=lambda: {"id": 0, "start": 0.0, "end": 4.2, "text": "Kim"})],
        )


class FakeCompletions:
    def __init__(self, content):
        self.content = content
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if isinstance(self.content, Exception):
            raise self.content
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))])


class FakeOpenAI:
    """openai.OpenAI のうち使用する部分だけを持つフェイク"""

    def __init__(self, transcript=SAMPLE_TRANSCRIPT, completion=None, models_ok=True):
        if completion is None:
            completion = json.dumps(SAMPLE_STRUCTURE, ensure_ascii=False)
        self.audio = SimpleNamespace(transcriptions=FakeTranscriptions(transcript))
        self.chat = SimpleNamespace(completions=FakeCompletions(completion))
        self.models = SimpleNamespace(list=self._list_models)
        self._models_ok = models_ok

    def _list_models(self):
        if not self._models_ok:
            raise OpenAIError("connection refused")
        return SimpleNamespace(data=[SimpleNamespace(id="whisper-1")])


class FakeTranscriber:
    """ファイル名に fail_marker を含む音声だけ失敗させる"""

    def __init__(self, text=SAMPLE_TRANSCRIPT, fail_marker="broken"):
        self.text = text
        self.fail_marker = fail_marker
        self.calls = []

    def transcribe(self, audio_file_path, language=None):
        self.calls.append(Path(audio_file_path))
        if not Path(audio_file_path).exists():
            raise TranscriptionError(f"音声ファイルが見つかりません: {audio_file_path}")
        if self.fail_marker and self.fail_marker in Path(audio_file_path).read_bytes().decode("latin-1"):
            raise TranscriptionError("音声からテキストを抽出できませんでした")
        return TranscriptionResult(text=self.text, language=language or "ja", duration_seconds=61.5)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        app_env="test",
        openai_api_key="sk-test",
        database_url="sqlite://",
        data_dir=tmp_path / "data",
    )


@pytest.fixture
def repository():
    engine = create_engine_for("sqlite://")
    return MeetingRepository(create_session_factory(engine))


@pytest.fixture
def renderer(settings):
    return DocumentRenderer(settings.summ_dir)


@pytest.fixture
def intake(settings):
    return AudioIntake(settings.upload_dir, max_size=1024 * 1024, max_files=5)


@pytest.fixture
def fake_openai():
    return FakeOpenAI()


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def structured():
    from voice_minutes.models import StructuredMeeting

    return StructuredMeeting.model_validate(SAMPLE_STRUCTURE)


@pytest.fixture
def make_pipeline(repository, renderer, settings, transcriber, fake_openai):
    def _make(structurer=None, publishers=None, transcriber_override=None):
        return MinutesPipeline(
            repository=repository,
            transcriber=transcriber_override or transcriber,
            structurer=structurer or MeetingStructurer(fake_openai),
            minutes_writer=TemplateMinutesWriter(),
            renderer=renderer,
            publishers=publishers,
            transcripts_dir=settings.trans_dir,
            clock=lambda: FIXED_NOW,
        )

    return _make


@pytest.fixture
def services(settings, repository, renderer, intake, make_pipeline):
    settings.ensure_dirs()
    return Services(
        settings=settings,
        repository=repository,
        intake=intake,
        renderer=renderer,
        pipeline=make_pipeline(),
        publishers=Publishers(),
        openai_client=None,
    )


@pytest.fixture
def stored_audio(intake):
    """uploads/ に保存済みのダミー音声を作る"""
    def _store(name="meeting.mp3", content=b"ID3 fake audio bytes"):
        import io

        return intake.store(io.BytesIO(content), name, "audio/mpeg")

    return _store
