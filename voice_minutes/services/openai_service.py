"""
OpenAIサービスモジュール
Whisper文字起こしとGPTによる議事録の構造化・本文生成を提供
"""
import json
import logging
import re
from collections import Counter
from pathlib import Path
from typing import Any, Optional

from openai import OpenAI, OpenAIError
from pydantic import ValidationError as SchemaError

from voice_minutes.errors import StructuringError, TranscriptionError
from voice_minutes.models import StructuredMeeting, TranscriptionResult, UNASSIGNED
from voice_minutes.services.minutes_text import render_minutes_text

logger = logging.getLogger("voice_minutes.openai")


def create_openai_client(api_key: str, timeout: float = 120.0, max_retries: int = 3) -> OpenAI:
    """プロセス起動時に一度だけ生成し、各サービスへ渡す"""
    return OpenAI(api_key=api_key, timeout=timeout, max_retries=max_retries)


def check_openai_connection(client: OpenAI) -> bool:
    try:
        models = client.models.list()
        return bool(getattr(models, "data", None))
    except OpenAIError as exc:
        logger.error("OpenAI API connection failed: %s", exc)
        return False


def _as_dicts(items: Any) -> list[dict]:
    out = []
    for item in items or []:
        if isinstance(item, dict):
            out.append(item)
        elif hasattr(item, "model_dump"):
            out.append(item.model_dump())
        else:
            out.append(dict(vars(item)))
    return out


class Transcriber:
    """Whisperで音声ファイルを文字起こしする"""

    def __init__(self, client: OpenAI, model: str = "whisper-1", default_language: str = "ja"):
        self._client = client
        self._model = model
        self._default_language = default_language

    def transcribe(self, audio_file_path: Path, language: Optional[str] = None) -> TranscriptionResult:
        """
        Whisperで音声ファイルを文字起こし

        Args:
            audio_file_path: 音声ファイルのパス
            language: 言語コード（省略時は設定値）

        Returns:
            文字起こし結果（テキスト・単語/セグメントのタイミング）

        Raises:
            TranscriptionError: ファイルが無い、API呼び出しに失敗、またはテキストが空の場合
        """
        audio_file_path = Path(audio_file_path)
        if not audio_file_path.exists():
            raise TranscriptionError(f"音声ファイルが見つかりません: {audio_file_path}")

        lang = language or self._default_language
        logger.info("Transcription start: %s (language=%s)", audio_file_path.name, lang)
        try:
            with audio_file_path.open("rb") as f:
                result = self._client.audio.transcriptions.create(
                    model=self._model,
                    file=f,
                    language=lang,
                    response_format="verbose_json",
                    timestamp_granularities=["word", "segment"],
                    temperature=0.1,
                )
        except OpenAIError as exc:
            logger.error("Transcription failed: %s", exc)
            raise TranscriptionError(f"音声変換に失敗しました: {exc}") from exc

        text = (getattr(result, "text", "") or "").strip()
        # HTTP 200でもテキストが空なら失敗として扱う
        if not text:
            raise TranscriptionError("音声からテキストを抽出できませんでした")

        logger.info("Transcription done: %d chars", len(text))
        return TranscriptionResult(
            text=text,
            language=getattr(result, "language", None) or lang,
            duration_seconds=getattr(result, "duration", None),
            words=_as_dicts(getattr(result, "words", None)),
            segments=_as_dicts(getattr(result, "segments", None)),
        )


STRUCTURE_SYSTEM_PROMPT = """You are a professional meeting minutes assistant.
Analyze the meeting transcript and extract structured information accurately.

Rules:
- Distinguish speakers as far as the transcript allows.
- Action items must be concrete. Include the assignee and deadline when they are mentioned.
  If no assignee is mentioned use "未定". Deadlines must be YYYY-MM-DD or null.
- Keep decisions and discussion separate. Each agenda item has at most one decision.
- priority and speaking_frequency must be one of "high", "medium", "low".
- Respond with a single valid JSON object only."""

STRUCTURE_SCHEMA_HINT = """{
  "meeting_info": {
    "title": "会議の主題（推定）",
    "estimated_date": "YYYY-MM-DD",
    "estimated_start_time": "HH:MM",
    "estimated_end_time": "HH:MM",
    "location": "会議の場所（言及があれば）",
    "meeting_type": "定例会議/臨時会議/プロジェクト会議/その他"
  },
  "participants": [
    {
      "name": "参加者名",
      "department": "所属部署",
      "role": "役割・役職",
      "speaking_frequency": "high/medium/low",
      "key_contributions": ["主な発言"]
    }
  ],
  "agendas": [
    {
      "order": 1,
      "title": "議題",
      "discussion": "議論内容の要約（2〜3文）",
      "key_points": ["要点"],
      "decisions": "決定事項",
      "action_items": [
        {"task": "具体的なタスク", "assignee": "担当者", "deadline": "YYYY-MM-DD", "priority": "high/medium/low"}
      ]
    }
  ],
  "key_outcomes": {
    "main_decisions": ["主な決定事項"],
    "unresolved_issues": ["未解決の課題"],
    "next_meeting_items": ["次回の議題"],
    "overall_sentiment": "positive/neutral/negative",
    "meeting_effectiveness": "high/medium/low"
  },
  "analysis_metadata": {
    "confidence_score": 0.85,
    "processing_notes": "分析時の特記事項",
    "potential_improvements": ["会議運営の改善点"]
  }
}"""


def _strip_code_fence(content: str) -> str:
    # JSONコードブロックを除去
    if "```" in content:
        content = content.split("```")[1]
        if content.strip().startswith("json"):
            content = content.split("\n", 1)[1] if "\n" in content else ""
    return content.strip()


def parse_structured_meeting(content: Optional[str]) -> StructuredMeeting:
    """
    GPTの応答文字列を検証済みの StructuredMeeting に変換する

    Raises:
        StructuringError: JSONとして解析できない、またはスキーマに合わない場合
    """
    if not content or not content.strip():
        raise StructuringError("GPTの応答が空です")
    try:
        data = json.loads(_strip_code_fence(content))
    except json.JSONDecodeError as exc:
        raise StructuringError(f"JSONの解析に失敗しました: {exc}") from exc
    if not isinstance(data, dict):
        raise StructuringError("GPTの応答がJSONオブジェクトではありません")
    try:
        return StructuredMeeting.model_validate(data)
    except SchemaError as exc:
        raise StructuringError("構造化データがスキーマに一致しません", detail=exc.errors(include_url=False, include_context=False)) from exc


# 頻度カウントから除外する語
STOP_WORDS = {
    "えー", "えっと", "あの", "その", "この", "それ", "これ", "あれ", "まあ", "ちょっと",
    "はい", "ええ", "そう", "です", "ます", "でも", "けど", "から", "ので",
    "the", "and", "that", "this", "with", "for", "you", "are", "was", "have", "will", "we",
}

_TOKEN_RE = re.compile(r"\w{2,}")


def extract_keywords(text: str, limit: int = 10) -> list[str]:
    """出現頻度の高い語を返す（同数の場合は先に出現した語を優先）"""
    tokens = [t for t in _TOKEN_RE.findall(text or "") if t.lower() not in STOP_WORDS and not t.isdigit()]
    return [word for word, _ in Counter(tokens).most_common(limit)]


def build_fallback_structure(text: str) -> StructuredMeeting:
    """
    構造化に失敗した場合の決定的な代替構造
    ローカルの頻度カウントで抽出したキーワードのみを使う
    """
    keywords = extract_keywords(text)
    return StructuredMeeting.model_validate({
        "meeting_info": {"title": "音声会議議事録", "meeting_type": "定例会議"},
        "participants": [],
        "agendas": [{
            "order": 1,
            "title": "会議内容の確認",
            "discussion": "自動分析に失敗したため、主要キーワードのみを抽出しました。",
            "key_points": keywords,
            "decisions": None,
            "action_items": [{
                "task": "議事録の内容を確認する",
                "assignee": UNASSIGNED,
                "priority": "medium",
            }],
        }],
        "key_outcomes": {
            "main_decisions": [],
            "unresolved_issues": ["自動分析の結果を手動で確認する必要があります"],
            "next_meeting_items": [],
        },
        "analysis_metadata": {
            "confidence_score": 0.0,
            "processing_notes": "fallback: structured analysis unavailable",
            "keywords": keywords,
            "fallback": True,
        },
    })


class MeetingStructurer:
    """GPTで文字起こしテキストを構造化された議事録にする"""

    def __init__(self, client: OpenAI, model: str = "gpt-4o", temperature: float = 0.3, max_tokens: int = 4000):
        self._client = client
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    @property
    def model(self) -> str:
        return self._model

    def extract_structure(self, raw_text: str) -> StructuredMeeting:
        """
        Raises:
            StructuringError: API呼び出し、JSON解析、スキーマ検証のいずれかに失敗した場合
        """
        logger.info("Structuring start: %d chars", len(raw_text or ""))
        user_prompt = (
            "以下は会議の文字起こしです。内容を分析してください。\n---\n"
            f"{raw_text}\n---\n"
            "次のJSON形式で情報を整理してください:\n"
            f"{STRUCTURE_SCHEMA_HINT}"
        )
        try:
            resp = self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": STRUCTURE_SYSTEM_PROMPT},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                response_format={"type": "json_object"},
            )
        except OpenAIError as exc:
            raise StructuringError(f"会議内容の構造化に失敗しました: {exc}") from exc

        content = resp.choices[0].message.content if resp.choices else None
        structured = parse_structured_meeting(content)
        logger.info(
            "Structuring done: %d participants, %d agendas",
            len(structured.participants), len(structured.agendas),
        )
        return structured

    def extract_structure_or_fallback(self, raw_text: str) -> tuple[StructuredMeeting, bool]:
        """構造化に失敗した場合は代替構造を返す。戻り値の2番目は代替構造を使ったかどうか。"""
        try:
            return self.extract_structure(raw_text), False
        except StructuringError as exc:
            logger.warning("Structuring failed, using fallback structure: %s", exc)
            return build_fallback_structure(raw_text), True


MINUTES_SYSTEM_PROMPT = """You are an expert writer of formal corporate meeting minutes.
Write polite, concise, formal Japanese minutes from the structured meeting data.
State action items concretely with assignee and deadline. Output plain text only."""


class LLMMinutesWriter:
    """
    議事録本文をGPTで生成する（MINUTES_NARRATIVE_MODE=llm の場合）
    生成に失敗した場合はテンプレートで組み立てる
    """

    def __init__(self, client: OpenAI, model: str = "gpt-4o"):
        self._client = client
        self._model = model

    def generate(self, structured: StructuredMeeting, pending_actions: Optional[list[dict]] = None) -> str:
        template = render_minutes_text(structured, pending_actions=pending_actions)
        user_prompt = (
            "次の構造化された会議情報をもとに、正式な議事録を作成してください。\n\n"
            f"{structured.model_dump_json(indent=2)}\n\n"
            "以下の形式に従ってください:\n\n"
            f"{template}"
        )
        try:
            resp = self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": MINUTES_SYSTEM_PROMPT},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=0.2,
                max_tokens=3000,
            )
            text = (resp.choices[0].message.content or "").strip() if resp.choices else ""
        except OpenAIError as exc:
            logger.warning("Minutes generation failed, using template: %s", exc)
            return template
        return text or template


class TemplateMinutesWriter:
    """テンプレートのみで議事録本文を組み立てる（既定）"""

    def generate(self, structured: StructuredMeeting, pending_actions: Optional[list[dict]] = None) -> str:
        return render_minutes_text(structured, pending_actions=pending_actions)
