"""
データモデル定義
GPTが返す構造化議事録のスキーマと文字起こし結果
"""
from datetime import date
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

Level = Literal["low", "medium", "high"]

UNASSIGNED = "未定"

# 発言頻度 → おおよその発言時間比率
SPEAKING_TIME_MAP = {"high": 0.4, "medium": 0.3, "low": 0.2}
DEFAULT_SPEAKING_TIME = 0.25

_LEVEL_ALIASES = {
    "high": "high", "高": "high", "高い": "high", "大": "high",
    "medium": "medium", "mid": "medium", "normal": "medium", "中": "medium", "普通": "medium",
    "low": "low", "低": "low", "低い": "low", "小": "low",
}


def normalize_level(value: Any) -> str:
    """high/medium/low への正規化（不明な値はmedium）"""
    if value is None:
        return "medium"
    return _LEVEL_ALIASES.get(str(value).strip().lower(), "medium")


def speaking_time_fraction(frequency: Optional[str]) -> float:
    return SPEAKING_TIME_MAP.get(frequency or "", DEFAULT_SPEAKING_TIME)


def speaking_frequency_from_fraction(fraction: Optional[float]) -> str:
    if not fraction:
        return "low"
    if fraction > 0.35:
        return "high"
    if fraction > 0.25:
        return "medium"
    return "low"


def _to_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None and str(v).strip()]
    return [str(value)]


def _empty_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class MeetingInfo(BaseModel):
    title: str = "（無題）"
    estimated_date: Optional[str] = None
    estimated_start_time: Optional[str] = None
    estimated_end_time: Optional[str] = None
    location: Optional[str] = None
    meeting_type: str = "定例会議"

    @field_validator("title", mode="before")
    @classmethod
    def _title(cls, v):
        return str(v).strip() if v is not None and str(v).strip() else "（無題）"

    @field_validator("estimated_date", "estimated_start_time", "estimated_end_time", "location", mode="before")
    @classmethod
    def _optional_text(cls, v):
        v = _empty_to_none(v)
        return None if v is None else str(v)

    @field_validator("meeting_type", mode="before")
    @classmethod
    def _meeting_type(cls, v):
        return str(v) if v else "定例会議"


class ParticipantInfo(BaseModel):
    name: str
    department: Optional[str] = None
    role: Optional[str] = None
    speaking_frequency: Level = "medium"
    key_contributions: list[str] = Field(default_factory=list)

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v):
        return str(v).strip() if v is not None and str(v).strip() else "不明"

    @field_validator("department", "role", mode="before")
    @classmethod
    def _optional_text(cls, v):
        v = _empty_to_none(v)
        return None if v is None else str(v)

    @field_validator("speaking_frequency", mode="before")
    @classmethod
    def _frequency(cls, v):
        return normalize_level(v)

    @field_validator("key_contributions", mode="before")
    @classmethod
    def _contributions(cls, v):
        return _to_str_list(v)

    @property
    def speaking_time_fraction(self) -> float:
        return speaking_time_fraction(self.speaking_frequency)


class ActionItemInfo(BaseModel):
    task: str
    assignee: str = UNASSIGNED
    deadline: Optional[date] = None
    priority: Level = "medium"

    @field_validator("assignee", mode="before")
    @classmethod
    def _assignee(cls, v):
        return str(v).strip() if v is not None and str(v).strip() else UNASSIGNED

    @field_validator("deadline", mode="before")
    @classmethod
    def _deadline(cls, v):
        # 「来週中」のような曖昧な期限は保持しない
        if v is None or isinstance(v, date):
            return v
        try:
            return date.fromisoformat(str(v).strip()[:10])
        except ValueError:
            return None

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v):
        return normalize_level(v)


class AgendaInfo(BaseModel):
    order: Optional[int] = None
    title: str
    discussion: str = ""
    key_points: list[str] = Field(default_factory=list)
    decisions: Optional[str] = None
    action_items: list[ActionItemInfo] = Field(default_factory=list)

    @field_validator("order", mode="before")
    @classmethod
    def _order(cls, v):
        try:
            return int(v) if v is not None else None
        except (TypeError, ValueError):
            return None

    @field_validator("discussion", mode="before")
    @classmethod
    def _discussion(cls, v):
        return "" if v is None else str(v)

    @field_validator("key_points", mode="before")
    @classmethod
    def _key_points(cls, v):
        return _to_str_list(v)

    @field_validator("decisions", mode="before")
    @classmethod
    def _decisions(cls, v):
        # 単一の決定事項として扱う（リストは連結）
        if isinstance(v, (list, tuple)):
            v = "; ".join(_to_str_list(v))
        if isinstance(v, dict):
            v = v.get("decision")
        v = _empty_to_none(v)
        return None if v is None else str(v)

    @field_validator("action_items", mode="before")
    @classmethod
    def _action_items(cls, v):
        return v or []


class KeyOutcomes(BaseModel):
    main_decisions: list[str] = Field(default_factory=list)
    unresolved_issues: list[str] = Field(default_factory=list)
    next_meeting_items: list[str] = Field(default_factory=list)
    overall_sentiment: str = "neutral"
    meeting_effectiveness: str = "medium"

    @field_validator("main_decisions", "unresolved_issues", "next_meeting_items", mode="before")
    @classmethod
    def _lists(cls, v):
        return _to_str_list(v)


class AnalysisMetadata(BaseModel):
    confidence_score: float = 0.8
    processing_notes: str = ""
    potential_improvements: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    fallback: bool = False

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _confidence(cls, v):
        try:
            score = float(v)
        except (TypeError, ValueError):
            return 0.8
        return min(max(score, 0.0), 1.0)

    @field_validator("processing_notes", mode="before")
    @classmethod
    def _notes(cls, v):
        return "" if v is None else str(v)

    @field_validator("potential_improvements", "keywords", mode="before")
    @classmethod
    def _lists(cls, v):
        return _to_str_list(v)


class StructuredMeeting(BaseModel):
    """GPTで構造化された議事録"""
    meeting_info: MeetingInfo = Field(default_factory=MeetingInfo)
    participants: list[ParticipantInfo] = Field(default_factory=list)
    agendas: list[AgendaInfo] = Field(default_factory=list)
    key_outcomes: KeyOutcomes = Field(default_factory=KeyOutcomes)
    analysis_metadata: AnalysisMetadata = Field(default_factory=AnalysisMetadata)

    @field_validator("meeting_info", "key_outcomes", "analysis_metadata", mode="before")
    @classmethod
    def _objects(cls, v):
        return v or {}

    @field_validator("participants", "agendas", mode="before")
    @classmethod
    def _arrays(cls, v):
        return v or []

    @model_validator(mode="after")
    def _order_agendas(self):
        # 番号のない議題には位置から番号を振り、order順に並べる
        for index, agenda in enumerate(self.agendas, start=1):
            if agenda.order is None:
                agenda.order = index
        self.agendas.sort(key=lambda a: a.order)
        return self

    def all_action_items(self) -> list[ActionItemInfo]:
        return [item for agenda in self.agendas for item in agenda.action_items]


class TranscriptionResult(BaseModel):
    """Whisperの文字起こし結果"""
    text: str
    language: Optional[str] = None
    duration_seconds: Optional[float] = None
    words: list[dict] = Field(default_factory=list)
    segments: list[dict] = Field(default_factory=list)
