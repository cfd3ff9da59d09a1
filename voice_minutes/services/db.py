"""
データベース定義（SQLAlchemy ORM）
Supabase の Postgres を DATABASE_URL で接続する。テストでは SQLite を使う。
"""
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    func,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, sessionmaker
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    pass


class AudioFileRow(Base):
    __tablename__ = "audio_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, default=0)
    mime_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    upload_status: Mapped[str] = mapped_column(String(20), default="uploaded")
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, server_default=func.now())
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    meetings: Mapped[list["MeetingRow"]] = relationship(back_populates="audio_file")
    analyses: Mapped[list["VoiceAnalysisRow"]] = relationship(
        back_populates="audio_file", cascade="all, delete-orphan"
    )


class MeetingRow(Base):
    __tablename__ = "meetings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    audio_file_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("audio_files.id", ondelete="SET NULL"), nullable=True
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    meeting_date: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    start_time: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    end_time: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    meeting_type: Mapped[str] = mapped_column(String(50), default="定例会議")
    status: Mapped[str] = mapped_column(String(20), default="draft")
    approved_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    key_outcomes: Mapped[dict] = mapped_column(JSON, default=dict)
    analysis_metadata: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, server_default=func.now(), onupdate=datetime.now)

    audio_file: Mapped[Optional[AudioFileRow]] = relationship(back_populates="meetings")
    participants: Mapped[list["ParticipantRow"]] = relationship(
        back_populates="meeting", cascade="all, delete-orphan", order_by="ParticipantRow.id"
    )
    agendas: Mapped[list["AgendaRow"]] = relationship(
        back_populates="meeting", cascade="all, delete-orphan", order_by="AgendaRow.agenda_order"
    )
    action_items: Mapped[list["ActionItemRow"]] = relationship(
        back_populates="meeting", cascade="all, delete-orphan", order_by="ActionItemRow.id"
    )
    documents: Mapped[list["GeneratedDocumentRow"]] = relationship(
        back_populates="meeting", cascade="all, delete-orphan", order_by="GeneratedDocumentRow.id"
    )


class ParticipantRow(Base):
    __tablename__ = "meeting_participants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    meeting_id: Mapped[int] = mapped_column(ForeignKey("meetings.id", ondelete="CASCADE"), nullable=False)
    participant_name: Mapped[str] = mapped_column(String(100), nullable=False)
    department: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    role: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    speaking_time: Mapped[float] = mapped_column(Float, default=0.25)
    key_contributions: Mapped[list] = mapped_column(JSON, default=list)

    meeting: Mapped[MeetingRow] = relationship(back_populates="participants")


class AgendaRow(Base):
    __tablename__ = "meeting_agendas"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    meeting_id: Mapped[int] = mapped_column(ForeignKey("meetings.id", ondelete="CASCADE"), nullable=False)
    agenda_order: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    discussion: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    key_points: Mapped[list] = mapped_column(JSON, default=list)
    decisions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    meeting: Mapped[MeetingRow] = relationship(back_populates="agendas")
    action_items: Mapped[list["ActionItemRow"]] = relationship(
        back_populates="agenda", order_by="ActionItemRow.id"
    )


class ActionItemRow(Base):
    __tablename__ = "action_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    meeting_id: Mapped[int] = mapped_column(ForeignKey("meetings.id", ondelete="CASCADE"), nullable=False)
    agenda_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("meeting_agendas.id", ondelete="SET NULL"), nullable=True
    )
    task_description: Mapped[str] = mapped_column(Text, nullable=False)
    assignee: Mapped[str] = mapped_column(String(100), default="未定")
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    priority: Mapped[str] = mapped_column(String(10), default="medium")
    status: Mapped[str] = mapped_column(String(20), default="open")
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completion_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, server_default=func.now())

    meeting: Mapped[MeetingRow] = relationship(back_populates="action_items")
    agenda: Mapped[Optional[AgendaRow]] = relationship(back_populates="action_items")


class GeneratedDocumentRow(Base):
    __tablename__ = "generated_documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    meeting_id: Mapped[int] = mapped_column(ForeignKey("meetings.id", ondelete="CASCADE"), nullable=False)
    document_type: Mapped[str] = mapped_column(String(50), default="meeting_minutes")
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    file_format: Mapped[str] = mapped_column(String(10), nullable=False)
    template_used: Mapped[str] = mapped_column(String(50), default="default")
    approval_status: Mapped[str] = mapped_column(String(20), default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, server_default=func.now())

    meeting: Mapped[MeetingRow] = relationship(back_populates="documents")


class VoiceAnalysisRow(Base):
    __tablename__ = "voice_analysis"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    audio_file_id: Mapped[int] = mapped_column(ForeignKey("audio_files.id", ondelete="CASCADE"), nullable=False)
    transcription_text: Mapped[str] = mapped_column(Text, nullable=False)
    summary_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    key_topics: Mapped[list] = mapped_column(JSON, default=list)
    sentiment_analysis: Mapped[dict] = mapped_column(JSON, default=dict)
    speaker_analysis: Mapped[dict] = mapped_column(JSON, default=dict)
    confidence_score: Mapped[float] = mapped_column(Float, default=0.8)
    processing_time: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, server_default=func.now())

    audio_file: Mapped[AudioFileRow] = relationship(back_populates="analyses")


def create_engine_for(database_url: str, echo: bool = False) -> Engine:
    """DATABASE_URL からエンジンを作る（SQLiteインメモリは単一接続を共有）"""
    if database_url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def create_session_factory(engine: Engine, create_tables: bool = True) -> sessionmaker:
    if create_tables:
        Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)
