"""
ドキュメント生成サービス
構造化された議事録から HTML / DOCX / JSON を生成して summaries/ に保存する
"""
import html
import io
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Union

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Pt

from voice_minutes.errors import NotFoundError, RenderError, ValidationError
from voice_minutes.models import StructuredMeeting
from voice_minutes.services.minutes_text import AUTHOR, format_datetime_line, format_participant
from voice_minutes.utils.storage import atomic_write_bytes, atomic_write_text

logger = logging.getLogger("voice_minutes.documents")

SUPPORTED_FORMATS = ("html", "docx", "json")
GENERATOR = "voice-minutes-v1.0"
FORMAT_VERSION = "1.0"

CONTENT_TYPES = {
    ".html": "text/html; charset=utf-8",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".json": "application/json; charset=utf-8",
}

TEMPLATES = [
    {"id": "default", "name": "標準議事録", "description": "標準的な議事録の形式", "formats": ["html", "docx", "json"]},
    {"id": "executive", "name": "役員会議議事録", "description": "役員会議向けの簡潔な形式", "formats": ["html", "docx"]},
    {"id": "technical", "name": "技術会議議事録", "description": "開発チーム向けの詳細な形式", "formats": ["html", "json"]},
]


@dataclass
class RenderedDocument:
    format: str
    file_name: str
    file_path: Path
    url: str

    def to_dict(self) -> dict:
        return {"format": self.format, "file_name": self.file_name, "file_path": str(self.file_path), "url": self.url}


@dataclass
class RenderReport:
    """フォーマットごとの生成結果とエラー"""
    documents: dict[str, RenderedDocument] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return bool(self.documents) and not self.errors

    def to_dict(self) -> dict:
        return {
            "documents": {fmt: doc.to_dict() for fmt, doc in self.documents.items()},
            "errors": dict(self.errors),
        }


def normalize_formats(formats: Union[str, Iterable[str], None]) -> list[str]:
    """'all' / 'html,docx' / ['html'] を正規化する（順序は html, docx, json）"""
    if formats is None:
        return list(SUPPORTED_FORMATS)
    if isinstance(formats, str):
        requested = {f.strip().lower() for f in formats.split(",") if f.strip()}
    else:
        requested = {str(f).strip().lower() for f in formats}
    if not requested or "all" in requested:
        return list(SUPPORTED_FORMATS)
    unknown = requested - set(SUPPORTED_FORMATS)
    if unknown:
        raise ValidationError(
            f"未対応のフォーマットです: {', '.join(sorted(unknown))}",
            user_message=f"対応フォーマット: {', '.join(SUPPORTED_FORMATS)}",
        )
    return [f for f in SUPPORTED_FORMATS if f in requested]


def _e(s) -> str:
    return html.escape("" if s is None else str(s))


HTML_STYLE = """
        body { font-family: 'Hiragino Sans', 'Noto Sans JP', 'Meiryo', Arial, sans-serif; line-height: 1.6; margin: 0; padding: 40px; background-color: #f8f9fa; }
        .container { max-width: 800px; margin: 0 auto; background: white; padding: 40px; border-radius: 8px; box-shadow: 0 2px 10px rgba(0,0,0,0.1); }
        .header { text-align: center; border-bottom: 3px solid #2563eb; padding-bottom: 20px; margin-bottom: 40px; }
        .header h1 { color: #2563eb; margin: 0; font-size: 28px; }
        .section { margin-bottom: 30px; }
        .section-title { background: #2563eb; color: white; padding: 10px 15px; margin: 0 0 15px 0; font-size: 16px; border-radius: 4px; }
        .info-table { width: 100%; border-collapse: collapse; margin-bottom: 20px; }
        .info-table th, .info-table td { border: 1px solid #e5e7eb; padding: 12px; text-align: left; }
        .info-table th { background-color: #f3f4f6; width: 150px; }
        .participant { background: #f3f4f6; padding: 8px 12px; margin: 5px 0; border-radius: 4px; border-left: 4px solid #2563eb; }
        .agenda { border: 1px solid #e5e7eb; border-radius: 8px; padding: 20px; margin: 15px 0; }
        .agenda-title { color: #2563eb; font-size: 18px; font-weight: bold; margin-bottom: 10px; }
        .agenda-content { margin: 10px 0; }
        .action-item { background: #fff3cd; border: 1px solid #ffeaa7; border-radius: 4px; padding: 10px; margin: 8px 0; }
        .decision-item { background: #d4edda; border: 1px solid #c3e6cb; border-radius: 4px; padding: 10px; margin: 8px 0; }
        .footer { margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; text-align: right; color: #6b7280; font-size: 14px; }
        @media print { body { background: white; padding: 0; } .container { box-shadow: none; } }
"""


def _html_list(items: list[str]) -> str:
    return "<ul>" + "".join(f"<li>{_e(i)}</li>" for i in items) + "</ul>"


def build_html(structured: StructuredMeeting, generated_at: datetime) -> str:
    info = structured.meeting_info
    outcomes = structured.key_outcomes
    today = generated_at.strftime("%Y-%m-%d")

    participants_html = []
    for p in structured.participants:
        block = f'<div class="participant"><strong>{_e(p.name)}</strong>'
        if p.department:
            block += f" ({_e(p.department)})"
        if p.role:
            block += f" - {_e(p.role)}"
        if p.key_contributions:
            block += f"<br><small>主な発言: {_e(', '.join(p.key_contributions[:2]))}</small>"
        participants_html.append(block + "</div>")

    agendas_html = []
    for index, agenda in enumerate(structured.agendas, start=1):
        parts = [
            '<div class="agenda">',
            f'<div class="agenda-title">{index}. {_e(agenda.title)}</div>',
            f'<div class="agenda-content"><strong>議論内容:</strong><br>{_e(agenda.discussion or "記載なし")}</div>',
        ]
        if agenda.key_points:
            parts.append(f'<div class="agenda-content"><strong>要点:</strong>{_html_list(agenda.key_points)}</div>')
        if agenda.decisions:
            parts.append(f'<div class="decision-item"><strong>決定事項:</strong> {_e(agenda.decisions)}</div>')
        if agenda.action_items:
            parts.append('<div class="agenda-content"><strong>アクションアイテム:</strong>')
            for item in agenda.action_items:
                meta = f"担当: {_e(item.assignee)}"
                if item.deadline:
                    meta += f" | 期限: {item.deadline.isoformat()}"
                meta += f" | 優先度: {_e(item.priority)}"
                parts.append(f'<div class="action-item"><strong>{_e(item.task)}</strong><br>{meta}</div>')
            parts.append("</div>")
        parts.append("</div>")
        agendas_html.append("\n".join(parts))

    outcome_parts = []
    for label, items in (
        ("主な決定事項", outcomes.main_decisions),
        ("未解決事項", outcomes.unresolved_issues),
        ("次回の議題", outcomes.next_meeting_items),
    ):
        if items:
            outcome_parts.append(f'<div class="agenda-content"><strong>{label}:</strong>{_html_list(items)}</div>')

    return f"""<!DOCTYPE html>
<html lang="ja">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{_e(info.title)}</title>
    <style>{HTML_STYLE}    </style>
</head>
<body>
<div class="container">
    <div class="header"><h1>{_e(info.title)}</h1></div>

    <div class="section">
        <h2 class="section-title">■ 会議概要</h2>
        <table class="info-table">
            <tr><th>会議名</th><td>{_e(info.title)}</td></tr>
            <tr><th>日時</th><td>{_e(format_datetime_line(info, today))}</td></tr>
            <tr><th>場所</th><td>{_e(info.location or "（記載なし）")}</td></tr>
            <tr><th>会議種別</th><td>{_e(info.meeting_type)}</td></tr>
        </table>
    </div>

    <div class="section">
        <h2 class="section-title">■ 参加者</h2>
        {"".join(participants_html) or "<p>（記載なし）</p>"}
    </div>

    <div class="section">
        <h2 class="section-title">■ 議事内容</h2>
        {"".join(agendas_html) or "<p>（議題なし）</p>"}
    </div>

    <div class="section">
        <h2 class="section-title">■ 主な結果</h2>
        {"".join(outcome_parts) or "<p>なし</p>"}
    </div>

    <div class="footer">
        <p>作成日: {today}</p>
        <p>作成者: {AUTHOR}</p>
    </div>
</div>
</body>
</html>
"""


def build_docx(structured: StructuredMeeting, generated_at: datetime) -> bytes:
    info = structured.meeting_info
    today = generated_at.strftime("%Y-%m-%d")
    doc = Document()

    title = doc.add_heading(info.title, level=0)
    title.alignment = WD_ALIGN_PARAGRAPH.CENTER

    doc.add_heading("■ 会議概要", level=1)
    table = doc.add_table(rows=0, cols=2)
    table.style = "Table Grid"
    for label, value in (
        ("会議名", info.title),
        ("日時", format_datetime_line(info, today)),
        ("場所", info.location or "（記載なし）"),
        ("会議種別", info.meeting_type),
    ):
        cells = table.add_row().cells
        cells[0].text = label
        cells[0].paragraphs[0].runs[0].bold = True
        cells[1].text = value

    doc.add_heading("■ 参加者", level=1)
    for p in structured.participants:
        doc.add_paragraph(format_participant(p), style="List Bullet")

    doc.add_heading("■ 議事内容", level=1)
    for index, agenda in enumerate(structured.agendas, start=1):
        doc.add_heading(f"{index}. {agenda.title}", level=2)
        doc.add_paragraph(f"議論内容: {agenda.discussion or '記載なし'}")
        if agenda.decisions:
            doc.add_paragraph(f"決定事項: {agenda.decisions}")
        for item in agenda.action_items:
            text = f"{item.task} (担当: {item.assignee})"
            if item.deadline:
                text += f" [期限: {item.deadline.isoformat()}]"
            doc.add_paragraph(text, style="List Bullet 2")

    for text in (f"作成日: {today}", f"作成者: {AUTHOR}"):
        footer = doc.add_paragraph()
        footer.alignment = WD_ALIGN_PARAGRAPH.RIGHT
        footer.add_run(text).font.size = Pt(9)

    # docxのコアプロパティも生成日時に揃える
    doc.core_properties.created = generated_at
    doc.core_properties.modified = generated_at
    doc.core_properties.title = info.title

    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


def build_json(structured: StructuredMeeting, minutes_text: str, generated_at: datetime) -> str:
    payload = {
        "metadata": {
            "generated_at": generated_at.isoformat(),
            "generator": GENERATOR,
            "format_version": FORMAT_VERSION,
        },
        **structured.model_dump(mode="json"),
        "generated_minutes": minutes_text,
    }
    return json.dumps(payload, ensure_ascii=False, indent=2)


class DocumentRenderer:
    """summaries/ ディレクトリへの議事録ドキュメント出力"""

    def __init__(self, output_dir: Path, url_prefix: str = "/summaries"):
        self._output_dir = Path(output_dir)
        self._url_prefix = url_prefix.rstrip("/")
        self._output_dir.mkdir(parents=True, exist_ok=True)

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    def _write(self, fmt: str, base_name: str, data: Union[str, bytes]) -> RenderedDocument:
        file_name = f"{base_name}.{fmt}"
        path = self._output_dir / file_name
        try:
            if isinstance(data, bytes):
                atomic_write_bytes(path, data)
            else:
                atomic_write_text(path, data)
        except OSError as exc:
            raise RenderError(f"{fmt.upper()} ドキュメントの書き込みに失敗しました: {exc}") from exc
        return RenderedDocument(format=fmt, file_name=file_name, file_path=path, url=f"{self._url_prefix}/{file_name}")

    def render_one(self, fmt: str, structured: StructuredMeeting, minutes_text: str,
                   base_name: str, generated_at: datetime) -> RenderedDocument:
        """単一フォーマットの生成。失敗時は RenderError。"""
        try:
            if fmt == "html":
                data: Union[str, bytes] = build_html(structured, generated_at)
            elif fmt == "docx":
                data = build_docx(structured, generated_at)
            elif fmt == "json":
                data = build_json(structured, minutes_text, generated_at)
            else:
                raise ValidationError(f"未対応のフォーマットです: {fmt}")
        except (ValidationError, RenderError):
            raise
        except Exception as exc:
            raise RenderError(f"{fmt.upper()} ドキュメントの生成に失敗しました: {exc}") from exc
        return self._write(fmt, base_name, data)

    def render(
        self,
        structured: StructuredMeeting,
        minutes_text: str,
        formats: Union[str, Iterable[str], None] = "all",
        generated_at: Optional[datetime] = None,
        base_name: Optional[str] = None,
    ) -> RenderReport:
        """
        指定されたフォーマットのドキュメントを生成する

        Args:
            structured: 構造化された議事録
            minutes_text: 議事録本文（JSONに同梱）
            formats: 'all' またはフォーマットの集合
            generated_at: 生成日時（省略時は現在時刻）
            base_name: 出力ファイル名のベース（省略時は生成日時から作る）

        Returns:
            RenderReport（成功したフォーマットと失敗したフォーマットのエラー）
        """
        fmts = normalize_formats(formats)
        generated_at = generated_at or datetime.now()
        base_name = base_name or f"meeting_minutes_{generated_at.strftime('%Y-%m-%dT%H-%M-%S')}_{uuid.uuid4().hex[:8]}"

        report = RenderReport()
        for fmt in fmts:
            # 1フォーマットの失敗で他のフォーマットを中断しない
            try:
                report.documents[fmt] = self.render_one(fmt, structured, minutes_text, base_name, generated_at)
            except RenderError as exc:
                logger.error("Document render failed (%s): %s", fmt, exc)
                report.errors[fmt] = str(exc)

        logger.info(
            "Documents rendered: ok=%s failed=%s",
            ",".join(report.documents) or "-", ",".join(report.errors) or "-",
        )
        return report

    # =========================
    # 生成済みファイルの管理
    # =========================
    def list_documents(self) -> list[dict]:
        files = []
        for path in self._output_dir.iterdir():
            if path.name.startswith(".") or not path.is_file():
                continue
            stat = path.stat()
            files.append({
                "file_name": path.name,
                "file_path": str(path),
                "file_size": stat.st_size,
                "modified_at": datetime.fromtimestamp(stat.st_mtime).isoformat(),
                "format": path.suffix.lstrip(".").lower(),
                "url": f"{self._url_prefix}/{path.name}",
            })
        files.sort(key=lambda f: f["modified_at"], reverse=True)
        return files

    def resolve(self, file_name: str) -> Path:
        """ファイル名を summaries/ 内のパスに解決する（ディレクトリ外は拒否）"""
        if not file_name or "/" in file_name or "\\" in file_name or file_name.startswith("."):
            raise ValidationError(f"不正なファイル名です: {file_name}")
        path = (self._output_dir / file_name).resolve()
        if path.parent != self._output_dir.resolve():
            raise ValidationError(f"不正なファイル名です: {file_name}")
        if not path.is_file():
            raise NotFoundError(f"ファイルが見つかりません: {file_name}", user_message="ファイルが見つかりません")
        return path

    def delete(self, file_name: str) -> None:
        path = self.resolve(file_name)
        try:
            path.unlink()
        except OSError as exc:
            raise RenderError(f"ドキュメントの削除に失敗しました: {exc}") from exc
        logger.info("Document deleted: %s", file_name)

    @staticmethod
    def content_type(file_name: str) -> str:
        return CONTENT_TYPES.get(Path(file_name).suffix.lower(), "application/octet-stream")

    @staticmethod
    def templates() -> list[dict]:
        return [dict(t) for t in TEMPLATES]
