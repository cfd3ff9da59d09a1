"""
議事録本文（プレーンテキスト / Markdown）をテンプレートで組み立てる
"""
from datetime import datetime
from typing import Optional

from voice_minutes.models import AgendaInfo, MeetingInfo, ParticipantInfo, StructuredMeeting

RULE = "=" * 46
AUTHOR = "AI自動生成システム"


def format_datetime_line(info: MeetingInfo, today: Optional[str] = None) -> str:
    """'2025-10-25 14:00~15:00' の形式"""
    day = info.estimated_date or today or ""
    start = info.estimated_start_time or ""
    end = f"~{info.estimated_end_time}" if info.estimated_end_time else ""
    return f"{day} {start}{end}".strip()


def format_participant(p: ParticipantInfo) -> str:
    text = p.name
    if p.department:
        text += f" ({p.department})"
    if p.role:
        text += f" - {p.role}"
    return text


def _bullets(items: list[str], empty: str) -> list[str]:
    if not items:
        return [f"  - {empty}"]
    return [f"  - {item}" for item in items]


def _agenda_block(index: int, agenda: AgendaInfo) -> list[str]:
    lines = [
        f"{index}. {agenda.title}",
        f"   議論内容: {agenda.discussion or '記載なし'}",
    ]
    if agenda.key_points:
        lines.append(f"   要点: {', '.join(agenda.key_points)}")
    lines.append(f"   決定事項: {agenda.decisions or 'なし'}")
    if agenda.action_items:
        lines.append("   アクションアイテム:")
        for item in agenda.action_items:
            line = f"     - {item.task} (担当: {item.assignee})"
            if item.deadline:
                line += f" [期限: {item.deadline.isoformat()}]"
            line += f" <優先度: {item.priority}>"
            lines.append(line)
    return lines


def format_pending_action(item: dict) -> str:
    """過去の会議の未完了アクション 1件分"""
    line = f"  - {item['task_description']} (担当: {item.get('assignee') or '未定'})"
    if item.get("due_date"):
        line += f" [期限: {item['due_date']}]"
    if item.get("meeting_title"):
        line += f" 〔{item['meeting_title']}〕"
    return line


def render_minutes_text(structured: StructuredMeeting, generated_at: Optional[datetime] = None,
                        pending_actions: Optional[list[dict]] = None) -> str:
    """
    構造化データから議事録本文を組み立てる（外部呼び出しなし・決定的）

    Args:
        structured: 構造化された議事録
        generated_at: フッターに記載する作成日時（省略時は現在時刻）
        pending_actions: 過去の会議から持ち越した未完了アクション（あればセクションを追加）

    Returns:
        会議概要 / 参加者 / 議事内容 / フッター の固定セクションを持つテキスト
    """
    generated_at = generated_at or datetime.now()
    today = generated_at.strftime("%Y-%m-%d")
    info = structured.meeting_info
    outcomes = structured.key_outcomes

    lines = [
        RULE,
        f"  {info.title}",
        RULE,
        "",
        "■ 会議概要",
        f"  - 会議名: {info.title}",
        f"  - 日時: {format_datetime_line(info, today)}",
        f"  - 場所: {info.location or '（記載なし）'}",
        f"  - 会議種別: {info.meeting_type}",
        "",
        "■ 参加者",
    ]
    lines += _bullets([format_participant(p) for p in structured.participants], "（記載なし）")

    lines += ["", "■ 議事内容"]
    if not structured.agendas:
        lines.append("  - （議題なし）")
    for index, agenda in enumerate(structured.agendas, start=1):
        lines += _agenda_block(index, agenda)
        lines.append("")

    lines += ["■ 主な決定事項"]
    lines += _bullets(outcomes.main_decisions, "なし")
    lines += ["", "■ 未解決事項"]
    lines += _bullets(outcomes.unresolved_issues, "なし")
    lines += ["", "■ 次回の議題"]
    lines += _bullets(outcomes.next_meeting_items, "追って決定")
    if pending_actions:
        lines += ["", "■ 前回までの未完了アクション"]
        lines += [format_pending_action(item) for item in pending_actions]
    lines += [
        "",
        f"作成日: {today}",
        f"作成者: {AUTHOR}",
        RULE,
    ]
    return "\n".join(lines) + "\n"


def render_markdown(structured: StructuredMeeting, generated_at: Optional[datetime] = None) -> str:
    """Wiki公開用のMarkdown"""
    generated_at = generated_at or datetime.now()
    info = structured.meeting_info
    outcomes = structured.key_outcomes

    lines = [
        f"# {info.title}",
        "",
        "## 会議概要",
        "",
        "| 項目 | 内容 |",
        "| --- | --- |",
        f"| 日時 | {format_datetime_line(info, generated_at.strftime('%Y-%m-%d'))} |",
        f"| 場所 | {info.location or '（記載なし）'} |",
        f"| 会議種別 | {info.meeting_type} |",
        "",
        "## 参加者",
        "",
    ]
    lines += [f"- {format_participant(p)}" for p in structured.participants] or ["- （記載なし）"]
    lines += ["", "## 議事内容", ""]
    for index, agenda in enumerate(structured.agendas, start=1):
        lines += [f"### {index}. {agenda.title}", "", agenda.discussion or "記載なし", ""]
        lines += [f"- {point}" for point in agenda.key_points]
        if agenda.decisions:
            lines += ["", f"**決定事項:** {agenda.decisions}"]
        if agenda.action_items:
            lines += ["", "**アクションアイテム:**", ""]
            for item in agenda.action_items:
                deadline = f" / 期限: {item.deadline.isoformat()}" if item.deadline else ""
                lines.append(f"- [ ] {item.task}（担当: {item.assignee}{deadline} / 優先度: {item.priority}）")
        lines.append("")
    if outcomes.main_decisions:
        lines += ["## 主な決定事項", ""] + [f"- {d}" for d in outcomes.main_decisions] + [""]
    if outcomes.unresolved_issues:
        lines += ["## 未解決事項", ""] + [f"- {i}" for i in outcomes.unresolved_issues] + [""]
    lines.append(f"*{AUTHOR}により {generated_at.strftime('%Y-%m-%d')} に作成*")
    return "\n".join(lines) + "\n"
