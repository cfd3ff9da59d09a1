"""
Slackサービスモジュール
議事録プレビューのブロック生成とチャンネルへの投稿
"""
import logging
from typing import Optional

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from voice_minutes.errors import PublicationError
from voice_minutes.models import StructuredMeeting
from voice_minutes.services.minutes_text import format_datetime_line
from voice_minutes.services.wiki_service import PublishResult

logger = logging.getLogger("voice_minutes.slack")


def _bullet_lines(items: list[str]) -> str:
    return "\n".join(f"・{i}" for i in items) if items else "-"


def build_minutes_preview_blocks(title: str, structured: StructuredMeeting, minutes_url: Optional[str] = None):
    """
    議事録プレビュー用のSlackブロックを生成

    Args:
        title: 投稿タイトル
        structured: 構造化された議事録
        minutes_url: 生成済みドキュメントのURL（あればリンクを付ける）

    Returns:
        Slackブロックのリスト
    """
    def md_section(label, text):
        return {"type": "section", "text": {"type": "mrkdwn", "text": f"*{label}*\n{text or '-'}"}}

    info = structured.meeting_info
    # 会議名を最大20文字に制限
    name_display = title if len(title) <= 20 else title[:20] + "..."
    participants = ", ".join(p.name for p in structured.participants) or "-"

    head = [
        {"type": "header", "text": {"type": "plain_text", "text": "議事録ボット"}},
        {"type": "section", "fields": [
            {"type": "mrkdwn", "text": f"*会議名:*\n{name_display}"},
            {"type": "mrkdwn", "text": f"*日時:*\n{format_datetime_line(info) or '-'}"},
            {"type": "mrkdwn", "text": f"*参加者:*\n{participants}"},
            {"type": "mrkdwn", "text": f"*種別:*\n{info.meeting_type}"},
        ]},
        {"type": "divider"},
    ]
    body = [
        md_section("議題", _bullet_lines([a.title for a in structured.agendas])),
        md_section("決定事項", _bullet_lines(structured.key_outcomes.main_decisions)),
        md_section("未決定事項", _bullet_lines(structured.key_outcomes.unresolved_issues)),
    ]
    actions = [f"{i.task}（担当：{i.assignee}" + (f"、期限：{i.deadline.isoformat()}" if i.deadline else "") + "）"
               for i in structured.all_action_items()]
    if actions:
        body.append(md_section("アクション", _bullet_lines(actions)))
    if minutes_url:
        body.append({"type": "section", "text": {"type": "mrkdwn", "text": f"<{minutes_url}|議事録を開く>"}})
    return head + body


class SlackPublisher:
    """Slackチャンネルに議事録のプレビューを投稿する"""

    name = "slack"

    def __init__(self, token: str, channel_id: str, client: Optional[WebClient] = None):
        self._channel_id = channel_id
        self._client = client or (WebClient(token=token) if token else None)

    @property
    def configured(self) -> bool:
        return self._client is not None and bool(self._channel_id)

    def publish(self, title: str, structured: StructuredMeeting, minutes_url: Optional[str] = None) -> PublishResult:
        if not self.configured:
            raise PublicationError("Slackの投稿先が設定されていません")
        try:
            resp = self._client.chat_postMessage(
                channel=self._channel_id,
                text=f"議事録: {title}",
                blocks=build_minutes_preview_blocks(title, structured, minutes_url),
            )
        except SlackApiError as exc:
            logger.error("Slack post failed: %s", exc)
            raise PublicationError(f"Slackへの投稿に失敗しました: {exc}") from exc

        ts = resp.get("ts")
        logger.info("Slack message posted: channel=%s ts=%s", self._channel_id, ts)
        return PublishResult(sink=self.name, url=minutes_url, page_id=ts)
