"""
社内Wikiへの議事録公開
"""
import logging
from dataclasses import dataclass
from typing import Optional

import requests

from voice_minutes.errors import PublicationError

logger = logging.getLogger("voice_minutes.wiki")


@dataclass
class PublishResult:
    sink: str
    url: Optional[str] = None
    page_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {"sink": self.sink, "url": self.url, "page_id": self.page_id}


class WikiPublisher:
    """Wiki API（POST /api/pages）にMarkdownのページを作成する"""

    name = "wiki"

    def __init__(self, base_url: str, api_token: str, space_key: str = "MEETING_MINUTES",
                 timeout: float = 30.0, session: Optional[requests.Session] = None):
        self._base_url = base_url.rstrip("/")
        self._api_token = api_token
        self._space_key = space_key
        self._timeout = timeout
        self._session = session or requests.Session()
        self._headers = {
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @property
    def configured(self) -> bool:
        return bool(self._base_url and self._api_token)

    def publish(self, title: str, body: str, target_space: Optional[str] = None,
                labels: Optional[list[str]] = None) -> PublishResult:
        """
        Raises:
            PublicationError: 未設定、通信エラー、またはAPIがエラーを返した場合
        """
        if not self.configured:
            raise PublicationError("Wikiの接続先が設定されていません")

        payload = {
            "title": title,
            "content": body,
            "contentType": "markdown",
            "spaceKey": target_space or self._space_key,
            "labels": labels or ["議事録", "自動生成"],
        }
        try:
            resp = self._session.post(
                f"{self._base_url}/api/pages", json=payload, headers=self._headers, timeout=self._timeout
            )
            resp.raise_for_status()
            data = resp.json() if resp.content else {}
        except requests.RequestException as exc:
            logger.error("Wiki publish failed: %s", exc)
            raise PublicationError(f"Wikiへの公開に失敗しました: {exc}") from exc
        except ValueError as exc:
            raise PublicationError(f"Wikiの応答を解析できませんでした: {exc}") from exc

        page_id = data.get("id")
        url = data.get("url") or (f"{self._base_url}/pages/{page_id}" if page_id else None)
        logger.info("Wiki page created: %s", url or title)
        return PublishResult(sink=self.name, url=url, page_id=str(page_id) if page_id is not None else None)

    def check_connection(self) -> bool:
        if not self.configured:
            return False
        try:
            resp = self._session.get(f"{self._base_url}/api/spaces", headers=self._headers, timeout=self._timeout)
            return resp.status_code == 200
        except requests.RequestException as exc:
            logger.error("Wiki connection failed: %s", exc)
            return False
