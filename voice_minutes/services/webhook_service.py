"""
n8n などのWebhookへの議事録通知
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from voice_minutes.models import StructuredMeeting
from voice_minutes.services.minutes_text import format_participant

logger = logging.getLogger("voice_minutes.webhook")

MAX_ATTEMPTS = 3
RETRY_WAIT_SECONDS = 2


@dataclass
class NotifyResult:
    success: bool
    status_code: Optional[int] = None
    response: Any = None
    error: Optional[str] = None
    attempts: int = 0

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "status_code": self.status_code,
            "response": self.response,
            "error": self.error,
            "attempts": self.attempts,
        }


def build_payload(structured: StructuredMeeting, minutes_text: str, documents: Optional[dict] = None,
                  meeting_id: Optional[int] = None, source_file: Optional[str] = None) -> dict:
    """Webhookに送る議事録データ"""
    info = structured.meeting_info
    decisions = structured.key_outcomes.main_decisions
    return {
        "title": info.title,
        "date": info.estimated_date,
        "place": info.location,
        "participants": [format_participant(p) for p in structured.participants],
        "content": minutes_text,
        "summary": "; ".join(decisions) if decisions else "",
        "structured_data": structured.model_dump(mode="json"),
        "documents": documents or {},
        "metadata": {
            "meeting_id": meeting_id,
            "source_file": source_file,
            "timestamp": datetime.now().isoformat(),
            "source": "voice-minutes",
        },
    }


class WebhookNotifier:
    """
    Webhookへ POST する（固定間隔で最大3回）
    失敗しても例外は送出せず NotifyResult で返す
    """

    name = "webhook"

    def __init__(self, url: str, timeout: float = 30.0, session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self._url = url
        self._timeout = timeout
        self._session = session or requests.Session()
        self._sleep = sleep

    @property
    def configured(self) -> bool:
        return bool(self._url)

    def notify(self, payload: dict) -> NotifyResult:
        if not self.configured:
            logger.warning("Webhook URL is not configured; skip notification")
            return NotifyResult(success=False, error="Webhook URLが設定されていません", attempts=0)

        attempts = 0
        retrying = Retrying(
            stop=stop_after_attempt(MAX_ATTEMPTS),
            wait=wait_fixed(RETRY_WAIT_SECONDS),
            retry=retry_if_exception_type(requests.RequestException),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    logger.info("Webhook attempt %d/%d", attempts, MAX_ATTEMPTS)
                    resp = self._session.post(
                        self._url,
                        json=payload,
                        headers={"Content-Type": "application/json", "User-Agent": "voice-minutes/1.0"},
                        timeout=self._timeout,
                    )
                    resp.raise_for_status()
        except requests.RequestException as exc:
            status = getattr(getattr(exc, "response", None), "status_code", None)
            logger.error("Webhook failed after %d attempt(s): %s", attempts, exc)
            return NotifyResult(success=False, status_code=status, error=str(exc), attempts=attempts)

        try:
            body: Any = resp.json()
        except ValueError:
            body = resp.text
        logger.info("Webhook delivered: status=%s", resp.status_code)
        return NotifyResult(success=True, status_code=resp.status_code, response=body, attempts=attempts)

    def ping(self) -> NotifyResult:
        return self.notify({"type": "ping", "timestamp": datetime.now().isoformat(), "source": "voice-minutes"})
