"""Append job exchanges to a VCPChat agent topic (best effort)."""

import logging
import time
from collections.abc import Callable
from typing import Any

import requests

from vcpsend.config import Settings
from vcpsend.errors import HistoryAppendError
from vcpsend.logger import get_logger
from vcpsend.model.models import HistoryMessage

HTTP_OK = 200
CONNECT_TIMEOUT_S = 15.0
READ_TIMEOUT_S = 30.0
APPEND_PATH = "/admin_api/agents/vcpchat-append-history"


def build_history_body(
    settings: Settings,
    user_content: str,
    ai_content: str,
    topic_name: str,
    now_ms: int,
) -> dict[str, Any]:
    """ユーザー発言 → AI返答の順で2件のメッセージを持つリクエストボディ."""
    messages: list[HistoryMessage] = [
        {
            "id": f"msg_{now_ms}_user",
            "role": "user",
            "content": user_content,
            "timestamp": now_ms,
        },
        {
            "id": f"msg_{now_ms}_ai",
            "role": "assistant",
            "content": ai_content,
            "timestamp": now_ms + 1,
        },
    ]
    return {
        "agentDirId": settings.agent_dir_id,
        "topicId": f"topic_{now_ms}",
        "topicName": topic_name,
        "messages": messages,
    }


class HistoryClient:
    """VCPChat デスクトップ側の話題履歴へ追記するクライアント."""

    def __init__(
        self,
        *,
        timeout: tuple[float, float] = (CONNECT_TIMEOUT_S, READ_TIMEOUT_S),
        clock_ms: Callable[[], int] = lambda: int(time.time() * 1000),
        logger: logging.Logger | None = None,
    ) -> None:
        self.timeout = timeout
        self.clock_ms = clock_ms
        self.logger = logger or get_logger("history")

    def append(
        self,
        settings: Settings,
        user_content: str,
        ai_content: str,
        topic_name: str,
    ) -> bool:
        """話題に追記し、サーバーの success を返す. 未設定ならスキップして False.

        Raises:
            HistoryAppendError: 通信失敗・非200・不正なレスポンス

        """
        if not settings.history_configured:
            self.logger.warning("adminUsername/agentDirId missing, skip history sync")
            return False

        body = build_history_body(
            settings, user_content, ai_content, topic_name, self.clock_ms()
        )
        url = f"{settings.base_url}{APPEND_PATH}"
        self.logger.info("Append history: %s topicId=%s", url, body["topicId"])

        try:
            response = requests.post(
                url,
                json=body,
                auth=(settings.admin_username, settings.admin_password),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            msg = f"History append request failed: {type(e).__name__}: {e}"
            raise HistoryAppendError(msg) from e

        if response.status_code != HTTP_OK:
            msg = f"History append failed {response.status_code}: {response.text[:200]}"
            raise HistoryAppendError(msg)

        try:
            data = response.json()
        except ValueError as e:
            msg = "History append returned non-JSON body"
            raise HistoryAppendError(msg) from e
        if not isinstance(data, dict):
            msg = "History append returned unexpected body"
            raise HistoryAppendError(msg)

        success = bool(data.get("success", False))
        self.logger.info(
            "History appended: success=%s appended=%s",
            success,
            data.get("appended", 0),
        )
        return success
