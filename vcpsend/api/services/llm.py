import json
import logging
import time
from collections.abc import Callable
from typing import Any

import requests

from vcpsend.config import Settings
from vcpsend.errors import ApiError, ApiErrorKind
from vcpsend.logger import get_logger
from vcpsend.model.models import ChatRequest

HTTP_OK = 200
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_SERVER_ERROR = 500

MAX_RETRIES = 2  # 合計3回
RETRY_DELAY_S = 3.0
CONNECT_TIMEOUT_S = 30.0
READ_TIMEOUT_S = 120.0
ERROR_BODY_LIMIT = 500


def build_messages(request: ChatRequest) -> list[dict[str, Any]]:
    """チャットリクエストから messages 配列を構築.

    system_prompt があれば system メッセージを先頭に置く.
    画像がある場合はテキスト+画像の2パート構成のユーザーメッセージにする.
    """
    messages: list[dict[str, Any]] = []
    if request.system_prompt:
        messages.append({"role": "system", "content": request.system_prompt})

    if request.image_base64:
        # ビジョン対応メッセージ
        messages.append(
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": request.user_text},
                    {
                        "type": "image_url",
                        "image_url": {
                            "url": f"data:image/jpeg;base64,{request.image_base64}",
                        },
                    },
                ],
            },
        )
    else:
        messages.append({"role": "user", "content": request.user_text})
    return messages


def looks_like_html(body: str) -> bool:
    """CDN/プロキシのエラーページ（JSONではなくHTML）かどうか."""
    trimmed = body.strip()
    return trimmed.startswith(("<!", "<html"))


def extract_content(body: str) -> str:
    """choices[0].message.content を取り出す.

    Raises:
        ApiError: 期待する構造がない場合 (MALFORMED_RESPONSE)

    """
    try:
        data = json.loads(body)
        content = data["choices"][0]["message"]["content"]
    except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
        msg = f"Malformed chat completion response: {type(e).__name__}: {e}"
        raise ApiError(ApiErrorKind.MALFORMED_RESPONSE, msg, HTTP_OK) from e
    if not isinstance(content, str):
        msg = "Malformed chat completion response: content is not a string"
        raise ApiError(ApiErrorKind.MALFORMED_RESPONSE, msg, HTTP_OK)
    return content


class ChatClient:
    """OpenAI互換 /v1/chat/completions クライアント（非ストリーミング）."""

    def __init__(
        self,
        *,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY_S,
        timeout: tuple[float, float] = (CONNECT_TIMEOUT_S, READ_TIMEOUT_S),
        sleep: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.sleep = sleep
        self.logger = logger or get_logger("llm")

    @staticmethod
    def chat_url(settings: Settings) -> str:
        return f"{settings.base_url}/v1/chat/completions"

    def complete(self, settings: Settings, request: ChatRequest) -> str:
        """チャットを実行し、アシスタントの返答テキストを返す.

        5xx・タイムアウト・HTMLボディの場合のみ再試行する. 4xx は即座に失敗.

        Raises:
            ApiError: 再試行を使い切った、または再試行対象外の失敗

        """
        if not settings.api_configured:
            msg = "请先在 VCPSend 设置中配置 API"
            raise ApiError(ApiErrorKind.NOT_CONFIGURED, msg)

        url = self.chat_url(settings)
        payload = {
            "model": settings.model,
            "messages": build_messages(request),
            "stream": False,
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {settings.api_key}",
        }

        last_error: ApiError | None = None
        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                self.logger.info("[API] retry %s/%s", attempt, self.max_retries)
                self.sleep(self.retry_delay)
            self.logger.info("[API] POST %s model=%s", url, settings.model)

            try:
                return self._attempt(url, payload, headers)
            except ApiError as e:
                if not e.kind.retryable:
                    raise
                last_error = e
                self.logger.warning("[API] %s, will retry", e.message)

        if last_error is None:
            msg = f"API 调用失败（已重试 {self.max_retries} 次）"
            raise ApiError(ApiErrorKind.SERVER_ERROR, msg)
        raise last_error

    def _attempt(
        self, url: str, payload: dict[str, Any], headers: dict[str, str]
    ) -> str:
        try:
            response = requests.post(
                url,
                json=payload,
                headers=headers,
                timeout=self.timeout,
                allow_redirects=False,
            )
        except requests.exceptions.Timeout as e:
            msg = "API 请求超时"
            raise ApiError(ApiErrorKind.TIMEOUT, msg) from e
        except requests.RequestException as e:
            msg = f"API 请求失败: {type(e).__name__}: {e}"
            raise ApiError(ApiErrorKind.CONNECTION_ERROR, msg) from e

        status_code = int(response.status_code)
        body = response.text
        self.logger.info("[API] status=%s", status_code)

        if status_code == HTTP_OK:
            self.logger.info("[API] body head: %s", body[:200])
            if looks_like_html(body):
                msg = "API 返回了 HTML 而非 JSON（CDN/代理拦截）"
                raise ApiError(ApiErrorKind.SERVER_ERROR, msg, status_code)
            content = extract_content(body)
            self.logger.info("[API] reply length=%s", len(content))
            return content

        msg = f"API 错误 {status_code}: {body[:ERROR_BODY_LIMIT]}"
        if status_code >= HTTP_SERVER_ERROR:
            raise ApiError(ApiErrorKind.SERVER_ERROR, msg, status_code)
        if status_code in {HTTP_UNAUTHORIZED, HTTP_FORBIDDEN}:
            raise ApiError(ApiErrorKind.UNAUTHORIZED, msg, status_code)
        raise ApiError(ApiErrorKind.CLIENT_ERROR, msg, status_code)
