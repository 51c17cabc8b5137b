__all__ = [
    "ChatRequest",
    "Gesture",
    "HistoryMessage",
    "Job",
    "JobKind",
    "JobSnapshot",
    "JobStatus",
    "ScreenshotPayload",
]


import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TypedDict


class Gesture(Enum):
    """音量キーのジェスチャー種別."""

    SINGLE_CLICK = "single_click"
    DOUBLE_CLICK = "double_click"
    LONG_PRESS = "long_press"


class JobKind(Enum):
    """バックグラウンドジョブの種別."""

    SCREENSHOT = "screenshot"
    CLIPBOARD = "clipboard"


class JobStatus(Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass(frozen=True)
class ChatRequest:
    """1ジョブにつき1回だけ組み立てられるチャットリクエスト."""

    user_text: str
    system_prompt: str | None = None
    image_base64: str | None = None  # JPEGのbase64


@dataclass(frozen=True)
class ScreenshotPayload:
    """送信対象のスクリーンショット."""

    name: str
    image_base64: str
    age_seconds: float


@dataclass
class Job:
    """ディスパッチされた1件のジョブ. 実行スレッドが排他的に所有する."""

    kind: JobKind
    payload: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: float = field(default_factory=time.time)
    status: JobStatus = JobStatus.RUNNING
    message: str = ""
    reply: str | None = None
    error: str | None = None
    finished_at: float | None = None

    def snapshot(self) -> "JobSnapshot":
        return {
            "id": self.id,
            "kind": self.kind.value,
            "status": self.status.value,
            "message": self.message,
            "reply": self.reply,
            "error": self.error,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


class JobSnapshot(TypedDict):
    """APIで返すジョブの状態."""

    id: str
    kind: str
    status: str
    message: str
    reply: str | None
    error: str | None
    started_at: float
    finished_at: float | None


class HistoryMessage(TypedDict):
    """VCPChat 話題に追記するメッセージ."""

    id: str
    role: str
    content: str
    timestamp: int
