"""Background job execution: capture -> chat completion -> history append.

``JobDispatcher.dispatch`` never blocks the caller. Each job runs on its own
daemon thread, reports every step on the status surface, and stays visible
for a linger period after it resolves. Overlapping dispatches are not
deduplicated; each one runs independently.
"""

import logging
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from vcpsend.api.services.history import HistoryClient
from vcpsend.api.services.llm import ChatClient
from vcpsend.config import Settings
from vcpsend.errors import ApiError, CaptureError, HistoryAppendError
from vcpsend.logger import get_logger
from vcpsend.model.models import (
    ChatRequest,
    Job,
    JobKind,
    JobSnapshot,
    JobStatus,
    ScreenshotPayload,
)
from vcpsend.ui.notifications import NotificationLevel
from vcpsend.watchers.clipboard import ClipboardCapture
from vcpsend.watchers.screenshot import ScreenshotCapture

LINGER_S = 10.0
REPLY_PREVIEW_CHARS = 100
TOPIC_PREVIEW_CHARS = 50


def preview(text: str, limit: int) -> str:
    """表示用に切り詰める."""
    return text[:limit] + "..." if len(text) > limit else text


class SettingsSource(Protocol):
    def snapshot(self) -> Settings: ...


class StatusSurface(Protocol):
    def job_started(self, job: Job) -> None: ...

    def update(
        self,
        job: Job,
        text: str,
        level: NotificationLevel = NotificationLevel.INFO,
    ) -> None: ...

    def job_finished(self, job: Job) -> None: ...


class TextCapture(Protocol):
    def capture(self) -> str | None: ...


class ImageCapture(Protocol):
    def capture(self) -> ScreenshotPayload | None: ...


class JobHandle:
    """ディスパッチ済みジョブのハンドル."""

    def __init__(self, job: Job, thread: threading.Thread) -> None:
        self.job = job
        self.thread = thread

    def done(self) -> bool:
        return not self.thread.is_alive()

    def wait(self, timeout: float | None = None) -> bool:
        """ジョブ（リンガー含む）の終了を待つ. 終了していれば True."""
        self.thread.join(timeout)
        return self.done()


class JobDispatcher:
    """Launch one background job per trigger."""

    def __init__(
        self,
        settings: SettingsSource,
        status: StatusSurface,
        *,
        chat_client: ChatClient | None = None,
        history_client: HistoryClient | None = None,
        clipboard: TextCapture | None = None,
        screenshot: ImageCapture | None = None,
        linger: float = LINGER_S,
        sleep: Callable[[float], object] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.status = status
        self.logger = logger or get_logger("dispatcher")
        self.chat_client = chat_client or ChatClient(logger=self.logger.getChild("llm"))
        self.history_client = history_client or HistoryClient(
            logger=self.logger.getChild("history")
        )
        self.clipboard = clipboard or ClipboardCapture(
            logger=self.logger.getChild("clipboard")
        )
        self.screenshot = screenshot
        self.linger = linger
        self._stopping = threading.Event()
        # 既定のリンガー待ちは shutdown で打ち切られる
        self.sleep = sleep or self._stopping.wait
        self._lock = threading.Lock()
        self._handles: dict[str, JobHandle] = {}

    def dispatch(self, kind: JobKind, preset: str | None = None) -> JobHandle:
        """ジョブをバックグラウンドで開始し、すぐに戻る."""
        job = Job(kind=kind, payload=preset)
        thread = threading.Thread(
            target=self.run_job,
            args=(job,),
            name=f"vcpsend-{kind.value}-{job.id}",
            daemon=True,
        )
        handle = JobHandle(job, thread)
        with self._lock:
            self._handles[job.id] = handle
        self.logger.info("Dispatch job | id=%s kind=%s", job.id, kind.value)
        thread.start()
        return handle

    def send_screenshot(self, preset: str | None = None) -> JobHandle:
        return self.dispatch(JobKind.SCREENSHOT, preset)

    def send_clipboard(self, preset: str | None = None) -> JobHandle:
        return self.dispatch(JobKind.CLIPBOARD, preset)

    def active_jobs(self) -> list[JobSnapshot]:
        with self._lock:
            return [handle.job.snapshot() for handle in self._handles.values()]

    def shutdown(self, timeout: float | None = None) -> bool:
        """実行中のジョブが完了（または失敗）するまで待つ. リンガーは省略する.

        全ジョブが終了していれば True. timeout を過ぎたら False.
        """
        self._stopping.set()
        with self._lock:
            handles = list(self._handles.values())
        if handles:
            self.logger.info("Waiting for %s job(s) to finish", len(handles))

        deadline = None if timeout is None else time.monotonic() + timeout
        for handle in handles:
            remaining = (
                None if deadline is None else max(0.0, deadline - time.monotonic())
            )
            if not handle.wait(remaining):
                self.logger.warning(
                    "Job still running at shutdown | id=%s", handle.job.id
                )
                return False
        return True

    def run_job(self, job: Job) -> None:
        """ジョブ本体（同期）. 例外は外へ出さずステータスへ反映する."""
        settings = self.settings.snapshot()
        job.message = (
            "正在发送截图..." if job.kind is JobKind.SCREENSHOT else "正在读取剪贴板..."
        )
        self.status.job_started(job)
        try:
            if job.kind is JobKind.SCREENSHOT:
                self._run_screenshot(job, settings)
            else:
                self._run_clipboard(job, settings)
        except (CaptureError, ApiError) as e:
            self._fail(job, str(e))
        except Exception as e:
            self.logger.exception("Job crashed | id=%s", job.id)
            self._fail(job, f"{type(e).__name__}: {e}")
        finally:
            job.finished_at = time.time()
            if not self._stopping.is_set():
                self.sleep(self.linger)
            self.status.job_finished(job)
            with self._lock:
                self._handles.pop(job.id, None)
            self.logger.info(
                "Job torn down | id=%s status=%s", job.id, job.status.value
            )

    def _run_clipboard(self, job: Job, settings: Settings) -> None:
        text = self.clipboard.capture()
        if not text:
            self._nothing_to_send(job, "剪贴板为空")
            return

        preset = job.payload or settings.clip_preset_message
        content_preview = preview(text, TOPIC_PREVIEW_CHARS)
        self.status.update(job, f"正在发送: {content_preview}")

        user_text = f"{preset}\n\n{text}"
        request = ChatRequest(
            user_text=user_text,
            system_prompt=settings.system_prompt or None,
        )
        reply = self._complete(job, settings, request)
        self._sync_history(settings, user_text, reply, f"📋 {content_preview}")

    def _run_screenshot(self, job: Job, settings: Settings) -> None:
        directory = (
            Path(settings.screenshot_dir).expanduser() if settings.screenshot_dir else None
        )
        capture = self.screenshot or ScreenshotCapture(
            directory,
            progress=lambda text: self.status.update(job, text),
            logger=self.logger.getChild("screenshot"),
        )
        shot = capture.capture()
        if shot is None:
            self._nothing_to_send(job, "未检测到最近截图（10分钟内）")
            return

        preset = job.payload or settings.preset_message
        request = ChatRequest(
            user_text=preset,
            system_prompt=settings.system_prompt or None,
            image_base64=shot.image_base64,
        )
        reply = self._complete(job, settings, request)
        # base64 は大きすぎるので話題にはテキストで記録する
        user_content = f"[截图] {preset}\n\n(文件: {shot.name})"
        self._sync_history(settings, user_content, reply, f"📸 {shot.name}")

    def _complete(self, job: Job, settings: Settings, request: ChatRequest) -> str:
        self.status.update(job, "正在发送给 AI...")
        reply = self.chat_client.complete(settings, request)
        job.status = JobStatus.SUCCEEDED
        job.reply = reply
        self.status.update(
            job,
            f"✅ AI 回复: {preview(reply, REPLY_PREVIEW_CHARS)}",
            NotificationLevel.SUCCESS,
        )
        return reply

    def _sync_history(
        self,
        settings: Settings,
        user_content: str,
        ai_content: str,
        topic_name: str,
    ) -> bool:
        try:
            synced = self.history_client.append(
                settings, user_content, ai_content, topic_name
            )
        except HistoryAppendError as e:
            self.logger.warning("History sync failed: %s", e)
            return False
        self.logger.info("History sync result: %s", synced)
        return synced

    def _nothing_to_send(self, job: Job, text: str) -> None:
        job.status = JobStatus.EMPTY
        self.status.update(job, text, NotificationLevel.WARNING)

    def _fail(self, job: Job, message: str) -> None:
        job.status = JobStatus.FAILED
        job.error = message
        self.logger.warning("Job failed | id=%s error=%s", job.id, message)
        self.status.update(job, f"发送失败: {message}", NotificationLevel.ERROR)
