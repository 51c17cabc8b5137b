import platform
import queue
import sys
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any

from vcpsend.logger import get_logger
from vcpsend.model.models import Job, JobKind, JobSnapshot

if sys.platform == "win32":
    from win10toast import ToastNotifier  # type: ignore[import-untyped, unused-ignore]

logger = get_logger("notifications")

JOB_TITLES = {
    JobKind.SCREENSHOT: "VCPSend 截图发送",
    JobKind.CLIPBOARD: "VCPSend 剪贴板发送",
}


class NotificationLevel(Enum):
    """Notification severity levels used by the service."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class NotificationConfig:
    """Configuration for :class:`NotificationService`."""

    toast: bool = True
    toast_duration: int = 5
    history_size: int = 200


class NotificationService:
    """Transient status surface for jobs, with history tracking.

    On Windows each update is also shown as a toast. On other platforms the
    update is only recorded and logged.
    """

    def __init__(self, config: NotificationConfig | None = None) -> None:
        self.platform = platform.system()
        self.config = config or NotificationConfig()
        self._lock = threading.Lock()
        self._history: deque[dict[str, Any]] = deque(maxlen=self.config.history_size)
        self._active: dict[str, Job] = {}
        self._toaster: Any | None = None
        # win10toast は表示中に次のトーストを捨てるため、1スレッドで順に表示する
        self._toasts: queue.Queue[tuple[str, str]] = queue.Queue()
        self._toast_worker: threading.Thread | None = None

    def notify(
        self,
        title: str,
        message: str,
        level: NotificationLevel = NotificationLevel.INFO,
        *,
        job_id: str | None = None,
    ) -> bool:
        """Display a notification and record it.

        Returns ``True`` when a toast was queued for display.
        """
        delivered = False
        if self.config.toast and self.platform == "Windows":
            delivered = self._enqueue_toast(title, message)

        logger.info("[%s] %s: %s", level.value, title, message)
        with self._lock:
            self._history.append(
                {
                    "title": title,
                    "message": message,
                    "level": level.value,
                    "job_id": job_id,
                    "timestamp": time.time(),
                    "delivered": delivered,
                },
            )
        return delivered

    def _enqueue_toast(self, title: str, message: str) -> bool:
        with self._lock:
            if self._toast_worker is None or not self._toast_worker.is_alive():
                self._toast_worker = threading.Thread(
                    target=self._drain_toasts,
                    name="vcpsend-toast",
                    daemon=True,
                )
                self._toast_worker.start()
        self._toasts.put((title, message))
        return True

    def _drain_toasts(self) -> None:
        while True:
            title, message = self._toasts.get()
            try:
                self._show_toast(title, message)
            finally:
                self._toasts.task_done()

    def _show_toast(self, title: str, message: str) -> bool:
        """表示が終わるまでブロックする（キューのワーカーからのみ呼ぶ）."""
        if self._toaster is None:
            self._toaster = ToastNotifier()
        try:
            return bool(
                self._toaster.show_toast(
                    title,
                    message,
                    duration=self.config.toast_duration,
                    threaded=False,
                )
            )
        except Exception as e:  # noqa: BLE001
            logger.warning("Toast failed: %s", e)
            return False

    def wait_toasts(self) -> None:
        """キュー済みのトーストをすべて表示し終えるまで待つ."""
        self._toasts.join()

    # ------------------------------------------------------------------
    # Job status surface
    def job_started(self, job: Job) -> None:
        with self._lock:
            self._active[job.id] = job
        self.update(job, job.message or "任务已开始")

    def update(
        self,
        job: Job,
        text: str,
        level: NotificationLevel = NotificationLevel.INFO,
    ) -> None:
        job.message = text
        self.notify(JOB_TITLES[job.kind], text, level, job_id=job.id)

    def job_finished(self, job: Job) -> None:
        """リンガー終了後にジョブを表示対象から外す."""
        with self._lock:
            self._active.pop(job.id, None)

    def active_jobs(self) -> list[JobSnapshot]:
        with self._lock:
            return [job.snapshot() for job in self._active.values()]

    # ------------------------------------------------------------------
    # Query helpers
    def get_capabilities(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "supports_toast": self.platform == "Windows",
        }

    def get_notification_history(self) -> list[dict[str, Any]]:
        """Return a copy of the notification history."""
        with self._lock:
            return list(self._history)
