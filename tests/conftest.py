from collections.abc import Callable
from dataclasses import dataclass, field
from unittest.mock import Mock

import pytest

from vcpsend.config import Settings, SettingsStore
from vcpsend.ui.notifications import NotificationConfig, NotificationService


@dataclass
class VirtualTimer:
    due: float
    callback: Callable[[], None]
    cancelled: bool = False
    fired: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class VirtualScheduler:
    """仮想時計で駆動するスケジューラ（実時間の待ちなし）."""

    now: float = 0.0
    timers: list[VirtualTimer] = field(default_factory=list)

    def clock(self) -> float:
        return self.now

    def schedule(self, delay: float, callback: Callable[[], None]) -> VirtualTimer:
        timer = VirtualTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    def pending(self) -> list[VirtualTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self.pending() if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.now = timer.due
            timer.fired = True
            timer.callback()
        self.now = target


@pytest.fixture
def scheduler():
    return VirtualScheduler()


@pytest.fixture
def settings():
    """テスト用の設定"""
    return Settings(
        base_url="http://vcp.example:6005/",
        api_key="sk-test",
        model="gemini-2.5-flash",
        admin_username="admin",
        admin_password="secret",
        agent_dir_id="Nova",
    )


@pytest.fixture
def settings_store(tmp_path, settings):
    store = SettingsStore(tmp_path / "settings.json")
    store.save(settings)
    return store


@pytest.fixture
def notification_service():
    """トーストを出さない通知サービス"""
    return NotificationService(NotificationConfig(toast=False))


@pytest.fixture
def mock_chat_client():
    mock = Mock()
    mock.complete = Mock(return_value="done")
    return mock


@pytest.fixture
def mock_history_client():
    mock = Mock()
    mock.append = Mock(return_value=True)
    return mock
