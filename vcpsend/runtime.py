"""Wiring of the long-lived components.

Everything is created here once and passed explicitly to the parts that need
it; no module-level singletons hold settings or loggers.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from vcpsend.api.services.dispatcher import JobDispatcher
from vcpsend.config import GestureSwitch, SettingsStore, data_dir
from vcpsend.logger import configure_file_logging, get_logger
from vcpsend.model.models import Gesture
from vcpsend.ui.notifications import NotificationService
from vcpsend.watchers.gestures import KeyGestureDetector
from vcpsend.watchers.volume_key import VOLUME_UP, VolumeKeyListener


@dataclass
class Runtime:
    settings: SettingsStore
    switch: GestureSwitch
    notifications: NotificationService
    dispatcher: JobDispatcher
    detector: KeyGestureDetector
    listener: VolumeKeyListener
    log_path: Path
    logger: logging.Logger

    def gestures_enabled(self) -> bool:
        return self.switch.is_enabled()

    def set_gestures_enabled(self, enabled: bool) -> bool:
        self.switch.set_enabled(enabled)
        if not enabled:
            # 押下途中の状態を残さない
            self.detector.reset()
        return enabled

    def start(self) -> None:
        try:
            self.listener.start()
        except ImportError as e:
            # pynput はディスプレイのない環境では読み込めない
            self.logger.error("Volume key listener unavailable: %s", e)

    def stop(self, timeout: float | None = None) -> bool:
        """新しいジェスチャーを止め、実行中のジョブの完了を待つ."""
        self.listener.stop()
        self.detector.reset()
        finished = self.dispatcher.shutdown(timeout)
        self.logger.info("Runtime stopped | jobs_finished=%s", finished)
        return finished


def bind_gestures(
    detector: KeyGestureDetector,
    dispatcher: JobDispatcher,
    listener: VolumeKeyListener,
) -> None:
    """単押し→システム既定動作, ダブルクリック→スクリーンショット, 長押し→クリップボード."""

    def on_double_click() -> None:
        dispatcher.send_screenshot()

    def on_long_press() -> None:
        dispatcher.send_clipboard()

    detector.set_action(Gesture.SINGLE_CLICK, listener.passthrough)
    detector.set_action(Gesture.DOUBLE_CLICK, on_double_click)
    detector.set_action(Gesture.LONG_PRESS, on_long_press)


def build_runtime(home: Path | None = None) -> Runtime:
    root = home or data_dir()
    log_path = configure_file_logging(root)
    logger = get_logger("runtime")

    settings = SettingsStore(root / "settings.json")
    switch = GestureSwitch(root / "volume_key.json")
    notifications = NotificationService()
    dispatcher = JobDispatcher(settings, notifications, logger=get_logger("dispatcher"))
    detector = KeyGestureDetector(
        [VOLUME_UP],
        enable_flag=switch,
        logger=get_logger("gestures"),
    )
    listener = VolumeKeyListener(detector, logger=get_logger("volume_key"))
    bind_gestures(detector, dispatcher, listener)

    logger.info(
        "Runtime ready | home=%s gestures_enabled=%s", root, switch.is_enabled()
    )
    return Runtime(
        settings=settings,
        switch=switch,
        notifications=notifications,
        dispatcher=dispatcher,
        detector=detector,
        listener=listener,
        log_path=log_path,
        logger=logger,
    )
