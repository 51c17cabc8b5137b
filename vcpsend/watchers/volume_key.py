"""Global volume-up key listener built on pynput.

On Windows the low-level hook filter consumes handled events so the system
volume only changes through the explicit single-click passthrough. Other
platforms cannot suppress individual keys through pynput, so events are only
observed there and the passthrough is a no-op (the physical key press already
reached the system).
"""

from __future__ import annotations

import logging
import sys
from typing import Any

from vcpsend.logger import get_logger
from vcpsend.watchers.gestures import KeyGestureDetector

VOLUME_UP = "volume_up"

# Win32 low-level keyboard hook constants
VK_VOLUME_UP = 0xAF
WM_KEYDOWN = 0x0100
WM_KEYUP = 0x0101
WM_SYSKEYDOWN = 0x0104
WM_SYSKEYUP = 0x0105
LLKHF_INJECTED = 0x10

_DOWN_MESSAGES = {WM_KEYDOWN, WM_SYSKEYDOWN}
_UP_MESSAGES = {WM_KEYUP, WM_SYSKEYUP}


def key_code(key: Any) -> str | None:
    """pynput のキーを検出器のキーコードへ変換する."""
    from pynput import keyboard

    if key == keyboard.Key.media_volume_up:
        return VOLUME_UP
    return None


class VolumeKeyListener:
    """pynput のリスナーとジェスチャー検出器をつなぐアダプタ."""

    def __init__(
        self,
        detector: KeyGestureDetector,
        *,
        suppress: bool | None = None,
        controller: Any | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.detector = detector
        self.suppress = sys.platform == "win32" if suppress is None else suppress
        self.controller = controller
        self.logger = logger or get_logger("volume_key")
        self.listener: Any | None = None

    @property
    def running(self) -> bool:
        return self.listener is not None and self.listener.running

    def start(self) -> None:
        if self.listener:
            return
        # X サーバーのない環境では import 自体が失敗するため遅延 import
        from pynput import keyboard

        kwargs: dict[str, Any] = {
            "on_press": self._on_press,
            "on_release": self._on_release,
        }
        if self.suppress:
            kwargs["win32_event_filter"] = self._win32_event_filter
        self.listener = keyboard.Listener(**kwargs)
        self.listener.start()
        self.logger.info("Volume key listener started | suppress=%s", self.suppress)

    def stop(self) -> None:
        if self.listener:
            self.listener.stop()
            self.listener = None
            self.logger.info("Volume key listener stopped")

    def passthrough(self) -> None:
        """単押し: 抑止したキー入力をシステムに再送する."""
        if not self.suppress:
            return
        from pynput import keyboard

        if self.controller is None:
            self.controller = keyboard.Controller()
        self.controller.tap(keyboard.Key.media_volume_up)

    def _on_press(self, key: Any) -> None:
        code = key_code(key)
        if code is not None and not self.suppress:
            self.detector.on_key_down(code)

    def _on_release(self, key: Any) -> None:
        code = key_code(key)
        if code is not None and not self.suppress:
            self.detector.on_key_up(code)

    def _win32_event_filter(self, msg: int, data: Any) -> bool:
        if data.vkCode != VK_VOLUME_UP or data.flags & LLKHF_INJECTED:
            return True

        if msg in _DOWN_MESSAGES:
            handled = self.detector.on_key_down(VOLUME_UP)
        elif msg in _UP_MESSAGES:
            handled = self.detector.on_key_up(VOLUME_UP)
        else:
            return True

        if handled and self.listener is not None:
            self.listener.suppress_event()
        return True
