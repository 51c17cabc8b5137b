"""Volume key gesture detection.

Raw key-down/key-up events for a monitored key are classified into a single
click, a double click or a long press:

- held for ``LONG_PRESS_S`` -> long press (the following key-up is swallowed)
- released twice within ``DOUBLE_CLICK_S`` -> double click
- released once with no second press within ``DOUBLE_CLICK_S`` -> single click

Timers come from an injected scheduler and time from an injected clock so the
state machine can be driven by a virtual clock in tests.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Hashable, Iterable, Mapping
from dataclasses import dataclass
from typing import Protocol

from vcpsend.logger import get_logger
from vcpsend.model.models import Gesture

LONG_PRESS_S = 0.6
DOUBLE_CLICK_S = 0.4


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """遅延コールバックのスケジューラ."""

    def schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class EnableFlag(Protocol):
    def is_enabled(self) -> bool: ...


class ThreadingScheduler:
    """threading.Timer によるスケジューラ."""

    def schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


class AlwaysEnabled:
    def is_enabled(self) -> bool:
        return True


@dataclass
class KeyState:
    """1つの物理キーの一時状態. ジェスチャー確定ごとにリセットされる."""

    is_down: bool = False
    down_timestamp: float = 0.0
    long_press_fired: bool = False
    long_press_timer: TimerHandle | None = None
    long_press_token: object | None = None
    pending_single_click: TimerHandle | None = None
    single_click_token: object | None = None
    last_up_timestamp: float | None = None  # 直前の短押しの離した時刻

    def cancel_long_press(self) -> None:
        if self.long_press_timer is not None:
            self.long_press_timer.cancel()
        self.long_press_timer = None
        self.long_press_token = None

    def cancel_single_click(self) -> None:
        if self.pending_single_click is not None:
            self.pending_single_click.cancel()
        self.pending_single_click = None
        self.single_click_token = None


GestureAction = Callable[[], None]


class KeyGestureDetector:
    """Classify key events of the monitored keys into gestures.

    ``on_key_down`` / ``on_key_up`` return ``True`` when the event was
    consumed. Every event for a monitored key is consumed while the enable
    flag is on; when it is off nothing is consumed and no gesture fires.
    Each key code keeps independent state.
    """

    def __init__(
        self,
        monitored_keys: Iterable[Hashable],
        actions: Mapping[Gesture, GestureAction] | None = None,
        *,
        enable_flag: EnableFlag | None = None,
        scheduler: Scheduler | None = None,
        clock: Callable[[], float] = time.monotonic,
        long_press_s: float = LONG_PRESS_S,
        double_click_s: float = DOUBLE_CLICK_S,
        logger: logging.Logger | None = None,
    ) -> None:
        self.monitored_keys = frozenset(monitored_keys)
        self.actions: dict[Gesture, GestureAction] = dict(actions or {})
        self.enable_flag = enable_flag or AlwaysEnabled()
        self.scheduler = scheduler or ThreadingScheduler()
        self.clock = clock
        self.long_press_s = long_press_s
        self.double_click_s = double_click_s
        self.logger = logger or get_logger("gestures")
        self._lock = threading.RLock()
        self._states: dict[Hashable, KeyState] = {}

    def set_action(self, gesture: Gesture, action: GestureAction) -> None:
        self.actions[gesture] = action

    def state_of(self, key: Hashable) -> KeyState:
        with self._lock:
            return self._states.setdefault(key, KeyState())

    def handle(self, key: Hashable, *, is_down: bool) -> bool:
        if is_down:
            return self.on_key_down(key)
        return self.on_key_up(key)

    def on_key_down(self, key: Hashable) -> bool:
        if not self._accepts(key):
            return False

        with self._lock:
            state = self._states.setdefault(key, KeyState())
            if state.is_down:
                # オートリピートの key-down は無視
                return True

            state.is_down = True
            state.down_timestamp = self.clock()
            state.long_press_fired = False
            state.cancel_long_press()

            token = object()
            state.long_press_token = token
            state.long_press_timer = self.scheduler.schedule(
                self.long_press_s,
                lambda: self._on_long_press_timer(key, token),
            )
        return True

    def on_key_up(self, key: Hashable) -> bool:
        if not self._accepts(key):
            return False

        fire: Gesture | None = None
        with self._lock:
            state = self._states.setdefault(key, KeyState())
            state.is_down = False
            state.cancel_long_press()

            if state.long_press_fired:
                state.long_press_fired = False
                return True

            now = self.clock()
            last_up = state.last_up_timestamp
            if last_up is not None and now - last_up < self.double_click_s:
                state.cancel_single_click()
                state.last_up_timestamp = None
                fire = Gesture.DOUBLE_CLICK
            else:
                state.cancel_single_click()
                state.last_up_timestamp = now
                token = object()
                state.single_click_token = token
                state.pending_single_click = self.scheduler.schedule(
                    self.double_click_s,
                    lambda: self._on_single_click_timer(key, token),
                )

        if fire is not None:
            self._emit(key, fire)
        return True

    def reset(self) -> None:
        """全キーの保留中タイマーを取り消し、状態を初期化する."""
        with self._lock:
            for state in self._states.values():
                state.cancel_long_press()
                state.cancel_single_click()
            self._states.clear()

    def _accepts(self, key: Hashable) -> bool:
        return key in self.monitored_keys and self.enable_flag.is_enabled()

    def _on_long_press_timer(self, key: Hashable, token: object) -> None:
        with self._lock:
            state = self._states.get(key)
            if state is None or state.long_press_token is not token:
                return
            state.long_press_timer = None
            state.long_press_token = None
            if not state.is_down:
                return
            state.long_press_fired = True
        self._emit(key, Gesture.LONG_PRESS)

    def _on_single_click_timer(self, key: Hashable, token: object) -> None:
        with self._lock:
            state = self._states.get(key)
            if state is None or state.single_click_token is not token:
                return
            state.pending_single_click = None
            state.single_click_token = None
            state.last_up_timestamp = None
        self._emit(key, Gesture.SINGLE_CLICK)

    def _emit(self, key: Hashable, gesture: Gesture) -> None:
        self.logger.info("Gesture %s on %s", gesture.name, key)
        action = self.actions.get(gesture)
        if action is None:
            return
        try:
            action()
        except Exception:
            self.logger.exception("Gesture action failed | gesture=%s", gesture.name)
