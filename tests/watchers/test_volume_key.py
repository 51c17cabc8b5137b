from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest

from vcpsend.watchers.volume_key import (
    LLKHF_INJECTED,
    VK_VOLUME_UP,
    VOLUME_UP,
    WM_KEYDOWN,
    WM_KEYUP,
    WM_SYSKEYDOWN,
    VolumeKeyListener,
)


def hook_data(vk=VK_VOLUME_UP, flags=0):
    return SimpleNamespace(vkCode=vk, flags=flags)


class TestWin32EventFilter:
    """Windows 低レベルフックのフィルタのテスト"""

    @pytest.fixture
    def detector(self):
        detector = Mock()
        detector.on_key_down.return_value = True
        detector.on_key_up.return_value = True
        return detector

    @pytest.fixture
    def listener(self, detector):
        adapter = VolumeKeyListener(detector, suppress=True)
        adapter.listener = Mock()
        return adapter

    def test_handled_key_down_is_suppressed(self, listener, detector):
        assert listener._win32_event_filter(WM_KEYDOWN, hook_data()) is True
        detector.on_key_down.assert_called_once_with(VOLUME_UP)
        listener.listener.suppress_event.assert_called_once()

    def test_sys_key_down_counts_as_down(self, listener, detector):
        listener._win32_event_filter(WM_SYSKEYDOWN, hook_data())
        detector.on_key_down.assert_called_once_with(VOLUME_UP)

    def test_handled_key_up_is_suppressed(self, listener, detector):
        listener._win32_event_filter(WM_KEYUP, hook_data())
        detector.on_key_up.assert_called_once_with(VOLUME_UP)
        listener.listener.suppress_event.assert_called_once()

    def test_unhandled_event_reaches_system(self, listener, detector):
        detector.on_key_down.return_value = False
        listener._win32_event_filter(WM_KEYDOWN, hook_data())
        listener.listener.suppress_event.assert_not_called()

    def test_other_keys_pass_through(self, listener, detector):
        listener._win32_event_filter(WM_KEYDOWN, hook_data(vk=0x41))
        detector.on_key_down.assert_not_called()
        listener.listener.suppress_event.assert_not_called()

    def test_injected_events_pass_through(self, listener, detector):
        """単押しの再送イベントは検出器に渡さない"""
        listener._win32_event_filter(WM_KEYDOWN, hook_data(flags=LLKHF_INJECTED))
        listener._win32_event_filter(WM_KEYUP, hook_data(flags=LLKHF_INJECTED))
        detector.on_key_down.assert_not_called()
        detector.on_key_up.assert_not_called()
        listener.listener.suppress_event.assert_not_called()


class TestVolumeKeyListener:
    def test_not_running_before_start(self):
        assert VolumeKeyListener(Mock(), suppress=False).running is False

    def test_passthrough_without_suppression_is_noop(self):
        controller = Mock()
        VolumeKeyListener(Mock(), suppress=False, controller=controller).passthrough()
        controller.tap.assert_not_called()

    def test_passthrough_taps_volume_up(self):
        keyboard = pytest.importorskip("pynput.keyboard")
        controller = Mock()
        VolumeKeyListener(Mock(), suppress=True, controller=controller).passthrough()
        controller.tap.assert_called_once_with(keyboard.Key.media_volume_up)

    def test_observed_events_feed_detector(self):
        detector = Mock()
        adapter = VolumeKeyListener(detector, suppress=False)
        with patch("vcpsend.watchers.volume_key.key_code", return_value=VOLUME_UP):
            adapter._on_press(object())
            adapter._on_release(object())
        detector.on_key_down.assert_called_once_with(VOLUME_UP)
        detector.on_key_up.assert_called_once_with(VOLUME_UP)

    def test_callbacks_ignored_when_filter_is_active(self):
        detector = Mock()
        adapter = VolumeKeyListener(detector, suppress=True)
        with patch("vcpsend.watchers.volume_key.key_code", return_value=VOLUME_UP):
            adapter._on_press(object())
        detector.on_key_down.assert_not_called()

    def test_stop_without_start(self):
        adapter = VolumeKeyListener(Mock(), suppress=False)
        adapter.stop()
        assert adapter.listener is None
