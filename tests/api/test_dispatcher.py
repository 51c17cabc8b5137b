import threading
from unittest.mock import Mock

import pytest

from vcpsend.api.services.dispatcher import JobDispatcher, preview
from vcpsend.errors import ApiError, ApiErrorKind, CaptureError, HistoryAppendError
from vcpsend.model.models import ChatRequest, Job, JobKind, JobStatus, ScreenshotPayload
from vcpsend.ui.notifications import NotificationLevel


def messages(service, job):
    return [
        entry["message"]
        for entry in service.get_notification_history()
        if entry["job_id"] == job.id
    ]


class TestPreview:
    def test_short_text_unchanged(self):
        assert preview("hello", 50) == "hello"

    def test_long_text_truncated(self):
        assert preview("a" * 60, 50) == "a" * 50 + "..."


class TestJobDispatcher:
    """ジョブ実行フローのテスト"""

    @pytest.fixture
    def clipboard(self):
        return Mock(capture=Mock(return_value="hello"))

    @pytest.fixture
    def screenshot(self):
        payload = ScreenshotPayload(
            name="Screenshot_01.png", image_base64="QUJD", age_seconds=1.0
        )
        return Mock(capture=Mock(return_value=payload))

    @pytest.fixture
    def sleep(self):
        return Mock()

    @pytest.fixture
    def dispatcher(
        self,
        settings_store,
        notification_service,
        mock_chat_client,
        mock_history_client,
        clipboard,
        screenshot,
        sleep,
    ):
        return JobDispatcher(
            settings_store,
            notification_service,
            chat_client=mock_chat_client,
            history_client=mock_history_client,
            clipboard=clipboard,
            screenshot=screenshot,
            linger=10.0,
            sleep=sleep,
        )

    def test_clipboard_job_end_to_end(
        self,
        dispatcher,
        notification_service,
        mock_chat_client,
        mock_history_client,
        settings_store,
    ):
        job = Job(kind=JobKind.CLIPBOARD)
        dispatcher.run_job(job)

        settings, request = mock_chat_client.complete.call_args.args
        assert settings == settings_store.snapshot()
        assert request == ChatRequest(user_text="分析以下内容\n\nhello", system_prompt=None)

        mock_history_client.append.assert_called_once_with(
            settings, "分析以下内容\n\nhello", "done", "📋 hello"
        )
        assert job.status is JobStatus.SUCCEEDED
        assert job.reply == "done"
        assert messages(notification_service, job) == [
            "正在读取剪贴板...",
            "正在发送: hello",
            "正在发送给 AI...",
            "✅ AI 回复: done",
        ]

    def test_clipboard_preset_override(self, dispatcher, mock_chat_client):
        dispatcher.run_job(Job(kind=JobKind.CLIPBOARD, payload="翻译"))

        request = mock_chat_client.complete.call_args.args[1]
        assert request.user_text == "翻译\n\nhello"

    def test_system_prompt_is_forwarded(self, dispatcher, settings_store, mock_chat_client):
        settings_store.update(system_prompt="你是日记助手")
        dispatcher.run_job(Job(kind=JobKind.CLIPBOARD))

        request = mock_chat_client.complete.call_args.args[1]
        assert request.system_prompt == "你是日记助手"

    def test_long_clipboard_topic_is_previewed(
        self, dispatcher, clipboard, mock_history_client
    ):
        clipboard.capture.return_value = "x" * 80
        dispatcher.run_job(Job(kind=JobKind.CLIPBOARD))

        topic = mock_history_client.append.call_args.args[3]
        assert topic == "📋 " + "x" * 50 + "..."

    def test_empty_clipboard_makes_no_request(
        self,
        dispatcher,
        clipboard,
        mock_chat_client,
        mock_history_client,
        notification_service,
    ):
        clipboard.capture.return_value = None
        job = Job(kind=JobKind.CLIPBOARD)
        dispatcher.run_job(job)

        mock_chat_client.complete.assert_not_called()
        mock_history_client.append.assert_not_called()
        assert job.status is JobStatus.EMPTY
        assert messages(notification_service, job)[-1] == "剪贴板为空"

    def test_clipboard_read_failure_is_reported(self, dispatcher, clipboard):
        clipboard.capture.side_effect = CaptureError("clipboard locked")
        job = Job(kind=JobKind.CLIPBOARD)
        dispatcher.run_job(job)

        assert job.status is JobStatus.FAILED
        assert job.error == "clipboard locked"

    def test_api_failure_skips_history(
        self,
        dispatcher,
        mock_chat_client,
        mock_history_client,
        notification_service,
    ):
        mock_chat_client.complete.side_effect = ApiError(
            ApiErrorKind.SERVER_ERROR, "API 错误 503: busy", 503
        )
        job = Job(kind=JobKind.CLIPBOARD)
        dispatcher.run_job(job)

        mock_history_client.append.assert_not_called()
        assert job.status is JobStatus.FAILED
        history = notification_service.get_notification_history()
        assert history[-1]["message"] == "发送失败: API 错误 503: busy"
        assert history[-1]["level"] == NotificationLevel.ERROR.value

    def test_history_failure_keeps_success(
        self, dispatcher, mock_history_client, notification_service
    ):
        mock_history_client.append.side_effect = HistoryAppendError("401")
        job = Job(kind=JobKind.CLIPBOARD)
        dispatcher.run_job(job)

        assert job.status is JobStatus.SUCCEEDED
        assert messages(notification_service, job)[-1] == "✅ AI 回复: done"

    def test_unexpected_error_is_contained(self, dispatcher, mock_chat_client):
        mock_chat_client.complete.side_effect = RuntimeError("boom")
        job = Job(kind=JobKind.CLIPBOARD)
        dispatcher.run_job(job)

        assert job.status is JobStatus.FAILED
        assert job.error == "RuntimeError: boom"

    def test_screenshot_job_end_to_end(
        self, dispatcher, mock_chat_client, mock_history_client, settings_store
    ):
        job = Job(kind=JobKind.SCREENSHOT)
        dispatcher.run_job(job)

        request = mock_chat_client.complete.call_args.args[1]
        assert request.user_text == "识别截图内容并记录日记"
        assert request.image_base64 == "QUJD"
        mock_history_client.append.assert_called_once_with(
            settings_store.snapshot(),
            "[截图] 识别截图内容并记录日记\n\n(文件: Screenshot_01.png)",
            "done",
            "📸 Screenshot_01.png",
        )
        assert job.status is JobStatus.SUCCEEDED

    def test_no_recent_screenshot(self, dispatcher, screenshot, mock_chat_client):
        screenshot.capture.return_value = None
        job = Job(kind=JobKind.SCREENSHOT)
        dispatcher.run_job(job)

        mock_chat_client.complete.assert_not_called()
        assert job.status is JobStatus.EMPTY
        assert job.message == "未检测到最近截图（10分钟内）"

    def test_not_configured_fails_before_request(
        self, settings_store, notification_service, clipboard, sleep
    ):
        settings_store.update(api_key="")
        http_client = Mock()
        dispatcher = JobDispatcher(
            settings_store,
            notification_service,
            history_client=http_client,
            clipboard=clipboard,
            sleep=sleep,
        )
        job = Job(kind=JobKind.CLIPBOARD)
        dispatcher.run_job(job)

        assert job.status is JobStatus.FAILED
        assert job.error == "请先在 VCPSend 设置中配置 API"
        http_client.append.assert_not_called()

    def test_teardown_after_linger(self, dispatcher, sleep, notification_service):
        job = Job(kind=JobKind.CLIPBOARD)
        dispatcher.run_job(job)

        sleep.assert_called_once_with(10.0)
        assert job.finished_at is not None
        assert notification_service.active_jobs() == []

    def test_dispatch_does_not_block(
        self, settings_store, notification_service, mock_history_client, clipboard
    ):
        release = threading.Event()
        chat_client = Mock()
        chat_client.complete.side_effect = lambda *_: release.wait(5) and "late"
        dispatcher = JobDispatcher(
            settings_store,
            notification_service,
            chat_client=chat_client,
            history_client=mock_history_client,
            clipboard=clipboard,
            linger=0,
        )

        handle = dispatcher.send_clipboard()
        assert handle.job.kind is JobKind.CLIPBOARD
        assert handle.done() is False
        assert [job["id"] for job in dispatcher.active_jobs()] == [handle.job.id]

        release.set()
        assert handle.wait(5) is True
        assert handle.job.reply == "late"
        assert dispatcher.active_jobs() == []

    def test_overlapping_dispatches_run_independently(
        self,
        settings_store,
        notification_service,
        mock_chat_client,
        mock_history_client,
        clipboard,
        screenshot,
    ):
        dispatcher = JobDispatcher(
            settings_store,
            notification_service,
            chat_client=mock_chat_client,
            history_client=mock_history_client,
            clipboard=clipboard,
            screenshot=screenshot,
            linger=0,
        )
        handles = [
            dispatcher.send_clipboard(),
            dispatcher.send_clipboard(),
            dispatcher.send_screenshot(),
        ]
        for handle in handles:
            assert handle.wait(5) is True

        assert len({h.job.id for h in handles}) == 3
        assert mock_chat_client.complete.call_count == 3
        assert all(h.job.status is JobStatus.SUCCEEDED for h in handles)

    def test_shutdown_waits_for_in_flight_job(
        self, settings_store, notification_service, mock_history_client, clipboard
    ):
        """shutdown は API 呼び出し中のジョブの完了を待ち、リンガーは省略する"""
        release = threading.Event()
        entered = threading.Event()

        def slow_complete(*_):
            entered.set()
            release.wait(5)
            return "late"

        dispatcher = JobDispatcher(
            settings_store,
            notification_service,
            chat_client=Mock(complete=Mock(side_effect=slow_complete)),
            history_client=mock_history_client,
            clipboard=clipboard,
        )
        handle = dispatcher.send_clipboard()
        assert entered.wait(5) is True

        assert dispatcher.shutdown(timeout=0.05) is False
        assert handle.done() is False

        threading.Timer(0.05, release.set).start()
        assert dispatcher.shutdown(timeout=5) is True

        assert handle.done() is True
        assert handle.job.status is JobStatus.SUCCEEDED
        mock_history_client.append.assert_called_once()
        assert dispatcher.active_jobs() == []

    def test_shutdown_without_jobs(self, dispatcher):
        assert dispatcher.shutdown(timeout=0) is True
