from unittest.mock import Mock, patch

import pytest
import requests

from vcpsend.api.services.history import HistoryClient, build_history_body
from vcpsend.config import Settings
from vcpsend.errors import HistoryAppendError

NOW_MS = 1_700_000_000_000


def make_response(status_code: int = 200, payload=None, text: str = "") -> Mock:
    response = Mock()
    response.status_code = status_code
    response.text = text
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


class TestBuildHistoryBody:
    def test_two_messages_in_order(self, settings):
        body = build_history_body(settings, "question", "answer", "📋 question", NOW_MS)

        assert body["agentDirId"] == "Nova"
        assert body["topicId"] == f"topic_{NOW_MS}"
        assert body["topicName"] == "📋 question"
        user, ai = body["messages"]
        assert user == {
            "id": f"msg_{NOW_MS}_user",
            "role": "user",
            "content": "question",
            "timestamp": NOW_MS,
        }
        assert ai == {
            "id": f"msg_{NOW_MS}_ai",
            "role": "assistant",
            "content": "answer",
            "timestamp": NOW_MS + 1,
        }


class TestHistoryClient:
    """VCPChat 履歴追記のテスト"""

    @pytest.fixture
    def client(self):
        return HistoryClient(clock_ms=lambda: NOW_MS)

    def test_append_posts_with_basic_auth(self, client, settings):
        response = make_response(payload={"success": True, "appended": 2})
        with patch("requests.post", return_value=response) as mock_post:
            assert client.append(settings, "q", "a", "topic") is True

        args, kwargs = mock_post.call_args
        assert args[0] == (
            "http://vcp.example:6005/admin_api/agents/vcpchat-append-history"
        )
        assert kwargs["auth"] == ("admin", "secret")
        assert kwargs["timeout"] == (15.0, 30.0)
        assert kwargs["json"]["topicId"] == f"topic_{NOW_MS}"

    def test_server_reports_failure(self, client, settings):
        with patch("requests.post", return_value=make_response(payload={"success": False})):
            assert client.append(settings, "q", "a", "topic") is False

    def test_missing_success_field_is_false(self, client, settings):
        with patch("requests.post", return_value=make_response(payload={})):
            assert client.append(settings, "q", "a", "topic") is False

    @pytest.mark.parametrize(
        "changes",
        [{"admin_username": ""}, {"agent_dir_id": ""}],
    )
    def test_skips_when_not_configured(self, client, settings, changes):
        incomplete = settings.model_copy(update=changes)
        with patch("requests.post") as mock_post:
            assert client.append(incomplete, "q", "a", "topic") is False
        mock_post.assert_not_called()

    def test_skips_without_base_url(self, client):
        with patch("requests.post") as mock_post:
            assert client.append(Settings(), "q", "a", "topic") is False
        mock_post.assert_not_called()

    def test_non_200_raises(self, client, settings):
        response = make_response(status_code=401, text="unauthorized")
        with patch("requests.post", return_value=response):
            with pytest.raises(HistoryAppendError, match="401"):
                client.append(settings, "q", "a", "topic")

    def test_transport_error_raises(self, client, settings):
        with patch(
            "requests.post", side_effect=requests.exceptions.ConnectionError("down")
        ):
            with pytest.raises(HistoryAppendError):
                client.append(settings, "q", "a", "topic")

    def test_non_json_body_raises(self, client, settings):
        response = make_response(payload=ValueError("no json"), text="<html>")
        with patch("requests.post", return_value=response):
            with pytest.raises(HistoryAppendError):
                client.append(settings, "q", "a", "topic")

    def test_non_object_body_raises(self, client, settings):
        with patch("requests.post", return_value=make_response(payload=["ok"])):
            with pytest.raises(HistoryAppendError):
                client.append(settings, "q", "a", "topic")
