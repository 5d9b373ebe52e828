"""
Unit tests for autoupdate_client.client and autoupdate_client.cli modules.

Tests the HTTP client functions and the command-line dispatch with mocked
requests.
"""

import json
from unittest.mock import Mock, patch

import pytest
import requests

from autoupdate_client import cli
from autoupdate_client.client import (
    create_intent,
    delete_intent,
    get_history_stats,
    list_history,
    list_intent_executions,
    list_intents,
    run_batch_pass,
    set_intent_enabled,
    upgrade_container,
)

SERVER = "http://test-server:8000"


def mock_response(status_code=200, payload=None, reason="OK"):
    response = Mock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.reason = reason
    response.content = json.dumps(payload).encode() if payload is not None else b""
    response.json.return_value = payload
    return response


RECORD = {
    "id": "rec-1",
    "containerName": "my-plex",
    "status": "success",
    "oldVersion": "1.0",
    "newVersion": "1.1",
    "startedAt": "2024-01-15T09:30:00+00:00",
    "durationMs": 12500,
}


class TestClient:
    """Test suite for the HTTP client functions."""

    def test_list_intents(self):
        with patch("requests.request", return_value=mock_response(payload={"intents": []})) as req:
            assert list_intents(server_url=SERVER) == []

        assert req.call_args.args == ("GET", f"{SERVER}/intents")

    def test_create_intent_sends_only_given_fields(self):
        payload = {"id": "i1", "stackName": "media", "serviceName": "plex"}
        with patch("requests.request", return_value=mock_response(201, payload)) as req:
            assert create_intent(stack_name="media", service_name="plex", server_url=SERVER) == payload

        assert req.call_args.kwargs["json"] == {
            "enabled": False,
            "stackName": "media",
            "serviceName": "plex",
        }

    def test_enable_and_disable_paths(self):
        with patch("requests.request", return_value=mock_response(payload={"id": "i1"})) as req:
            set_intent_enabled("i1", True, server_url=SERVER)
            set_intent_enabled("i1", False, server_url=SERVER)

        paths = [c.args[1] for c in req.call_args_list]
        assert paths == [f"{SERVER}/intents/i1/enable", f"{SERVER}/intents/i1/disable"]

    def test_delete_returns_none_on_204(self):
        with patch("requests.request", return_value=mock_response(204)):
            assert delete_intent("i1", server_url=SERVER) is None

    def test_list_history_params(self):
        with patch("requests.request", return_value=mock_response(payload={"history": [RECORD]})) as req:
            records = list_history(limit=5, container_name="plex", status="failed", server_url=SERVER)

        assert records == [RECORD]
        assert req.call_args.kwargs["params"] == {
            "offset": 0,
            "limit": 5,
            "containerName": "plex",
            "status": "failed",
        }

    def test_list_intent_executions(self):
        payload = {"executions": [{"id": "e1"}]}
        with patch("requests.request", return_value=mock_response(payload=payload)) as req:
            executions = list_intent_executions("i1", limit=5, server_url=SERVER)

        assert executions == [{"id": "e1"}]
        assert req.call_args.args == ("GET", f"{SERVER}/intents/i1/executions")
        assert req.call_args.kwargs["params"] == {"limit": 5}

    def test_stats_repeats_endpoint_param(self):
        with patch("requests.request", return_value=mock_response(payload={})) as req:
            get_history_stats(["nas", "local"], server_url=SERVER)

        assert req.call_args.kwargs["params"] == [("endpoint", "nas"), ("endpoint", "local")]

    def test_long_running_calls_use_longer_timeouts(self):
        with patch("requests.request", return_value=mock_response(payload=RECORD)) as req:
            upgrade_container("c1", server_url=SERVER)
            run_batch_pass(server_url=SERVER)

        assert [c.kwargs["timeout"] for c in req.call_args_list] == [900, 3600]

    def test_error_response_raises_with_detail(self):
        response = mock_response(404, {"detail": "Intent not found: i1"}, reason="Not Found")
        with patch("requests.request", return_value=response):
            with pytest.raises(RuntimeError, match="404 Intent not found: i1"):
                set_intent_enabled("i1", True, server_url=SERVER)

    def test_error_without_json_uses_reason(self):
        response = mock_response(502, reason="Bad Gateway")
        response.json.side_effect = ValueError("no json")
        with patch("requests.request", return_value=response):
            with pytest.raises(RuntimeError, match="502 Bad Gateway"):
                run_batch_pass(server_url=SERVER)

    def test_network_error_raises(self):
        with patch("requests.request", side_effect=requests.exceptions.ConnectionError("refused")):
            with pytest.raises(RuntimeError, match="Error contacting auto-update server"):
                list_intents(server_url=SERVER)


class TestCli:
    """Test suite for the autoupdate command-line interface."""

    def run_cli(self, monkeypatch, argv):
        monkeypatch.setenv("AU_SERVER_URL", SERVER)
        with pytest.raises(SystemExit) as exc_info:
            cli.main(argv)
        return exc_info.value.code

    def test_intents_list(self, monkeypatch, capsys):
        intents = [
            {
                "id": "i1",
                "enabled": True,
                "imageRepo": None,
                "stackName": "media",
                "serviceName": "plex",
                "containerName": None,
                "description": "Plex",
            }
        ]
        with patch("autoupdate_client.cli.list_intents", return_value=intents) as list_mock:
            code = self.run_cli(monkeypatch, ["intents", "list"])

        assert code == 0
        list_mock.assert_called_once_with(server_url=SERVER)
        out = capsys.readouterr().out
        assert "stack=media/plex" in out
        assert "Plex" in out

    def test_create_passes_criteria(self, monkeypatch, capsys):
        with patch("autoupdate_client.cli.create_intent", return_value={"id": "i1"}) as create_mock:
            code = self.run_cli(
                monkeypatch, ["intents", "create", "--image-repo", "nginx", "--enabled"]
            )

        assert code == 0
        assert create_mock.call_args.kwargs["image_repo"] == "nginx"
        assert create_mock.call_args.kwargs["enabled"] is True
        assert "Intent created: i1" in capsys.readouterr().out

    def test_json_mode(self, monkeypatch, capsys):
        with patch("autoupdate_client.cli.list_history", return_value=[RECORD]):
            code = self.run_cli(monkeypatch, ["--json", "history", "list"])

        assert code == 0
        assert json.loads(capsys.readouterr().out) == [RECORD]

    def test_history_table(self, monkeypatch, capsys):
        with patch("autoupdate_client.cli.list_history", return_value=[RECORD]):
            self.run_cli(monkeypatch, ["history", "list", "--status", "success"])

        out = capsys.readouterr().out
        assert "my-plex" in out
        assert "12.5s" in out
        assert "2024-01-15 09:30:00" in out

    def test_intent_executions_table(self, monkeypatch, capsys):
        execution = {
            "status": "failed",
            "startedAt": "2024-01-15T09:30:00+00:00",
            "containersMatched": 0,
            "containersWithUpdates": 0,
            "containersUpgraded": 0,
            "containersFailed": 0,
            "errorMessage": "endpoint unreachable",
        }
        with patch(
            "autoupdate_client.cli.list_intent_executions", return_value=[execution]
        ) as list_mock:
            code = self.run_cli(monkeypatch, ["intents", "executions", "i1", "--limit", "3"])

        assert code == 0
        list_mock.assert_called_once_with("i1", 3, server_url=SERVER)
        out = capsys.readouterr().out
        assert "endpoint unreachable" in out
        assert "2024-01-15 09:30:00" in out

    def test_failed_upgrade_exits_nonzero(self, monkeypatch):
        failed = dict(RECORD, status="failed")
        with patch("autoupdate_client.cli.upgrade_container", return_value=failed):
            assert self.run_cli(monkeypatch, ["upgrade", "c1"]) == 1

    def test_server_error_exits_nonzero(self, monkeypatch, capsys):
        with patch(
            "autoupdate_client.cli.run_batch_pass",
            side_effect=RuntimeError("Server returned 500 boom"),
        ):
            code = self.run_cli(monkeypatch, ["run"])

        assert code == 1
        assert "Error: Server returned 500 boom" in capsys.readouterr().err

    def test_missing_command_prints_help(self, monkeypatch, capsys):
        assert self.run_cli(monkeypatch, []) == 1
        assert "usage" in capsys.readouterr().out


def test_format_helpers():
    assert cli.format_duration(None) == "-"
    assert cli.format_duration(1500) == "1.5s"
    assert cli.format_time(None) == "N/A"
    assert cli.format_time("not a time") == "not a time"
    assert cli.format_criteria({"containerName": "my-plex"}) == "name=my-plex"
