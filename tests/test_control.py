import subprocess

import pytest

from capture.control import ControlClient, reset_display, run_clear_command, status_is_blank
from capture.errors import TransportError

from conftest import FakePlaywright, FakeRequest, SessionTracker

SERVER = "http://display.test"
MISSING_CLI = "definitely-missing-hdisplay-cli --server {server} clear"


def completed(returncode, stdout="", stderr=""):
    def run(args, **kwargs):
        run.calls.append((args, kwargs))
        return subprocess.CompletedProcess(args, returncode, stdout=stdout, stderr=stderr)
    run.calls = []
    return run


def test_clear_command_success(monkeypatch):
    run = completed(0, stdout="cleared")
    monkeypatch.setattr("capture.control.subprocess.run", run)

    result = run_clear_command(SERVER, timeout=3)

    assert result.ok
    assert result.method == "cli"
    assert result.exit_code == 0
    args, kwargs = run.calls[0]
    assert args == ["hdisplay", "--server", SERVER, "clear"]
    assert kwargs["timeout"] == 3


def test_clear_command_nonzero_exit(monkeypatch):
    monkeypatch.setattr("capture.control.subprocess.run", completed(2, stderr="unreachable"))
    result = run_clear_command(SERVER)
    assert not result.ok
    assert result.available
    assert result.exit_code == 2


def test_clear_command_missing_binary():
    result = run_clear_command(SERVER, command=MISSING_CLI)
    assert not result.ok
    assert not result.available
    assert "definitely-missing-hdisplay-cli" in result.message


def test_clear_command_timeout(monkeypatch):
    def run(args, **kwargs):
        raise subprocess.TimeoutExpired(args, kwargs["timeout"])

    monkeypatch.setattr("capture.control.subprocess.run", run)
    result = run_clear_command(SERVER, timeout=0.5)
    assert not result.ok
    assert result.timed_out
    assert result.available


async def test_reset_falls_back_to_http_when_cli_missing(server):
    playwright = FakePlaywright(server, SessionTracker())

    result = await reset_display(playwright, SERVER, command=MISSING_CLI)

    assert result.ok
    assert result.method == "http"
    assert server.clear_calls == 1
    status = await ControlClient(FakeRequest(server), SERVER).get_status()
    assert status_is_blank(status)


async def test_reset_uses_cli_result_when_available(server, monkeypatch):
    monkeypatch.setattr("capture.control.subprocess.run", completed(1))
    result = await reset_display(FakePlaywright(server, SessionTracker()), SERVER)
    assert not result.ok
    assert result.method == "cli"
    assert server.clear_calls == 0


async def test_list_templates(server):
    client = ControlClient(FakeRequest(server), SERVER + "/")
    templates = await client.list_templates()
    assert [t["id"] for t in templates] == ["message-banner", "simple-clock"]


async def test_unknown_endpoint_raises_transport_error(server):
    client = ControlClient(FakeRequest(server), SERVER)
    with pytest.raises(TransportError) as excinfo:
        await client._get_json("/api/missing")
    assert excinfo.value.status == 404


def test_status_is_blank():
    assert status_is_blank({"content": "  ", "notification": None})
    assert not status_is_blank({"content": "<div>x</div>"})
    assert not status_is_blank({"content": "", "notification": {"message": "hi"}})
