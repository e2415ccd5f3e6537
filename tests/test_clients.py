import asyncio
import json
import logging

import httpx
import pytest

from conftest import make_target
from ptero_monitor.orchestrator.contracts import WebSocketInfo
from ptero_monitor.services.notifications import DiscordNotifier, is_valid_webhook_url
from ptero_monitor.services.pterodactyl import PterodactylClient, parse_watchdog_token
from ptero_monitor.services.remote_control import PanelRemoteControl, Ss14VersionSource
from ptero_monitor.services.ss14 import (
    Ss14Client,
    parse_build_time,
    parse_manifest,
    select_latest_build,
)

# -----------------------------------------------------------------------------
# Test Helpers
# -----------------------------------------------------------------------------

MANIFEST = {
    "builds": {
        "b-middle": {"time": "2024-02-01T12:00:00Z"},
        "b-newest": {"time": "2024-03-01T10:00:00.1234567Z"},
        "b-oldest": {"time": "2023-12-24T08:00:00+00:00"},
        "b-broken": {"time": "yesterday"},
    }
}


class Recorder:
    """httpx.MockTransport handler that serves canned responses by path"""

    def __init__(self, routes: dict):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, text="not found")
        if isinstance(route, Exception):
            raise route
        return route

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def panel_path(endpoint: str) -> str:
    return f"/api/client/servers/abcd1234/{endpoint}"


# -----------------------------------------------------------------------------
# 1. Manifest Parsing
# -----------------------------------------------------------------------------

def test_latest_build_is_chosen_by_time():
    builds = parse_manifest(MANIFEST)

    assert {b.build_id for b in builds} == {"b-middle", "b-newest", "b-oldest"}
    assert select_latest_build(builds).build_id == "b-newest"


def test_parse_build_time_variants():
    assert parse_build_time("2024-03-01T10:00:00.1234567Z").microsecond == 123456
    assert parse_build_time("2024-03-01T10:00:00").tzinfo is not None
    assert parse_build_time("") is None
    assert parse_build_time(None) is None


def test_empty_manifest():
    assert parse_manifest({"builds": {}}) == []
    assert parse_manifest([]) == []
    assert select_latest_build([]) is None


# -----------------------------------------------------------------------------
# 2. SS14 Client
# -----------------------------------------------------------------------------

def test_latest_build_id_from_manifest():
    recorder = Recorder({("GET", "/fork/manifest"): httpx.Response(200, json=MANIFEST)})
    client = Ss14Client(make_target(), transport=recorder.transport)

    assert asyncio.run(client.latest_build_id()) == "b-newest"
    assert str(recorder.requests[0].url) == "https://cdn.test/fork/manifest"


def test_manifest_without_builds_gives_none():
    recorder = Recorder({("GET", "/fork/manifest"): httpx.Response(200, json={"builds": {}})})
    client = Ss14Client(make_target(), transport=recorder.transport)

    assert asyncio.run(client.latest_build_id()) is None


def test_manifest_error_status_gives_none():
    recorder = Recorder({("GET", "/fork/manifest"): httpx.Response(503)})
    client = Ss14Client(make_target(), transport=recorder.transport)

    assert asyncio.run(client.fetch_manifest()) is None


def test_running_build_id_from_info():
    recorder = Recorder({("GET", "/info"): httpx.Response(200, json={"build": {"version": "abc123"}})})
    client = Ss14Client(make_target(), transport=recorder.transport)

    assert asyncio.run(client.running_build_id()) == "abc123"
    assert str(recorder.requests[0].url) == "http://game.test:1212/info"


@pytest.mark.parametrize(
    "route",
    [
        httpx.Response(200, json={"build": {}}),
        httpx.Response(200, json={"name": "no build"}),
        httpx.Response(200, text="not json"),
        httpx.Response(500),
        httpx.ConnectError("connection refused"),
    ],
)
def test_running_build_id_unavailable(route):
    recorder = Recorder({("GET", "/info"): route})
    client = Ss14Client(make_target(), transport=recorder.transport)

    assert asyncio.run(client.running_build_id()) is None


def test_update_command_sends_watchdog_header():
    recorder = Recorder({("POST", "/update"): httpx.Response(200)})
    client = Ss14Client(make_target(), transport=recorder.transport)

    assert asyncio.run(client.send_update_command("secret")) is True
    assert recorder.requests[0].headers["WatchdogToken"] == "secret"


def test_update_command_requires_token():
    recorder = Recorder({})
    client = Ss14Client(make_target(), transport=recorder.transport)

    assert asyncio.run(client.send_update_command("")) is False
    assert recorder.requests == []


def test_update_command_rejected():
    recorder = Recorder({("POST", "/update"): httpx.Response(401, text="bad token")})
    client = Ss14Client(make_target(), transport=recorder.transport)

    assert asyncio.run(client.send_update_command("secret")) is False


# -----------------------------------------------------------------------------
# 3. Pterodactyl Client
# -----------------------------------------------------------------------------

def test_parse_watchdog_token():
    text = '[net]\nport = 1212\n\n[watchdog]\ntoken = "tok-123"\nenabled = true\n'

    assert parse_watchdog_token(text) == "tok-123"
    assert parse_watchdog_token("[net]\nport = 1212\n") is None
    assert parse_watchdog_token('[watchdog]\ntoken = ""\n') is None


def test_watchdog_token_from_file_contents():
    recorder = Recorder({
        ("GET", panel_path("files/contents")): httpx.Response(200, text='[watchdog]\ntoken = "tok-123"\n'),
    })
    client = PterodactylClient(make_target(), transport=recorder.transport)

    assert asyncio.run(client.get_watchdog_token()) == "tok-123"

    request = recorder.requests[0]
    assert request.url.params["file"] == "/datadir/server_config.toml"
    assert request.headers["Authorization"] == "Bearer ptlc_key"
    assert request.headers["Accept"] == "application/json"


def test_watchdog_token_invalid_toml():
    recorder = Recorder({
        ("GET", panel_path("files/contents")): httpx.Response(200, text="[watchdog\ntoken ="),
    })
    client = PterodactylClient(make_target(), transport=recorder.transport)

    assert asyncio.run(client.get_watchdog_token()) is None


def test_websocket_info():
    recorder = Recorder({
        ("GET", panel_path("websocket")): httpx.Response(
            200, json={"data": {"token": "jwt-1", "socket": "wss://node.test:8080/api/servers/x/ws"}}
        ),
    })
    client = PterodactylClient(make_target(), transport=recorder.transport)

    info = asyncio.run(client.get_websocket_info())

    assert info == WebSocketInfo(url="wss://node.test:8080/api/servers/x/ws", token="jwt-1")


def test_websocket_info_missing_token():
    recorder = Recorder({
        ("GET", panel_path("websocket")): httpx.Response(200, json={"data": {"socket": "wss://node.test"}}),
    })
    client = PterodactylClient(make_target(), transport=recorder.transport)

    assert asyncio.run(client.get_websocket_info()) is None


def test_power_signal_is_lowercased():
    recorder = Recorder({("POST", panel_path("power")): httpx.Response(204)})
    client = PterodactylClient(make_target(), transport=recorder.transport)

    assert asyncio.run(client.send_power_signal("KILL")) is True
    assert json.loads(recorder.requests[0].content) == {"signal": "kill"}


def test_invalid_power_signal_is_not_sent():
    recorder = Recorder({("POST", panel_path("power")): httpx.Response(204)})
    client = PterodactylClient(make_target(), transport=recorder.transport)

    assert asyncio.run(client.send_power_signal("explode")) is False
    assert recorder.requests == []


def test_reinstall():
    recorder = Recorder({("POST", panel_path("settings/reinstall")): httpx.Response(202)})
    client = PterodactylClient(make_target(), transport=recorder.transport)

    assert asyncio.run(client.send_reinstall()) is True


def test_reinstall_failure():
    recorder = Recorder({("POST", panel_path("settings/reinstall")): httpx.Response(409, text="busy")})
    client = PterodactylClient(make_target(), transport=recorder.transport)

    assert asyncio.run(client.send_reinstall()) is False


# -----------------------------------------------------------------------------
# 4. Remote Control Adapters
# -----------------------------------------------------------------------------

def test_remote_control_routes_calls():
    recorder = Recorder({
        ("GET", "/fork/manifest"): httpx.Response(200, json=MANIFEST),
        ("GET", "/info"): httpx.Response(200, json={"build": {"version": "b-middle"}}),
        ("POST", "/update"): httpx.Response(200),
        ("GET", panel_path("files/contents")): httpx.Response(200, text='[watchdog]\ntoken = "tok"\n'),
        ("POST", panel_path("power")): httpx.Response(204),
    })
    target = make_target()
    ss14 = Ss14Client(target, transport=recorder.transport)
    panel = PterodactylClient(target, transport=recorder.transport)
    versions = Ss14VersionSource(ss14)
    control = PanelRemoteControl(ss14, panel)

    async def scenario():
        return (
            await versions.latest_build_id(),
            await versions.running_build_id(),
            await control.issue_credential(),
            await control.issue_begin_update("tok"),
            await control.issue_lifecycle_signal("start"),
        )

    assert asyncio.run(scenario()) == ("b-newest", "b-middle", "tok", True, True)
    assert [r.url.path for r in recorder.requests][-2:] == ["/update", panel_path("power")]


# -----------------------------------------------------------------------------
# 5. Discord Notifier
# -----------------------------------------------------------------------------

WEBHOOK = "https://discord.test/api/webhooks/1/token"


def test_notify_posts_content():
    recorder = Recorder({("POST", "/api/webhooks/1/token"): httpx.Response(204)})
    notifier = DiscordNotifier(WEBHOOK, "Main", transport=recorder.transport)

    asyncio.run(notifier.notify("Server 'Main' is updating!"))

    assert json.loads(recorder.requests[0].content) == {"content": "Server 'Main' is updating!"}


@pytest.mark.parametrize("url", [None, "", "   ", "discord webhook", "ftp://discord.test/hook"])
def test_notify_skips_missing_or_invalid_url(url):
    recorder = Recorder({})
    notifier = DiscordNotifier(url, "Main", transport=recorder.transport)

    asyncio.run(notifier.notify("hello"))

    assert recorder.requests == []


@pytest.mark.parametrize(
    "route",
    [httpx.Response(400, text="bad"), httpx.ConnectError("offline")],
)
def test_notify_never_raises(route):
    recorder = Recorder({("POST", "/api/webhooks/1/token"): route})
    notifier = DiscordNotifier(WEBHOOK, "Main", transport=recorder.transport)

    asyncio.run(notifier.notify("hello"))

    assert len(recorder.requests) == 1


def test_is_valid_webhook_url():
    assert is_valid_webhook_url(WEBHOOK)
    assert not is_valid_webhook_url("/relative/path")


def test_dropped_builds_are_logged(caplog):
    caplog.set_level(logging.DEBUG, logger="ptero_monitor")
    recorder = Recorder({("GET", "/fork/manifest"): httpx.Response(200, json=MANIFEST)})
    client = Ss14Client(make_target(), transport=recorder.transport)

    assert asyncio.run(client.latest_build_id()) == "b-newest"
    assert any("Dropping build 'b-broken'" in r.getMessage() for r in caplog.records)
