"""
Remote Control Adapters

Binds the SS14 and panel clients to the orchestrator's collaborator
contracts for one server.
"""

from ..orchestrator.contracts import RemoteControl, VersionSource, WebSocketInfo
from .pterodactyl import PterodactylClient
from .ss14 import Ss14Client


class Ss14VersionSource(VersionSource):
    """Latest build from the manifest, running build from /info"""

    def __init__(self, ss14: Ss14Client):
        self.ss14 = ss14

    async def latest_build_id(self) -> str | None:
        return await self.ss14.latest_build_id()

    async def running_build_id(self) -> str | None:
        return await self.ss14.running_build_id()


class PanelRemoteControl(RemoteControl):
    """
    Privileged operations for one server.

    The credential and begin-update command go through the game server's
    watchdog; everything else goes through the panel.
    """

    def __init__(self, ss14: Ss14Client, panel: PterodactylClient):
        self.ss14 = ss14
        self.panel = panel

    async def issue_credential(self) -> str | None:
        return await self.panel.get_watchdog_token()

    async def issue_begin_update(self, token: str) -> bool:
        return await self.ss14.send_update_command(token)

    async def event_stream_info(self) -> WebSocketInfo | None:
        return await self.panel.get_websocket_info()

    async def issue_lifecycle_signal(self, kind: str) -> bool:
        return await self.panel.send_power_signal(kind)

    async def issue_reinstall(self) -> bool:
        return await self.panel.send_reinstall()
