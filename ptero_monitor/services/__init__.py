"""
Collaborator Services

Concrete clients behind the orchestrator's contracts:
- ss14.py - Build manifest and game server watchdog API (httpx)
- pterodactyl.py - Panel client API (httpx)
- remote_control.py - Contract adapters over the two clients
- event_stream.py - Panel websocket session (aiohttp)
- notifications.py - Discord webhook notifier (httpx)
"""

from .event_stream import PanelEventStream
from .notifications import DiscordNotifier
from .pterodactyl import PterodactylClient
from .remote_control import PanelRemoteControl, Ss14VersionSource
from .ss14 import Ss14Client

__all__ = [
    "PanelEventStream",
    "DiscordNotifier",
    "PterodactylClient",
    "PanelRemoteControl",
    "Ss14VersionSource",
    "Ss14Client",
]
