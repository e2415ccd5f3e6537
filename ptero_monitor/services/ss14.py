"""
SS14 Server Client

Talks to the build manifest and to the game server's status/watchdog API:
- Build manifest: published builds with their timestamps
- /info: build the server is currently running
- /update: tells the watchdog a new build is available
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx

from ..common.config import TargetConfig
from ..common.logging_setup import get_target_logger

REQUEST_TIMEOUT_S = 30.0

# .NET emits up to 7 fractional digits; datetime accepts at most 6
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


@dataclass(frozen=True)
class BuildInfo:
    """One published build from the manifest"""
    build_id: str
    time: datetime


def parse_build_time(value) -> datetime | None:
    """Parse a manifest timestamp; naive times are taken as UTC"""
    if not isinstance(value, str) or not value:
        return None
    text = _FRACTION_RE.sub(r"\1", value.strip())
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_manifest(data, logger: logging.LoggerAdapter | None = None) -> list[BuildInfo]:
    """
    Builds from a `{"builds": {id: {"time": ...}}}` document.

    Entries without an id or a parseable time are dropped.
    """
    if not isinstance(data, dict):
        return []
    builds = data.get("builds")
    if not isinstance(builds, dict):
        return []

    result = []
    for build_id, info in builds.items():
        if not build_id or not isinstance(info, dict):
            if logger is not None:
                logger.debug(f"Dropping manifest entry {build_id!r}: not a build object")
            continue
        time = parse_build_time(info.get("time"))
        if time is None:
            if logger is not None:
                logger.debug(f"Dropping build {build_id!r}: missing or invalid time {info.get('time')!r}")
            continue
        result.append(BuildInfo(build_id=str(build_id), time=time))
    return result


def select_latest_build(builds: list[BuildInfo]) -> BuildInfo | None:
    """The build with the most recent timestamp"""
    if not builds:
        return None
    return max(builds, key=lambda build: build.time)


class Ss14Client:
    """HTTP client for one SS14 server and its build manifest"""

    def __init__(
        self,
        target: TargetConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = REQUEST_TIMEOUT_S,
    ):
        self.target = target
        self.timeout = timeout
        self._transport = transport
        self.logger = get_target_logger(target.name, target.log_color, "ss14")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.timeout)

    async def fetch_manifest(self) -> list[BuildInfo] | None:
        """
        Fetch published builds.

        Returns:
            Non-empty list of builds, or None when unavailable or empty
        """
        url = self.target.manifest_url
        self.logger.debug(f"Fetching manifest data from: {url}")

        try:
            async with self._client() as client:
                response = await client.get(url)

                if response.is_error:
                    self.logger.error(
                        f"Failed to fetch manifest data. Status: {response.status_code}. "
                        f"Response: {response.text}"
                    )
                    return None

                builds = parse_manifest(response.json(), self.logger)

        except (httpx.HTTPError, ValueError) as e:
            self.logger.error(f"Error fetching manifest data: {e}")
            return None

        if not builds:
            self.logger.warning("Manifest data fetched successfully but was empty or invalid")
            return None

        self.logger.info("Successfully fetched manifest data")
        return builds

    async def latest_build_id(self) -> str | None:
        builds = await self.fetch_manifest()
        if not builds:
            return None
        latest = select_latest_build(builds)
        return latest.build_id if latest else None

    async def running_build_id(self) -> str | None:
        """Build version reported by the server's /info endpoint"""
        url = self.target.server_api_url("info")
        self.logger.debug(f"Fetching current build version from: {url}")

        try:
            async with self._client() as client:
                response = await client.get(url)

                if response.is_error:
                    self.logger.error(
                        f"Failed to fetch server info. Status: {response.status_code}. "
                        f"Response: {response.text}. Is the server running?"
                    )
                    return None

                data = response.json()

        except httpx.ConnectError as e:
            self.logger.error(
                f"Could not connect to {url}. Is the server running and the address correct? ({e})"
            )
            return None
        except (httpx.HTTPError, ValueError) as e:
            self.logger.error(f"Error fetching server info: {e}")
            return None

        build = data.get("build") if isinstance(data, dict) else None
        version = build.get("version") if isinstance(build, dict) else None
        if not version:
            self.logger.warning("Server info fetched successfully but build version was missing or invalid")
            return None

        self.logger.info(f"Successfully fetched current build version: {version}")
        return str(version)

    async def send_update_command(self, watchdog_token: str) -> bool:
        """POST /update with the watchdog token header"""
        if not watchdog_token:
            self.logger.error("Cannot send update command without a watchdog token")
            return False

        url = self.target.server_api_url("update")
        self.logger.info(f"Sending update notification to: {url}")

        try:
            async with self._client() as client:
                response = await client.post(url, headers={"WatchdogToken": watchdog_token})

                if response.is_error:
                    self.logger.error(
                        f"Failed to send update command. Status: {response.status_code}. "
                        f"Response: {response.text}"
                    )
                    return False

        except httpx.HTTPError as e:
            self.logger.error(f"Error sending update command to server: {e}")
            return False

        self.logger.info("Update command sent successfully to server")
        return True
