"""
Pterodactyl Panel Client

Client API calls for one server on the panel:
- files/contents: read the watchdog token out of server_config.toml
- websocket: event stream url and JWT
- power: start/stop/restart/kill
- settings/reinstall: rerun the egg install script
"""

import tomllib

import httpx

from ..common.config import TargetConfig
from ..common.logging_setup import get_target_logger
from ..orchestrator.contracts import POWER_SIGNALS, WebSocketInfo

REQUEST_TIMEOUT_S = 30.0
SERVER_CONFIG_PATH = "/datadir/server_config.toml"


def parse_watchdog_token(config_text: str) -> str | None:
    """`[watchdog] token = "..."` from an SS14 server_config.toml"""
    model = tomllib.loads(config_text)
    watchdog = model.get("watchdog")
    if not isinstance(watchdog, dict):
        return None
    token = watchdog.get("token")
    if not isinstance(token, str):
        return None
    token = token.strip('"')
    return token or None


class PterodactylClient:
    """Client API wrapper bound to one panel server"""

    def __init__(
        self,
        target: TargetConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = REQUEST_TIMEOUT_S,
    ):
        self.target = target
        self.timeout = timeout
        self._transport = transport
        self.logger = get_target_logger(target.name, target.log_color, "pterodactyl")

    @property
    def origin(self) -> str:
        return self.target.panel_origin

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=self.timeout,
            headers={
                "Authorization": f"Bearer {self.target.pterodactyl_api_key}",
                "Accept": "application/json",
            },
        )

    async def get_watchdog_token(self) -> str | None:
        """Read the watchdog token from the server's config file"""
        url = self.target.panel_api_url("files/contents")
        self.logger.debug(f"Fetching watchdog token from: {url}")

        try:
            async with self._client() as client:
                response = await client.get(url, params={"file": SERVER_CONFIG_PATH})

                if response.is_error:
                    self.logger.error(
                        f"Failed to fetch server_config.toml. Status: {response.status_code}. "
                        f"Response: {response.text}"
                    )
                    return None

                token = parse_watchdog_token(response.text)

        except (httpx.HTTPError, tomllib.TOMLDecodeError) as e:
            self.logger.error(f"Error fetching or parsing watchdog token: {e}")
            return None

        if not token:
            self.logger.warning("Could not find 'watchdog.token' in server_config.toml")
            return None

        self.logger.info("Successfully retrieved watchdog token")
        return token

    async def get_websocket_info(self) -> WebSocketInfo | None:
        """Websocket url and JWT for the server console"""
        url = self.target.panel_api_url("websocket")
        self.logger.debug(f"Fetching websocket info from: {url}")

        try:
            async with self._client() as client:
                response = await client.get(url)

                if response.is_error:
                    self.logger.error(
                        f"Failed to fetch websocket info. Status: {response.status_code}. "
                        f"Response: {response.text}"
                    )
                    return None

                payload = response.json()

        except (httpx.HTTPError, ValueError) as e:
            self.logger.error(f"Error fetching websocket info: {e}")
            return None

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict) or not data.get("token") or not data.get("socket"):
            self.logger.error("Received invalid websocket info from panel")
            return None

        self.logger.info("Successfully retrieved websocket info")
        return WebSocketInfo(url=str(data["socket"]), token=str(data["token"]))

    async def send_power_signal(self, signal: str) -> bool:
        """POST power with one of start, stop, restart, kill"""
        signal = (signal or "").lower()
        if signal not in POWER_SIGNALS:
            self.logger.error(f"Invalid power signal specified: {signal!r}")
            return False

        url = self.target.panel_api_url("power")
        self.logger.info(f"Sending power signal '{signal}' to: {url}")

        try:
            async with self._client() as client:
                response = await client.post(url, json={"signal": signal})

                if response.is_error:
                    self.logger.error(
                        f"Failed to send power signal '{signal}'. Status: {response.status_code}. "
                        f"Response: {response.text}"
                    )
                    return False

        except httpx.HTTPError as e:
            self.logger.error(f"Error sending power signal '{signal}': {e}")
            return False

        self.logger.info(f"Power signal '{signal}' sent successfully")
        return True

    async def send_reinstall(self) -> bool:
        url = self.target.panel_api_url("settings/reinstall")
        self.logger.info(f"Sending reinstall command to: {url}")

        try:
            async with self._client() as client:
                response = await client.post(url)

                if response.is_error:
                    self.logger.error(
                        f"Failed to send reinstall command. Status: {response.status_code}. "
                        f"Response: {response.text}"
                    )
                    return False

        except httpx.HTTPError as e:
            self.logger.error(f"Error sending reinstall command: {e}")
            return False

        self.logger.info("Reinstall command sent successfully")
        return True
