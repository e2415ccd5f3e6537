"""
Discord Notifications

Posts the "server is updating" announcement to a Discord webhook.
Delivery is best-effort: every failure is logged and swallowed.
"""

from urllib.parse import urlsplit

import httpx

from ..common.logging_setup import get_target_logger
from ..orchestrator.contracts import NotificationSink

REQUEST_TIMEOUT_S = 10.0


def is_valid_webhook_url(url: str) -> bool:
    """Absolute http(s) URL with a host"""
    parts = urlsplit(url)
    return parts.scheme in ("http", "https") and bool(parts.netloc)


class DiscordNotifier(NotificationSink):
    """Webhook notifier for one server"""

    def __init__(
        self,
        webhook_url: str | None,
        target_name: str = "",
        log_color: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.webhook_url = webhook_url
        self._transport = transport
        self.logger = get_target_logger(target_name, log_color, "discord")

    async def notify(self, message: str) -> None:
        if not self.webhook_url or not self.webhook_url.strip():
            self.logger.debug("Discord webhook URL is not configured. Skipping notification.")
            return

        if not is_valid_webhook_url(self.webhook_url):
            self.logger.warning(f"Invalid Discord webhook URL format: {self.webhook_url}")
            return

        self.logger.info("Sending Discord notification to webhook")

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=REQUEST_TIMEOUT_S) as client:
                response = await client.post(self.webhook_url, json={"content": message})

                if response.is_error:
                    self.logger.error(
                        f"Failed to send Discord notification. Status: {response.status_code}. "
                        f"Response: {response.text}"
                    )
                    return

            self.logger.info("Discord notification sent successfully")

        except Exception as e:
            self.logger.error(f"Error sending Discord notification: {e}")
