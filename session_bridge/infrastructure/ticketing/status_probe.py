"""
Ticketing backend status probe.

Reports whether the ticketing API is configured and its URL looks usable,
without creating a ticket.
"""

from typing import Any, Dict

from session_bridge.core.logger import get_logger
from session_bridge.core.utils import redact_endpoint
from session_bridge.infrastructure.config.settings import TicketingSettings

logger = get_logger("ticketing_status")


class TicketingStatusProbe:

    def __init__(self, settings: TicketingSettings):
        self.settings = settings

    def check_api_status(self) -> Dict[str, Any]:
        url = self.settings.url
        if not url or not self.settings.api_key:
            logger.debug("ticketing_status.not_configured", {"has_url": bool(url)})
            return {
                "available": False,
                "configured": False,
                "reason": "Missing configuration",
            }

        return {
            "available": True,
            "configured": True,
            "url_valid": url.startswith("http") and ("api" in url or "ticket" in url),
            "url": redact_endpoint(url),
        }
