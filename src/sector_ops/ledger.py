"""External pilot ledger mirror.

After a pilot's rank or hours change, the public pilot roster spreadsheet is
updated through an HTTP webhook (for example an Apps Script endpoint bound
to the sheet). Updates are best-effort: failures are logged and reported in
the result dict, never raised, and callers schedule them after the core
transition has committed.
"""

import logging
from typing import Any

import httpx

from .database.models import utcnow

logger = logging.getLogger(__name__)

# Default timeout for webhook requests (seconds)
DEFAULT_TIMEOUT = 10.0


class LedgerMirror:
    """HTTP client for the pilot ledger webhook."""

    def __init__(self, webhook_url: str, token: str = "", timeout: float = DEFAULT_TIMEOUT):
        """Initialize the mirror.

        Args:
            webhook_url: Endpoint accepting upsert/delete payloads. Empty disables the mirror.
            token: Optional bearer token sent with each request.
            timeout: Request timeout in seconds.
        """
        self.webhook_url = webhook_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def _send(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST a payload to the webhook.

        Returns:
            Standardized result dict:
              {"success": True, "status_code": 200}
              {"success": False, "error": "...", "status_code": 502}
        """
        if not self.enabled:
            return {"success": False, "error": "Ledger mirror not configured", "status_code": 0}

        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.webhook_url, json=payload, headers=headers)

            if 200 <= response.status_code < 300:
                return {"success": True, "status_code": response.status_code}

            error_msg = f"Ledger webhook returned {response.status_code}"
            logger.warning("%s for %s: %s", error_msg, payload.get("callsign"), response.text[:200])
            return {"success": False, "error": error_msg, "status_code": response.status_code}

        except httpx.TimeoutException:
            logger.error("Ledger webhook timeout (%.0fs) for %s", self.timeout, payload.get("callsign"))
            return {
                "success": False,
                "error": f"Request timed out after {self.timeout}s",
                "status_code": 504,
            }

        except httpx.RequestError as e:
            logger.error("Ledger webhook request failed for %s: %s", payload.get("callsign"), e)
            return {"success": False, "error": f"Request error: {e}", "status_code": 502}

    async def upsert(self, row: dict[str, Any]) -> dict[str, Any]:
        """Update the pilot's row by callsign, appending it when absent."""
        if not row.get("callsign"):
            logger.warning("Ledger upsert without callsign; skipping")
            return {"success": False, "error": "Missing callsign", "status_code": 0}
        payload = {"action": "upsert", **row, "last_updated": utcnow().isoformat()}
        result = await self._send(payload)
        if result["success"]:
            logger.info("Ledger row updated for %s", row["callsign"])
        return result

    async def delete(self, callsign: str | None) -> dict[str, Any]:
        """Remove the pilot's row by callsign."""
        if not callsign:
            return {"success": False, "error": "Missing callsign", "status_code": 0}
        result = await self._send({"action": "delete", "callsign": callsign})
        if result["success"]:
            logger.info("Ledger row deleted for %s", callsign)
        return result
