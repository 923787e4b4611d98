"""HTTP client for the check-in service REST endpoint."""
from __future__ import annotations

import logging
from functools import partial
from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode

import httpx

from ..config import Settings
from ..state import CheckInFailure, CheckInOutcome, CheckInSuccess, FailureKind

logger = logging.getLogger(__name__)

NETWORK_ERROR = "network error"
GENERIC_REJECTION = "Failed to check in participant"
DEFAULT_SUCCESS_MESSAGE = "Checked in"


class CheckInHttpClient:
    """Thin wrapper around ``GET /api/scan-qr``; one request per submit, no retries."""

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        self._client = httpx.AsyncClient(
            base_url=self.settings.checkin_api_url,
            timeout=self.settings.checkin_timeout_seconds,
            transport=transport,
        )

    async def submit(self, attendee_id: str, event_id: str) -> CheckInOutcome:
        """Check an attendee into an event and normalise the result."""
        url = self._build_path(attendee_id, event_id)
        try:
            logger.info("checkin.submit: usn=%s eid=%s", attendee_id, event_id)
            response = await self._client.get(url, headers={"Content-Type": "application/json"})
        except httpx.TimeoutException:
            logger.error("checkin.submit: request timeout")
            return CheckInFailure(NETWORK_ERROR, FailureKind.TRANSPORT)
        except httpx.TransportError as e:
            logger.error("checkin.submit: network error - %s", e)
            return CheckInFailure(NETWORK_ERROR, FailureKind.TRANSPORT)

        data = self._json_body(response)
        if response.is_success:
            message = data.get("message")
            if not isinstance(message, str) or not message:
                logger.warning(
                    "checkin.submit: HTTP %d without message field - %s",
                    response.status_code,
                    response.text[:200],
                )
                message = DEFAULT_SUCCESS_MESSAGE
            return CheckInSuccess(attendee_id=attendee_id, event_id=event_id, message=message)

        reason = data.get("error")
        if not isinstance(reason, str) or not reason:
            reason = GENERIC_REJECTION
        logger.warning("checkin.submit: HTTP %d - %s", response.status_code, reason)
        return CheckInFailure(reason, FailureKind.REJECTED)

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing HTTP client: %s", e)

    @staticmethod
    def _build_path(attendee_id: str, event_id: str) -> str:
        query = urlencode({"usn": attendee_id, "eid": event_id}, quote_via=partial(quote, safe=""))
        return f"/api/scan-qr?{query}"

    @staticmethod
    def _json_body(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
