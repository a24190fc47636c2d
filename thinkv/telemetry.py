import logging
from typing import Any, Dict, List

import requests

from thinkv.errors import (
    AuthorizationError,
    ChannelNotFoundError,
    TelemetryRequestError,
    TransientError,
)
from thinkv.models import Channel, LatestValue
from thinkv.utils import parse_timestamp

logger = logging.getLogger(__name__)


class TelemetryClient:
    """
    Client for the external telemetry API, the system of record for channel
    creation and live field values.

    Calls are blocking (requests); async callers run them via asyncio.to_thread.
    Failures are mapped onto the ThinkV error taxonomy:
    401/403 -> AuthorizationError, 404 -> ChannelNotFoundError,
    timeouts, connection errors and 5xx -> TransientError.
    """

    def __init__(self, base_url: str, timeout: float = 5.0, session: requests.Session = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, channel_id: str = None, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug("Telemetry %s %s", method, url)
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            raise TransientError(f"Telemetry API timed out after {self.timeout}s: {url}") from e
        except requests.exceptions.RequestException as e:
            raise TransientError(f"Telemetry API unreachable: {e}") from e

        if response.status_code in (401, 403):
            raise AuthorizationError("Telemetry API rejected the credentials.")
        if response.status_code == 404:
            raise ChannelNotFoundError(channel_id or path)
        if response.status_code >= 500:
            raise TransientError(f"Telemetry API error ({response.status_code}): {response.text}")
        if not response.ok:
            raise TelemetryRequestError(response.status_code, response.text)

        try:
            return response.json()
        except ValueError as e:
            raise TransientError(f"Telemetry API returned invalid JSON for {url}") from e

    def create_channel(self, name: str, description: str, field_names: List[str]) -> Dict[str, Any]:
        """Registers a channel; the response carries the authoritative id and API key."""
        return self._request(
            "POST",
            "/channels/api",
            json={"name": name, "description": description, "field_names": field_names},
        )

    def get_channel(self, channel_id: str) -> Dict[str, Any]:
        return self._request(
            "GET", f"/api/v1/channels/{requests.utils.quote(channel_id)}", channel_id=channel_id
        )

    def get_field_data(self, channel_id: str, field_number: int, results: int = 50) -> List[Dict[str, Any]]:
        """Historical ``[{timestamp, value}]`` readings for one field."""
        data = self._request(
            "GET",
            f"/api/v1/channels/{requests.utils.quote(channel_id)}/fields/{field_number}/data",
            channel_id=channel_id,
            params={"results": results},
        )
        if not isinstance(data, list):
            raise TransientError(f"Unexpected field data payload for field {field_number}")
        return data

    def update_channel(self, channel_id: str, api_key: str, values: Dict[str, float]) -> Dict[str, Any]:
        """Writes ``{"field1": ..., "field2": ...}`` the way a device would."""
        return self._request(
            "POST",
            f"/api/v1/channels/{requests.utils.quote(channel_id)}/update",
            channel_id=channel_id,
            params={"api_key": api_key},
            json=values,
        )

    def get_latest_values(self, channel: Channel) -> List[LatestValue]:
        """Current value and last-updated time per field of a channel."""
        data = self.get_channel(channel.id)
        latest = []
        for number, entry in (data.get("fields") or {}).items():
            try:
                field = channel.field_by_number(int(number))
            except (TypeError, ValueError):
                field = None
            if field is None or not isinstance(entry, dict):
                logger.warning("Ignoring unknown field '%s' in telemetry for channel %s", number, channel.id)
                continue
            last_updated = entry.get("last_updated")
            latest.append(LatestValue(
                field_id=field.id,
                field_number=field.field_number,
                value=entry.get("value"),
                last_updated=parse_timestamp(last_updated) if last_updated else None,
            ))
        return sorted(latest, key=lambda v: v.field_number)

    def close(self):
        self.session.close()
