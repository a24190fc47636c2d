import logging
import math
import re
import uuid
from datetime import datetime
from typing import Any, Dict, List, Mapping, Tuple

from thinkv.errors import AuthorizationError, ChannelNotFoundError, InvalidPayloadError
from thinkv.models import Channel, DataPoint, Field, Origin, WriteReceipt
from thinkv.utils import utcnow

logger = logging.getLogger(__name__)

FIELD_KEY = re.compile(r"^field(\d+)$")


def parse_field_values(channel: Channel, payload: Mapping[str, Any]) -> Tuple[List[Tuple[Field, float]], List[str]]:
    """
    Maps ``{"field1": 21.5, ...}`` onto the channel's fields.

    Returns the accepted ``(field, value)`` pairs and the keys that were
    skipped: keys not shaped like ``fieldN``, numbers outside the channel's
    fields, and values that are not finite numbers.
    """
    accepted = []
    ignored = []
    for key, value in payload.items():
        match = FIELD_KEY.match(key)
        field = channel.field_by_number(int(match.group(1))) if match else None
        if field is None:
            ignored.append(key)
            continue
        try:
            if isinstance(value, bool):
                raise TypeError("boolean")
            number = float(value)
            if not math.isfinite(number):
                raise ValueError("not finite")
            accepted.append((field, number))
        except (TypeError, ValueError, OverflowError):
            ignored.append(key)
    return accepted, ignored


async def write_channel_data(store, channel_id: str, api_key: str, payload: Mapping[str, Any],
                             now: datetime = None) -> WriteReceipt:
    """
    Stores one device write. Every accepted field value becomes a data point
    and all of them share one timestamp.
    """
    channel = await store.get_channel(channel_id)
    if channel is None:
        raise ChannelNotFoundError(channel_id)
    if not api_key or api_key != channel.api_key:
        raise AuthorizationError("Invalid API key")

    accepted, ignored = parse_field_values(channel, payload)
    for key in ignored:
        logger.warning("Key '%s' does not match a field of channel '%s'. Ignoring.", key, channel_id)
    if not accepted:
        raise InvalidPayloadError("No valid channel fields provided in data.")

    timestamp = now or utcnow()
    points = [
        DataPoint(
            id=str(uuid.uuid4()),
            channel_id=channel_id,
            field_id=field.id,
            value=value,
            timestamp=timestamp,
            origin=Origin.DEVICE,
        )
        for field, value in accepted
    ]
    await store.insert_datapoints(points)
    logger.info("Stored %d points for channel '%s'", len(points), channel_id)

    return WriteReceipt(
        channel_id=channel_id,
        timestamp=timestamp,
        entry_id=uuid.uuid4().hex[:8],
        points_added=len(points),
        ignored_keys=ignored,
    )


def query_payload(params: Mapping[str, str]) -> Dict[str, str]:
    """Query parameters of a GET write, minus the API key itself."""
    return {k: v for k, v in params.items() if k != "api_key"}
