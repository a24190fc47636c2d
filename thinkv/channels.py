import asyncio
import logging
from typing import Any, Dict, List, Optional

from thinkv.errors import StoreWriteError
from thinkv.models import (
    DEFAULT_FIELD_COLORS,
    Channel,
    ChannelCreate,
    ChannelUpdate,
    Field,
    FieldSpec,
)
from thinkv.utils import generate_api_key, parse_timestamp, utcnow

logger = logging.getLogger(__name__)


def build_fields(specs: List[FieldSpec], ids: List[str], start: int = 1) -> List[Field]:
    fields = []
    for offset, (spec, field_id) in enumerate(zip(specs, ids)):
        number = start + offset
        fields.append(Field(
            id=field_id,
            name=spec.name,
            field_number=number,
            color=spec.color or DEFAULT_FIELD_COLORS[(number - 1) % len(DEFAULT_FIELD_COLORS)],
            unit=spec.unit,
        ))
    return fields


def renumber(fields: List[Field]) -> List[Field]:
    return [f.model_copy(update={"field_number": n}) for n, f in enumerate(fields, start=1)]


def channel_from_telemetry(created: Dict[str, Any], request: ChannelCreate, user_id: str) -> Channel:
    """
    Builds the channel from the telemetry API's create response. The API
    reports fields as ``{"1": {"field_id": ..., "name": ...}}``; colors and
    units only exist on the request.
    """
    channel_id = str(created["id"])
    remote_fields = created.get("fields") or {}
    ids = []
    for number in range(1, len(request.fields) + 1):
        remote = remote_fields.get(str(number)) or {}
        ids.append(str(remote.get("field_id", f"{channel_id}-{number}")))

    created_at = created.get("created_at")
    created_at = parse_timestamp(created_at) if created_at else utcnow()
    return Channel(
        id=channel_id,
        name=created.get("name") or request.name,
        description=created.get("description") or request.description,
        user_id=user_id,
        is_public=request.is_public,
        tags=request.tags,
        created_at=created_at,
        updated_at=created_at,
        fields=build_fields(request.fields, ids),
        api_key=created["api_key"],
    )


class ChannelService:
    """Channel management across the telemetry API and the persisted store."""

    def __init__(self, telemetry, store):
        self.telemetry = telemetry
        self.store = store

    async def create_channel(self, user_id: str, request: ChannelCreate) -> Channel:
        """
        Creates the channel in the telemetry API first (it assigns the id and
        API key), then mirrors it into the store. A failed mirror is logged
        and the channel is still returned.
        """
        created = await asyncio.to_thread(
            self.telemetry.create_channel,
            request.name,
            request.description,
            [f.name for f in request.fields],
        )
        channel = channel_from_telemetry(created, request, user_id)
        logger.info("Channel %s created in telemetry API", channel.id)
        try:
            await self.store.create_channel(channel)
        except StoreWriteError as e:
            logger.error("Could not mirror channel %s into the store: %s", channel.id, e)
        return channel

    async def list_channels(self, user_id: str) -> List[Channel]:
        return await self.store.list_channels(user_id)

    async def get_channel(self, channel_id: str, user_id: str = None) -> Optional[Channel]:
        """The channel, or None when missing or owned by someone else."""
        channel = await self.store.get_channel(channel_id)
        if channel is None or (user_id is not None and channel.user_id != user_id):
            return None
        return channel

    async def update_channel(self, channel: Channel, update: ChannelUpdate) -> Optional[Channel]:
        changes = update.model_dump(exclude_unset=True, exclude={"add_fields"})
        changes = {k: v for k, v in changes.items() if v is not None}
        if update.add_fields:
            start = len(channel.fields) + 1
            ids = [f"{channel.id}-{n}" for n in range(start, start + len(update.add_fields))]
            fields = channel.fields + build_fields(update.add_fields, ids, start=start)
            changes["fields"] = [f.model_dump() for f in fields]
        return await self.store.update_channel(channel.id, changes)

    async def delete_channel(self, channel_id: str) -> bool:
        return await self.store.delete_channel(channel_id)

    async def regenerate_api_key(self, channel_id: str) -> Optional[str]:
        api_key = generate_api_key()
        updated = await self.store.update_channel(channel_id, {"api_key": api_key})
        return updated.api_key if updated else None

    async def remove_field(self, channel: Channel, field_id: str) -> Optional[Channel]:
        """
        Removes a field and renumbers the rest densely. Devices writing
        ``fieldN`` for a later field must be reconfigured.
        """
        if channel.field_by_id(field_id) is None:
            return None
        remaining = renumber([f for f in channel.fields if f.id != field_id])
        return await self.store.update_channel(
            channel.id, {"fields": [f.model_dump() for f in remaining]}
        )
