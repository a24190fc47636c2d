from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from thinkv.channels import ChannelService
from thinkv.dependencies import get_channel_service
from thinkv.errors import (
    AuthorizationError,
    StoreWriteError,
    TelemetryRequestError,
    TransientError,
)
from thinkv.models import ChannelCreate, ChannelUpdate

router = APIRouter(tags=["channels"])


async def _owned_channel(service: ChannelService, channel_id: str, user_id: str):
    try:
        channel = await service.get_channel(channel_id, user_id=user_id)
    except TransientError as e:
        raise HTTPException(status_code=503, detail=str(e))
    if channel is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    return channel


@router.post("/", status_code=status.HTTP_201_CREATED, summary="Create a new channel")
async def create_channel(
    channel: ChannelCreate,
    user_id: str = Query(..., description="Owner of the new channel"),
    service: ChannelService = Depends(get_channel_service),
):
    """
    Registers the channel with the telemetry API, which assigns its id and
    API key, then mirrors it into the store.
    """
    try:
        created = await service.create_channel(user_id, channel)
    except AuthorizationError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except TelemetryRequestError as e:
        raise HTTPException(status_code=400, detail=f"Failed to create channel on API server: {e.detail}")
    except TransientError as e:
        raise HTTPException(status_code=503, detail=f"Failed to create channel: {e}")
    return created.model_dump(mode="json")


@router.get("/", summary="List a user's channels")
async def list_channels(
    user_id: str = Query(..., description="Owner whose channels to list"),
    service: ChannelService = Depends(get_channel_service),
):
    try:
        channels = await service.list_channels(user_id)
    except TransientError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return [c.model_dump(mode="json") for c in channels]


@router.get("/{channel_id}", summary="Get channel details")
async def get_channel(
    channel_id: str,
    user_id: str = Query(..., description="Owner of the channel"),
    service: ChannelService = Depends(get_channel_service),
):
    """Channel details, including its API key."""
    channel = await _owned_channel(service, channel_id, user_id)
    return channel.model_dump(mode="json")


@router.patch("/{channel_id}", summary="Update a channel")
async def update_channel(
    channel_id: str,
    update: ChannelUpdate = Body(..., description="Attributes to change and fields to append"),
    user_id: str = Query(...),
    service: ChannelService = Depends(get_channel_service),
):
    channel = await _owned_channel(service, channel_id, user_id)
    try:
        updated = await service.update_channel(channel, update)
    except StoreWriteError as e:
        raise HTTPException(status_code=503, detail=str(e))
    if updated is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    return updated.model_dump(mode="json")


@router.delete("/{channel_id}", summary="Delete channel and all its data")
async def delete_channel(
    channel_id: str,
    user_id: str = Query(...),
    service: ChannelService = Depends(get_channel_service),
):
    await _owned_channel(service, channel_id, user_id)
    try:
        await service.delete_channel(channel_id)
    except StoreWriteError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"message": f"Channel '{channel_id}' and all related data deleted"}


@router.post("/{channel_id}/api-key", summary="Regenerate the channel's API key")
async def regenerate_api_key(
    channel_id: str,
    user_id: str = Query(...),
    service: ChannelService = Depends(get_channel_service),
):
    await _owned_channel(service, channel_id, user_id)
    try:
        api_key = await service.regenerate_api_key(channel_id)
    except StoreWriteError as e:
        raise HTTPException(status_code=503, detail=str(e))
    if api_key is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    return {"channel_id": channel_id, "api_key": api_key}


@router.delete("/{channel_id}/fields/{field_id}", summary="Remove a field from a channel")
async def delete_field(
    channel_id: str,
    field_id: str,
    user_id: str = Query(...),
    service: ChannelService = Depends(get_channel_service),
):
    """
    Removes a field and renumbers the remaining ones, so ``fieldN`` keys of
    later fields shift down by one. Stored data points are kept.
    """
    channel = await _owned_channel(service, channel_id, user_id)
    if channel.field_by_id(field_id) is None:
        raise HTTPException(status_code=404, detail="Field not found in channel")
    try:
        updated = await service.remove_field(channel, field_id)
    except StoreWriteError as e:
        raise HTTPException(status_code=503, detail=str(e))
    if updated is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    return updated.model_dump(mode="json")
