import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from thinkv.config import settings
from thinkv.dashboard import render_dashboard
from thinkv.dependencies import get_reconciler, get_store, get_telemetry, get_views
from thinkv.errors import AuthorizationError, ChannelNotFoundError, ThinkVError, TransientError
from thinkv.models import TimeRange
from thinkv.reconciler import merge

router = APIRouter(tags=["dashboard"])

NOT_SYNCED = "Channel not found. If it was just created it may not be synchronized yet; refresh in a moment."


async def _load_channel(store, channel_id: str):
    try:
        return await store.get_channel(channel_id)
    except TransientError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/channels/{channel_id}", summary="Chart and statistics for a channel")
async def get_channel_dashboard(
    channel_id: str,
    user_id: str = Query(..., description="Owner of the channel"),
    time_range: TimeRange = Query(TimeRange.DAY, alias="range"),
    session: Optional[str] = Query(None, description="Dashboard session; a newer request supersedes older ones"),
    store=Depends(get_store),
    reconciler=Depends(get_reconciler),
    views=Depends(get_views),
):
    """
    Live telemetry merged with stored data. Sources that fail or time out
    are reported under ``warnings`` and the rest of the data is still shown.
    """
    channel = await _load_channel(store, channel_id)
    if channel is None or channel.user_id != user_id:
        raise HTTPException(status_code=404, detail=NOT_SYNCED)

    try:
        if session:
            outcome = await views.get(session).show(channel, time_range)
            if outcome is None:
                raise HTTPException(status_code=409, detail="Superseded by a newer selection")
        else:
            outcome = await reconciler.load(channel, time_range)
    except AuthorizationError as e:
        raise HTTPException(status_code=401, detail=str(e))

    data = render_dashboard(
        channel, time_range, outcome.points,
        warnings=outcome.warnings, rejected=outcome.rejected,
        max_points=settings.chart_max_points,
    )
    return data.model_dump(mode="json")


@router.get("/channels/{channel_id}/latest", summary="Current value of each field")
async def get_latest_values(
    channel_id: str,
    user_id: str = Query(...),
    store=Depends(get_store),
    telemetry=Depends(get_telemetry),
):
    channel = await _load_channel(store, channel_id)
    if channel is None or channel.user_id != user_id:
        raise HTTPException(status_code=404, detail=NOT_SYNCED)
    try:
        latest = await asyncio.to_thread(telemetry.get_latest_values, channel)
    except AuthorizationError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except ChannelNotFoundError:
        raise HTTPException(status_code=404, detail=NOT_SYNCED)
    except ThinkVError as e:
        raise HTTPException(status_code=503, detail=f"Failed to fetch stats: {e}")
    return [value.model_dump(mode="json") for value in latest]


@router.get("/public/{channel_id}", summary="Public view of a channel")
async def get_public_dashboard(
    channel_id: str,
    time_range: TimeRange = Query(TimeRange.DAY, alias="range"),
    store=Depends(get_store),
):
    """Stored data only; available for channels marked public."""
    channel = await _load_channel(store, channel_id)
    if channel is None or not channel.is_public:
        raise HTTPException(status_code=404, detail="Channel not found or is not public")

    try:
        records = await store.get_datapoints(channel_id, since=time_range.since())
    except TransientError as e:
        raise HTTPException(status_code=503, detail=str(e))
    result = merge([], records, channel_id=channel_id)

    data = render_dashboard(
        channel, time_range, result.points,
        rejected=result.rejected, max_points=settings.chart_max_points,
    )
    return data.model_dump(mode="json")
