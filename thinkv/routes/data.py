from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, Request, status

from thinkv.dependencies import get_store
from thinkv.errors import (
    AuthorizationError,
    ChannelNotFoundError,
    InvalidPayloadError,
    StoreWriteError,
    TransientError,
)
from thinkv.ingest import query_payload, write_channel_data
from thinkv.reconciler import merge

router = APIRouter(tags=["data"])


async def _write(store, channel_id: str, api_key: Optional[str], payload: Dict[str, Any]):
    try:
        receipt = await write_channel_data(store, channel_id, api_key, payload)
    except ChannelNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AuthorizationError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except InvalidPayloadError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (TransientError, StoreWriteError) as e:
        raise HTTPException(status_code=503, detail=str(e))
    return receipt.model_dump(mode="json")


@router.post("/{channel_id}/update", status_code=status.HTTP_201_CREATED,
             summary="Write data to a channel (JSON Body)")
async def update_channel_data(
    channel_id: str,
    data: Dict[str, Any] = Body(..., description="Values keyed by field number, e.g. {\"field1\": 21.5}"),
    api_key: Optional[str] = Query(None, description="API key for authentication"),
    x_api_key: Optional[str] = Header(None, description="API key, as an alternative to the query parameter"),
    store=Depends(get_store),
):
    """
    Writes one entry. Keys that are not ``fieldN`` for an existing field are
    skipped and listed in ``ignored_keys``.
    """
    return await _write(store, channel_id, api_key or x_api_key, data)


@router.get("/{channel_id}/update", status_code=status.HTTP_200_OK,
            summary="Write data to a channel (URL Query Params)")
async def update_channel_data_by_query_params(
    channel_id: str,
    request: Request,
    x_api_key: Optional[str] = Header(None),
    store=Depends(get_store),
):
    """
    Example: GET /api/v1/channels/{channel_id}/update?api_key=thinkv_...&field1=25.5&field2=60
    """
    api_key = request.query_params.get("api_key") or x_api_key
    return await _write(store, channel_id, api_key, query_payload(request.query_params))


@router.get("/{channel_id}/fields/{field_number}/data", summary="Get stored history for a field")
async def get_field_data(
    channel_id: str,
    field_number: int,
    api_key: Optional[str] = Query(None, description="Required for private channels"),
    results: int = Query(100, description="Maximum number of records to return", ge=1, le=1000),
    store=Depends(get_store),
):
    """Stored readings of one field, newest first, as ``[{timestamp, value}]``."""
    try:
        channel = await store.get_channel(channel_id)
        if channel is None:
            raise HTTPException(status_code=404, detail="Channel not found")
        if not channel.is_public and api_key != channel.api_key:
            raise HTTPException(status_code=401, detail="Invalid API key")

        field = channel.field_by_number(field_number)
        if field is None:
            raise HTTPException(status_code=404, detail=f"Field {field_number} is not defined for this channel")

        records = await store.get_field_history(channel_id, field.id, limit=results)
    except TransientError as e:
        raise HTTPException(status_code=503, detail=str(e))

    points = merge([], records, channel_id=channel_id).points
    return [{"timestamp": p.timestamp.isoformat(), "value": p.value} for p in reversed(points)]
