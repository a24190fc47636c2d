"""
Reconciliation of live telemetry readings with persisted data points.

``merge`` is the pure part: deduplicate by identity (live wins), drop records
that cannot be parsed, sort chronologically. ``Reconciler`` adds the I/O
around it: both sources are fetched concurrently under independent timeouts,
a failing source degrades to a warning, and live readings are written back
to the store in batches without blocking the caller.
"""
import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Set, Tuple, Union

from pydantic import ValidationError

from thinkv.errors import (
    AuthorizationError,
    ChannelNotFoundError,
    StoreWriteError,
    ThinkVError,
    TransientError,
)
from thinkv.models import Channel, DataPoint, Origin, SourceWarning, TimeRange, live_point_id

logger = logging.getLogger(__name__)

Record = Union[DataPoint, Mapping[str, Any]]


@dataclass
class MergeResult:
    points: List[DataPoint]
    rejected: int = 0


@dataclass
class ReconcileOutcome:
    channel_id: str
    time_range: TimeRange
    points: List[DataPoint]
    rejected: int = 0
    warnings: List[SourceWarning] = field(default_factory=list)


def live_record(channel_id: str, field_id: str, reading: Any) -> dict:
    """Turns a ``{timestamp, value}`` reading from the telemetry API into a record."""
    reading = reading if isinstance(reading, Mapping) else {}
    timestamp = reading.get("timestamp")
    return {
        "id": live_point_id(channel_id, field_id, timestamp),
        "channel_id": channel_id,
        "field_id": field_id,
        "value": reading.get("value"),
        "timestamp": timestamp,
        "origin": Origin.LIVE,
    }


def coerce_points(records: Iterable[Record], origin: Origin,
                  channel_id: str = None) -> Tuple[List[DataPoint], int]:
    """Validates records into DataPoints; returns them with the count rejected."""
    points = []
    rejected = 0
    for record in records:
        if isinstance(record, DataPoint):
            points.append(record)
            continue
        data = dict(record)
        data.setdefault("origin", origin)
        if channel_id is not None:
            data.setdefault("channel_id", channel_id)
        try:
            points.append(DataPoint.model_validate(data))
        except ValidationError as e:
            rejected += 1
            logger.warning(
                "Dropping %s record %r: %s", origin.value, data.get("id"), e.errors()[0]["msg"]
            )
    return points, rejected


def merge(live: Iterable[Record], persisted: Iterable[Record], channel_id: str = None) -> MergeResult:
    """
    Merges live and persisted records into one series sorted by timestamp.

    Records sharing an identity collapse into one; the live record wins no
    matter which list it arrived in first. Records with unparsable
    timestamps or values are excluded and counted in ``rejected``.
    """
    live_points, live_rejected = coerce_points(live, Origin.LIVE, channel_id)
    stored_points, stored_rejected = coerce_points(persisted, Origin.STORE, channel_id)

    merged = {}
    for point in stored_points:
        merged[point.key] = point
    for point in live_points:
        merged[point.key] = point

    points = sorted(merged.values(), key=DataPoint.sort_key)
    return MergeResult(points=points, rejected=live_rejected + stored_rejected)


class Reconciler:

    def __init__(self, telemetry, store, telemetry_timeout: float = 5.0, store_timeout: float = 5.0,
                 batch_size: int = 50, write_back: bool = True, field_results: int = 50,
                 retry_attempts: int = 3, retry_base_delay: float = 0.5):
        self.telemetry = telemetry
        self.store = store
        self.telemetry_timeout = telemetry_timeout
        self.store_timeout = store_timeout
        self.batch_size = batch_size
        self.write_back = write_back
        self.field_results = field_results
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self._pending: Set[asyncio.Task] = set()

    async def load(self, channel: Channel, time_range: TimeRange = TimeRange.DAY) -> ReconcileOutcome:
        """
        Loads the merged series for a channel. Both sources are requested
        before either is awaited. Raises AuthorizationError; every other
        source failure becomes a warning on the outcome.
        """
        since = time_range.since()
        (live, live_warnings, live_error), (stored, stored_warnings, stored_error) = await asyncio.gather(
            self._guard("telemetry", self._fetch_live(channel), self.telemetry_timeout),
            self._guard("store", self._fetch_persisted(channel, since), self.store_timeout),
        )
        for error in (live_error, stored_error):
            if error is not None:
                raise error

        live_points, live_rejected = coerce_points(live, Origin.LIVE, channel.id)
        result = merge(live_points, stored, channel_id=channel.id)
        points = [p for p in result.points if p.timestamp >= since]

        # dict keeps the last duplicate, matching merge()
        self.schedule_write_back(list({p.key: p for p in live_points}.values()))

        return ReconcileOutcome(
            channel_id=channel.id,
            time_range=time_range,
            points=points,
            rejected=result.rejected + live_rejected,
            warnings=live_warnings + stored_warnings,
        )

    async def mirror(self, channel: Channel) -> int:
        """Copies the channel's live readings into the store; returns points written."""
        records, warnings, error = await self._guard(
            "telemetry", self._fetch_live(channel), self.telemetry_timeout
        )
        if error is not None:
            raise error
        for warning in warnings:
            logger.warning("Mirror of channel %s: %s", channel.id, warning.message)
        points, _ = coerce_points(records, Origin.LIVE, channel.id)
        return await self._write_back(points)

    async def _guard(self, source: str, coro, timeout: float):
        """
        Runs a source fetch under its timeout. Returns ``(records, warnings,
        blocking_error)``; only authorization failures are blocking.
        """
        try:
            records, warnings = await asyncio.wait_for(coro, timeout=timeout)
            return records, warnings, None
        except AuthorizationError as e:
            return [], [], e
        except asyncio.TimeoutError:
            message = f"{source} did not answer within {timeout:g}s; showing cached data."
            logger.warning(message)
            return [], [SourceWarning(source=source, kind="timeout", message=message)], None
        except ChannelNotFoundError as e:
            logger.warning("%s: %s", source, e)
            return [], [SourceWarning(source=source, kind="not_found", message=str(e))], None
        except ThinkVError as e:
            logger.warning("%s unavailable: %s", source, e)
            return [], [SourceWarning(source=source, kind="unavailable", message=str(e))], None

    async def _fetch_live(self, channel: Channel):
        requests_ = [
            asyncio.to_thread(self.telemetry.get_field_data, channel.id, f.field_number, self.field_results)
            for f in channel.fields
        ]
        responses = await asyncio.gather(*requests_, return_exceptions=True)

        records = []
        warnings = []
        for f, response in zip(channel.fields, responses):
            if isinstance(response, AuthorizationError):
                raise response
            if isinstance(response, ThinkVError):
                logger.warning("Field %s of channel %s unavailable: %s", f.field_number, channel.id, response)
                kind = "not_found" if isinstance(response, ChannelNotFoundError) else "unavailable"
                warnings.append(SourceWarning(
                    source="telemetry", kind=kind, message=f"Field {f.field_number}: {response}",
                ))
                continue
            if isinstance(response, BaseException):
                raise response
            records.extend(live_record(channel.id, f.id, reading) for reading in response)
        return records, warnings

    async def _fetch_persisted(self, channel: Channel, since):
        return await self.store.get_datapoints(channel.id, since=since), []

    # --- write-back ---

    def schedule_write_back(self, points: List[DataPoint]) -> Optional[asyncio.Task]:
        """Starts a background write-back; the caller never waits on it."""
        if not self.write_back or not points:
            return None
        task = asyncio.create_task(self._write_back(points))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self):
        """Waits for all pending write-backs (used on shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _write_back(self, points: List[DataPoint]) -> int:
        written = 0
        for start in range(0, len(points), self.batch_size):
            batch = points[start:start + self.batch_size]
            try:
                written += await self._write_batch(batch)
            except StoreWriteError as e:
                logger.error("Write-back of %d points failed: %s", len(batch), e)
        return written

    async def _write_batch(self, batch: List[DataPoint]) -> int:
        for attempt in range(1, self.retry_attempts + 1):
            try:
                return await self.store.upsert_datapoints(batch)
            except StoreWriteError as e:
                if attempt == self.retry_attempts:
                    raise
                delay = self.retry_base_delay * 2 ** (attempt - 1)
                delay += random.uniform(0, self.retry_base_delay)
                logger.warning("Write-back attempt %d failed (%s); retrying in %.2fs", attempt, e, delay)
                await asyncio.sleep(delay)
        return 0
