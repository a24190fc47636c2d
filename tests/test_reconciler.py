import asyncio
import threading

import pytest

from fakes import FakeStore, FakeTelemetry, ts
from thinkv.errors import AuthorizationError, ChannelNotFoundError, TransientError
from thinkv.models import DataPoint, LiveKey, Origin, PersistedKey, TimeRange, live_point_id
from thinkv.reconciler import Reconciler, live_record, merge


# --- merge ------------------------------------------------------------------

def record(pid, field_id, value, timestamp):
    return {"id": pid, "field_id": field_id, "value": value, "timestamp": timestamp}


PLAIN = [
    record("p1", "f1", 1.0, "2024-01-01T00:00:00Z"),
    record("p2", "f2", 2.0, "2024-01-01T00:01:00Z"),
    record("ch1-f1-2024-01-01T00:02:00Z", "f1", 3.0, "2024-01-01T00:02:00Z"),
]


def test_merge_with_itself_returns_same_points():
    result = merge(PLAIN, PLAIN, channel_id="ch1")
    assert [(p.id, p.value) for p in result.points] == [(r["id"], r["value"]) for r in PLAIN]
    assert result.rejected == 0


def test_merge_of_points_with_themselves_is_unchanged():
    points = merge([], PLAIN, channel_id="ch1").points
    assert merge(points, points).points == points


def test_live_value_wins_over_persisted_value():
    live = [record("p1", "f1", 42, "2024-01-01T10:00:00Z")]
    persisted = [record("p1", "f1", 7, "2024-01-01T10:00:00Z")]

    result = merge(live, persisted, channel_id="ch1")
    assert [p.value for p in result.points] == [42.0]

    # argument order of the collision does not matter, only the source
    result = merge(live, persisted + persisted + live, channel_id="ch1")
    assert [p.value for p in result.points] == [42.0]


def test_mirrored_reading_loses_to_its_live_source():
    live = [live_record("ch1", "f1", {"timestamp": "2024-01-01T10:00:00Z", "value": 42})]
    mirrored = [dict(live[0], value=7, origin="live")]
    assert [p.value for p in merge(live, mirrored).points] == [42.0]


def test_merge_sorts_by_timestamp():
    live = [
        live_record("ch1", "f1", {"timestamp": "2024-01-01T10:05:00Z", "value": 5}),
        live_record("ch1", "f1", {"timestamp": "2024-01-01T10:01:00Z", "value": 1}),
    ]
    persisted = [
        {"id": "s1", "channel_id": "ch1", "field_id": "f2", "value": 3, "timestamp": "2024-01-01T10:03:00Z"},
        {"id": "s2", "channel_id": "ch1", "field_id": "f2", "value": 0, "timestamp": "2024-01-01T09:59:00+00:00"},
    ]
    points = merge(live, persisted).points
    stamps = [p.timestamp for p in points]
    assert all(a <= b for a, b in zip(stamps, stamps[1:]))
    assert [p.value for p in points] == [0, 1, 3, 5]


def test_same_synthesized_identity_collapses_to_one_point():
    live = [{"id": "ch1-f1-T1", "channel_id": "ch1", "field_id": "f1",
             "value": 10, "timestamp": "2024-03-01T08:00:00Z"}]
    persisted = [dict(live[0])]

    result = merge(live, persisted)
    assert len(result.points) == 1
    assert result.points[0].value == 10


def test_stored_row_without_origin_collides_with_live_reading():
    live = [live_record("ch1", "f1", {"timestamp": "2024-03-01T08:00:00Z", "value": 10})]
    persisted = [{"id": "ch1-f1-2024-03-01T08:00:00Z", "channel_id": "ch1", "field_id": "f1",
                  "value": 10, "timestamp": "2024-03-01T08:00:00Z"}]

    result = merge(live, persisted)
    assert len(result.points) == 1
    assert result.points[0].origin == Origin.LIVE


def test_equal_instants_in_different_notation_collide():
    live = [live_record("ch1", "f1", {"timestamp": "2024-03-01T08:00:00Z", "value": 1})]
    persisted = [{"id": "ch1-f1-2024-03-01T09:00:00+01:00", "channel_id": "ch1", "field_id": "f1",
                  "value": 2, "timestamp": "2024-03-01T09:00:00+01:00"}]
    assert [p.value for p in merge(live, persisted).points] == [1.0]


def test_identity_keys():
    live = DataPoint(id=live_point_id("ch1", "f1", "2024-03-01T08:00:00Z"), channel_id="ch1",
                     field_id="f1", value=1, timestamp="2024-03-01T08:00:00Z")
    device = DataPoint(id="9b1f0c2e", channel_id="ch1", field_id="f1", value=1,
                       timestamp="2024-03-01T08:00:00Z", origin=Origin.DEVICE)
    assert isinstance(live.key, LiveKey)
    assert device.key == PersistedKey("9b1f0c2e")


def test_device_points_do_not_collide_with_live_readings():
    live = [live_record("ch1", "f1", {"timestamp": "2024-03-01T08:00:00Z", "value": 1})]
    persisted = [{"id": "9b1f0c2e-7d4a-4e55-a0c4-3f1d2a6b8e90", "channel_id": "ch1", "field_id": "f1",
                  "value": 2, "timestamp": "2024-03-01T08:00:00Z", "origin": "device"}]
    assert len(merge(live, persisted).points) == 2


def test_unparsable_records_are_counted_and_dropped():
    live = [
        live_record("ch1", "f1", {"timestamp": "not a date", "value": 1}),
        live_record("ch1", "f1", {"timestamp": "2024-01-01T00:00:00Z", "value": "n/a"}),
        live_record("ch1", "f1", "garbage"),
        live_record("ch1", "f1", {"timestamp": "2024-01-01T00:00:00Z", "value": 4}),
    ]
    persisted = [{"id": "s1", "field_id": "f1", "value": 2, "timestamp": None}]

    result = merge(live, persisted, channel_id="ch1")
    assert result.rejected == 4
    assert [p.value for p in result.points] == [4.0]


@pytest.mark.parametrize("value", ["nan", float("nan"), float("inf"), "-inf"])
def test_non_finite_values_are_rejected(value):
    live = [live_record("ch1", "f1", {"timestamp": "2024-01-01T00:00:00Z", "value": value})]
    persisted = [record("s1", "f1", value, "2024-01-01T00:01:00Z")]

    result = merge(live, persisted, channel_id="ch1")
    assert result.points == []
    assert result.rejected == 2


def test_merge_of_empty_inputs():
    result = merge([], [])
    assert result.points == []
    assert result.rejected == 0


# --- Reconciler.load ---------------------------------------------------------

def make_reconciler(telemetry, store, **kwargs):
    kwargs.setdefault("retry_base_delay", 0)
    return Reconciler(telemetry, store, **kwargs)


@pytest.mark.asyncio
async def test_load_merges_both_sources_and_writes_back_live_points(channel):
    store = FakeStore(channels=[channel], records=[
        {"id": "s1", "channel_id": "ch1", "field_id": "f2", "value": 55, "timestamp": ts(30)},
    ])
    telemetry = FakeTelemetry(readings={1: [{"timestamp": ts(20), "value": 21.5},
                                            {"timestamp": ts(10), "value": 22.0}]})
    reconciler = make_reconciler(telemetry, store)

    outcome = await reconciler.load(channel, TimeRange.DAY)
    await reconciler.drain()

    assert [p.value for p in outcome.points] == [55.0, 21.5, 22.0]
    assert outcome.warnings == []
    assert len(store.upserts) == 1
    assert {p.origin for p in store.upserts[0]} == {Origin.LIVE}
    assert {c[1] for c in telemetry.calls} == {1, 2}


@pytest.mark.asyncio
async def test_both_sources_are_requested_before_either_resolves(channel):
    store_started = threading.Event()
    store = FakeStore(channels=[channel])

    async def on_read():
        store_started.set()
        for _ in range(100):
            if telemetry.calls:
                return
            await asyncio.sleep(0.01)

    store.on_read = on_read
    telemetry = FakeTelemetry(readings={1: [{"timestamp": ts(1), "value": 1}]})
    telemetry.wait_for = store_started

    outcome = await make_reconciler(telemetry, store, telemetry_timeout=3).load(channel)

    assert telemetry.waited is True
    assert outcome.warnings == []


@pytest.mark.asyncio
async def test_telemetry_timeout_degrades_to_stored_data(channel):
    store = FakeStore(channels=[channel], records=[
        {"id": "s1", "channel_id": "ch1", "field_id": "f1", "value": 3, "timestamp": ts(5)},
    ])
    telemetry = FakeTelemetry(readings={1: [{"timestamp": ts(1), "value": 9}]}, delay=0.3)
    reconciler = make_reconciler(telemetry, store, telemetry_timeout=0.05)

    outcome = await reconciler.load(channel)

    assert [p.value for p in outcome.points] == [3.0]
    assert [(w.source, w.kind) for w in outcome.warnings] == [("telemetry", "timeout")]
    assert store.upserts == []


@pytest.mark.asyncio
async def test_store_failure_degrades_to_live_data(channel):
    store = FakeStore(channels=[channel])
    store.read_error = TransientError("connection refused")
    telemetry = FakeTelemetry(readings={2: [{"timestamp": ts(2), "value": 61}]})

    outcome = await make_reconciler(telemetry, store, write_back=False).load(channel)

    assert [p.value for p in outcome.points] == [61.0]
    assert [(w.source, w.kind) for w in outcome.warnings] == [("store", "unavailable")]


@pytest.mark.asyncio
async def test_one_failing_field_keeps_the_others(channel):
    telemetry = FakeTelemetry(
        readings={1: [{"timestamp": ts(2), "value": 20}]},
        errors={2: ChannelNotFoundError("ch1")},
    )
    outcome = await make_reconciler(telemetry, FakeStore([channel]), write_back=False).load(channel)

    assert [p.field_id for p in outcome.points] == ["f1"]
    assert outcome.warnings[0].kind == "not_found"
    assert "refresh" in outcome.warnings[0].message


@pytest.mark.asyncio
async def test_authorization_failure_is_blocking(channel):
    telemetry = FakeTelemetry(errors={1: AuthorizationError("bad key")})
    with pytest.raises(AuthorizationError):
        await make_reconciler(telemetry, FakeStore([channel])).load(channel)


@pytest.mark.asyncio
async def test_points_outside_the_window_are_not_shown(channel):
    telemetry = FakeTelemetry(readings={1: [{"timestamp": ts(120), "value": 1},
                                            {"timestamp": ts(30), "value": 2}]})
    reconciler = make_reconciler(telemetry, FakeStore([channel]))

    outcome = await reconciler.load(channel, TimeRange.HOUR)
    await reconciler.drain()

    assert [p.value for p in outcome.points] == [2.0]


@pytest.mark.asyncio
async def test_rejected_live_readings_are_reported(channel):
    telemetry = FakeTelemetry(readings={1: [{"timestamp": "yesterday", "value": 1},
                                            {"timestamp": ts(3), "value": 2}]})
    outcome = await make_reconciler(telemetry, FakeStore([channel]), write_back=False).load(channel)
    assert outcome.rejected == 1
    assert len(outcome.points) == 1


# --- write-back --------------------------------------------------------------

@pytest.mark.asyncio
async def test_write_back_is_batched(channel):
    readings = [{"timestamp": ts(i), "value": i} for i in range(1, 121)]
    store = FakeStore([channel])
    reconciler = make_reconciler(FakeTelemetry(readings={1: readings}), store, batch_size=50)

    await reconciler.load(channel, TimeRange.DAY)
    await reconciler.drain()

    assert [len(batch) for batch in store.upserts] == [50, 50, 20]


@pytest.mark.asyncio
async def test_write_back_failure_is_logged_not_raised(channel, caplog):
    store = FakeStore([channel])
    store.fail_upserts = 10
    reconciler = make_reconciler(FakeTelemetry(readings={1: [{"timestamp": ts(1), "value": 1}]}),
                                 store, retry_attempts=2)

    outcome = await reconciler.load(channel)
    await reconciler.drain()

    assert len(outcome.points) == 1
    assert store.upserts == []
    assert "Write-back of 1 points failed" in caplog.text


@pytest.mark.asyncio
async def test_write_back_retries_transient_store_failures(channel):
    store = FakeStore([channel])
    store.fail_upserts = 2
    reconciler = make_reconciler(FakeTelemetry(readings={1: [{"timestamp": ts(1), "value": 1}]}),
                                 store, retry_attempts=3)

    await reconciler.load(channel)
    await reconciler.drain()

    assert len(store.upserts) == 1


@pytest.mark.asyncio
async def test_mirror_writes_live_points(channel):
    store = FakeStore([channel])
    telemetry = FakeTelemetry(readings={1: [{"timestamp": ts(1), "value": 1}],
                                        2: [{"timestamp": ts(1), "value": 2}]})
    written = await make_reconciler(telemetry, store).mirror(channel)
    assert written == 2
