import math
from datetime import datetime, timezone, tzinfo
from typing import Dict, List, Sequence

from thinkv.models import ChartData, ChartDataset, DataPoint, Field, TimeRange

MAX_CHART_POINTS = 50

LABEL_FORMATS = {
    TimeRange.HOUR: "%H:%M",
    TimeRange.SIX_HOURS: "%H:%M",
    TimeRange.DAY: "%H:%M",
    TimeRange.WEEK: "%a %H:%M",
    TimeRange.MONTH: "%b %d",
    TimeRange.QUARTER: "%b %d",
}


def format_label(timestamp: datetime, time_range: TimeRange, tz: tzinfo = timezone.utc) -> str:
    return timestamp.astimezone(tz).strftime(LABEL_FORMATS[TimeRange(time_range)])


def downsample(timestamps: Sequence[datetime], max_points: int = MAX_CHART_POINTS) -> List[datetime]:
    """
    Keeps every Nth timestamp, N = ceil(count / max_points).

    This is a uniform stride sample, not a bucket average: a spike that falls
    between kept timestamps does not show up in the chart.
    """
    if len(timestamps) <= max_points:
        return list(timestamps)
    stride = math.ceil(len(timestamps) / max_points)
    return list(timestamps[::stride])


def prepare_chart_data(points: Sequence[DataPoint], fields: Sequence[Field], time_range: TimeRange,
                       max_points: int = MAX_CHART_POINTS, tz: tzinfo = timezone.utc) -> ChartData:
    """
    Builds a line chart: one shared timestamp axis across all fields and one
    dataset per field aligned to it. A field without a reading at some
    timestamp gets None there. Points of fields not in ``fields`` are ignored.
    """
    values_by_field: Dict[str, Dict[datetime, float]] = {f.id: {} for f in fields}
    points = [p for p in points if p.field_id in values_by_field]
    if not points:
        return ChartData()

    axis = downsample(sorted({p.timestamp for p in points}), max_points)

    for point in sorted(points, key=DataPoint.sort_key):
        values_by_field[point.field_id][point.timestamp] = point.value

    datasets = []
    for f in fields:
        values = values_by_field[f.id]
        datasets.append(ChartDataset(
            label=f.name,
            field_id=f.id,
            data=[values.get(ts) for ts in axis],
            border_color=f.color,
            background_color=f"{f.color}33",
            unit=f.unit,
        ))

    return ChartData(
        labels=[format_label(ts, time_range, tz) for ts in axis],
        timestamps=axis,
        datasets=datasets,
    )
