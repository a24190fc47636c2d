from typing import Sequence

from thinkv.models import DataPoint, FieldStats


def calculate_field_stats(points: Sequence[DataPoint], field_id: str) -> FieldStats:
    """Current/min/max/avg of one field. All None when the field has no readings."""
    field_points = [p for p in points if p.field_id == field_id]
    if not field_points:
        return FieldStats()

    values = [p.value for p in field_points]
    latest = max(field_points, key=DataPoint.sort_key)
    return FieldStats(
        current=latest.value,
        min=min(values),
        max=max(values),
        avg=sum(values) / len(values),
    )
