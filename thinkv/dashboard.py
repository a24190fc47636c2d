from typing import List, Sequence

from thinkv.charts import MAX_CHART_POINTS, prepare_chart_data
from thinkv.models import Channel, DashboardData, DataPoint, SourceWarning, TimeRange
from thinkv.stats import calculate_field_stats


def render_dashboard(channel: Channel, time_range: TimeRange, points: Sequence[DataPoint],
                     warnings: List[SourceWarning] = None, rejected: int = 0,
                     max_points: int = MAX_CHART_POINTS) -> DashboardData:
    return DashboardData(
        channel=channel.public_dict(),
        time_range=time_range,
        chart=prepare_chart_data(points, channel.fields, time_range, max_points=max_points),
        stats={f.id: calculate_field_stats(points, f.id) for f in channel.fields},
        point_count=len(points),
        rejected=rejected,
        warnings=warnings or [],
    )
