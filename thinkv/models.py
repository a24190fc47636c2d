from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic import Field as ModelField

from thinkv.utils import isoformat, parse_timestamp, utcnow

DEFAULT_FIELD_COLORS = [
    "#FF6384", "#36A2EB", "#4BC0C0", "#FFCD56",
    "#FF9F40", "#9966FF", "#C9CBCF", "#8C9EFF",
]


class TimeRange(str, Enum):
    HOUR = "1h"
    SIX_HOURS = "6h"
    DAY = "24h"
    WEEK = "7d"
    MONTH = "30d"
    QUARTER = "90d"

    @property
    def window(self) -> timedelta:
        return _WINDOWS[self]

    def since(self, now: datetime = None) -> datetime:
        return (now or utcnow()) - self.window


_WINDOWS = {
    TimeRange.HOUR: timedelta(hours=1),
    TimeRange.SIX_HOURS: timedelta(hours=6),
    TimeRange.DAY: timedelta(hours=24),
    TimeRange.WEEK: timedelta(days=7),
    TimeRange.MONTH: timedelta(days=30),
    TimeRange.QUARTER: timedelta(days=90),
}


class Origin(str, Enum):
    LIVE = "live"        # read from the telemetry API
    DEVICE = "device"    # written by a device through the ingest endpoint
    STORE = "store"      # anything else the store assigned an id to


# --- Channels ---------------------------------------------------------------

class Field(BaseModel):
    """One numbered measurement stream within a channel."""
    id: str
    name: str
    field_number: int = ModelField(ge=1)
    color: str = DEFAULT_FIELD_COLORS[0]
    unit: Optional[str] = None


class Channel(BaseModel):
    """
    A logical device. The order of ``fields`` defines the 1-based ``fieldN``
    numbering devices write against, so field numbers must be dense.
    """
    id: str
    name: str
    description: str = ""
    user_id: Optional[str] = None
    is_public: bool = True
    tags: List[str] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    fields: List[Field] = []
    api_key: Optional[str] = None

    @model_validator(mode="after")
    def check_field_numbers(self):
        for position, field in enumerate(self.fields, start=1):
            if field.field_number != position:
                raise ValueError(
                    f"Field '{field.name}' has number {field.field_number}, expected {position}"
                )
        return self

    def field_by_number(self, number: int) -> Optional[Field]:
        if 1 <= number <= len(self.fields):
            return self.fields[number - 1]
        return None

    def field_by_id(self, field_id: str) -> Optional[Field]:
        return next((f for f in self.fields if f.id == field_id), None)

    def public_dict(self) -> Dict[str, Any]:
        """JSON-ready representation without the API key."""
        return self.model_dump(mode="json", exclude={"api_key"})


class FieldSpec(BaseModel):
    """A field as requested by a user; the number is assigned from its position."""
    name: str
    color: Optional[str] = None
    unit: Optional[str] = None


class ChannelCreate(BaseModel):
    name: str
    description: str = ""
    is_public: bool = True
    tags: List[str] = []
    fields: List[FieldSpec] = ModelField(min_length=1)


class ChannelUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_public: Optional[bool] = None
    tags: Optional[List[str]] = None
    add_fields: List[FieldSpec] = []


# --- Data points ------------------------------------------------------------

@dataclass(frozen=True)
class LiveKey:
    """Identity of a reading sourced from the telemetry API."""
    channel_id: str
    field_id: str
    timestamp: datetime

    def sort_token(self) -> Tuple[str, ...]:
        return ("live", self.channel_id, self.field_id, self.timestamp.isoformat())


@dataclass(frozen=True)
class PersistedKey:
    """Identity of a point whose id was assigned by the store."""
    id: str

    def sort_token(self) -> Tuple[str, ...]:
        return ("persisted", self.id)


PointKey = Union[LiveKey, PersistedKey]


def live_point_id(channel_id: str, field_id: str, timestamp) -> str:
    """Document id under which a live reading is mirrored into the store."""
    if isinstance(timestamp, datetime):
        timestamp = isoformat(timestamp)
    return f"{channel_id}-{field_id}-{timestamp}"


def is_live_point_id(point_id: str, channel_id: str, field_id: str, timestamp: datetime) -> bool:
    """
    True if ``point_id`` is the synthesized id of the reading of ``field_id``
    at ``timestamp``, in any ISO notation of that instant.
    """
    prefix = f"{channel_id}-{field_id}-"
    if not point_id.startswith(prefix):
        return False
    try:
        return parse_timestamp(point_id[len(prefix):]) == timestamp
    except ValueError:
        return False


class DataPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    channel_id: str = ""
    field_id: str
    value: float = ModelField(allow_inf_nan=False)
    timestamp: datetime
    origin: Origin = Origin.STORE

    @field_validator("timestamp", mode="before")
    @classmethod
    def normalize_timestamp(cls, value):
        return parse_timestamp(value)

    @property
    def key(self) -> PointKey:
        """
        Identity used for deduplication. A point carrying the synthesized id of
        its own (channel, field, timestamp) is a live reading, wherever it was
        read from; any other id is store-assigned. So a mirrored reading
        collides with its live source, and two records with the same id always
        collide.
        """
        if is_live_point_id(self.id, self.channel_id, self.field_id, self.timestamp):
            return LiveKey(self.channel_id, self.field_id, self.timestamp)
        return PersistedKey(self.id)

    def sort_key(self):
        return (self.timestamp, self.key.sort_token())


# --- Responses --------------------------------------------------------------

class WriteReceipt(BaseModel):
    success: bool = True
    channel_id: str
    timestamp: datetime
    entry_id: str
    points_added: int
    ignored_keys: List[str] = []


class FieldStats(BaseModel):
    current: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    avg: Optional[float] = None


class ChartDataset(BaseModel):
    label: str
    field_id: str
    data: List[Optional[float]]
    border_color: str
    background_color: str
    unit: Optional[str] = None
    tension: float = 0.4
    # Gaps are interpolated across visually, never drawn as zero.
    span_gaps: bool = True


class ChartData(BaseModel):
    labels: List[str] = []
    timestamps: List[datetime] = []
    datasets: List[ChartDataset] = []


class SourceWarning(BaseModel):
    source: str
    kind: str
    message: str


class LatestValue(BaseModel):
    field_id: str
    field_number: int
    value: Optional[float] = None
    last_updated: Optional[datetime] = None


class DashboardData(BaseModel):
    channel: Dict[str, Any]
    time_range: TimeRange
    chart: ChartData
    stats: Dict[str, FieldStats]
    point_count: int
    rejected: int = 0
    warnings: List[SourceWarning] = []
