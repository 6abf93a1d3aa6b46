"""Persisted document shapes."""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from fleetview.models import SORT_KEYS


class RawNodeRecord(BaseModel):
    """Raw node fields only; derived fields are recomputed on restore."""

    sid: str
    hostname: str = ""
    ip: str = ""
    location: str = ""


class ChannelRecord(BaseModel):
    value: Optional[float] = None
    text: Optional[str] = None


class MetricRecord(BaseModel):
    cpu_load: ChannelRecord = Field(default_factory=ChannelRecord)
    io_wait: ChannelRecord = Field(default_factory=ChannelRecord)
    nic_error: ChannelRecord = Field(default_factory=ChannelRecord)
    network: ChannelRecord = Field(default_factory=ChannelRecord)
    congestion: ChannelRecord = Field(default_factory=ChannelRecord)


class SnapshotDocument(BaseModel):
    """Full node + metric snapshot."""

    timestamp: float
    nodes: List[RawNodeRecord]
    metrics: Dict[str, MetricRecord]


class SortRecord(BaseModel):
    key: str = "region"
    direction: str = "asc"

    def normalized(self) -> "SortRecord":
        key = self.key if self.key in SORT_KEYS else "region"
        direction = "desc" if self.direction == "desc" else "asc"
        return SortRecord(key=key, direction=direction)


class PreferencesDocument(BaseModel):
    """Filters, sort and locale."""

    model_config = ConfigDict(extra="ignore")

    lang: Optional[str] = None
    location: str = "all"
    keyword: str = ""
    cpu_max: Optional[float] = None
    io_max: Optional[float] = None
    nic_max: Optional[float] = None
    congestion_max: Optional[float] = None
    country_codes: List[str] = Field(default_factory=list)
    sort: SortRecord = Field(default_factory=SortRecord)
