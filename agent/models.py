"""Pydantic models for the pool/device health report.

Field names are the Python-side names; serialization aliases keep the
JSON wire names the Vigil server ingests (size_bytes, rate_bytes_sec, ...).
"""

from collections.abc import Iterator
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


# --- Enumerations ---


class PoolState(str, Enum):
    ONLINE = "ONLINE"
    DEGRADED = "DEGRADED"
    FAULTED = "FAULTED"
    OFFLINE = "OFFLINE"
    REMOVED = "REMOVED"
    UNAVAIL = "UNAVAIL"
    # Hot spares report AVAIL / INUSE instead of a health state
    AVAIL = "AVAIL"
    INUSE = "INUSE"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: str | None) -> "PoolState":
        try:
            return cls((value or "").strip().upper())
        except ValueError:
            return cls.UNKNOWN


class VdevType(str, Enum):
    DISK = "disk"
    MIRROR = "mirror"
    RAIDZ1 = "raidz1"
    RAIDZ2 = "raidz2"
    RAIDZ3 = "raidz3"
    SPARE = "spare"
    LOG = "log"
    CACHE = "cache"


CONTAINER_TYPES = frozenset(set(VdevType) - {VdevType.DISK})


class ScanFunction(str, Enum):
    NONE = "none"
    SCRUB = "scrub"
    RESILVER = "resilver"


class ScanState(str, Enum):
    NONE = "none"
    SCANNING = "scanning"
    FINISHED = "finished"
    CANCELED = "canceled"


# --- Scan ---


class ScanInfo(BaseModel):
    """Most recent or in-progress scrub/resilver of a pool."""

    function: ScanFunction = ScanFunction.NONE
    state: ScanState = ScanState.NONE
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: int = Field(0, serialization_alias="duration_secs")
    data_examined: int = 0
    data_total: int = 0
    errors_found: int = 0
    bytes_repaired: int = 0
    progress_pct: float = 0.0
    rate: int = Field(0, serialization_alias="rate_bytes_sec")
    time_remaining: int = 0

    @model_validator(mode="after")
    def _finished_means_complete(self) -> "ScanInfo":
        if self.state == ScanState.FINISHED and not self.progress_pct:
            self.progress_pct = 100.0
        return self


# --- Devices ---


class Device(BaseModel):
    """One node of a pool's vdev tree."""

    name: str
    path: str = ""
    guid: str = ""
    serial_number: str = ""
    vdev_type: VdevType = VdevType.DISK
    vdev_parent: str = ""
    vdev_index: int = 0
    state: PoolState = PoolState.UNKNOWN
    read_errors: int = 0
    write_errors: int = 0
    checksum_errors: int = 0
    is_spare: bool = False
    is_log: bool = False
    is_cache: bool = False
    is_replacing: bool = False
    children: list["Device"] = Field(default_factory=list)

    @model_validator(mode="after")
    def _disks_are_leaves(self) -> "Device":
        if self.vdev_type == VdevType.DISK and self.children:
            raise ValueError(f"disk device {self.name!r} cannot have children")
        return self

    @property
    def is_container(self) -> bool:
        return self.vdev_type in CONTAINER_TYPES

    def has_errors(self) -> bool:
        return self.read_errors > 0 or self.write_errors > 0 or self.checksum_errors > 0

    def total_errors(self) -> int:
        return self.read_errors + self.write_errors + self.checksum_errors

    def iter_disks(self) -> Iterator["Device"]:
        """Yield every disk-type node in this subtree, depth first."""
        if self.vdev_type == VdevType.DISK:
            yield self
        for child in self.children:
            yield from child.iter_disks()


class DeviceIdentity(BaseModel):
    """Canonical name and device node resolved from a vdev token."""

    name: str
    path: str = ""


class DeviceInfo(BaseModel):
    name: str
    path: str
    serial_number: str = ""
    model: str = ""
    wwn: str = ""
    by_id_path: str = ""


# --- Pools ---


class Pool(BaseModel):
    """One storage pool on one host."""

    hostname: str = ""
    name: str
    guid: str = ""
    health: PoolState = PoolState.UNKNOWN
    status: str = ""
    action: str = ""
    errors: str = ""
    size: int = Field(0, serialization_alias="size_bytes")
    allocated: int = Field(0, serialization_alias="allocated_bytes")
    free: int = Field(0, serialization_alias="free_bytes")
    fragmentation: int = 0
    capacity: int = Field(0, serialization_alias="capacity_pct")
    dedup_ratio: float = 0.0
    altroot: str = ""
    read_errors: int = 0
    write_errors: int = 0
    checksum_errors: int = 0
    scan: ScanInfo | None = None
    devices: list[Device] = Field(default_factory=list)
    last_seen: datetime = Field(default_factory=datetime.now)

    def is_healthy(self) -> bool:
        return self.health == PoolState.ONLINE

    def is_degraded(self) -> bool:
        return self.health == PoolState.DEGRADED

    def is_faulted(self) -> bool:
        return self.health == PoolState.FAULTED

    def has_errors(self) -> bool:
        return self.read_errors > 0 or self.write_errors > 0 or self.checksum_errors > 0

    def total_errors(self) -> int:
        return self.read_errors + self.write_errors + self.checksum_errors

    def is_scanning(self) -> bool:
        return self.scan is not None and self.scan.state == ScanState.SCANNING

    def device_count(self) -> int:
        """Number of data devices, excluding spare, log and cache subtrees."""
        return sum(
            _count_leaves(d) for d in self.devices
            if not (d.is_spare or d.is_log or d.is_cache)
        )


def _count_leaves(device: Device) -> int:
    if not device.children:
        return 1
    return sum(_count_leaves(child) for child in device.children)


# --- Report ---


class ZFSReport(BaseModel):
    """Everything collected from one host in one cycle. Never mutated."""

    model_config = ConfigDict(frozen=True)

    hostname: str
    timestamp: datetime = Field(default_factory=datetime.now)
    available: bool = Field(False, serialization_alias="zfs_available")
    pools: list[Pool] = Field(default_factory=list)
    error: str | None = None


# --- Scrub history / summaries ---


class ScrubRecord(BaseModel):
    hostname: str = ""
    pool_name: str
    scan_type: ScanFunction = ScanFunction.SCRUB
    state: ScanState = ScanState.NONE
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: int = Field(0, serialization_alias="duration_secs")
    data_examined: int = 0
    data_total: int = 0
    errors_found: int = 0
    bytes_repaired: int = 0
    blocks_repaired: int = 0
    progress_pct: float = 0.0
    rate: int = Field(0, serialization_alias="rate_bytes_sec")
    time_remaining: int = 0


class PoolHealthSummary(BaseModel):
    total_pools: int = 0
    healthy_pools: int = 0
    degraded_pools: int = 0
    faulted_pools: int = 0
    total_errors: int = 0
    active_scrubs: int = 0
    active_resilvers: int = 0


class DriveMatch(BaseModel):
    """A pool disk matched to a drive serial, for SMART cross-reference."""

    serial_number: str
    hostname: str
    pool_name: str
    device: Device
