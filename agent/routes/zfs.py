"""Read-only pool health API routes."""

import logging

from fastapi import APIRouter, Depends, Query, Request

from exceptions import ZFSNotFoundError, ZFSUnavailableError
from models import ZFSReport
from services import zpool
from services.cmd import ValidationError, validate_pool_name
from services.collector import ZFSCollector
from services.identity import is_simple_device_name
from services.serials import find_drive_matches

logger = logging.getLogger(__name__)

router = APIRouter()


def get_collector(request: Request) -> ZFSCollector:
    return request.app.state.collector


async def current_report(request: Request, refresh: bool = False) -> ZFSReport:
    """Last collected report; collects now if there is none yet."""
    report = getattr(request.app.state, "last_report", None)
    if report is None or refresh:
        report = await get_collector(request).collect()
        request.app.state.last_report = report
    return report


@router.get("/report")
async def get_report(request: Request, refresh: bool = False):
    """Pools, vdev trees and scan progress for this host."""
    report = await current_report(request, refresh)
    return report.model_dump(mode="json", by_alias=True)


@router.get("/summary")
async def get_summary(request: Request):
    report = await current_report(request)
    return zpool.get_pool_health_summary(report.pools).model_dump(mode="json")


@router.get("/drives")
async def get_drives(request: Request):
    """Pool disks with known serials, for matching against SMART data."""
    report = await current_report(request)
    return [m.model_dump(mode="json", by_alias=True) for m in find_drive_matches(report.pools)]


@router.get("/pools/{pool}/history")
async def get_pool_history(
    pool: str,
    limit: int = Query(10, ge=0, le=1000),
    collector: ZFSCollector = Depends(get_collector),
):
    """Scrub events from zpool history, newest first."""
    zpool_bin = collector.tools.zpool()
    if zpool_bin is None:
        raise ZFSUnavailableError("zpool command not found")
    records = await zpool.get_scrub_history(zpool_bin, pool, limit)
    for record in records:
        record.hostname = collector.hostname
    return [r.model_dump(mode="json", by_alias=True) for r in records]


@router.get("/pools/{pool}/scan")
async def get_pool_scan(pool: str, request: Request):
    """The pool's current scan as a history record, or null when none ran."""
    validate_pool_name(pool)
    report = await current_report(request)
    match = next((p for p in report.pools if p.name == pool), None)
    if match is None:
        raise ZFSNotFoundError(f"cannot open '{pool}': no such pool")
    record = zpool.scan_to_scrub_record(match.scan, report.hostname, match.name)
    return record.model_dump(mode="json", by_alias=True) if record else None


@router.get("/devices/{device}")
async def get_device(device: str, collector: ZFSCollector = Depends(get_collector)):
    """Serial, model and by-id link for one block device (sda, nvme0n1)."""
    if not (device.isalnum() and is_simple_device_name(device)):
        raise ValidationError(f"Invalid device name: {device!r}")
    info = await collector.prober.get_device_info(device)
    return info.model_dump(mode="json")
