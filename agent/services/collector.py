"""One collection cycle: list pools, fetch status, attach serials, aggregate errors.

Failure policy:
- ZFS not installed: report with available=False and no pools.
- No pools: report with an empty pool list.
- Listing fails: logged and surfaced as ``report.error``.
- Status fails for one pool: that pool keeps its list-derived fields and
  the others are still collected.
Cancellation propagates out of collect(); nothing partial is returned.
"""

import logging
import time
from datetime import datetime

from exceptions import ZFSError
from models import Device, Pool, ZFSReport
from services import zpool
from services.cmd import ValidationError
from services.identity import DeviceIdentityResolver
from services.serials import SerialProber
from services.tools import ToolLocator

logger = logging.getLogger(__name__)


def sum_device_errors(devices: list[Device]) -> tuple[int, int, int]:
    """(read, write, checksum) totals over every node of the tree."""
    read = write = checksum = 0
    for device in devices:
        child_read, child_write, child_checksum = sum_device_errors(device.children)
        read += device.read_errors + child_read
        write += device.write_errors + child_write
        checksum += device.checksum_errors + child_checksum
    return read, write, checksum


def aggregate_errors(pool: Pool) -> Pool:
    """Pool-level counts become the pool's own counts plus its whole tree."""
    read, write, checksum = sum_device_errors(pool.devices)
    return pool.model_copy(update={
        "read_errors": pool.read_errors + read,
        "write_errors": pool.write_errors + write,
        "checksum_errors": pool.checksum_errors + checksum,
    })


def merge_status(summary: Pool, status: Pool) -> Pool:
    """Overlay status-derived fields on a list-derived pool."""
    return summary.model_copy(update={
        "health": status.health,
        "status": status.status,
        "action": status.action,
        "errors": status.errors,
        "scan": status.scan,
        "devices": status.devices,
        "read_errors": status.read_errors,
        "write_errors": status.write_errors,
        "checksum_errors": status.checksum_errors,
    })


class ZFSCollector:
    """Builds a ZFSReport for one host.

    Collaborators are passed in so tests (and hosts with unusual layouts)
    can swap the tool locations, /dev root and /sys root.
    """

    def __init__(
        self,
        hostname: str,
        tools: ToolLocator | None = None,
        resolver: DeviceIdentityResolver | None = None,
        prober: SerialProber | None = None,
    ) -> None:
        self.hostname = hostname
        self.tools = tools or ToolLocator()
        self.resolver = resolver or DeviceIdentityResolver()
        self.prober = prober or SerialProber()

    async def collect(self) -> ZFSReport:
        started = time.monotonic()
        zpool_bin = self.tools.zpool()
        if zpool_bin is None:
            logger.info("zpool not found; reporting ZFS as unavailable")
            return ZFSReport(hostname=self.hostname, available=False)

        try:
            summaries = await zpool.list_pools(zpool_bin)
        except ZFSError as e:
            logger.error("Failed to list pools: %s", e.message)
            return ZFSReport(
                hostname=self.hostname,
                available=True,
                error=f"failed to list pools: {e.message}",
            )

        serial_map = await self.prober.build_serial_map() if summaries else {}

        pools = []
        for summary in summaries:
            pool = summary.model_copy(update={"hostname": self.hostname, "last_seen": datetime.now()})
            try:
                status = await zpool.get_pool_status(zpool_bin, pool.name, self.resolver)
            except (ZFSError, ValidationError) as e:
                logger.warning("Failed to get status for pool %s: %s", pool.name, e)
                pools.append(pool)
                continue
            pool = merge_status(pool, status)
            pool = await self.prober.apply_to_pool(pool, serial_map)
            pools.append(aggregate_errors(pool))

        logger.info(
            "Collected %d pool(s) in %.1fs", len(pools), time.monotonic() - started
        )
        return ZFSReport(hostname=self.hostname, available=True, pools=pools)
