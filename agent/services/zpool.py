"""Zpool CLI wrapper: pool list, pool status and scrub history.

`zpool list` has a scripted mode (-H -p) with fixed columns. `zpool status`
has no machine-parseable mode and must be parsed with a state machine.
"""

import logging
import re

import config
from exceptions import parse_zfs_error
from models import (
    Pool,
    PoolHealthSummary,
    PoolState,
    ScanFunction,
    ScanInfo,
    ScanState,
    ScrubRecord,
)
from services.cmd import run_cmd, validate_pool_name
from services.identity import DeviceIdentityResolver
from services.scan import parse_scan_text
from services.units import parse_float, parse_int, parse_size, parse_timestamp
from services.vdev_tree import build_device_tree, map_tree

logger = logging.getLogger(__name__)

LIST_COLUMNS = "name,size,alloc,free,frag,cap,dedup,health,altroot,guid"

_NO_POOLS = "no pools available"

# Section labels of zpool status, right-aligned to the colon
_STATUS_SECTIONS = ("pool", "state", "status", "action", "see", "scan", "config", "errors")
_SECTION_RE = re.compile(r"^\s{0,6}(" + "|".join(_STATUS_SECTIONS) + r"):(?:\s+(.*))?$")
# Any other label (remove:, checkpoint:) opens a section that is skipped
_OTHER_LABEL_RE = re.compile(r"^ {0,12}[a-z]+:(?:\s+.*)?$")
_CONFIG_HEADER_RE = re.compile(r"^\s*NAME\s+STATE")
_DATA_ERRORS_RE = re.compile(r"(\d+)\s+data errors?", re.IGNORECASE)

HISTORY_TIMESTAMP_FORMAT = "%Y-%m-%d.%H:%M:%S"


# --- zpool list ---


def parse_pool_list(output: str) -> list[Pool]:
    """Parse `zpool list -H -p -o name,size,alloc,free,frag,cap,dedup,health,altroot,guid`.

    Only list-derived fields are filled; health is refined, and scan and
    devices are added, by the status parser.
    """
    pools = []
    for line in output.split("\n"):
        if not line.strip():
            continue
        fields = line.split("\t")
        if len(fields) < 8:
            logger.debug("Skipping short zpool list line: %r", line)
            continue

        pool = Pool(
            name=fields[0],
            size=parse_size(fields[1]),
            allocated=parse_size(fields[2]),
            free=parse_size(fields[3]),
            fragmentation=parse_int(fields[4]),
            capacity=parse_int(fields[5]),
            dedup_ratio=parse_float(fields[6].strip().rstrip("xX")),
            health=PoolState.parse(fields[7]),
        )
        if len(fields) > 8 and fields[8].strip() != "-":
            pool.altroot = fields[8].strip()
        if len(fields) > 9 and fields[9].strip() != "-":
            pool.guid = fields[9].strip()
        pools.append(pool)
    return pools


async def list_pools(zpool: str = "zpool") -> list[Pool]:
    """List all pools. "no pools available" is an empty result, not an error."""
    cmd = [zpool, "list", "-H", "-p", "-o", LIST_COLUMNS]
    stdout, stderr, rc = await run_cmd(cmd)
    if rc != 0:
        if _NO_POOLS in stderr or _NO_POOLS in stdout:
            return []
        raise parse_zfs_error(stderr, rc)
    return parse_pool_list(stdout)


# --- zpool status ---


def parse_pool_status(name: str, raw: str) -> Pool:
    """Parse `zpool status` output for one pool into a Pool.

    Sections start with a right-aligned label (` state:`, `  scan:`,
    `config:`...); any other line continues the current section.
    Labels this parser has no use for end the previous section and
    their lines are dropped.
    """
    sections: dict[str, list[str]] = {key: [] for key in _STATUS_SECTIONS}
    config_lines: list[str] = []
    section = ""

    for line in raw.split("\n"):
        match = _SECTION_RE.match(line)
        if match:
            section = match.group(1)
            if match.group(2):
                sections[section].append(match.group(2).strip())
            continue
        if _OTHER_LABEL_RE.match(line):
            section = ""
            continue
        if not line.strip() or not section:
            continue
        if section == "config":
            config_lines.append(line)
        else:
            sections[section].append(line.strip())

    pool = Pool(
        name=name,
        health=PoolState.parse(" ".join(sections["state"])),
        status=" ".join(sections["status"]),
        action=" ".join(sections["action"]),
        errors=" ".join(sections["errors"]),
    )
    if sections["scan"]:
        pool.scan = parse_scan_text(" ".join(sections["scan"]))
    pool.devices = build_device_tree(_device_lines(name, config_lines))
    pool.checksum_errors = count_data_errors(pool.errors)
    return pool


def _device_lines(name: str, config_lines: list[str]) -> list[str]:
    """Drop the NAME/STATE header and the pool's own row."""
    lines = [line for line in config_lines if not _CONFIG_HEADER_RE.match(line)]
    if lines and lines[0].split()[0] == name:
        lines = lines[1:]
    return lines


def count_data_errors(errors: str) -> int:
    """'3 data errors, use -v for a list' -> 3; 'No known data errors' -> 0."""
    if "no known" in errors.lower():
        return 0
    match = _DATA_ERRORS_RE.search(errors)
    return int(match.group(1)) if match else 0


async def get_pool_status(
    zpool: str,
    name: str,
    resolver: DeviceIdentityResolver | None = None,
) -> Pool:
    """Fetch and parse `zpool status` for one pool, with resolved device names.

    -L/-P print real device paths instead of GUIDs. Some older releases
    reject them, so a failure is retried without.
    """
    validate_pool_name(name)
    cmd = [zpool, "status", "-v", "-p", "-L", "-P", name]
    stdout, stderr, rc = await run_cmd(cmd, timeout=config.STATUS_TIMEOUT)
    if rc != 0:
        logger.warning("zpool status -LP failed for %s (rc=%d), retrying without", name, rc)
        cmd = [zpool, "status", "-v", "-p", name]
        stdout, stderr, rc = await run_cmd(cmd, timeout=config.STATUS_TIMEOUT)
        if rc != 0:
            raise parse_zfs_error(stderr, rc)

    pool = parse_pool_status(name, stdout)
    if resolver is not None:
        pool.devices = await map_tree(pool.devices, resolver.resolve_device)
    return pool


# --- Scrub history ---


def parse_zpool_history(pool_name: str, output: str, limit: int = 0) -> list[ScrubRecord]:
    """Scrub events from `zpool history -i`, newest first.

    Lines look like:
        2024-01-14.00:00:01 zpool scrub tank
        2024-01-14.00:24:59 [txg:4711] scrub done errors=0 ...
    Lines without a parseable leading timestamp are dropped. With a
    positive ``limit`` only the most recent records are kept.
    """
    records = []
    for line in output.split("\n"):
        line = line.strip()
        lower = line.lower()
        if "scrub" not in lower:
            continue

        started = parse_timestamp(line.split()[0], [HISTORY_TIMESTAMP_FORMAT])
        if started is None:
            continue

        if "scrub done" in lower or "completed" in lower:
            state = ScanState.FINISHED
        elif "scrub canceled" in lower or "cancelled" in lower:
            state = ScanState.CANCELED
        elif "zpool scrub" in lower:
            state = ScanState.SCANNING
        else:
            state = ScanState.NONE

        records.append(ScrubRecord(
            pool_name=pool_name,
            scan_type=ScanFunction.SCRUB,
            state=state,
            start_time=started,
        ))

    records.reverse()
    if limit > 0:
        records = records[:limit]
    return records


async def get_scrub_history(zpool: str, pool_name: str, limit: int = 0) -> list[ScrubRecord]:
    validate_pool_name(pool_name)
    cmd = [zpool, "history", "-i", pool_name]
    stdout, stderr, rc = await run_cmd(cmd)
    if rc != 0:
        raise parse_zfs_error(stderr, rc)
    return parse_zpool_history(pool_name, stdout, limit)


def scan_to_scrub_record(scan: ScanInfo | None, hostname: str, pool_name: str) -> ScrubRecord | None:
    """Snapshot a pool's current scan as a history record (None when no scan ran)."""
    if scan is None or scan.function == ScanFunction.NONE:
        return None
    return ScrubRecord(
        hostname=hostname,
        pool_name=pool_name,
        scan_type=scan.function,
        state=scan.state,
        start_time=scan.start_time,
        end_time=scan.end_time,
        duration=scan.duration,
        data_examined=scan.data_examined,
        data_total=scan.data_total,
        errors_found=scan.errors_found,
        bytes_repaired=scan.bytes_repaired,
        progress_pct=scan.progress_pct,
        rate=scan.rate,
        time_remaining=scan.time_remaining,
    )


# --- Summary ---


def get_pool_health_summary(pools: list[Pool]) -> PoolHealthSummary:
    summary = PoolHealthSummary(total_pools=len(pools))
    for pool in pools:
        if pool.is_healthy():
            summary.healthy_pools += 1
        elif pool.is_degraded():
            summary.degraded_pools += 1
        elif pool.is_faulted():
            summary.faulted_pools += 1

        summary.total_errors += pool.total_errors()

        if pool.is_scanning():
            if pool.scan.function == ScanFunction.SCRUB:
                summary.active_scrubs += 1
            elif pool.scan.function == ScanFunction.RESILVER:
                summary.active_resilvers += 1
    return summary
