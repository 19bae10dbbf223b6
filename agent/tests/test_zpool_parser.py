"""Tests for the parsers in services/zpool.py.

Uses realistic zpool output captured from production systems.
Covers:
- parse_pool_status: sections, multi-line prose, scan, device tree
- Simple mirror pool
- raidz2 pool with spares, logs, and cache
- Degraded pool with faulted devices and error counts
- Pool with active scrub
- Pool with data errors on the errors: line
- Allocation-class headers and unparsed sections (remove:, checkpoint:)
- Empty / minimal output
- parse_pool_list (zpool list -H -p)
- parse_zpool_history / scan_to_scrub_record / get_pool_health_summary
"""

from datetime import datetime

import pytest

from models import (
    Pool,
    PoolState,
    ScanFunction,
    ScanInfo,
    ScanState,
    VdevType,
)
from services.zpool import (
    count_data_errors,
    get_pool_health_summary,
    parse_pool_list,
    parse_pool_status,
    parse_zpool_history,
    scan_to_scrub_record,
)

GiB = 1024 ** 3
TiB = 1024 ** 4


# ===================================================================
# Sample zpool status outputs
# ===================================================================

SIMPLE_MIRROR = """\
  pool: tank
 state: ONLINE
  scan: scrub repaired 0B in 00:01:30 with 0 errors on Sun Jan 14 00:25:00 2024
config:

\tNAME        STATE     READ WRITE CKSUM
\ttank        ONLINE       0     0     0
\t  mirror-0  ONLINE       0     0     0
\t    sda     ONLINE       0     0     0
\t    sdb     ONLINE       0     0     0

errors: No known data errors
"""

RAIDZ2_WITH_SPECIAL_VDEVS = """\
  pool: datapool
 state: ONLINE
  scan: scrub repaired 0B in 02:15:00 with 0 errors on Sun Jan 14 02:15:00 2024
config:

\tNAME          STATE     READ WRITE CKSUM
\tdatapool      ONLINE       0     0     0
\t  raidz2-0    ONLINE       0     0     0
\t    sda       ONLINE       0     0     0
\t    sdb       ONLINE       0     0     0
\t    sdc       ONLINE       0     0     0
\t    sdd       ONLINE       0     0     0
\t    sde       ONLINE       0     0     0
\tlogs
\t  nvme0n1     ONLINE       0     0     0
\tcache
\t  nvme1n1     ONLINE       0     0     0
\tspares
\t  sdf         AVAIL

errors: No known data errors
"""

DEGRADED_POOL = """\
  pool: tank
 state: DEGRADED
status: One or more devices has been removed by the administrator.
\tSufficient replicas exist for the pool to continue functioning in a
\tdegraded state.
action: Online the device using 'zpool online' or replace the device with
\t'zpool replace'.
  scan: scrub in progress since Sun Jan 14 00:00:00 2024
\t500G scanned at 100M/s, 250G issued at 50M/s, 1T total
\t0B repaired, 25.0% done, 04:00:00 to go
config:

\tNAME        STATE     READ WRITE CKSUM
\ttank        DEGRADED     0     0     0
\t  mirror-0  DEGRADED     0     0     0
\t    sda     ONLINE       0     0     0
\t    sdb     FAULTED      3    12     0  too many errors
\t  mirror-1  ONLINE       0     0     0
\t    sdc     ONLINE       0     0     0
\t    sdd     ONLINE       0     0     0

errors: No known data errors
"""

MINIMAL_OUTPUT = """\
  pool: tiny
 state: ONLINE
config:

\tNAME   STATE     READ WRITE CKSUM
\ttiny   ONLINE       0     0     0
\t  sda  ONLINE       0     0     0

errors: No known data errors
"""

POOL_WITH_ERRORS = """\
  pool: tank
 state: ONLINE
status: One or more devices has experienced an unrecoverable error.  An
\tattempt was made to correct the error.  Applications are unaffected.
action: Determine if the device needs to be replaced, and clear the errors
\tusing 'zpool clear' or replace the device with 'zpool replace'.
  scan: scrub repaired 4K in 00:30:00 with 2 errors on Sun Jan 14 00:30:00 2024
config:

\tNAME        STATE     READ WRITE CKSUM
\ttank        ONLINE       0     0     0
\t  raidz1-0  ONLINE       0     0     0
\t    sda     ONLINE       0     0     2
\t    sdb     ONLINE       1     0     0
\t    sdc     ONLINE       0     0     0

errors: 2 data errors, use '-v' for a list
"""



NESTED_SPARE_IN_RAIDZ = """\
  pool: vault
 state: DEGRADED
status: One or more devices could not be used because the label is missing or
\tinvalid.  Sufficient replicas exist for the pool to continue
\tfunctioning in a degraded state.
action: Replace the device using 'zpool replace'.
   see: https://openzfs.github.io/openzfs-docs/msg/ZFS-8000-4J
  scan: resilvered 1.20G in 0 days 00:10:00 with 0 errors on Mon Jan 15 10:10:00 2024
config:

\tNAME            STATE     READ WRITE CKSUM
\tvault           DEGRADED     0     0     0
\t  raidz1-0      DEGRADED     0     0     0
\t    sda         ONLINE       0     0     0
\t    spare-1     DEGRADED     0     0     0
\t      sdb       UNAVAIL      0     0     0
\t      sdd       ONLINE       0     0     0
\t    sdc         ONLINE       0     0     0
\tlogs
\t  mirror-1      ONLINE       0     0     0
\t    nvme0n1     ONLINE       0     0     0
\t    nvme1n1     ONLINE       0     0     0
\tspares
\t  sdd           INUSE     currently in use

errors: No known data errors
"""

REPLACING = """\
  pool: tank
 state: ONLINE
  scan: resilver in progress since Tue Jan 16 08:00:00 2024
\t100G scanned out of 400G at 200M/s, 00:25:00 to go
\t100G resilvered, 25.00% done
config:

\tNAME             STATE     READ WRITE CKSUM
\ttank             ONLINE       0     0     0
\t  mirror-0       ONLINE       0     0     0
\t    sda          ONLINE       0     0     0
\t    replacing-1  ONLINE       0     0     0
\t      sdb        ONLINE       0     0     0
\t      sde        ONLINE       0     0     0

errors: No known data errors
"""

ALLOCATION_CLASSES = """\
  pool: fast
 state: ONLINE
  scan: none requested
config:

\tNAME          STATE     READ WRITE CKSUM
\tfast          ONLINE       0     0     0
\t  mirror-0    ONLINE       0     0     0
\t    sda       ONLINE       0     0     0
\t    sdb       ONLINE       0     0     0
\tspecial
\t  mirror-1    ONLINE       0     0     0
\t    nvme0n1   ONLINE       0     0     0
\t    nvme1n1   ONLINE       0     0     0
\tdedup
\t  nvme2n1     ONLINE       0     0     0
\tcache
\t  nvme3n1     ONLINE       0     0     0

errors: No known data errors
"""

REMOVAL_DURING_SCRUB = """\
  pool: tank
 state: ONLINE
  scan: scrub in progress since Mon Jan 15 09:00:00 2024
\t100G scanned at 100M/s, 50G issued at 50M/s, 400G total
\t0B repaired, 12.50% done, 02:00:00 to go
remove: Removal of vdev 1 copied 10G in 0h1m, completed on Mon Jan 15 10:00:00 2024
    1.02M memory used for removed device mappings
checkpoint: created Mon Jan 15 08:00:00 2024, consumes 1.20G
config:

\tNAME        STATE     READ WRITE CKSUM
\ttank        ONLINE       0     0     0
\t  sda       ONLINE       0     0     0

errors: No known data errors
"""

HISTORY = """\
History for 'tank':
2024-01-01.00:00:01 zpool create tank mirror sda sdb
2024-01-07.00:24:01 zpool scrub tank
2024-01-07.01:24:01 [txg:1042] scan done errors=0 scrub done
2024-01-14.00:24:01 zpool scrub tank
2024-01-14.00:30:00 [txg:2077] scrub canceled
2024-01-21.00:24:01 zpool scrub tank
garbage scrub line without timestamp
"""


# ===================================================================
# Tests: parse_pool_status -- sections
# ===================================================================


class TestParsePoolStatusSections:
    """Test the section state machine over zpool status output."""

    def test_state_extraction(self):
        pool = parse_pool_status("tank", SIMPLE_MIRROR)
        assert pool.name == "tank"
        assert pool.health == PoolState.ONLINE

    def test_degraded_state(self):
        pool = parse_pool_status("tank", DEGRADED_POOL)
        assert pool.health == PoolState.DEGRADED
        assert pool.is_degraded()

    def test_errors_no_data_errors(self):
        pool = parse_pool_status("tank", SIMPLE_MIRROR)
        assert pool.errors == "No known data errors"
        assert pool.checksum_errors == 0

    def test_errors_with_data_errors(self):
        """'N data errors' adds to the pool's own checksum count."""
        pool = parse_pool_status("tank", POOL_WITH_ERRORS)
        assert "2 data errors" in pool.errors
        assert pool.checksum_errors == 2

    def test_multiline_status(self):
        """status: lines can span multiple lines with tab-indented continuations."""
        pool = parse_pool_status("tank", DEGRADED_POOL)
        assert "One or more devices" in pool.status
        assert "degraded state" in pool.status

    def test_multiline_action(self):
        pool = parse_pool_status("tank", DEGRADED_POOL)
        assert "Online the device" in pool.action
        assert "'zpool replace'" in pool.action

    def test_see_line_does_not_leak_into_action(self):
        pool = parse_pool_status("vault", NESTED_SPARE_IN_RAIDZ)
        assert pool.action == "Replace the device using 'zpool replace'."

    def test_no_status_or_action(self):
        """A healthy pool may not have status: or action: sections."""
        pool = parse_pool_status("tank", SIMPLE_MIRROR)
        assert pool.status == ""
        assert pool.action == ""

    def test_pool_row_errors_are_not_counted(self):
        """Pool-level counts come from the errors: line, not the pool's own row."""
        pool = parse_pool_status("tank", DEGRADED_POOL)
        assert pool.read_errors == 0
        assert pool.write_errors == 0

    def test_minimal_output(self):
        pool = parse_pool_status("tiny", MINIMAL_OUTPUT)
        assert pool.health == PoolState.ONLINE
        assert [d.name for d in pool.devices] == ["sda"]
        assert pool.scan is None

    def test_empty_input(self):
        pool = parse_pool_status("ghost", "")
        assert pool.name == "ghost"
        assert pool.health == PoolState.UNKNOWN
        assert pool.devices == []
        assert pool.scan is None


# ===================================================================
# Tests: parse_pool_status -- scan
# ===================================================================


class TestParsePoolStatusScan:

    def test_finished_scrub(self):
        scan = parse_pool_status("tank", SIMPLE_MIRROR).scan
        assert scan.function == ScanFunction.SCRUB
        assert scan.state == ScanState.FINISHED
        assert scan.progress_pct == 100.0
        assert scan.duration == 90
        assert scan.end_time == datetime(2024, 1, 14, 0, 25, 0)
        assert scan.start_time == datetime(2024, 1, 14, 0, 23, 30)

    def test_multiline_scan_in_progress(self):
        """Scrub-in-progress output spans multiple lines."""
        scan = parse_pool_status("tank", DEGRADED_POOL).scan
        assert scan.state == ScanState.SCANNING
        assert scan.start_time == datetime(2024, 1, 14, 0, 0, 0)
        assert scan.end_time is None
        assert scan.progress_pct == 25.0
        assert scan.data_examined == 500 * GiB
        assert scan.data_total == TiB
        assert scan.rate == 100 * 1024 ** 2
        assert scan.time_remaining == 4 * 3600

    def test_repaired_bytes_and_errors(self):
        scan = parse_pool_status("tank", POOL_WITH_ERRORS).scan
        assert scan.bytes_repaired == 4096
        assert scan.errors_found == 2

    def test_finished_resilver_with_days(self):
        scan = parse_pool_status("vault", NESTED_SPARE_IN_RAIDZ).scan
        assert scan.function == ScanFunction.RESILVER
        assert scan.state == ScanState.FINISHED
        assert scan.duration == 600
        assert scan.progress_pct == 100.0

    def test_resilver_in_progress(self):
        scan = parse_pool_status("tank", REPLACING).scan
        assert scan.function == ScanFunction.RESILVER
        assert scan.state == ScanState.SCANNING
        assert scan.data_total == 400 * GiB
        assert scan.progress_pct == 25.0
        assert scan.time_remaining == 1500

    def test_unparsed_sections_do_not_extend_scan(self):
        """remove: and checkpoint: close the scan section."""
        pool = parse_pool_status("tank", REMOVAL_DURING_SCRUB)
        scan = pool.scan
        assert scan.state == ScanState.SCANNING
        assert scan.end_time is None
        assert scan.start_time == datetime(2024, 1, 15, 9, 0, 0)
        assert scan.progress_pct == 12.5
        assert scan.time_remaining == 7200
        assert [d.name for d in pool.devices] == ["sda"]


# ===================================================================
# Tests: parse_pool_status -- device tree
# ===================================================================


class TestParsePoolStatusDevices:
    """Test device tree structure extracted from the config: section."""

    def test_simple_mirror_structure(self):
        devices = parse_pool_status("tank", SIMPLE_MIRROR).devices

        # The pool's own row is not a device
        assert len(devices) == 1
        mirror = devices[0]
        assert mirror.name == "mirror-0"
        assert mirror.vdev_type == VdevType.MIRROR
        assert mirror.state == PoolState.ONLINE

        assert [c.name for c in mirror.children] == ["sda", "sdb"]
        assert all(c.vdev_parent == "mirror-0" for c in mirror.children)
        assert [c.vdev_index for c in mirror.children] == [0, 1]

    def test_raidz2_with_special_vdevs(self):
        """Pool with raidz2, log, cache, and spare vdevs."""
        devices = parse_pool_status("datapool", RAIDZ2_WITH_SPECIAL_VDEVS).devices
        by_name = {d.name: d for d in devices}
        assert list(by_name) == ["raidz2-0", "logs", "cache", "spares"]

        assert by_name["raidz2-0"].vdev_type == VdevType.RAIDZ2
        assert len(by_name["raidz2-0"].children) == 5

        logs = by_name["logs"]
        assert logs.vdev_type == VdevType.LOG
        assert [c.name for c in logs.children] == ["nvme0n1"]
        assert logs.children[0].is_log

        cache = by_name["cache"]
        assert cache.vdev_type == VdevType.CACHE
        assert cache.children[0].is_cache

        spares = by_name["spares"]
        assert spares.vdev_type == VdevType.SPARE
        sdf = spares.children[0]
        assert sdf.name == "sdf"
        assert sdf.state == PoolState.AVAIL
        assert sdf.is_spare

    def test_device_count_excludes_special_vdevs(self):
        pool = parse_pool_status("datapool", RAIDZ2_WITH_SPECIAL_VDEVS)
        assert pool.device_count() == 5

    def test_degraded_pool_device_states(self):
        """Faulted devices should have their state and error counts."""
        devices = parse_pool_status("tank", DEGRADED_POOL).devices
        mirror0 = devices[0]
        assert mirror0.state == PoolState.DEGRADED

        sdb = mirror0.children[1]
        assert sdb.name == "sdb"
        assert sdb.state == PoolState.FAULTED
        assert sdb.read_errors == 3
        assert sdb.write_errors == 12
        assert sdb.checksum_errors == 0

    def test_multiple_mirror_groups(self):
        devices = parse_pool_status("tank", DEGRADED_POOL).devices
        assert [d.name for d in devices] == ["mirror-0", "mirror-1"]
        assert [d.vdev_index for d in devices] == [0, 1]

    def test_device_default_errors(self):
        """The spare 'sdf' only has a state and no error columns."""
        devices = parse_pool_status("datapool", RAIDZ2_WITH_SPECIAL_VDEVS).devices
        sdf = devices[-1].children[0]
        assert sdf.read_errors == 0
        assert sdf.write_errors == 0
        assert sdf.checksum_errors == 0

    def test_spare_nested_in_raidz(self):
        devices = parse_pool_status("vault", NESTED_SPARE_IN_RAIDZ).devices
        raidz = devices[0]
        assert [c.name for c in raidz.children] == ["sda", "spare-1", "sdc"]
        spare = raidz.children[1]
        assert spare.vdev_type == VdevType.SPARE
        assert spare.vdev_parent == "raidz1-0"
        assert [c.name for c in spare.children] == ["sdb", "sdd"]
        assert spare.children[0].state == PoolState.UNAVAIL

    def test_mirror_under_logs(self):
        devices = parse_pool_status("vault", NESTED_SPARE_IN_RAIDZ).devices
        logs = devices[1]
        assert logs.name == "logs"
        mirror = logs.children[0]
        assert mirror.vdev_type == VdevType.MIRROR
        assert mirror.is_log
        assert [c.name for c in mirror.children] == ["nvme0n1", "nvme1n1"]
        assert all(c.is_log for c in mirror.children)

    def test_inuse_spare(self):
        devices = parse_pool_status("vault", NESTED_SPARE_IN_RAIDZ).devices
        sdd = devices[2].children[0]
        assert sdd.state == PoolState.INUSE

    def test_allocation_class_headers(self):
        """special and dedup group data vdevs without being devices."""
        pool = parse_pool_status("fast", ALLOCATION_CLASSES)
        devices = pool.devices
        assert [(d.name, d.vdev_type) for d in devices] == [
            ("mirror-0", VdevType.MIRROR),
            ("mirror-1", VdevType.MIRROR),
            ("nvme2n1", VdevType.DISK),
            ("cache", VdevType.CACHE),
        ]
        assert all(d.state != PoolState.UNKNOWN for d in devices if d.name != "cache")
        assert [c.name for c in devices[1].children] == ["nvme0n1", "nvme1n1"]
        assert pool.device_count() == 5

    def test_replacing_members_attach_to_enclosing_container(self):
        devices = parse_pool_status("tank", REPLACING).devices
        mirror = devices[0]
        names = [c.name for c in mirror.children]
        assert names == ["sda", "replacing-1", "sdb", "sde"]
        replacing = mirror.children[1]
        assert replacing.vdev_type == VdevType.DISK
        assert replacing.is_replacing
        assert replacing.children == []


# ===================================================================
# Tests: count_data_errors
# ===================================================================


class TestCountDataErrors:

    @pytest.mark.parametrize("text,expected", [
        ("No known data errors", 0),
        ("2 data errors, use '-v' for a list", 2),
        ("1 data error", 1),
        ("Permanent errors have been detected in the following files:", 0),
        ("", 0),
    ])
    def test_counts(self, text, expected):
        assert count_data_errors(text) == expected


# ===================================================================
# Tests: parse_pool_list
# ===================================================================


class TestParsePoolList:

    def test_single_pool(self):
        line = "tank\t1000000000\t500000000\t500000000\t5\t50\t1.00x\tONLINE\t-\t12345678"
        pools = parse_pool_list(line + "\n")
        assert len(pools) == 1
        pool = pools[0]
        assert pool.name == "tank"
        assert pool.size == 1000000000
        assert pool.allocated == 500000000
        assert pool.free == 500000000
        assert pool.fragmentation == 5
        assert pool.capacity == 50
        assert pool.dedup_ratio == 1.0
        assert pool.health == PoolState.ONLINE
        assert pool.altroot == ""
        assert pool.guid == "12345678"

    def test_dash_fields_are_zero(self):
        line = "backup\t2000\t-\t-\t-\t-\t1.50x\tFAULTED\t/mnt\t-"
        pool = parse_pool_list(line)[0]
        assert pool.allocated == 0
        assert pool.free == 0
        assert pool.fragmentation == 0
        assert pool.capacity == 0
        assert pool.dedup_ratio == 1.5
        assert pool.health == PoolState.FAULTED
        assert pool.altroot == "/mnt"
        assert pool.guid == ""

    def test_blank_and_short_lines_skipped(self):
        output = "\n\ntank\t1\t1\t0\n\nrpool\t10\t5\t5\t1\t50\t1.00x\tONLINE\n"
        pools = parse_pool_list(output)
        assert [p.name for p in pools] == ["rpool"]
        assert pools[0].guid == ""

    def test_multiple_pools_keep_order(self):
        output = (
            "tank\t1\t1\t0\t0\t100\t1.00x\tONLINE\t-\t1\n"
            "rpool\t2\t1\t1\t3\t50\t1.00x\tDEGRADED\t-\t2\n"
        )
        assert [p.name for p in parse_pool_list(output)] == ["tank", "rpool"]

    def test_empty_output(self):
        assert parse_pool_list("") == []


# ===================================================================
# Tests: history, scrub records, summary
# ===================================================================


class TestParseZpoolHistory:

    def test_newest_first(self):
        records = parse_zpool_history("tank", HISTORY)
        starts = [r.start_time for r in records]
        assert starts == sorted(starts, reverse=True)
        assert records[0].start_time == datetime(2024, 1, 21, 0, 24, 1)

    def test_states(self):
        records = parse_zpool_history("tank", HISTORY)
        assert [r.state for r in records] == [
            ScanState.SCANNING,
            ScanState.CANCELED,
            ScanState.SCANNING,
            ScanState.FINISHED,
            ScanState.SCANNING,
        ]
        assert all(r.pool_name == "tank" for r in records)
        assert all(r.scan_type == ScanFunction.SCRUB for r in records)

    def test_lines_without_timestamp_dropped(self):
        records = parse_zpool_history("tank", HISTORY)
        assert len(records) == 5

    def test_limit_keeps_most_recent(self):
        records = parse_zpool_history("tank", HISTORY, limit=2)
        assert [r.start_time for r in records] == [
            datetime(2024, 1, 21, 0, 24, 1),
            datetime(2024, 1, 14, 0, 30, 0),
        ]

    def test_no_scrubs(self):
        assert parse_zpool_history("tank", "History for 'tank':\n") == []


class TestScanToScrubRecord:

    def test_none_scan(self):
        assert scan_to_scrub_record(None, "host", "tank") is None

    def test_no_scan_function(self):
        assert scan_to_scrub_record(ScanInfo(), "host", "tank") is None

    def test_copies_fields(self):
        scan = parse_pool_status("tank", DEGRADED_POOL).scan
        record = scan_to_scrub_record(scan, "nas01", "tank")
        assert record.hostname == "nas01"
        assert record.pool_name == "tank"
        assert record.scan_type == ScanFunction.SCRUB
        assert record.state == ScanState.SCANNING
        assert record.progress_pct == 25.0
        assert record.data_examined == scan.data_examined
        assert record.time_remaining == scan.time_remaining


class TestPoolHealthSummary:

    def test_counts(self):
        pools = [
            Pool(name="a", health=PoolState.ONLINE),
            Pool(name="b", health=PoolState.DEGRADED, read_errors=2),
            Pool(name="c", health=PoolState.FAULTED, checksum_errors=1),
            Pool(name="d", health=PoolState.ONLINE,
                 scan=ScanInfo(function=ScanFunction.SCRUB, state=ScanState.SCANNING)),
            Pool(name="e", health=PoolState.DEGRADED,
                 scan=ScanInfo(function=ScanFunction.RESILVER, state=ScanState.SCANNING)),
            Pool(name="f", health=PoolState.ONLINE,
                 scan=ScanInfo(function=ScanFunction.SCRUB, state=ScanState.FINISHED)),
        ]
        summary = get_pool_health_summary(pools)
        assert summary.total_pools == 6
        assert summary.healthy_pools == 3
        assert summary.degraded_pools == 2
        assert summary.faulted_pools == 1
        assert summary.total_errors == 3
        assert summary.active_scrubs == 1
        assert summary.active_resilvers == 1

    def test_empty(self):
        summary = get_pool_health_summary([])
        assert summary.total_pools == 0
        assert summary.healthy_pools == 0
