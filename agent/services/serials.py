"""Correlate pool disks with manufacturer serial numbers.

The server joins ZFS devices to SMART data by serial, so every leaf disk in
every pool should carry one. A host-wide map is built once per collection
cycle by enumerating block devices and probing each with an ordered chain
of strategies (first non-empty answer wins):

    smartctl -> /dev/disk/by-id name -> lsblk -> hdparm -> sysfs

The map is then applied read-only to each pool's tree; disks missing from
it are probed directly as a last resort.
"""

import logging
import os
import re
from collections.abc import Awaitable, Callable, Mapping
from types import MappingProxyType

from exceptions import ZFSError
from models import Device, DeviceInfo, DriveMatch, Pool, VdevType
from services.cmd import run_cmd
from services.smart import get_smart_identity, get_smart_serial
from services.vdev_tree import map_tree

logger = logging.getLogger(__name__)

# Device name and /dev path -> serial
DeviceSerialMap = Mapping[str, str]

Probe = Callable[[str], Awaitable[str]]

VIRTUAL_DEVICE_PREFIXES = ("loop", "ram", "dm-", "md", "zram")

_NVME_NAMESPACE_RE = re.compile(r"^(nvme\d+)n\d+$")
_WHOLE_DISK_PATTERNS = [
    re.compile(r"^(nvme\d+n\d+)p\d+$"),
    re.compile(r"^(mmcblk\d+)p\d+$"),
    re.compile(r"^((?:sd|hd|vd|xvd)[a-z]+)\d+$"),
    re.compile(r"^((?:da|ada|nvd|vtbd)\d+)[ps]\d+$"),
]


def is_plausible_serial(value: str, min_len: int = 6, max_len: int = 30) -> bool:
    return min_len <= len(value) <= max_len and value.isascii() and value.isalnum()


def extract_serial_from_by_id_name(name: str) -> str:
    """Pull the serial out of a /dev/disk/by-id entry name.

    ata-Samsung_SSD_870_EVO_1TB_S625NJ0R444358R   -> S625NJ0R444358R
    nvme-Samsung_SSD_990_PRO_2TB_S73WNJ0X123456Y  -> S73WNJ0X123456Y
    scsi-SATA_ST4000NM0033-9ZM_Z1Z3ABCD           -> Z1Z3ABCD
    scsi-S<serial>                                -> <serial>
    """
    idx = name.find("-part")
    if idx > 0:
        name = name[:idx]

    parts = name.split("_")
    if len(parts) < 2 and not name.startswith("scsi-S"):
        return ""

    serial = parts[-1]
    if len(parts) >= 2 and is_plausible_serial(serial):
        return serial

    if name.startswith("scsi-S"):
        after = name[len("scsi-"):]
        if after.startswith("SATA_"):
            sata_parts = after.split("_")
            if len(sata_parts) >= 2 and len(sata_parts[-1]) >= 6 and sata_parts[-1].isalnum():
                return sata_parts[-1]
        elif len(after) > 1 and "_" not in after:
            return after[1:]
    return ""


class SerialProber:
    """Enumerates block devices and probes them for serial numbers.

    ``dev_root`` and ``sys_root`` stand in for /dev and /sys.
    """

    def __init__(self, dev_root: str = "/dev", sys_root: str = "/sys") -> None:
        self.dev_root = dev_root.rstrip("/") or "/"
        self.sys_root = sys_root.rstrip("/") or "/"
        self.probes: list[tuple[str, Probe]] = [
            ("smartctl", self.from_smartctl),
            ("by-id", self.from_by_id),
            ("lsblk", self.from_lsblk),
            ("hdparm", self.from_hdparm),
            ("sysfs", self.from_sysfs),
        ]

    # --- Probe chain ---

    async def get_serial(self, device: str) -> str:
        """Serial for a device name or /dev path, "" when every probe misses."""
        path = device if device.startswith("/dev/") else "/dev/" + device
        for name, probe in self.probes:
            serial = await probe(path)
            if serial:
                logger.debug("Serial for %s from %s: %s", path, name, serial)
                return serial
        logger.debug("No serial found for %s", path)
        return ""

    async def from_smartctl(self, path: str) -> str:
        return await get_smart_serial(path)

    async def from_by_id(self, path: str) -> str:
        device_name = os.path.basename(path)
        for entry, target in self._by_id_links():
            if target != device_name or entry.startswith("wwn-"):
                continue
            serial = extract_serial_from_by_id_name(entry)
            if serial:
                return serial
        return ""

    async def from_lsblk(self, path: str) -> str:
        return (await self._run_quiet(["lsblk", "-ndo", "SERIAL", path])).strip()

    async def from_hdparm(self, path: str) -> str:
        for line in (await self._run_quiet(["hdparm", "-I", path])).splitlines():
            line = line.strip()
            if line.startswith("Serial Number:"):
                return line[len("Serial Number:"):].strip()
        return ""

    async def from_sysfs(self, path: str) -> str:
        name = os.path.basename(path)
        # The serial of nvme0n1 lives on the controller, nvme0
        match = _NVME_NAMESPACE_RE.match(name)
        candidates = [name, match.group(1)] if match else [name]
        for dev in candidates:
            for attr in (
                f"block/{dev}/device/serial",
                f"class/block/{dev}/device/serial",
                f"class/nvme/{dev}/serial",
                f"block/{dev}/device/wwid",
            ):
                serial = _read_attr(os.path.join(self.sys_root, attr))
                if serial:
                    return serial
        return ""

    # --- Host-wide map ---

    def list_block_devices(self) -> list[str]:
        try:
            entries = sorted(os.listdir(os.path.join(self.sys_root, "block")))
        except OSError:
            return []
        return [e for e in entries if not e.startswith(VIRTUAL_DEVICE_PREFIXES)]

    async def build_serial_map(self) -> DeviceSerialMap:
        """Map every physical block device (by name and /dev path) to its serial."""
        serials: dict[str, str] = {}
        for name in self.list_block_devices():
            serial = await self.get_serial(name)
            if serial:
                serials[name] = serial
                serials["/dev/" + name] = serial
        logger.debug("Serial map covers %d device(s)", len(serials) // 2)
        return MappingProxyType(serials)

    # --- Applying the map ---

    def whole_disk_name(self, name: str) -> str:
        """sda1 -> sda, nvme0n1p2 -> nvme0n1, ada0p2 -> ada0."""
        name = os.path.basename(name)
        marker = os.path.join(self.sys_root, "class", "block", name, "partition")
        if os.path.exists(marker):
            try:
                return os.path.basename(os.path.dirname(
                    os.readlink(os.path.join(self.sys_root, "class", "block", name))
                ))
            except OSError:
                pass
        for pattern in _WHOLE_DISK_PATTERNS:
            match = pattern.match(name)
            if match:
                return match.group(1)
        return name

    def lookup(self, device: Device, serial_map: DeviceSerialMap) -> str:
        whole = self.whole_disk_name(device.name)
        for key in (device.name, device.path, whole, "/dev/" + whole):
            if key and key in serial_map:
                return serial_map[key]
        return ""

    async def attach_serial(self, device: Device, serial_map: DeviceSerialMap) -> Device:
        if device.vdev_type != VdevType.DISK or device.serial_number:
            return device
        serial = self.lookup(device, serial_map)
        if not serial and device.path:
            serial = await self.get_serial(device.path)
        if not serial:
            return device
        return device.model_copy(update={"serial_number": serial})

    async def apply_to_pool(self, pool: Pool, serial_map: DeviceSerialMap) -> Pool:
        """Return ``pool`` with serials attached to every leaf disk."""

        async def attach(device: Device) -> Device:
            return await self.attach_serial(device, serial_map)

        devices = await map_tree(pool.devices, attach)
        return pool.model_copy(update={"devices": devices})

    # --- Device info ---

    async def get_device_info(self, device: str) -> DeviceInfo:
        path = device if device.startswith("/dev/") else "/dev/" + device
        identity = await get_smart_identity(path)
        info = DeviceInfo(
            name=os.path.basename(path),
            path=path,
            serial_number=identity["serial_number"],
            model=identity["model"],
            wwn=identity["wwn"],
        )
        if not info.serial_number:
            for probe in (self.from_by_id, self.from_lsblk, self.from_sysfs):
                info.serial_number = await probe(path)
                if info.serial_number:
                    break
        info.by_id_path = self.get_by_id_path(path)
        return info

    def get_by_id_path(self, path: str) -> str:
        """by-id link for a whole disk, preferring ata-/nvme-/scsi- over wwn-."""
        device_name = os.path.basename(path)
        wwn_path = ""
        for entry, target in self._by_id_links():
            if target != device_name or "-part" in entry:
                continue
            link = "/dev/disk/by-id/" + entry
            if entry.startswith("wwn-"):
                wwn_path = wwn_path or link
                continue
            return link
        return wwn_path

    def _by_id_links(self) -> list[tuple[str, str]]:
        directory = os.path.join(self.dev_root, "disk", "by-id")
        try:
            entries = sorted(os.listdir(directory))
        except OSError:
            return []
        links = []
        for entry in entries:
            try:
                target = os.readlink(os.path.join(directory, entry))
            except OSError:
                continue
            links.append((entry, os.path.basename(target)))
        return links

    async def _run_quiet(self, cmd: list[str]) -> str:
        try:
            stdout, _, rc = await run_cmd(cmd)
        except ZFSError as e:
            logger.debug("%s failed: %s", cmd[0], e.message)
            return ""
        return stdout if rc == 0 else ""


def _read_attr(path: str) -> str:
    try:
        with open(path) as f:
            return f.read().strip()
    except (OSError, UnicodeDecodeError):
        return ""


def find_drive_matches(pools: list[Pool]) -> list[DriveMatch]:
    """Every disk with a known serial, for cross-referencing SMART data."""
    matches = []
    for pool in pools:
        for top in pool.devices:
            for disk in top.iter_disks():
                if disk.serial_number:
                    matches.append(DriveMatch(
                        serial_number=disk.serial_number,
                        hostname=pool.hostname,
                        pool_name=pool.name,
                        device=disk,
                    ))
    return matches
