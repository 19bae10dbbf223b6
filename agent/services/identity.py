"""Resolve vdev tokens from zpool status to canonical device names.

Depending on OS, pool history and the flags zpool was run with, a leaf vdev
shows up as a kernel name (sda, da0), a full path (/dev/sda1), a by-id or
by-partuuid symlink, a partition UUID, or a FreeBSD gptid label. The
serial correlator needs the kernel device name, so each token goes through
an ordered list of strategies, cheapest first. Resolution never fails: the
last resort is the original token with no path.
"""

import logging
import os
import re
from collections.abc import Awaitable, Callable

from exceptions import ZFSError
from models import Device, DeviceIdentity, VdevType
from services.cmd import run_cmd

logger = logging.getLogger(__name__)

# Linux: sda, hdb, nvme0n1, vda, xvdf. FreeBSD: da0, ada0, nvd0.
SIMPLE_NAME_PREFIXES = ("sd", "hd", "nvme", "da", "ada", "nvd", "vd", "xvd")

_HEX_CHARS = frozenset("0123456789abcdefABCDEF")
_PARTITION_SUFFIX_RE = re.compile(r"p\d+$")

Strategy = Callable[[str], Awaitable[DeviceIdentity | None]]


def is_simple_device_name(name: str) -> bool:
    """True for kernel device names like sda, nvme0n1p1, da0, ada1."""
    for prefix in SIMPLE_NAME_PREFIXES:
        if name.startswith(prefix):
            rest = name[len(prefix):]
            if rest and (rest[0].isdigit() or "a" <= rest[0] <= "z"):
                return True
    return False


def looks_like_guid(token: str) -> bool:
    """True for dashed UUID-style identifiers (36 chars with dashes).

    A plain 32-character hex string without dashes is not treated as one.
    """
    if len(token) < 32 or "-" not in token:
        return False
    return sum(1 for c in token if c in _HEX_CHARS) >= 32


def strip_partition_suffix(name: str) -> str:
    """da0p2 -> da0, nvd0p1 -> nvd0 (BSD GPT partition names)."""
    return _PARTITION_SUFFIX_RE.sub("", name) or name


class DeviceIdentityResolver:
    """Chain of named resolution strategies, evaluated in order.

    ``dev_root`` stands in for /dev so the filesystem strategies can be
    pointed at a scratch tree.
    """

    def __init__(self, dev_root: str = "/dev") -> None:
        self.dev_root = dev_root.rstrip("/") or "/"
        self.strategies: list[tuple[str, Strategy]] = [
            ("simple-name", self.by_simple_name),
            ("dev-path", self.by_dev_path),
            ("guid", self.by_guid),
            ("disk-symlink", self.by_disk_symlink),
            ("gptid", self.by_gptid_reference),
        ]

    # --- Path helpers ---

    def _host_path(self, path: str) -> str:
        """Map a /dev/... path printed by zpool onto dev_root."""
        if path.startswith("/dev/"):
            return os.path.join(self.dev_root, path[len("/dev/"):])
        return path

    def _dev_path(self, real: str) -> str:
        """Inverse of _host_path for a resolved target."""
        if self.dev_root == "/dev":
            return real
        root = os.path.realpath(self.dev_root)
        if real == root or real.startswith(root + os.sep):
            return "/dev/" + os.path.relpath(real, root)
        return real

    def _identity(self, name: str) -> DeviceIdentity:
        return DeviceIdentity(name=name, path="/dev/" + name)

    # --- Entry points ---

    async def resolve(self, token: str) -> DeviceIdentity:
        for name, strategy in self.strategies:
            identity = await strategy(token)
            if identity is not None:
                logger.debug("Resolved %s -> %s via %s", token, identity.name, name)
                return identity
        logger.debug("Could not resolve device token %s", token)
        return DeviceIdentity(name=token, path="")

    async def resolve_device(self, device: Device) -> Device:
        """Return ``device`` with a canonical name and path. Containers
        (mirror-0, raidz2-1, logs) are returned unchanged."""
        if device.vdev_type != VdevType.DISK:
            return device
        token = device.name
        identity = await self.resolve(token)
        update = {"name": identity.name, "path": identity.path}
        if looks_like_guid(token) and not device.guid:
            update["guid"] = token
        return device.model_copy(update=update)

    # --- Strategies ---

    async def by_simple_name(self, token: str) -> DeviceIdentity | None:
        if is_simple_device_name(token):
            return self._identity(token)
        return None

    async def by_dev_path(self, token: str) -> DeviceIdentity | None:
        if not token.startswith("/dev/") or "/disk/" in token:
            return None
        base = os.path.basename(token)
        if is_simple_device_name(base):
            return DeviceIdentity(name=base, path=token)
        return None

    async def by_guid(self, token: str) -> DeviceIdentity | None:
        if not looks_like_guid(token):
            return None
        resolved = (
            self.resolve_by_partuuid(token)
            or self.resolve_by_disk_id(token)
            or await self.resolve_gptid(f"gptid/{token}")
            or await self.resolve_by_gpart(token)
        )
        return self._identity(resolved) if resolved else None

    async def by_disk_symlink(self, token: str) -> DeviceIdentity | None:
        if not token.startswith("/dev/disk/"):
            return None
        link = self._host_path(token)
        if not os.path.islink(link):
            return None
        target = os.path.realpath(link)
        if not os.path.exists(target):
            return None
        return DeviceIdentity(name=os.path.basename(target), path=self._dev_path(target))

    async def by_gptid_reference(self, token: str) -> DeviceIdentity | None:
        if not (token.startswith("/dev/gptid/") or token.startswith("gptid/")):
            return None
        resolved = await self.resolve_gptid(token.removeprefix("/dev/"))
        return self._identity(resolved) if resolved else None

    # --- Lookups ---

    def _scan_symlinks(self, subdir: str, match: Callable[[str], bool]) -> str:
        directory = os.path.join(self.dev_root, "disk", subdir)
        try:
            entries = sorted(os.listdir(directory))
        except OSError:
            return ""
        for entry in entries:
            if not match(entry):
                continue
            target = os.path.realpath(os.path.join(directory, entry))
            if os.path.exists(target):
                return os.path.basename(target)
        return ""

    def resolve_by_partuuid(self, guid: str) -> str:
        """Look the GUID up in /dev/disk/by-partuuid (case-insensitive)."""
        wanted = guid.lower()
        return self._scan_symlinks("by-partuuid", lambda entry: entry.lower() == wanted)

    def resolve_by_disk_id(self, guid: str) -> str:
        return self._scan_symlinks("by-id", lambda entry: guid in entry)

    async def resolve_gptid(self, gptid: str) -> str:
        """Resolve a FreeBSD/TrueNAS gptid/<uuid> label to a whole disk name."""
        link = os.path.join(self.dev_root, gptid)
        if os.path.islink(link):
            target = os.path.realpath(link)
            return strip_partition_suffix(os.path.basename(target))

        stdout = await self._run_quiet(["glabel", "status", "-s"])
        for line in stdout.splitlines():
            if gptid not in line:
                continue
            fields = line.split()
            # gptid/<uuid>  N/A  ada0p2
            if len(fields) >= 3:
                return strip_partition_suffix(fields[2])
        return ""

    async def resolve_by_gpart(self, guid: str) -> str:
        """Find the GEOM whose partition table mentions the GUID."""
        stdout = await self._run_quiet(["geom", "part", "list"])
        wanted = guid.lower()
        current = ""
        for line in stdout.splitlines():
            if line.startswith("Geom name:"):
                current = line.split(":", 1)[1].strip()
            if current and wanted in line.lower():
                return current
        return ""

    async def _run_quiet(self, cmd: list[str]) -> str:
        try:
            stdout, _, rc = await run_cmd(cmd)
        except ZFSError as e:
            logger.debug("%s failed: %s", cmd[0], e.message)
            return ""
        return stdout if rc == 0 else ""
