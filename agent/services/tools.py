"""Locate the zpool/zfs executables.

ZFS installs to different prefixes across Linux distributions, FreeBSD and
TrueNAS, and the agent often runs with a minimal PATH (systemd, rc.d).
"""

import logging
import os
import shutil

logger = logging.getLogger(__name__)

ZPOOL_CANDIDATES = [
    "zpool",
    "/sbin/zpool",
    "/usr/sbin/zpool",
    "/usr/local/sbin/zpool",
    "/usr/local/bin/zpool",
]

ZFS_CANDIDATES = [
    "zfs",
    "/sbin/zfs",
    "/usr/sbin/zfs",
    "/usr/local/sbin/zfs",
    "/usr/local/bin/zfs",
]


class ToolLocator:
    """Find tool binaries, memoizing hits per instance.

    A bare name is looked up on PATH; an absolute candidate must exist on
    disk. Misses are not cached, so installing ZFS while the agent runs is
    picked up on the next cycle.
    """

    def __init__(self, candidates: dict[str, list[str]] | None = None) -> None:
        self._candidates = candidates or {"zpool": ZPOOL_CANDIDATES, "zfs": ZFS_CANDIDATES}
        self._cache: dict[str, str] = {}

    def find(self, tool: str) -> str | None:
        if tool in self._cache:
            return self._cache[tool]

        for candidate in self._candidates.get(tool, [tool]):
            if os.path.isabs(candidate):
                found = candidate if os.path.exists(candidate) else None
            else:
                found = shutil.which(candidate)
            if found:
                logger.debug("Found %s at %s", tool, found)
                self._cache[tool] = found
                return found
        return None

    def zpool(self) -> str | None:
        return self.find("zpool")

    def zfs(self) -> str | None:
        return self.find("zfs")

    def is_zfs_available(self) -> bool:
        return self.zpool() is not None

    def clear(self) -> None:
        self._cache.clear()
