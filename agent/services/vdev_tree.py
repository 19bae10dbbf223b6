"""Build the vdev tree from the `config:` section of zpool status.

Config lines look like:

    NAME                STATE     READ WRITE CKSUM
    tank                ONLINE       0     0     0
      raidz2-0          ONLINE       0     0     0
        sda             ONLINE       0     0     0
        spare-1         ONLINE       0     0     0
          sdb           ONLINE       0     0     0
          sdf           ONLINE       0     0     0
    logs
      mirror-1          ONLINE       0     0     0
        nvme0n1         ONLINE       0     0     0
        nvme1n1         ONLINE       0     0     0
    spares
      sdf               INUSE     currently in use

The builder receives these lines minus the header and the pool's own row.
It is a fold over the lines: the state threaded through is the tree built
so far plus a stack of (depth, index path) frames for the open containers.
Nothing is mutated in place; every step returns new Device values.
"""

from collections.abc import Awaitable, Callable, Iterable, Iterator
from functools import reduce
from typing import NamedTuple

from models import Device, PoolState, VdevType
from services.units import parse_size

# zpool indents each tree level by two columns
INDENT_WIDTH = 2

# Checked in order; raidz3/raidz2 must precede the generic raidz prefix
_VDEV_PREFIXES: list[tuple[str, VdevType]] = [
    ("mirror", VdevType.MIRROR),
    ("raidz3", VdevType.RAIDZ3),
    ("raidz2", VdevType.RAIDZ2),
    ("raidz1", VdevType.RAIDZ1),
    ("raidz", VdevType.RAIDZ1),
    ("spare", VdevType.SPARE),
    ("log", VdevType.LOG),
]

_ROLE_FLAGS = ("is_spare", "is_log", "is_cache")


def classify_vdev(token: str) -> tuple[VdevType, dict[str, bool]]:
    """Return the vdev type and role flags for a config-section token."""
    name = token.lower()
    for prefix, vdev_type in _VDEV_PREFIXES:
        if name.startswith(prefix):
            if vdev_type == VdevType.SPARE:
                return vdev_type, {"is_spare": True}
            if vdev_type == VdevType.LOG:
                return vdev_type, {"is_log": True}
            return vdev_type, {}
    if name == "cache":
        return VdevType.CACHE, {"is_cache": True}
    if name.startswith("replacing"):
        return VdevType.DISK, {"is_replacing": True}
    return VdevType.DISK, {}


def indent_depth(line: str) -> int:
    indent = len(line) - len(line.lstrip(" \t"))
    return indent // INDENT_WIDTH


def is_class_header(fields: list[str]) -> bool:
    """True for a bare allocation-class label such as `special` or `dedup`.

    These group data vdevs without being a vdev themselves; `logs`,
    `cache` and `spares` are the labels that do become section devices.
    """
    if len(fields) != 1:
        return False
    _, flags = classify_vdev(fields[0])
    return not any(flags.get(flag) for flag in _ROLE_FLAGS)


def parse_device_line(line: str) -> Device | None:
    """Parse one config line into a childless Device.

    Returns None for a blank line or an allocation-class header.
    """
    fields = line.split()
    if not fields or is_class_header(fields):
        return None

    token = fields[0]
    vdev_type, flags = classify_vdev(token)
    device = Device(
        name=token,
        vdev_type=vdev_type,
        state=PoolState.parse(fields[1]) if len(fields) > 1 else PoolState.UNKNOWN,
        **flags,
    )
    if len(fields) >= 5:
        # Without -p large counts are abbreviated ("1.2K")
        device.read_errors = parse_size(fields[2])
        device.write_errors = parse_size(fields[3])
        device.checksum_errors = parse_size(fields[4])
    return device


class _Frame(NamedTuple):
    depth: int
    path: tuple[int, ...]


class _TreeState(NamedTuple):
    devices: tuple[Device, ...]
    stack: tuple[_Frame, ...]


def _append_child(
    nodes: tuple[Device, ...], path: tuple[int, ...], child: Device
) -> tuple[tuple[Device, ...], tuple[int, ...]]:
    """Return ``nodes`` with ``child`` appended under the node at ``path``,
    plus the index path of the inserted child."""
    idx, rest = path[0], path[1:]
    parent = nodes[idx]
    if rest:
        children, child_path = _append_child(tuple(parent.children), rest, child)
    else:
        inherited = {flag: getattr(child, flag) or getattr(parent, flag) for flag in _ROLE_FLAGS}
        child = child.model_copy(
            update={"vdev_parent": parent.name, "vdev_index": len(parent.children), **inherited}
        )
        children = (*parent.children, child)
        child_path = (len(parent.children),)
    updated = parent.model_copy(update={"children": list(children)})
    return (*nodes[:idx], updated, *nodes[idx + 1:]), (idx, *child_path)


def _fold_line(state: _TreeState, line: str) -> _TreeState:
    device = parse_device_line(line)
    if device is None and not line.strip():
        return state
    depth = indent_depth(line)

    stack = state.stack
    while stack and stack[-1].depth >= depth:
        stack = stack[:-1]

    # A class header closes open sections; its vdevs stay top-level data vdevs
    if device is None:
        return _TreeState(state.devices, stack)

    if stack:
        devices, path = _append_child(state.devices, stack[-1].path, device)
    else:
        device = device.model_copy(update={"vdev_index": len(state.devices)})
        devices = (*state.devices, device)
        path = (len(state.devices),)

    # Disks are leaves; anything indented under a disk (the members of a
    # replacing-N vdev) attaches to the nearest enclosing container.
    if device.is_container:
        stack = (*stack, _Frame(depth, path))
    return _TreeState(devices, stack)


def build_device_tree(lines: Iterable[str]) -> list[Device]:
    """Build the top-level device list from config lines (no header, no pool row)."""
    final = reduce(_fold_line, lines, _TreeState(devices=(), stack=()))
    return list(final.devices)


def iter_devices(devices: Iterable[Device]) -> Iterator[Device]:
    """Yield every node of the tree, depth first."""
    for device in devices:
        yield device
        yield from iter_devices(device.children)


async def map_tree(
    devices: Iterable[Device], fn: Callable[[Device], Awaitable[Device]]
) -> list[Device]:
    """Return a new tree with ``fn`` applied to every node, children first."""
    result = []
    for device in devices:
        children = await map_tree(device.children, fn)
        mapped = await fn(device.model_copy(update={"children": children}))
        if mapped.children:
            mapped = mapped.model_copy(update={"children": [
                child.model_copy(update={"vdev_parent": mapped.name}) for child in mapped.children
            ]})
        result.append(mapped)
    return result
