"""QEMU device descriptions.

Each device validates its own fields and renders its own argument fragments:
a `-device` group attaching it to the guest, plus the backend group it needs
(`-drive`, `-netdev`, `-chardev`, `-fsdev` or `-object`).

Property order inside a group is what QEMU's option parser expects and must
not change.  Optional properties are left out entirely when empty.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Annotated, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from vmlaunch.config import Config


@runtime_checkable
class Device(Protocol):
    """Anything Config.compile() can place on the command line."""

    def valid(self) -> bool:
        """Return True if the device is complete enough to be rendered."""
        ...

    def qemu_params(self, config: Config) -> list[str]:
        """Return the QEMU arguments for this device."""
        ...


class DeviceDriver(StrEnum):
    """QEMU device driver names."""

    NVDIMM = "nvdimm"
    VIRTIO_9P = "virtio-9p-pci"
    VIRTIO_NET = "virtio-net"
    VIRTIO_NET_PCI = "virtio-net-pci"
    VIRTIO_SERIAL = "virtio-serial-pci"
    VIRTIO_BLOCK = "virtio-blk"
    CONSOLE = "virtconsole"
    VIRTIO_SERIAL_PORT = "virtserialport"


def _join(head: str, props: list[tuple[str, object]]) -> str:
    """Render `head,key=value,...`, skipping empty values."""
    parts = [head] if head else []
    parts.extend(f"{key}={value}" for key, value in props if value not in ("", None))
    return ",".join(parts)


# ============================================================================
# Memory-backed objects
# ============================================================================


class ObjectType(StrEnum):
    """QEMU object types."""

    MEMORY_BACKEND_FILE = "memory-backend-file"


class Object(BaseModel):
    """A QEMU object and the device that consumes it (e.g. an NVDIMM)."""

    kind: Literal["object"] = "object"

    driver: str = ""
    type: str = ""
    id: str = ""
    device_id: str = ""
    mem_path: str = ""
    size: int = Field(default=0, ge=0, description="Object size in bytes")

    def valid(self) -> bool:
        if self.type != ObjectType.MEMORY_BACKEND_FILE:
            return False
        return bool(self.id and self.mem_path and self.size)

    def qemu_params(self, config: Config) -> list[str]:
        device = _join(self.driver, [("id", self.device_id), ("memdev", self.id)])
        obj = _join(self.type, [("id", self.id), ("mem-path", self.mem_path), ("size", self.size)])
        return ["-device", device, "-object", obj]


# ============================================================================
# 9p filesystem
# ============================================================================


class FSDriver(StrEnum):
    """QEMU filesystem backend drivers."""

    LOCAL = "local"
    HANDLE = "handle"
    PROXY = "proxy"


class SecurityModelType(StrEnum):
    """9p security models."""

    NONE = "none"
    """Like passthrough, without failure reports."""
    PASSTHROUGH = "passthrough"
    """Files carry the same credentials on host and guest."""
    MAPPED_XATTR = "mapped-xattr"
    """Guest attributes stored as host extended attributes."""
    MAPPED_FILE = "mapped-file"
    """Guest attributes stored in a .virtfs_metadata directory."""


class FSDevice(BaseModel):
    """A host directory shared with the guest over 9p."""

    kind: Literal["fs"] = "fs"

    driver: str = DeviceDriver.VIRTIO_9P
    fs_driver: str = FSDriver.LOCAL
    id: str = ""
    path: str = Field(default="", description="Host directory to export")
    mount_tag: str = ""
    security_model: str = SecurityModelType.NONE

    def valid(self) -> bool:
        return bool(self.id and self.path and self.mount_tag)

    def qemu_params(self, config: Config) -> list[str]:
        device = _join(self.driver, [("fsdev", self.id), ("mount_tag", self.mount_tag)])
        fsdev = _join(
            self.fs_driver,
            [("id", self.id), ("path", self.path), ("security_model", self.security_model)],
        )
        return ["-device", device, "-fsdev", fsdev]


# ============================================================================
# Character devices
# ============================================================================


class CharDeviceBackend(StrEnum):
    """QEMU character device backends."""

    PIPE = "pipe"
    SOCKET = "socket"
    CONSOLE = "console"
    SERIAL = "serial"
    TTY = "tty"
    PTY = "pty"


class CharDevice(BaseModel):
    """A guest character device wired to a host chardev backend."""

    kind: Literal["char"] = "char"

    backend: str = CharDeviceBackend.SOCKET
    driver: str = ""
    bus: str = Field(default="", description="Serial bus the device hangs off")
    device_id: str = ""
    id: str = ""
    path: str = ""
    name: str = ""

    def valid(self) -> bool:
        return bool(self.id and self.path)

    def qemu_params(self, config: Config) -> list[str]:
        device = _join(
            self.driver,
            [("bus", self.bus), ("chardev", self.id), ("id", self.device_id), ("name", self.name)],
        )
        chardev = _join(self.backend, [("id", self.id), ("path", self.path)])
        if self.backend == CharDeviceBackend.SOCKET:
            # QEMU listens and does not wait for a client before booting
            chardev += ",server,nowait"
        return ["-device", device, "-chardev", chardev]


# ============================================================================
# Network devices
# ============================================================================


class NetDeviceType(StrEnum):
    """QEMU netdev types."""

    TAP = "tap"
    MACVTAP = "macvtap"


class NetDevice(BaseModel):
    """A guest NIC backed by a tap or macvtap interface.

    `fds` are already-open descriptors for the interface queues (one per
    queue for multiqueue).  They are handed to QEMU as extra files and
    referenced by their child-side numbers in `fds=`.
    """

    kind: Literal["net"] = "net"

    type: str = NetDeviceType.TAP
    driver: str = DeviceDriver.VIRTIO_NET
    id: str = ""
    if_name: str = ""
    bus: str = Field(default="", description="PCI bus path (virtio-net-pci only)")
    addr: str = Field(default="", description="PCI slot as a decimal string (virtio-net-pci only)")
    down_script: str = ""
    script: str = ""
    fds: list[int] = Field(default_factory=list)
    vhost: bool = False
    mac_address: str = ""

    def valid(self) -> bool:
        if not self.id or not self.if_name:
            return False
        return self.type in (NetDeviceType.TAP, NetDeviceType.MACVTAP)

    def _pci_props(self) -> list[tuple[str, object]]:
        if self.driver != DeviceDriver.VIRTIO_NET_PCI:
            return []
        props: list[tuple[str, object]] = [("bus", self.bus)]
        try:
            addr = int(self.addr)
        except ValueError:
            addr = -1
        if addr >= 0:
            props.append(("addr", format(addr, "x")))
        return props

    def qemu_params(self, config: Config) -> list[str]:
        device = _join(
            self.driver,
            [("netdev", self.id), ("mac", self.mac_address), *self._pci_props()],
        )

        fds = ""
        if self.fds:
            fds = ":".join(str(fd) for fd in config.append_fds(self.fds))

        netdev = _join(
            self.type,
            [
                ("id", self.id),
                ("ifname", self.if_name),
                ("downscript", self.down_script),
                ("script", self.script),
                ("fds", fds),
                ("vhost", "on" if self.vhost else ""),
            ],
        )
        return ["-device", device, "-netdev", netdev]


# ============================================================================
# Serial controllers
# ============================================================================


class SerialDevice(BaseModel):
    """A serial controller (e.g. virtio-serial-pci) with no backend of its own."""

    kind: Literal["serial"] = "serial"

    driver: str = DeviceDriver.VIRTIO_SERIAL
    id: str = ""

    def valid(self) -> bool:
        return bool(self.driver and self.id)

    def qemu_params(self, config: Config) -> list[str]:
        return ["-device", _join(self.driver, [("id", self.id)])]


# ============================================================================
# Block devices
# ============================================================================


class BlockDeviceInterface(StrEnum):
    """Interface the drive is attached through."""

    NONE = "none"
    SCSI = "scsi"


class BlockDeviceAIO(StrEnum):
    """Asynchronous I/O implementation for the drive."""

    THREADS = "threads"
    NATIVE = "native"


class BlockDeviceFormat(StrEnum):
    """Disk image formats."""

    QCOW2 = "qcow2"
    RAW = "raw"


class BlockDevice(BaseModel):
    """A disk image exposed to the guest."""

    kind: Literal["block"] = "block"

    driver: str = DeviceDriver.VIRTIO_BLOCK
    id: str = ""
    file: str = ""
    interface: str = BlockDeviceInterface.NONE
    aio: str = BlockDeviceAIO.THREADS
    format: str = BlockDeviceFormat.QCOW2
    scsi: bool = False
    wce: bool = Field(default=False, description="Guest-visible write cache enable")

    def valid(self) -> bool:
        return bool(self.driver and self.id and self.file)

    def qemu_params(self, config: Config) -> list[str]:
        device = _join(self.driver, [("drive", self.id)])
        if not self.scsi:
            device += ",scsi=off"
        if not self.wce:
            device += ",config-wce=off"

        drive = _join(
            "",
            [
                ("id", self.id),
                ("file", self.file),
                ("aio", self.aio),
                ("format", self.format),
                ("if", self.interface),
            ],
        )
        return ["-device", device, "-drive", drive]


DeviceSpec = Annotated[
    BlockDevice | NetDevice | CharDevice | SerialDevice | Object | FSDevice,
    Field(discriminator="kind"),
]
"""Discriminated union of the built-in devices, for loading configs from JSON."""
