"""Machine configuration and QEMU argument compilation.

Config describes a whole machine; Config.compile() turns it into the QEMU
argument vector.

Example:
    ```python
    from vmlaunch import BlockDevice, Config, Memory, SMP, launch_qemu

    config = Config(
        name="vm-1",
        memory=Memory(size="2G", slots=2, max_mem="4G"),
        smp=SMP(cpus=2, cores=1, threads=1, sockets=2),
        devices=[BlockDevice(id="hd0", file="/images/vm-1.qcow2")],
    )
    config.compile()
    # ['-name', 'vm-1', '-m', '2G,slots=2,maxmem=4G', '-smp', '2,cores=1,threads=1,sockets=2', ...]

    await launch_qemu(config)
    ```
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, TypeAdapter

from vmlaunch import constants
from vmlaunch.devices import Device, DeviceSpec
from vmlaunch.exceptions import ConfigValidationError


class Machine(BaseModel):
    """Machine type QEMU emulates."""

    type: str = ""
    acceleration: str = Field(default="", description="Accelerator list, e.g. 'kvm' or 'kvm:tcg'")


class QMPSocketType(StrEnum):
    """Socket types usable for QMP."""

    UNIX = "unix"


class QMPSocket(BaseModel):
    """A QMP control socket QEMU should expose."""

    type: str = QMPSocketType.UNIX
    name: str = ""
    server: bool = False
    no_wait: bool = False

    def valid(self) -> bool:
        return bool(self.type and self.name) and self.type == QMPSocketType.UNIX


class RTCBaseType(StrEnum):
    """Start time of the guest RTC."""

    UTC = "utc"
    LOCALTIME = "localtime"


class RTCClock(StrEnum):
    """Clock the guest RTC follows."""

    HOST = "host"
    VM = "vm"


class RTCDriftFix(StrEnum):
    """RTC drift fixing mechanism."""

    SLEW = "slew"
    NONE = "none"


class RTC(BaseModel):
    """Guest real time clock settings.

    The section is emitted when any field is set; without `base` QEMU uses
    its default start time.  `clock` and `drift_fix` are optional but, when
    set, must be one of the known values.
    """

    base: str = ""
    clock: str = ""
    drift_fix: str = ""

    def valid(self) -> bool:
        if self.clock and self.clock not in (RTCClock.HOST, RTCClock.VM):
            return False
        return not (self.drift_fix and self.drift_fix not in (RTCDriftFix.SLEW, RTCDriftFix.NONE))


class SMP(BaseModel):
    """Guest CPU topology. Zero means "let QEMU decide"."""

    cpus: int = Field(default=0, ge=0)
    cores: int = Field(default=0, ge=0)
    threads: int = Field(default=0, ge=0)
    sockets: int = Field(default=0, ge=0)


class Memory(BaseModel):
    """Guest memory settings."""

    size: str = Field(default="", description="Guest RAM, suffixed with M or G")
    slots: int = Field(default=0, ge=0, le=255, description="Hotplug memory slots")
    max_mem: str = Field(default="", description="Ceiling for hotplugged memory")


class Kernel(BaseModel):
    """Direct kernel boot settings."""

    path: str = ""
    params: str = ""


class Knobs(BaseModel):
    """Boolean QEMU switches."""

    no_user_config: bool = False
    no_defaults: bool = False
    no_graphic: bool = False
    daemonize: bool = False


class Config(BaseModel):
    """Everything needed to build one QEMU invocation.

    A Config is owned by a single compile/launch at a time; the fd list it
    accumulates while compiling is not safe to share.

    Attributes:
        path: QEMU binary. Empty means DEFAULT_QEMU_BINARY from PATH.
        devices: Rendered in list order. Invalid devices are skipped.
        qmp_sockets: Rendered in list order. Invalid sockets are skipped.
        global_param: Raw value for a single -global option.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    path: str = ""
    name: str = ""
    uuid: str = ""
    cpu_model: str = ""
    machine: Machine = Field(default_factory=Machine)
    qmp_sockets: list[QMPSocket] = Field(default_factory=list)
    devices: list[Device] = Field(default_factory=list)
    rtc: RTC = Field(default_factory=RTC)
    vga: str = ""
    kernel: Kernel = Field(default_factory=Kernel)
    memory: Memory = Field(default_factory=Memory)
    smp: SMP = Field(default_factory=SMP)
    global_param: str = ""
    knobs: Knobs = Field(default_factory=Knobs)

    _fds: list[int] = PrivateAttr(default_factory=list)
    _params: list[str] = PrivateAttr(default_factory=list)

    @property
    def fds(self) -> list[int]:
        """Descriptors registered by the last compile(), in child fd order."""
        return list(self._fds)

    def append_fds(self, fds: list[int]) -> list[int]:
        """Register descriptors to pass to QEMU.

        Returns the numbers QEMU will see them under: entry i of the
        accumulated list becomes fd EXTRA_FD_BASE + i in the child.
        """
        start = len(self._fds) + constants.EXTRA_FD_BASE
        self._fds.extend(fds)
        return [start + i for i in range(len(fds))]

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def _append_name(self) -> None:
        if self.name:
            self._params.extend(["-name", self.name])

    def _append_uuid(self) -> None:
        if self.uuid:
            self._params.extend(["-uuid", self.uuid])

    def _append_machine(self) -> None:
        if not self.machine.type:
            return
        machine = self.machine.type
        if self.machine.acceleration:
            machine += f",accel={self.machine.acceleration}"
        self._params.extend(["-machine", machine])

    def _append_cpu_model(self) -> None:
        if self.cpu_model:
            self._params.extend(["-cpu", self.cpu_model])

    def _append_qmp_sockets(self) -> None:
        for qmp in self.qmp_sockets:
            if not qmp.valid():
                continue
            socket = f"{qmp.type}:{qmp.name}"
            if qmp.server:
                socket += ",server"
                if qmp.no_wait:
                    socket += ",nowait"
            self._params.extend(["-qmp", socket])

    def _append_memory(self) -> None:
        if not self.memory.size:
            return
        memory = self.memory.size
        if self.memory.slots > 0:
            memory += f",slots={self.memory.slots}"
        if self.memory.max_mem:
            memory += f",maxmem={self.memory.max_mem}"
        self._params.extend(["-m", memory])

    def _append_cpus(self) -> None:
        if self.smp.cpus <= 0:
            return
        smp = str(self.smp.cpus)
        for key in ("cores", "threads", "sockets"):
            value = getattr(self.smp, key)
            if value > 0:
                smp += f",{key}={value}"
        self._params.extend(["-smp", smp])

    def _append_devices(self) -> None:
        for device in self.devices:
            if not device.valid():
                continue
            self._params.extend(device.qemu_params(self))

    def _append_rtc(self) -> None:
        if not self.rtc.valid():
            return
        parts = []
        if self.rtc.base:
            parts.append(f"base={self.rtc.base}")
        if self.rtc.drift_fix:
            parts.append(f"driftfix={self.rtc.drift_fix}")
        if self.rtc.clock:
            parts.append(f"clock={self.rtc.clock}")
        if parts:
            self._params.extend(["-rtc", ",".join(parts)])

    def _append_global_param(self) -> None:
        if self.global_param:
            self._params.extend(["-global", self.global_param])

    def _append_vga(self) -> None:
        if self.vga:
            self._params.extend(["-vga", self.vga])

    def _append_knobs(self) -> None:
        if self.knobs.no_user_config:
            self._params.append("-no-user-config")
        if self.knobs.no_defaults:
            self._params.append("-nodefaults")
        if self.knobs.no_graphic:
            self._params.append("-nographic")
        if self.knobs.daemonize:
            self._params.append("-daemonize")

    def _append_kernel(self) -> None:
        if not self.kernel.path:
            return
        self._params.extend(["-kernel", self.kernel.path])
        if self.kernel.params:
            self._params.extend(["-append", self.kernel.params])

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def compile(self) -> list[str]:
        """Build the QEMU argument vector (without the binary itself).

        Sections are emitted in a fixed order and never interleave.  The fd
        list is rebuilt on every call, so compiling twice yields the same
        arguments and the same fds.
        """
        self._fds = []
        self._params = []

        self._append_name()
        self._append_uuid()
        self._append_machine()
        self._append_cpu_model()
        self._append_qmp_sockets()
        self._append_memory()
        self._append_cpus()
        self._append_devices()
        self._append_rtc()
        self._append_global_param()
        self._append_vga()
        self._append_knobs()
        self._append_kernel()

        return list(self._params)

    def invalid_items(self) -> list[str]:
        """Describe every item compile() would silently leave out."""
        problems: list[str] = []
        for index, qmp in enumerate(self.qmp_sockets):
            if not qmp.valid():
                problems.append(f"qmp_sockets[{index}]: invalid QMP socket (type={qmp.type!r}, name={qmp.name!r})")
        for index, device in enumerate(self.devices):
            if not device.valid():
                problems.append(f"devices[{index}]: invalid {type(device).__name__}")
        if not self.rtc.valid():
            problems.append(f"rtc: invalid clock={self.rtc.clock!r} or drift_fix={self.rtc.drift_fix!r}")
        return problems

    def check(self) -> None:
        """Strict pre-flight validation.

        Raises:
            ConfigValidationError: One or more items are invalid; all of them
                are listed in `problems`.
        """
        problems = self.invalid_items()
        if problems:
            raise ConfigValidationError(
                f"{len(problems)} invalid configuration item(s): " + "; ".join(problems),
                problems=problems,
                context={"name": self.name},
            )


_device_list_adapter: TypeAdapter[list[DeviceSpec]] = TypeAdapter(list[DeviceSpec])


def load_config(data: Mapping[str, Any]) -> Config:
    """Build a Config from JSON-like data.

    Devices are dicts tagged with a `kind` ("block", "net", "char", "serial",
    "object" or "fs").

    Raises:
        pydantic.ValidationError: Malformed data
    """
    fields = dict(data)
    fields["devices"] = _device_list_adapter.validate_python(fields.get("devices", []))
    return Config.model_validate(fields)
