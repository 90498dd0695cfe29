"""vmlaunch: QEMU command-line compiler, launcher and KVM host prober.

Describe a machine, compile it into a QEMU argument vector, and run QEMU
until it exits.  A separate prober answers whether the host can run KVM
accelerated guests at all.

Compile and launch:
    ```python
    from vmlaunch import BlockDevice, Config, Machine, Memory, launch_qemu

    config = Config(
        name="vm-1",
        machine=Machine(type="q35", acceleration="kvm"),
        memory=Memory(size="2G"),
        devices=[BlockDevice(id="hd0", file="/images/vm-1.qcow2")],
    )
    config.compile()  # ['-name', 'vm-1', '-machine', 'q35,accel=kvm', ...]

    await launch_qemu(config)  # raises QemuLaunchError with QEMU's stderr
    ```

Host capability check:
    ```python
    from vmlaunch import check_host_is_vm_capable, host_is_vm_capable

    if not await host_is_vm_capable():
        ...

    await check_host_is_vm_capable()  # raises naming the unmet requirement
    ```

Requirements:
    - Linux host with /proc and /sys (for probing and KVM)
    - qemu-system-x86_64 in PATH, or Config.path set
    - Python 3.12+
"""

from vmlaunch.config import (
    RTC,
    SMP,
    Config,
    Kernel,
    Knobs,
    Machine,
    Memory,
    QMPSocket,
    load_config,
)
from vmlaunch.devices import (
    BlockDevice,
    CharDevice,
    Device,
    FSDevice,
    NetDevice,
    Object,
    SerialDevice,
)
from vmlaunch.exceptions import (
    ConfigValidationError,
    CpuFeatureMissingError,
    HostCapabilityError,
    HostInfoNotFoundError,
    HostInfoParseError,
    HostInfoReadError,
    HostProbeError,
    KernelModuleMissingError,
    KernelModuleParamError,
    QemuLaunchError,
    UnsupportedCpuError,
    VmLaunchError,
)
from vmlaunch.launcher import launch_custom_qemu, launch_qemu
from vmlaunch.settings import Settings
from vmlaunch.system_probes import check_host_is_vm_capable, host_is_vm_capable

__all__ = [
    "RTC",
    "SMP",
    "BlockDevice",
    "CharDevice",
    "Config",
    "ConfigValidationError",
    "CpuFeatureMissingError",
    "Device",
    "FSDevice",
    "HostCapabilityError",
    "HostInfoNotFoundError",
    "HostInfoParseError",
    "HostInfoReadError",
    "HostProbeError",
    "Kernel",
    "KernelModuleMissingError",
    "KernelModuleParamError",
    "Knobs",
    "Machine",
    "Memory",
    "NetDevice",
    "Object",
    "QMPSocket",
    "QemuLaunchError",
    "SerialDevice",
    "Settings",
    "UnsupportedCpuError",
    "VmLaunchError",
    "check_host_is_vm_capable",
    "host_is_vm_capable",
    "launch_custom_qemu",
    "launch_qemu",
    "load_config",
]

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("vmlaunch")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"
