"""Host capability probes for hardware-accelerated virtualization.

Two independent layers must both pass:

Layer 1 (CPU): the first /proc/cpuinfo block names a known vendor and
    carries every feature flag that vendor's policy requires (long mode,
    VT-x/AMD-V, SSE4.1).
Layer 2 (Kernel): every required module is loadable (`modinfo`) or loaded
    (/sys/module/<name>), and each required module parameter exposed under
    /sys/module/<name>/parameters holds the expected value.

Probing stops at the first unmet requirement and raises an error naming it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping

import aiofiles.os
from pydantic import BaseModel, ConfigDict, Field

from vmlaunch import constants
from vmlaunch._logging import get_logger
from vmlaunch.exceptions import (
    CpuFeatureMissingError,
    HostCapabilityError,
    HostProbeError,
    KernelModuleMissingError,
    KernelModuleParamError,
    UnsupportedCpuError,
)
from vmlaunch.host_info import get_cpu_flags, get_cpu_info, parse_cpu_details, read_file_contents
from vmlaunch.platform_utils import HostOS, detect_host_os
from vmlaunch.settings import Settings

logger = get_logger(__name__)


class KernelModule(BaseModel):
    """A kernel module the host must provide."""

    model_config = ConfigDict(frozen=True)

    desc: str
    parameters: dict[str, str] = Field(
        default_factory=dict,
        description="Parameter name -> required value as read from sysfs",
    )


class HostRequirements(BaseModel):
    """What one CPU vendor needs for KVM."""

    model_config = ConfigDict(frozen=True)

    cpu_flags: dict[str, str] = Field(description="Flag -> human readable description")
    kernel_modules: dict[str, KernelModule] = Field(default_factory=dict)


DEFAULT_HOST_REQUIREMENTS: dict[str, HostRequirements] = {
    constants.VENDOR_INTEL: HostRequirements(
        cpu_flags={
            "lm": "64Bit CPU",
            "vmx": "Virtualization support",
            "sse4_1": "SSE4.1",
        },
        kernel_modules={
            "kvm": KernelModule(desc="Kernel-based Virtual Machine"),
            "kvm_intel": KernelModule(
                desc="Intel KVM",
                parameters={
                    "nested": "Y",
                    # "VMX Unrestricted mode support": real mode guests
                    # without emulation
                    "unrestricted_guest": "Y",
                },
            ),
        },
    ),
    constants.VENDOR_AMD: HostRequirements(
        cpu_flags={
            "lm": "64Bit CPU",
            "svm": "Virtualization support",
            "sse4_1": "SSE4.1",
        },
        kernel_modules={
            "kvm": KernelModule(desc="Kernel-based Virtual Machine"),
            "kvm_amd": KernelModule(desc="AMD KVM", parameters={"nested": "1"}),
        },
    ),
}


def check_cpu_flags(flags: set[str], required: Mapping[str, str]) -> None:
    """Ensure every required flag is present.

    Raises:
        HostCapabilityError: No flags at all (the cpuinfo block had no flags line)
        CpuFeatureMissingError: The first required flag that is missing
    """
    if not flags:
        raise HostCapabilityError("No CPU flags found")

    for flag, desc in required.items():
        if flag not in flags:
            raise CpuFeatureMissingError(
                f"CPU flag {flag!r} ({desc}) not found",
                flag=flag,
                context={"flag": flag, "description": desc},
            )


async def have_kernel_module(module: str, settings: Settings) -> bool:
    """Return True if the module can be loaded or is already loaded.

    `modinfo` succeeds for modules available on disk; /sys/module/<name>
    covers modules built into the kernel or loaded from elsewhere.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            settings.modinfo_cmd,
            module,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        if await proc.wait() == 0:
            return True
    except OSError as e:
        logger.debug(
            "modinfo unavailable, falling back to sysfs",
            extra={"modinfo_cmd": settings.modinfo_cmd, "error": str(e)},
        )

    return await aiofiles.os.path.isdir(settings.sys_module_dir / module)


async def check_kernel_modules(modules: Mapping[str, KernelModule], settings: Settings) -> None:
    """Ensure every module exists and its parameters hold the required values.

    Raises:
        KernelModuleMissingError: Module neither loadable nor loaded
        HostInfoNotFoundError: Module present but a required parameter is not exposed
        KernelModuleParamError: Parameter holds a different value
    """
    for module, details in modules.items():
        logger.debug("Checking kernel module", extra={"kernel_module": module, "description": details.desc})

        if not await have_kernel_module(module, settings):
            raise KernelModuleMissingError(
                f"Kernel module {module!r} ({details.desc}) not found",
                module=module,
                context={"module": module},
            )

        for param, expected in details.parameters.items():
            path = settings.sys_module_dir / module / "parameters" / param
            actual = (await read_file_contents(path)).strip()
            if actual != expected:
                raise KernelModuleParamError(
                    f"Kernel module {module!r} parameter {param!r} has value {actual!r} (expected {expected!r})",
                    module=module,
                    parameter=param,
                    expected=expected,
                    actual=actual,
                    context={"module": module, "parameter": param, "path": str(path)},
                )


async def check_host_is_vm_capable(
    settings: Settings | None = None,
    requirements: Mapping[str, HostRequirements] | None = None,
) -> None:
    """Check that the host can run KVM accelerated guests.

    Args:
        settings: Host information paths (defaults read from the environment)
        requirements: Policy per CPU vendor id (default: DEFAULT_HOST_REQUIREMENTS)

    Raises:
        HostInfoNotFoundError: cpuinfo (or a required module parameter) missing
        HostInfoParseError: cpuinfo lacks vendor_id or model name
        HostCapabilityError: A requirement is not met (see subclasses)
    """
    settings = settings or Settings()
    requirements = DEFAULT_HOST_REQUIREMENTS if requirements is None else requirements

    if detect_host_os() != HostOS.LINUX:
        raise HostCapabilityError("KVM is only available on Linux hosts")

    cpuinfo = await get_cpu_info(settings.proc_cpuinfo)
    vendor, model = parse_cpu_details(cpuinfo)

    policy = requirements.get(vendor)
    if policy is None:
        raise UnsupportedCpuError(
            f"Unsupported CPU vendor {vendor!r}",
            context={"vendor": vendor, "model": model, "supported": sorted(requirements)},
        )

    check_cpu_flags(get_cpu_flags(cpuinfo), policy.cpu_flags)
    await check_kernel_modules(policy.kernel_modules, settings)

    logger.info("Host is capable of running KVM guests", extra={"vendor": vendor, "model": model})


async def host_is_vm_capable(
    settings: Settings | None = None,
    requirements: Mapping[str, HostRequirements] | None = None,
) -> bool:
    """Boolean form of check_host_is_vm_capable(); failures are logged."""
    try:
        await check_host_is_vm_capable(settings, requirements)
    except HostProbeError as e:
        logger.info("Host is not capable of running KVM guests", extra={"reason": e.message})
        return False
    return True
