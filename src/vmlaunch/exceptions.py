"""Exception hierarchy for vmlaunch.

All exceptions inherit from VmLaunchError.

Hierarchy:
    VmLaunchError (base)
    ├── ConfigValidationError          ← strict pre-flight found invalid items
    ├── QemuLaunchError                ← spawn failure or non-zero exit
    └── HostProbeError
        ├── HostInfoNotFoundError      ← /proc or /sys source absent
        ├── HostInfoReadError          ← other I/O failure on a source
        ├── HostInfoParseError         ← required label missing / malformed
        └── HostCapabilityError        ← host does not meet requirements
            ├── UnsupportedCpuError
            ├── CpuFeatureMissingError
            ├── KernelModuleMissingError
            └── KernelModuleParamError

Invalid devices and QMP sockets are not errors at compile time: they are
left out of the command line.  Nothing here is retried automatically.
"""

from __future__ import annotations

from typing import Any


class VmLaunchError(Exception):
    """Base exception for all vmlaunch errors with structured context.

    Attributes:
        message: Human-readable error message
        context: Dictionary of structured error context for logging/debugging
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ConfigValidationError(VmLaunchError):
    """Configuration contains invalid items.

    Raised only by the explicit pre-flight check (Config.check()).

    Attributes:
        problems: One entry per invalid socket, device or RTC setting
    """

    def __init__(self, message: str, problems: list[str], context: dict[str, Any] | None = None):
        super().__init__(message, context)
        self.problems = problems


class QemuLaunchError(VmLaunchError):
    """QEMU failed to start or exited with a non-zero status.

    Attributes:
        stderr: Captured standard error of the process ("" if it never started)
        returncode: Exit status, or None when the spawn itself failed
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        stderr: str = "",
        returncode: int | None = None,
    ):
        super().__init__(message, context)
        self.stderr = stderr
        self.returncode = returncode


# =============================================================================
# Host probing
# =============================================================================


class HostProbeError(VmLaunchError):
    """Base for failures while inspecting the host."""


class HostInfoNotFoundError(HostProbeError):
    """A host information source (e.g. /proc/cpuinfo) does not exist."""


class HostInfoReadError(HostProbeError):
    """A host information source exists but could not be read."""


class HostInfoParseError(HostProbeError):
    """A host information source lacks a required label or is malformed."""


class HostCapabilityError(HostProbeError):
    """The host does not satisfy the virtualization requirements."""


class UnsupportedCpuError(HostCapabilityError):
    """No requirement policy exists for the host CPU vendor."""


class CpuFeatureMissingError(HostCapabilityError):
    """A required CPU feature flag is absent.

    Attributes:
        flag: The first missing flag
    """

    def __init__(self, message: str, flag: str, context: dict[str, Any] | None = None):
        super().__init__(message, context)
        self.flag = flag


class KernelModuleMissingError(HostCapabilityError):
    """A required kernel module is neither loadable nor loaded.

    Attributes:
        module: Module name
    """

    def __init__(self, message: str, module: str, context: dict[str, Any] | None = None):
        super().__init__(message, context)
        self.module = module


class KernelModuleParamError(HostCapabilityError):
    """A kernel module parameter does not hold the required value.

    Attributes:
        module: Module name
        parameter: Parameter name
        expected: Required value
        actual: Value found on the host
    """

    def __init__(
        self,
        message: str,
        module: str,
        parameter: str,
        expected: str,
        actual: str,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, context)
        self.module = module
        self.parameter = parameter
        self.expected = expected
        self.actual = actual
