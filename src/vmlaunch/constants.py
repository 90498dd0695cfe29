"""Constants for vmlaunch."""

from pathlib import Path
from typing import Final

# ============================================================================
# Launch
# ============================================================================

DEFAULT_QEMU_BINARY: Final[str] = "qemu-system-x86_64"
"""Executable used when Config.path is empty, resolved through PATH."""

EXTRA_FD_BASE: Final[int] = 3
"""First child fd number for extra files (after stdin, stdout, stderr)."""

# ============================================================================
# Host information sources
# ============================================================================

PROC_CPUINFO: Final[Path] = Path("/proc/cpuinfo")
PROC_VERSION: Final[Path] = Path("/proc/version")
OS_RELEASE: Final[Path] = Path("/etc/os-release")
OS_RELEASE_FALLBACK: Final[Path] = Path("/usr/lib/os-release")
SYS_MODULE_DIR: Final[Path] = Path("/sys/module")

MODINFO_CMD: Final[str] = "modinfo"
"""Command run as `MODINFO_CMD <module>`; exit status 0 means the module exists."""

# ============================================================================
# CPU vendors
# ============================================================================

VENDOR_INTEL: Final[str] = "GenuineIntel"
VENDOR_AMD: Final[str] = "AuthenticAMD"
