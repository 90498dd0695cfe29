"""Host platform detection and QEMU process handles.

psutil covers both: its OS constants for detection, and psutil.Process for
liveness checks that stay correct after the kernel recycles a PID.
"""

import asyncio
from enum import Enum
from functools import cache

import psutil


class HostOS(Enum):
    """Operating systems vmlaunch tells apart."""

    LINUX = "linux"
    """The only OS with KVM, /proc/cpuinfo and /sys/module."""

    OTHER = "other"


@cache
def detect_host_os() -> HostOS:
    """Return the host OS (computed once per process)."""
    if psutil.LINUX:
        return HostOS.LINUX
    return HostOS.OTHER


class ProcessHandle:
    """A spawned asyncio subprocess together with its psutil view.

    The psutil handle is taken right after spawn.  is_running() asks it
    rather than the bare PID, so a recycled PID belonging to some other
    program is never mistaken for a live QEMU.
    """

    def __init__(self, proc: asyncio.subprocess.Process) -> None:
        self.proc = proc
        self._ps: psutil.Process | None
        try:
            self._ps = psutil.Process(proc.pid)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            # Already gone (or hidden from us)
            self._ps = None

    @property
    def pid(self) -> int:
        return self.proc.pid

    async def is_running(self) -> bool:
        """True while the process has not exited (psutil call runs in a thread)."""
        if self.proc.returncode is not None:
            return False
        if self._ps is None:
            return True
        try:
            return await asyncio.to_thread(self._ps.is_running)
        except psutil.Error:
            return False

    async def collect_stderr(self) -> tuple[int, bytes]:
        """Wait for exit and return (exit status, everything written to stderr).

        stderr must have been opened as a pipe; other streams are ignored.
        """
        _, stderr = await self.proc.communicate()
        return await self.proc.wait(), stderr or b""
