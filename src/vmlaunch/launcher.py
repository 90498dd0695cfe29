"""QEMU process launch.

launch_qemu() compiles a Config and runs QEMU until it exits.
launch_custom_qemu() runs an already-built argument vector.

Extra file descriptors
======================
Devices reference passed-in descriptors by the number QEMU will see (see
Config.append_fds): entry i of the fd list must be fd 3 + i in the child.
subprocess.Popen's pass_fds keeps parent numbering, so the child remaps the
descriptors itself before exec:

1. while spawning, the parent holds every free slot below 3+n so the pipes
   subprocess opens land above the target range
2. dup every source fd above the target range (3 .. 3+n-1) so no source can
   be overwritten while the targets are filled in
3. dup2 each staged copy onto its target, then mark every descriptor above
   the targets close-on-exec; QEMU gets stdio and fds 3 .. 3+n-1 only

Launch blocks until QEMU exits.  Cancelling the awaiting task stops the wait
but leaves QEMU running.
"""

from __future__ import annotations

import asyncio
import contextlib
import fcntl
import logging
import os
import shlex
import subprocess
from collections.abc import Callable, Iterator, Sequence

from vmlaunch import constants
from vmlaunch._logging import get_logger
from vmlaunch.config import Config
from vmlaunch.exceptions import QemuLaunchError
from vmlaunch.platform_utils import ProcessHandle

logger = get_logger(__name__)

LaunchLogger = logging.Logger | logging.LoggerAdapter


def _open_fds(floor: int) -> list[int]:
    """Descriptor numbers at or above `floor` that may be open in this process."""
    for fd_dir in ("/proc/self/fd", "/dev/fd"):
        try:
            return [fd for fd in map(int, os.listdir(fd_dir)) if fd >= floor]
        except OSError:
            continue
    return list(range(floor, os.sysconf("SC_OPEN_MAX")))


def _remap_extra_fds(fds: Sequence[int]) -> Callable[[], None]:
    """Return a preexec_fn placing fds[i] at EXTRA_FD_BASE + i in the child."""
    fds = list(fds)

    def remap() -> None:
        floor = constants.EXTRA_FD_BASE + len(fds)
        staged = []
        for fd in fds:
            copy = fcntl.fcntl(fd, fcntl.F_DUPFD, floor)
            os.set_inheritable(copy, False)
            staged.append(copy)
        for offset, copy in enumerate(staged):
            os.dup2(copy, constants.EXTRA_FD_BASE + offset)
        # Only stdio and the targets survive exec.  Closing is left to exec
        # because subprocess still needs its error pipe up to that point.
        for fd in _open_fds(floor):
            with contextlib.suppress(OSError):
                os.set_inheritable(fd, False)

    return remap


@contextlib.contextmanager
def _reserve_fds_below(limit: int) -> Iterator[None]:
    """Hold every free descriptor number below `limit` until exit.

    subprocess opens its pipes (stderr, the exec error pipe) at the lowest
    free numbers, and the child must not have them under a remap target.
    """
    held: list[int] = []
    try:
        while True:
            fd = os.open(os.devnull, os.O_RDONLY)
            if fd >= limit:
                os.close(fd)
                break
            held.append(fd)
        yield
    finally:
        for fd in held:
            os.close(fd)


async def launch_custom_qemu(
    path: str,
    params: Sequence[str],
    fds: Sequence[int] | None = None,
    log: LaunchLogger | None = None,
) -> str:
    """Run QEMU with the given arguments and wait for it to exit.

    Args:
        path: QEMU binary. Empty means DEFAULT_QEMU_BINARY looked up in PATH.
        params: Arguments, without the binary itself
        fds: Open descriptors to pass; fds[i] becomes fd 3 + i in QEMU.
            No other descriptor above stderr is inherited.
        log: Where to log the command line and failures. Defaults to the
            module logger, which is silent unless the application configures
            logging.

    Returns:
        "" when QEMU exits with status 0.

    Raises:
        QemuLaunchError: QEMU could not be started or exited non-zero; the
            captured stderr is attached.
    """
    log = log if log is not None else logger
    binary = path or constants.DEFAULT_QEMU_BINARY
    extra_fds = list(fds or [])

    spawn_kwargs: dict = {}
    reserved: contextlib.AbstractContextManager = contextlib.nullcontext()
    if extra_fds:
        log.info("Adding extra files %s", extra_fds, extra={"fds": extra_fds})
        # close_fds=False: Popen would close the remapped targets.  The
        # preexec hook marks everything above them close-on-exec instead.
        spawn_kwargs = {"preexec_fn": _remap_extra_fds(extra_fds), "close_fds": False}
        reserved = _reserve_fds_below(constants.EXTRA_FD_BASE + len(extra_fds))

    log.info("Launching qemu with: %s", shlex.join([binary, *params]), extra={"qemu_bin": binary})

    try:
        with reserved:
            proc = ProcessHandle(
                await asyncio.create_subprocess_exec(
                    binary,
                    *params,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.PIPE,
                    **spawn_kwargs,
                )
            )
    except (OSError, ValueError, subprocess.SubprocessError) as e:
        log.error("Unable to launch qemu: %s", e, extra={"qemu_bin": binary})
        raise QemuLaunchError(
            f"Unable to launch {binary}: {e}",
            context={"qemu_bin": binary, "error": str(e)},
        ) from e

    try:
        returncode, stderr_bytes = await proc.collect_stderr()
    except asyncio.CancelledError:
        if await proc.is_running():
            log.warning("Stopped waiting for qemu; it is still running", extra={"pid": proc.pid})
        raise

    if returncode == 0:
        return ""

    stderr = stderr_bytes.decode(errors="replace")
    log.error(
        "Unable to launch qemu: exit status %s",
        returncode,
        extra={"qemu_bin": binary, "pid": proc.pid, "returncode": returncode},
    )
    log.error("%s", stderr)
    raise QemuLaunchError(
        f"{binary} exited with status {returncode}",
        context={"qemu_bin": binary, "returncode": returncode},
        stderr=stderr,
        returncode=returncode,
    )


async def launch_qemu(config: Config, log: LaunchLogger | None = None) -> str:
    """Compile `config` and run QEMU until it exits.

    Returns:
        "" on success.

    Raises:
        QemuLaunchError: See launch_custom_qemu().
    """
    params = config.compile()
    return await launch_custom_qemu(config.path, params, config.fds, log)
