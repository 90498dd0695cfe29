"""Readers for host information files.

Parses /proc/cpuinfo, /proc/version and os-release.  All file access is
async (aiofiles) and every path comes from Settings, so tests can point the
readers at fixtures.
"""

from __future__ import annotations

import re
from pathlib import Path

import aiofiles
from pydantic import BaseModel

from vmlaunch._logging import get_logger
from vmlaunch.exceptions import HostInfoNotFoundError, HostInfoParseError, HostInfoReadError
from vmlaunch.settings import Settings

logger = get_logger(__name__)

_VENDOR_LABEL = "vendor_id"
_MODEL_LABEL = "model name"
_FLAGS_LABEL = "flags"


class HostDetails(BaseModel):
    """Summary of the host, as shown by `vmlaunch info`."""

    cpu_vendor: str
    cpu_model: str
    cpu_flags: list[str]
    kernel_version: str | None = None
    distro_name: str | None = None
    distro_version: str | None = None


async def read_file_contents(path: Path) -> str:
    """Return the full text of a host information file.

    Raises:
        HostInfoNotFoundError: File does not exist
        HostInfoReadError: Any other OS error
    """
    try:
        async with aiofiles.open(path) as f:
            return await f.read()
    except FileNotFoundError as e:
        raise HostInfoNotFoundError(f"{path} not found", context={"path": str(path)}) from e
    except OSError as e:
        raise HostInfoReadError(
            f"Failed to read {path}: {e}",
            context={"path": str(path), "error": str(e)},
        ) from e


async def get_cpu_info(path: Path) -> str:
    """Return the block describing the first CPU.

    /proc/cpuinfo repeats one paragraph per logical CPU; the first one is
    representative.  The block includes its terminating blank line.  If
    there is no blank line the whole text is returned.
    """
    text = await read_file_contents(path)
    end = text.find("\n\n")
    if end == -1:
        return text
    return text[: end + 2]


def find_anchored_value(text: str, label: str) -> str | None:
    """Return the value of the first `label : value` line, or None.

    The label must start the line; whitespace around the colon is ignored.
    """
    if not label:
        return None
    match = re.search(rf"^{re.escape(label)}[ \t]*:[ \t]*(.*)$", text, re.MULTILINE)
    if match is None:
        return None
    return match.group(1).strip()


def get_cpu_flags(cpuinfo: str) -> set[str]:
    """Return the feature flags of a cpuinfo block (empty if there is no flags line)."""
    value = find_anchored_value(cpuinfo, _FLAGS_LABEL)
    if not value:
        return set()
    return set(value.split())


def parse_cpu_details(cpuinfo: str) -> tuple[str, str]:
    """Extract (vendor_id, model name) from a cpuinfo block.

    Raises:
        HostInfoParseError: Either label is missing
    """
    vendor = find_anchored_value(cpuinfo, _VENDOR_LABEL)
    if not vendor:
        raise HostInfoParseError("Cannot find CPU vendor_id", context={"label": _VENDOR_LABEL})

    model = find_anchored_value(cpuinfo, _MODEL_LABEL)
    if not model:
        raise HostInfoParseError("Cannot find CPU model name", context={"label": _MODEL_LABEL})

    return vendor, model


async def get_cpu_details(settings: Settings) -> tuple[str, str]:
    """Return (vendor_id, model name) of the host CPU."""
    cpuinfo = await get_cpu_info(settings.proc_cpuinfo)
    return parse_cpu_details(cpuinfo)


async def get_kernel_version(settings: Settings) -> str:
    """Return the running kernel release from /proc/version.

    Expected format: "Linux version 6.8.0-45-generic (buildd@...) ..."

    Raises:
        HostInfoParseError: Contents do not follow that format
    """
    contents = await read_file_contents(settings.proc_version)
    fields = contents.split()
    if len(fields) < 3 or fields[:2] != ["Linux", "version"]:
        raise HostInfoParseError(
            f"Unexpected contents in {settings.proc_version}",
            context={"path": str(settings.proc_version)},
        )
    return fields[2]


def _parse_os_release(contents: str) -> tuple[str | None, str | None]:
    values: dict[str, str] = {}
    for line in contents.splitlines():
        key, sep, value = line.strip().partition("=")
        if sep:
            values[key] = value.strip().strip("\"'")
    return values.get("NAME"), values.get("VERSION_ID")


async def get_distro_details(settings: Settings) -> tuple[str, str]:
    """Return (NAME, VERSION_ID) of the host distribution.

    Reads /etc/os-release and falls back to /usr/lib/os-release when the
    former is missing or incomplete.

    Raises:
        HostInfoParseError: Neither file provides both fields
    """
    for path in (settings.os_release, settings.os_release_fallback):
        try:
            contents = await read_file_contents(path)
        except HostInfoNotFoundError:
            logger.debug("os-release file missing", extra={"path": str(path)})
            continue

        name, version = _parse_os_release(contents)
        if name and version:
            return name, version

    raise HostInfoParseError(
        "Cannot determine distribution name and version",
        context={"paths": [str(settings.os_release), str(settings.os_release_fallback)]},
    )


async def get_host_details(settings: Settings) -> HostDetails:
    """Collect CPU, kernel and distribution details.

    CPU details are required; kernel and distribution are reported as None
    when they cannot be determined.
    """
    cpuinfo = await get_cpu_info(settings.proc_cpuinfo)
    vendor, model = parse_cpu_details(cpuinfo)
    details = HostDetails(cpu_vendor=vendor, cpu_model=model, cpu_flags=sorted(get_cpu_flags(cpuinfo)))

    try:
        details.kernel_version = await get_kernel_version(settings)
    except (HostInfoNotFoundError, HostInfoParseError) as e:
        logger.warning("Kernel version unavailable", extra={"error": e.message})

    try:
        details.distro_name, details.distro_version = await get_distro_details(settings)
    except HostInfoParseError as e:
        logger.warning("Distribution details unavailable", extra={"error": e.message})

    return details
