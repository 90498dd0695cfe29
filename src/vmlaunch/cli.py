"""Command-line interface for vmlaunch.

Usage:
    vmlaunch check                  # Can this host run KVM guests?
    vmlaunch info --json            # CPU, kernel and distribution details
    vmlaunch cmdline vm.json        # Print the QEMU command for a config
    vmlaunch run vm.json            # Launch QEMU and wait for it to exit
"""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
import sys
from pathlib import Path
from typing import NoReturn

import click
from pydantic import ValidationError

from vmlaunch import __version__
from vmlaunch._logging import configure_logging
from vmlaunch.config import Config, load_config
from vmlaunch.constants import DEFAULT_QEMU_BINARY
from vmlaunch.exceptions import (
    ConfigValidationError,
    CpuFeatureMissingError,
    HostCapabilityError,
    HostProbeError,
    KernelModuleMissingError,
    KernelModuleParamError,
    QemuLaunchError,
    UnsupportedCpuError,
)
from vmlaunch.host_info import HostDetails, get_host_details
from vmlaunch.launcher import launch_qemu
from vmlaunch.settings import Settings
from vmlaunch.system_probes import check_host_is_vm_capable

# Exit codes following Unix conventions
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CLI_ERROR = 2
EXIT_LAUNCH_ERROR = 125  # Matches `docker run` / `env` when the command itself fails


def format_error(title: str, message: str, suggestions: list[str] | None = None) -> str:
    """Format an error message following What → Why → Fix pattern.

    Args:
        title: Short error title
        message: Detailed explanation
        suggestions: Optional list of suggestions to fix the issue

    Returns:
        Formatted error string
    """
    lines = [
        click.style(f"Error: {title}", fg="red", bold=True),
        "",
        f"  {message}",
    ]

    if suggestions:
        lines.extend(["", "  Suggestions:"])
        lines.extend(f"    • {suggestion}" for suggestion in suggestions)

    return "\n".join(lines)


def format_details_json(details: HostDetails) -> str:
    """Format host details as JSON."""
    return json.dumps(details.model_dump(), indent=2)


def format_details_text(details: HostDetails) -> str:
    """Format host details for humans."""
    unknown = click.style("unknown", dim=True)
    distro = unknown
    if details.distro_name:
        distro = f"{details.distro_name} {details.distro_version}"
    lines = [
        f"CPU vendor:     {details.cpu_vendor}",
        f"CPU model:      {details.cpu_model}",
        f"CPU flags:      {len(details.cpu_flags)}",
        f"Kernel version: {details.kernel_version or unknown}",
        f"Distribution:   {distro}",
    ]
    return "\n".join(lines)


def _suggestions_for(error: HostCapabilityError) -> list[str]:
    if isinstance(error, KernelModuleParamError):
        reload = f"modprobe -r {error.module} && modprobe {error.module} {error.parameter}={error.expected}"
        return [f"Reload the module: {reload}"]
    if isinstance(error, KernelModuleMissingError):
        return [f"Load the module: modprobe {error.module}"]
    if isinstance(error, CpuFeatureMissingError | UnsupportedCpuError):
        return ["Enable VT-x/AMD-V in the firmware setup", "Use an Intel or AMD x86-64 host"]
    return ["Run on a Linux host with KVM support"]


def read_config(path: Path) -> Config:
    """Load a JSON machine config, turning failures into usage errors."""
    try:
        return load_config(json.loads(path.read_text()))
    except json.JSONDecodeError as exc:
        raise click.UsageError(f"{path} is not valid JSON: {exc}") from exc
    except ValidationError as exc:
        raise click.UsageError(f"Invalid config {path}:\n{exc}") from exc
    except (TypeError, ValueError) as exc:
        # Top-level JSON value is not an object
        raise click.UsageError(f"Invalid config {path}: expected a JSON object") from exc


def _check_config(config: Config) -> None:
    try:
        config.check()
    except ConfigValidationError as e:
        click.echo(
            format_error(
                "Invalid configuration",
                e.message,
                ["Fix the listed items or drop --strict to skip them"],
            ),
            err=True,
        )
        sys.exit(EXIT_CLI_ERROR)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("-v", "--verbose", is_flag=True, help="Log progress to stderr")
@click.option("-q", "--quiet", is_flag=True, help="Only log errors")
@click.version_option(__version__, "-V", "--version", prog_name="vmlaunch")
def main(verbose: bool, quiet: bool) -> None:
    """Compile QEMU command lines, launch QEMU and probe KVM hosts.

    Paths to host information files and the QEMU binary can be overridden
    with VMLAUNCH_* environment variables (e.g. VMLAUNCH_QEMU_PATH).
    """
    configure_logging(level=logging.DEBUG if verbose else None, quiet=quiet)


@main.command()
def check() -> NoReturn:
    """Check that this host can run KVM accelerated guests."""
    try:
        asyncio.run(check_host_is_vm_capable(Settings()))
    except HostCapabilityError as e:
        click.echo(format_error("Host is not KVM capable", e.message, _suggestions_for(e)), err=True)
        sys.exit(EXIT_FAILURE)
    except HostProbeError as e:
        click.echo(
            format_error(
                "Cannot inspect host",
                e.message,
                ["Run on a Linux host with /proc and /sys mounted"],
            ),
            err=True,
        )
        sys.exit(EXIT_FAILURE)

    click.echo(click.style("✓ Host is capable of running KVM guests", fg="green"))
    sys.exit(EXIT_SUCCESS)


@main.command()
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def info(json_output: bool) -> NoReturn:
    """Show CPU, kernel and distribution details."""
    try:
        details = asyncio.run(get_host_details(Settings()))
    except HostProbeError as e:
        click.echo(format_error("Cannot inspect host", e.message), err=True)
        sys.exit(EXIT_FAILURE)

    click.echo(format_details_json(details) if json_output else format_details_text(details))
    sys.exit(EXIT_SUCCESS)


@main.command()
@click.argument("config_path", metavar="CONFIG", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--strict", is_flag=True, help="Fail on invalid items instead of leaving them out")
def cmdline(config_path: Path, strict: bool) -> None:
    """Print the QEMU command line for a JSON machine CONFIG.

    \b
    Example config:
      {"name": "vm-1", "memory": {"size": "1G"},
       "devices": [{"kind": "block", "id": "hd0", "file": "/images/vm-1.qcow2"}]}
    """
    config = read_config(config_path)
    if strict:
        _check_config(config)

    binary = config.path or Settings().qemu_path or DEFAULT_QEMU_BINARY
    click.echo(shlex.join([binary, *config.compile()]))


@main.command()
@click.argument("config_path", metavar="CONFIG", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--strict", is_flag=True, help="Fail on invalid items instead of leaving them out")
def run(config_path: Path, strict: bool) -> NoReturn:
    """Launch QEMU for a JSON machine CONFIG and wait for it to exit."""
    config = read_config(config_path)
    if strict:
        _check_config(config)
    if not config.path:
        config.path = Settings().qemu_path

    try:
        asyncio.run(launch_qemu(config))
    except QemuLaunchError as e:
        click.echo(
            format_error(
                "QEMU failed",
                e.message,
                [
                    "Check that QEMU is installed and in PATH, or set VMLAUNCH_QEMU_PATH",
                    "Run `vmlaunch check` to verify KVM support",
                ],
            ),
            err=True,
        )
        if e.stderr:
            click.echo(e.stderr.rstrip(), err=True)
        sys.exit(EXIT_LAUNCH_ERROR)

    sys.exit(EXIT_SUCCESS)


if __name__ == "__main__":
    main()
