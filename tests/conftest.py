"""Shared pytest fixtures for vmlaunch tests.

Host information files are real files under tmp_path; Settings points the
probes at them.  `modinfo` is replaced by `true` / `false`.
"""

from collections.abc import Callable
from pathlib import Path

import pytest

from tests.host_fixtures import INTEL_CPUINFO
from vmlaunch.settings import Settings

# ============================================================================
# Host information fixtures
# ============================================================================


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings whose every host path lives under tmp_path (files not created)."""
    return Settings(
        qemu_path="",
        proc_cpuinfo=tmp_path / "cpuinfo",
        proc_version=tmp_path / "version",
        os_release=tmp_path / "etc-os-release",
        os_release_fallback=tmp_path / "usr-lib-os-release",
        sys_module_dir=tmp_path / "sys" / "module",
        modinfo_cmd="false",
    )


@pytest.fixture
def write_cpuinfo(settings: Settings) -> Callable[[str], Path]:
    """Write cpuinfo fixture contents."""

    def _write(contents: str) -> Path:
        settings.proc_cpuinfo.write_text(contents)
        return settings.proc_cpuinfo

    return _write


@pytest.fixture
def add_kernel_module(settings: Settings) -> Callable[..., Path]:
    """Create /sys/module/<name>[/parameters/<param>] under tmp_path."""

    def _add(name: str, **parameters: str) -> Path:
        module_dir = settings.sys_module_dir / name
        module_dir.mkdir(parents=True, exist_ok=True)
        if parameters:
            params_dir = module_dir / "parameters"
            params_dir.mkdir(exist_ok=True)
            for param, value in parameters.items():
                (params_dir / param).write_text(f"{value}\n")
        return module_dir

    return _add


@pytest.fixture
def intel_host(write_cpuinfo, add_kernel_module) -> None:
    """A fully capable Intel host."""
    write_cpuinfo(INTEL_CPUINFO)
    add_kernel_module("kvm")
    add_kernel_module("kvm_intel", nested="Y", unrestricted_guest="Y")
