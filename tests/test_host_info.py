"""Unit tests for host information readers.

Uses real fixture files under tmp_path.
"""

from pathlib import Path

import pytest

from tests.host_fixtures import AMD_CPUINFO, INTEL_CPUINFO
from vmlaunch.exceptions import HostInfoNotFoundError, HostInfoParseError, HostInfoReadError
from vmlaunch.host_info import (
    find_anchored_value,
    get_cpu_details,
    get_cpu_flags,
    get_cpu_info,
    get_distro_details,
    get_host_details,
    get_kernel_version,
    parse_cpu_details,
    read_file_contents,
)
from vmlaunch.settings import Settings

# ============================================================================
# Files
# ============================================================================


class TestReadFileContents:
    """Tests for read_file_contents()."""

    async def test_reads(self, tmp_path: Path) -> None:
        path = tmp_path / "f"
        path.write_text("hello\nworld\n")
        assert await read_file_contents(path) == "hello\nworld\n"

    async def test_missing(self, tmp_path: Path) -> None:
        with pytest.raises(HostInfoNotFoundError) as exc_info:
            await read_file_contents(tmp_path / "missing")
        assert exc_info.value.context["path"] == str(tmp_path / "missing")

    async def test_directory(self, tmp_path: Path) -> None:
        with pytest.raises(HostInfoReadError):
            await read_file_contents(tmp_path)


class TestGetCpuInfo:
    """Tests for get_cpu_info()."""

    async def test_first_block(self, write_cpuinfo, settings: Settings) -> None:
        write_cpuinfo(INTEL_CPUINFO)
        block = await get_cpu_info(settings.proc_cpuinfo)
        assert block.startswith("processor\t: 0\n")
        assert block.endswith("avx\n\n")
        assert "second_block_only" not in block

    async def test_single_block_without_blank_line(self, write_cpuinfo, settings: Settings) -> None:
        write_cpuinfo("vendor_id : x\nflags : a b")
        assert await get_cpu_info(settings.proc_cpuinfo) == "vendor_id : x\nflags : a b"

    async def test_empty(self, write_cpuinfo, settings: Settings) -> None:
        write_cpuinfo("")
        assert await get_cpu_info(settings.proc_cpuinfo) == ""

    async def test_missing(self, settings: Settings) -> None:
        with pytest.raises(HostInfoNotFoundError):
            await get_cpu_info(settings.proc_cpuinfo)


# ============================================================================
# Parsing
# ============================================================================


class TestFindAnchoredValue:
    """Tests for find_anchored_value()."""

    @pytest.mark.parametrize(
        ("text", "label", "expected"),
        [
            ("vendor_id\t: GenuineIntel\n", "vendor_id", "GenuineIntel"),
            ("vendor_id:GenuineIntel", "vendor_id", "GenuineIntel"),
            ("a : 1\nb : 2\nb : 3\n", "b", "2"),
            ("model name\t: Xeon  \n", "model name", "Xeon"),
            ("flags\t\t:\n", "flags", ""),
            ("  vendor_id : indented\n", "vendor_id", None),
            ("xvendor_id : prefixed\n", "vendor_id", None),
            ("vendor_id\nGenuineIntel\n", "vendor_id", None),
            ("vendor_id : x\n", "", None),
            ("", "vendor_id", None),
        ],
    )
    def test_lookup(self, text: str, label: str, expected: str | None) -> None:
        assert find_anchored_value(text, label) == expected

    def test_regex_characters_in_label(self) -> None:
        assert find_anchored_value("a.b : 1\naxb : 2\n", "a.b") == "1"
        assert find_anchored_value("axb : 2\n", "a.b") is None


class TestGetCpuFlags:
    """Tests for get_cpu_flags()."""

    def test_flags(self) -> None:
        assert get_cpu_flags("flags\t\t: fpu lm vmx\n") == {"fpu", "lm", "vmx"}

    @pytest.mark.parametrize("text", ["", "flags", "flags:", "flags :   \n", "vendor_id : x\n"])
    def test_no_flags(self, text: str) -> None:
        assert get_cpu_flags(text) == set()


class TestCpuDetails:
    """Tests for parse_cpu_details() / get_cpu_details()."""

    def test_parse(self) -> None:
        assert parse_cpu_details(AMD_CPUINFO) == ("AuthenticAMD", "AMD EPYC 7B13 64-Core Processor")

    def test_missing_vendor(self) -> None:
        with pytest.raises(HostInfoParseError, match="vendor_id"):
            parse_cpu_details("model name : Xeon\n")

    def test_missing_model(self) -> None:
        with pytest.raises(HostInfoParseError, match="model name"):
            parse_cpu_details("vendor_id : GenuineIntel\n")

    async def test_from_file(self, write_cpuinfo, settings: Settings) -> None:
        write_cpuinfo(INTEL_CPUINFO)
        assert await get_cpu_details(settings) == ("GenuineIntel", "Intel(R) Core(TM) i7-8650U CPU @ 1.90GHz")


# ============================================================================
# Kernel and distribution
# ============================================================================


class TestKernelVersion:
    """Tests for get_kernel_version()."""

    async def test_version(self, settings: Settings) -> None:
        settings.proc_version.write_text("Linux version 1.2.3-4.5.x86_64 blah\n")
        assert await get_kernel_version(settings) == "1.2.3-4.5.x86_64"

    @pytest.mark.parametrize("contents", ["", "Linux", "Linux version", "FreeBSD version 14.0"])
    async def test_malformed(self, settings: Settings, contents: str) -> None:
        settings.proc_version.write_text(contents)
        with pytest.raises(HostInfoParseError):
            await get_kernel_version(settings)

    async def test_missing(self, settings: Settings) -> None:
        with pytest.raises(HostInfoNotFoundError):
            await get_kernel_version(settings)


class TestDistroDetails:
    """Tests for get_distro_details()."""

    async def test_primary(self, settings: Settings) -> None:
        settings.os_release.write_text('NAME="Ubuntu"\nVERSION_ID="24.04"\nID=ubuntu\n')
        assert await get_distro_details(settings) == ("Ubuntu", "24.04")

    async def test_fallback_when_primary_missing(self, settings: Settings) -> None:
        settings.os_release_fallback.write_text("NAME=Fedora\nVERSION_ID=40\n")
        assert await get_distro_details(settings) == ("Fedora", "40")

    async def test_fallback_when_primary_incomplete(self, settings: Settings) -> None:
        settings.os_release.write_text("NAME=Arch\n")
        settings.os_release_fallback.write_text("NAME=Debian\nVERSION_ID='12'\n")
        assert await get_distro_details(settings) == ("Debian", "12")

    async def test_neither(self, settings: Settings) -> None:
        settings.os_release.write_text("ID=rolling\n")
        with pytest.raises(HostInfoParseError):
            await get_distro_details(settings)


class TestHostDetails:
    """Tests for get_host_details()."""

    async def test_all(self, write_cpuinfo, settings: Settings) -> None:
        write_cpuinfo(INTEL_CPUINFO)
        settings.proc_version.write_text("Linux version 6.8.0-45-generic (buildd@lcy02) #45\n")
        settings.os_release.write_text("NAME=Ubuntu\nVERSION_ID=24.04\n")

        details = await get_host_details(settings)
        assert details.cpu_vendor == "GenuineIntel"
        assert "vmx" in details.cpu_flags
        assert details.cpu_flags == sorted(details.cpu_flags)
        assert details.kernel_version == "6.8.0-45-generic"
        assert (details.distro_name, details.distro_version) == ("Ubuntu", "24.04")

    async def test_optional_parts_missing(self, write_cpuinfo, settings: Settings) -> None:
        write_cpuinfo(AMD_CPUINFO)
        details = await get_host_details(settings)
        assert details.cpu_vendor == "AuthenticAMD"
        assert details.kernel_version is None
        assert details.distro_name is None

    async def test_cpuinfo_required(self, settings: Settings) -> None:
        with pytest.raises(HostInfoNotFoundError):
            await get_host_details(settings)
