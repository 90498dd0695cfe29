"""Tests for host OS detection and ProcessHandle.

Real child processes; no mocks.
"""

import asyncio
import sys

import psutil

from vmlaunch.platform_utils import HostOS, ProcessHandle, detect_host_os


class TestDetectHostOs:
    """Tests for detect_host_os()."""

    def test_matches_psutil(self) -> None:
        expected = HostOS.LINUX if psutil.LINUX else HostOS.OTHER
        assert detect_host_os() == expected

    def test_cached(self) -> None:
        assert detect_host_os() is detect_host_os()


class TestProcessHandle:
    """Tests for ProcessHandle."""

    async def test_collect_stderr(self) -> None:
        proc = ProcessHandle(
            await asyncio.create_subprocess_exec(
                sys.executable,
                "-c",
                "import sys; sys.stdout.write('ignored'); sys.stderr.write('err'); sys.exit(4)",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        )
        assert await proc.collect_stderr() == (4, b"err")

    async def test_stderr_not_piped(self) -> None:
        proc = ProcessHandle(
            await asyncio.create_subprocess_exec(sys.executable, "-c", "pass", stderr=asyncio.subprocess.DEVNULL)
        )
        assert await proc.collect_stderr() == (0, b"")

    async def test_is_running(self) -> None:
        async_proc = await asyncio.create_subprocess_exec(
            sys.executable, "-c", "import time; time.sleep(30)", stderr=asyncio.subprocess.PIPE
        )
        proc = ProcessHandle(async_proc)
        try:
            assert proc.pid == async_proc.pid
            assert await proc.is_running() is True
        finally:
            async_proc.kill()
            status, _ = await proc.collect_stderr()

        assert status < 0
        assert await proc.is_running() is False
