"""Runtime configuration from environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from vmlaunch import constants


class Settings(BaseSettings):
    """Runtime configuration from environment variables.

    All settings can be overridden via environment variables with VMLAUNCH_ prefix.
    Example: VMLAUNCH_SYS_MODULE_DIR=/tmp/fake-sys/module

    Instances are passed explicitly to the host probes, so tests point them
    at fixture files without touching process-wide state.
    """

    model_config = SettingsConfigDict(
        env_prefix="VMLAUNCH_",
        extra="ignore",
    )

    # QEMU ("" = DEFAULT_QEMU_BINARY looked up in PATH)
    qemu_path: str = ""

    # Host information sources
    proc_cpuinfo: Path = constants.PROC_CPUINFO
    proc_version: Path = constants.PROC_VERSION
    os_release: Path = constants.OS_RELEASE
    os_release_fallback: Path = constants.OS_RELEASE_FALLBACK
    sys_module_dir: Path = constants.SYS_MODULE_DIR
    modinfo_cmd: str = constants.MODINFO_CMD
