"""System checks run before anything is installed"""

import os

from ..config import InstallerConfig
from ..utils.errors import PreconditionError
from ..utils.logging import log_info, log_step
from ..utils.system import ServiceManager, get_os_info

SUPPORTED_OS_ID = "clear-linux-os"
GRAPHICAL_TARGET = "graphical.target"


def run_preliminary_checks(config: InstallerConfig, services: ServiceManager, kernel: str) -> dict:
    """Verify the host can take a driver install.

    Returns:
        Parsed /etc/os-release of the host.

    Raises:
        PreconditionError: on the first failed check.
    """
    log_step("Running preliminary system checks...")

    os_info = _check_os(config)
    _check_fixup_service(config)
    _check_dkms(config)
    _check_kernel_source(config, kernel)
    _check_not_graphical(services)
    return os_info


def _check_os(config: InstallerConfig) -> dict:
    os_info = get_os_info(config.os_release)
    if os_info.get("ID") != SUPPORTED_OS_ID:
        pretty = os_info.get("PRETTY_NAME", "an unknown OS")
        raise PreconditionError(f"This installer supports Clear Linux OS only (detected {pretty})")
    log_info(f"✓ Clear Linux OS {os_info.get('VERSION_ID', '')} detected")
    return os_info


def _check_fixup_service(config: InstallerConfig) -> None:
    if not os.path.isfile(config.fixup_unit_file):
        raise PreconditionError(
            f"{config.fixup_unit_file} is missing; run the pre-install step first"
        )


def _check_dkms(config: InstallerConfig) -> None:
    if not os.path.isfile(config.dkms_binary):
        raise PreconditionError(
            "dkms not found; install the kernel-native-dkms or kernel-lts-dkms bundle"
        )
    log_info("✓ DKMS present")


def _check_kernel_source(config: InstallerConfig, kernel: str) -> None:
    if not os.path.isdir(config.kernel_build_dir(kernel)):
        raise PreconditionError(
            f"No kernel module build tree for {kernel}; "
            "install the matching -dkms bundle and reboot into that kernel"
        )
    log_info(f"✓ Kernel build tree for {kernel} present")


def _check_not_graphical(services: ServiceManager) -> None:
    if services.is_active(GRAPHICAL_TARGET):
        raise PreconditionError(
            "A graphical session is running. Switch to text mode first: "
            "sudo systemctl isolate multi-user.target"
        )
