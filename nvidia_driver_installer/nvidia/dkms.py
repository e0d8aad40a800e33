"""DKMS registration and build of the NVIDIA kernel module"""

from ..utils.errors import BuildFailed
from ..utils.logging import log_info, log_step, log_success
from ..utils.system import ModuleBuilder
from .artifacts import BuildResult, InstallResult
from .installer import MODULE_NAME


def register_module(result: InstallResult, kernel: str, builder: ModuleBuilder) -> BuildResult:
    """Register the installed module source with DKMS and build it.

    Raises:
        BuildFailed: dkms add/install failed, or the module is not reported
            as installed for ``kernel`` afterwards.
    """
    log_step(f"Building {MODULE_NAME} {result.module_version} for kernel {kernel}...")
    version = result.module_version

    if builder.is_registered(MODULE_NAME, version):
        log_info(f"{MODULE_NAME}/{version} already registered with DKMS")
    else:
        status = builder.add(MODULE_NAME, version)
        if status != 0:
            raise BuildFailed(status, f"dkms add {MODULE_NAME}/{version} failed with status {status}")

    status = builder.build(MODULE_NAME, version, kernel)
    if status != 0:
        raise BuildFailed(status)

    report = builder.status(MODULE_NAME, version, kernel)
    if "installed" not in report:
        raise BuildFailed(1, f"DKMS does not report {MODULE_NAME}/{version} installed for {kernel}")

    log_success(f"Kernel module {MODULE_NAME}/{version} built for {kernel}")
    return BuildResult(install=result, kernel_release=kernel)
