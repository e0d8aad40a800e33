"""Installation pipeline

Guard -> Resolver -> Classifier -> Invoker -> Patch Applier -> Registrar
-> Configurator -> Finalizer.  Each stage consumes the previous stage's
record; any InstallerError stops the run before later stages execute.
"""

from typing import Optional

from .config import InstallerConfig
from .nvidia.artifacts import BuildResult
from .nvidia.dkms import register_module
from .nvidia.installer import install_driver
from .nvidia.patches import apply_compat_patches
from .nvidia.sources import resolve_selector
from .nvidia.versions import classify
from .system.checks import run_preliminary_checks
from .system.finalize import finalize
from .system.postinstall import configure_system
from .utils.system import SystemTools, acquire_privileges, kernel_release


def run_install(selector: str, config: InstallerConfig,
                tools: Optional[SystemTools] = None,
                kernel: Optional[str] = None) -> BuildResult:
    """Install the driver ``selector`` names.  Raises InstallerError on failure."""
    tools = tools or SystemTools()
    kernel = kernel or kernel_release()

    os_info = run_preliminary_checks(config, tools.services, kernel)
    artifact = resolve_selector(selector, config, tools.downloader)
    plan = classify(artifact)

    acquire_privileges(tools.runner)

    installed = install_driver(plan, config, tools)
    apply_compat_patches(installed, config, tools.runner, tools.fs)
    built = register_module(installed, kernel, tools.builder)

    configure_system(built, config, os_info, tools)
    finalize(config, tools.runner)
    return built
