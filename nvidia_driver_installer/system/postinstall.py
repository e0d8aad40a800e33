"""Post-install system configuration

Every step checks current state first, so running the configurator again
for the same driver version leaves the system unchanged.
"""

import glob
import os
import re

from ..config import InstallerConfig, FIXUP_SERVICE, NVIDIA_PREFIX
from ..nvidia.artifacts import BuildResult
from ..utils.logging import log_info, log_step, log_warn, log_success
from ..utils.system import SystemTools

ENVIRONMENT_DEFAULTS = (
    "LIBVA_DRIVER_NAME=nvidia\n"
    "NVD_BACKEND=direct\n"
)

# Clear Linux release that first ships GDM with working Wayland on NVIDIA
MIN_OS_VERSION_FOR_WAYLAND = 40000

SESSION_DEFAULTS = (
    "[User]\n"
    "Session=gnome\n"
    "SystemAccount=false\n"
)

# GDM disables Wayland when the NVIDIA suspend helpers are not in /usr/bin;
# with the /opt/nvidia prefix they never are.
_GDM_COMMENT_OUT = re.compile(r'^\s*TEST\{0711\}!="/usr/bin/nvidia-sleep\.sh"')
_GDM_REDIRECT = re.compile(
    r'^(\s*ENV\{NVIDIA_PRESERVE_VIDEO_MEMORY_ALLOCATIONS\}!="1",\s*GOTO=)"gdm_disable_wayland"'
)
_GDM_REDIRECT_TARGET = r'\1"gdm_nvidia_end"'

# Helper library no longer shipped from this major on
HELPER_LIBRARY = "libnvidia-vulkan-producer.so"
HELPER_DROPPED_MAJOR = 545

GBM_ALLOCATOR = "libnvidia-allocator.so.1"
GBM_BACKEND = "nvidia-drm_gbm.so"

XORG_CONF_NAME = "nvidia-files-opt.conf"
INSTALLER_XORG_CONF_NAME = "nvidia-drm-outputclass.conf"

XORG_OUTPUT_CLASS = f"""\
# NVIDIA driver installed under {NVIDIA_PREFIX}.
#
# The NVIDIA GPU drives the display by default.  On Optimus (hybrid)
# laptops that should render on the integrated GPU instead, set
# "PrimaryGPU" to "no" below and uncomment the modesetting section.

Section "OutputClass"
    Identifier "nvidia"
    MatchDriver "nvidia-drm"
    Driver "nvidia"
    Option "AllowEmptyInitialConfiguration"
    Option "PrimaryGPU" "yes"
    ModulePath "{NVIDIA_PREFIX}/lib64/xorg/modules"
    ModulePath "/usr/lib64/xorg/modules"
EndSection

#Section "OutputClass"
#    Identifier "intel"
#    MatchDriver "i915"
#    Driver "modesetting"
#EndSection
"""


def rewrite_gdm_rules(text: str) -> str:
    """Comment out GDM's NVIDIA suspend-helper test and keep Wayland enabled."""
    lines = []
    for line in text.splitlines(keepends=True):
        if _GDM_COMMENT_OUT.match(line):
            line = "#" + line
        else:
            line = _GDM_REDIRECT.sub(_GDM_REDIRECT_TARGET, line)
        lines.append(line)
    return "".join(lines)


def _write_if_changed(tools: SystemTools, path: str, content: str) -> bool:
    if os.path.isfile(path):
        with open(path, "r") as fh:
            if fh.read() == content:
                return False
    tools.fs.write_text(path, content)
    log_info(f"Wrote {path}")
    return True


def write_environment_defaults(config: InstallerConfig, tools: SystemTools) -> None:
    _write_if_changed(tools, config.environment_file, ENVIRONMENT_DEFAULTS)


def seed_session_default(config: InstallerConfig, os_info: dict, tools: SystemTools) -> bool:
    """Default the user's login session to GNOME on Wayland.

    Only an empty (or missing) AccountsService file is seeded; a session
    the user picked is left alone.
    """
    try:
        os_version = int(os_info.get("VERSION_ID", "0"))
    except ValueError:
        os_version = 0
    if os_version < MIN_OS_VERSION_FOR_WAYLAND:
        return False

    path = config.session_file
    if os.path.isfile(path) and os.path.getsize(path) > 0:
        return False
    tools.fs.write_text(path, SESSION_DEFAULTS, mode=0o600)
    log_info(f"Seeded Wayland session default for {config.user}")
    return True


def update_udev_rules(config: InstallerConfig, tools: SystemTools) -> None:
    source = config.udev_rules_source
    if not os.path.isfile(source):
        source = config.udev_rules_override
        if not os.path.isfile(source):
            log_warn("GDM udev rules not found; skipping")
            return
    with open(source, "r") as fh:
        rewritten = rewrite_gdm_rules(fh.read())
    _write_if_changed(tools, config.udev_rules_override, rewritten)


def fix_helper_library(build: BuildResult, config: InstallerConfig, tools: SystemTools) -> None:
    """Keep the Vulkan producer helper in sync with the driver generation."""
    major = build.install.major
    if major is None:
        return
    pattern = os.path.join(config.system_lib_dir, f"{HELPER_LIBRARY}*")
    if major >= HELPER_DROPPED_MAJOR:
        for stale in sorted(glob.glob(pattern)):
            tools.fs.remove(stale)
            log_info(f"Removed stale {stale}")
        return

    version = build.install.module_version
    src = os.path.join(config.nvidia_lib_dir, f"{HELPER_LIBRARY}.{version}")
    if not os.path.isfile(src):
        log_warn(f"{src} not found; skipping")
        return
    dest = os.path.join(config.system_lib_dir, os.path.basename(src))
    tools.fs.copy(src, dest)
    link = os.path.join(config.system_lib_dir, HELPER_LIBRARY)
    if not os.path.lexists(link):
        tools.fs.symlink(os.path.basename(dest), link)
    log_info(f"Installed {dest}")


def link_gbm_backend(config: InstallerConfig, tools: SystemTools) -> None:
    allocator = os.path.join(config.nvidia_lib_dir, GBM_ALLOCATOR)
    link = os.path.join(config.nvidia_lib_dir, "gbm", GBM_BACKEND)
    if os.path.exists(allocator) and not os.path.lexists(link):
        tools.fs.symlink(f"../{GBM_ALLOCATOR}", link)
        log_info(f"Linked {link}")


def remove_stale_artifacts(config: InstallerConfig, tools: SystemTools) -> None:
    stale = [
        os.path.join(config.xorg_conf_dir, INSTALLER_XORG_CONF_NAME),
        config.staging_dir,
    ]
    for path in stale:
        if tools.fs.remove(path):
            log_info(f"Removed {path}")


def refresh_library_cache(runner) -> None:
    proc = runner(["ldconfig"], check=False, sudo=True)
    if proc is None or proc.returncode != 0:
        log_warn("ldconfig failed; run 'sudo ldconfig' before rebooting")


def configure_system(build: BuildResult, config: InstallerConfig, os_info: dict,
                     tools: SystemTools) -> None:
    """Apply all post-install configuration for the freshly built driver."""
    log_step("Configuring system...")

    write_environment_defaults(config, tools)
    seed_session_default(config, os_info, tools)
    update_udev_rules(config, tools)
    fix_helper_library(build, config, tools)
    link_gbm_backend(config, tools)
    remove_stale_artifacts(config, tools)
    refresh_library_cache(tools.runner)
    _write_if_changed(tools, os.path.join(config.xorg_conf_dir, XORG_CONF_NAME), XORG_OUTPUT_CLASS)

    tools.services.daemon_reload()
    tools.services.start(FIXUP_SERVICE)
    log_success("System configuration updated")
