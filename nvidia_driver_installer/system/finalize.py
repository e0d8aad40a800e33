"""Final cleanup and operator instructions"""

import glob
import os
import shutil

from ..config import InstallerConfig
from ..utils.logging import log_info, log_step, log_success, log_warn
from ..utils.system import is_root, run_command
from .postinstall import XORG_CONF_NAME

# Chromium/Electron GPU shader caches go stale across driver versions
_ELECTRON_CACHE_GLOBS: tuple[str, ...] = (
    ".config/*/GPUCache",
    ".var/app/*/config/*/GPUCache",
)


def clear_electron_caches(home: str) -> list[str]:
    """Delete cached renderer data of Electron apps under ``home``."""
    removed: list[str] = []
    for pattern in _ELECTRON_CACHE_GLOBS:
        for path in sorted(glob.glob(os.path.join(home, pattern))):
            if os.path.isdir(path) and not os.path.islink(path):
                shutil.rmtree(path, ignore_errors=True)
                removed.append(path)
    if removed:
        log_info(f"Cleared {len(removed)} Electron GPU cache(s)")
    return removed


def update_flatpak_runtime(runner=run_command) -> None:
    """Pull the matching NVIDIA GL runtime extension for user flatpaks."""
    if not shutil.which("flatpak"):
        return
    proc = runner(["flatpak", "update", "--user", "--noninteractive"], check=False)
    if proc is None or proc.returncode != 0:
        log_warn("flatpak update failed; run 'flatpak update --user' manually")


def show_next_steps(config: InstallerConfig) -> None:
    xorg_conf = os.path.join("/etc/X11/xorg.conf.d", XORG_CONF_NAME)
    print("\n" + "=" * 70)
    print("                       Installation Summary")
    print("=" * 70)
    print("\nNext Steps:")
    print("1. Reboot your system for the new driver to load:")
    print("   sudo reboot")
    print("\n2. Optimus (hybrid graphics) laptops:")
    print(f"   - Edit {xorg_conf}")
    print('   - Set "PrimaryGPU" to "no" to keep the integrated GPU as primary')
    print("=" * 70)


def finalize(config: InstallerConfig, runner=run_command) -> None:
    log_step("Finishing up...")
    if not is_root():
        clear_electron_caches(config.home)
        update_flatpak_runtime(runner)
    runner(["sync"], check=False)
    log_success("Installation completed successfully!")
    show_next_steps(config)
