"""Kernel module compatibility patches

Some 550-series releases need source fixes before their kernel module
builds against current kernels and compilers.  Patch files are supplied by
the operator in the patch directory, staged before the vendor installer
runs, and applied to the installed module source tree afterwards.
"""

import os

from ..config import InstallerConfig
from ..utils.logging import log_info, log_step, log_warn, log_success
from ..utils.system import PrivilegedFS, run_command
from .artifacts import InstallPlan, InstallResult, PatchFlags

# Patch flag -> patch filename in the patch directory
PATCH_FILES: dict[str, str] = {
    "kernel_6_10": "nvidia-550-kernel-6.10.patch",
    "gcc_14": "nvidia-550-gcc-14.patch",
}


def _patch_names(flags: PatchFlags) -> list[str]:
    return [PATCH_FILES[name] for name in flags.enabled()]


def clear_staged_patches(config: InstallerConfig, fs: PrivilegedFS) -> None:
    """Drop patch files left behind by an earlier, interrupted run."""
    for name in PATCH_FILES.values():
        fs.remove(os.path.join(config.staging_dir, name))


def stage_patches(plan: InstallPlan, config: InstallerConfig, fs: PrivilegedFS) -> list[str]:
    """Copy the patches this plan needs into the staging directory.

    Returns:
        Paths of the staged patch files.
    """
    staged: list[str] = []
    for name in _patch_names(plan.patches):
        src = os.path.join(config.patch_dir, name)
        if not os.path.isfile(src):
            log_warn(f"Patch {name} is required but missing from {config.patch_dir}")
            continue
        dest = os.path.join(config.staging_dir, name)
        fs.copy(src, dest)
        staged.append(dest)
        log_info(f"Staged {name}")
    return staged


def apply_compat_patches(result: InstallResult, config: InstallerConfig,
                         runner=run_command, fs: PrivilegedFS = None) -> list[str]:
    """Apply staged patches to the installed module source tree.

    A set flag without a staged file is skipped with a warning.  Hunks that
    do not apply are left to the module build to surface.

    Returns:
        Names of the patches that applied cleanly.
    """
    fs = fs or PrivilegedFS(runner)
    names = _patch_names(result.plan.patches)
    if not names:
        return []

    log_step("Applying compatibility patches...")
    applied: list[str] = []
    for name in names:
        staged = os.path.join(config.staging_dir, name)
        if not os.path.isfile(staged):
            log_warn(f"Skipping {name}: not staged")
            continue
        proc = runner(
            ["patch", "-d", result.module_source_dir, "-p1", "--forward",
             "--no-backup-if-mismatch", "-r", "-", "-i", staged],
            check=False, sudo=True,
        )
        if proc is not None and proc.returncode == 0:
            log_success(f"Applied {name}")
            applied.append(name)
        else:
            log_warn(f"{name} did not apply cleanly (already applied?)")
        fs.remove(staged)
    return applied
