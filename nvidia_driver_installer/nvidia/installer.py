"""Vendor installer invocation

Run-files and Vulkan beta files are executed directly.  Redistributable
archives are unpacked and rearranged into the layout the self-extracting
run-file produces, then their bundled nvidia-installer is run with the
same flags.
"""

import glob
import os
import re
import shutil
import stat
import tempfile
from typing import Optional

from ..config import InstallerConfig, NVIDIA_PREFIX
from ..utils.errors import InstallerFailed
from ..utils.logging import log_info, log_step, log_warn, log_success
from ..utils.system import SystemTools
from .artifacts import ArtifactKind, DriverVersion, InstallPlan, InstallResult, ResolvedArtifact
from .patches import clear_staged_patches, stage_patches

MODULE_NAME = "nvidia"

# Relocates user-space components under /opt/nvidia and keeps the
# installer from touching kernel modules, modprobe or distro hooks.
INSTALLER_FLAGS: list[str] = [
    f"--utility-prefix={NVIDIA_PREFIX}",
    f"--opengl-prefix={NVIDIA_PREFIX}",
    f"--compat32-prefix={NVIDIA_PREFIX}",
    "--compat32-libdir=lib32",
    f"--x-prefix={NVIDIA_PREFIX}",
    f"--x-module-path={NVIDIA_PREFIX}/lib64/xorg/modules",
    f"--x-library-path={NVIDIA_PREFIX}/lib64",
    "--x-sysconfig-path=/etc/X11/xorg.conf.d",
    f"--documentation-prefix={NVIDIA_PREFIX}",
    "--application-profile-path=/etc/nvidia/nvidia-application-profiles-rc.d",
    "--glvnd-egl-config-path=/etc/glvnd/egl_vendor.d",
    "--egl-external-platform-config-path=/etc/egl/egl_external_platform.d",
    "--no-precompiled-interface",
    "--no-nvidia-modprobe",
    "--no-distro-scripts",
    "--force-libglx-indirect",
    "--no-kernel-modules",
    "--no-questions",
    "--ui=none",
    "--silent",
]

# Written by the installer via --x-sysconfig-path; replaced by our own config
_INSTALLER_XORG_CONF = "nvidia-drm-outputclass.conf"

_MODULE_SRC_PATTERN = re.compile(rf'^{MODULE_NAME}-(\d+\.\d+(?:\.\d+)?)$')


def installed_module_versions(config: InstallerConfig) -> list[str]:
    """Versions with a module source tree under /usr/src, oldest first."""
    versions: list[DriverVersion] = []
    for path in glob.glob(os.path.join(config.module_src_root, f"{MODULE_NAME}-*")):
        match = _MODULE_SRC_PATTERN.match(os.path.basename(path))
        if match and os.path.isdir(path):
            versions.append(DriverVersion.parse(match.group(1)))
    return [str(v) for v in sorted(versions)]


def module_source_dir(config: InstallerConfig, version: str) -> str:
    return os.path.join(config.module_src_root, f"{MODULE_NAME}-{version}")


def clear_previous_install(config: InstallerConfig, tools: SystemTools) -> None:
    """Unregister and delete module sources from earlier installs."""
    log_info("Clearing previous installation state...")
    for version in installed_module_versions(config):
        log_info(f"Removing {MODULE_NAME}/{version} from DKMS")
        tools.builder.remove(MODULE_NAME, version)
        tools.fs.remove(module_source_dir(config, version))
    tools.fs.remove(os.path.join(config.xorg_conf_dir, _INSTALLER_XORG_CONF))
    clear_staged_patches(config, tools.fs)


def _run_file(artifact: ResolvedArtifact, tools: SystemTools) -> int:
    log_info(f"Running {os.path.basename(artifact.path)}")
    return tools.installer.run(["sh", artifact.path, *INSTALLER_FLAGS])


def _move_into(src: str, dest: str) -> None:
    if os.path.lexists(dest):
        if os.path.isdir(dest) and not os.path.islink(dest):
            shutil.rmtree(dest)
        else:
            os.remove(dest)
    shutil.move(src, dest)


def _flatten(top: str, subdir: str) -> None:
    path = os.path.join(top, subdir)
    if not os.path.isdir(path):
        return
    for entry in os.listdir(path):
        _move_into(os.path.join(path, entry), os.path.join(top, entry))
    os.rmdir(path)


def relocate_redist_layout(extract_dir: str, version: Optional[DriverVersion]) -> str:
    """Rearrange an unpacked redistributable archive like a run-file tree.

    Returns:
        Directory holding nvidia-installer.

    Raises:
        InstallerFailed: the archive holds no nvidia-installer.
    """
    entries = [e for e in os.listdir(extract_dir) if not e.startswith(".")]
    top = extract_dir
    if len(entries) == 1 and os.path.isdir(os.path.join(extract_dir, entries[0])):
        top = os.path.join(extract_dir, entries[0])

    _flatten(top, "bin")
    _flatten(top, "lib")
    _flatten(top, "docs")
    lib32 = os.path.join(top, "lib32")
    if os.path.isdir(lib32):
        _move_into(lib32, os.path.join(top, "32"))

    manifest = os.path.join(top, "manifest")
    if os.path.isfile(manifest):
        os.replace(manifest, os.path.join(top, ".manifest"))

    label = str(version) if version else "unknown"
    with open(os.path.join(top, "pkg-history.txt"), "w") as fh:
        fh.write(f"Package history for NVIDIA-Linux-x86_64-{label}\n\n")
        fh.write(f"{label}: repackaged from nvidia_driver redistributable archive\n")

    installer = os.path.join(top, "nvidia-installer")
    if not os.path.isfile(installer):
        raise InstallerFailed(1, "Redistributable archive does not contain nvidia-installer")
    mode = os.stat(installer).st_mode
    os.chmod(installer, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return top


def _redist_archive(artifact: ResolvedArtifact, tools: SystemTools) -> int:
    tmp = tempfile.mkdtemp(prefix="nvidia-redist-")
    try:
        log_info(f"Unpacking {os.path.basename(artifact.path)} into {tmp}")
        proc = tools.runner(["tar", "-xf", artifact.path, "-C", tmp], check=False)
        if proc is None or proc.returncode != 0:
            status = proc.returncode if proc is not None else 1
            raise InstallerFailed(status, f"Could not unpack {artifact.path}")
        top = relocate_redist_layout(tmp, artifact.version)
        return tools.installer.run(["./nvidia-installer", *INSTALLER_FLAGS], cwd=top)
    finally:
        shutil.rmtree(tmp, ignore_errors=True)
        if os.path.exists(tmp):
            # files the installer created as root
            tools.runner(["rm", "-rf", tmp], check=False, sudo=True)


def install_driver(plan: InstallPlan, config: InstallerConfig, tools: SystemTools) -> InstallResult:
    """Clear old state, stage patches and run the vendor installer.

    Raises:
        InstallerFailed: the installer exited nonzero (status passed through),
            or no module source tree could be found afterwards.
    """
    log_step("Installing NVIDIA driver...")
    clear_previous_install(config, tools)
    stage_patches(plan, config, tools.fs)

    artifact = plan.artifact
    if artifact.kind is ArtifactKind.REDIST_ARCHIVE:
        status = _redist_archive(artifact, tools)
    else:
        status = _run_file(artifact, tools)
    if status != 0:
        raise InstallerFailed(status)

    if artifact.version is not None:
        version = str(artifact.version)
    else:
        found = installed_module_versions(config)
        if not found:
            raise InstallerFailed(1, "Installer finished but no module source tree was found")
        version = found[-1]

    source_dir = module_source_dir(config, version)
    if not os.path.isdir(source_dir):
        log_warn(f"Module source tree {source_dir} not found")
    log_success(f"NVIDIA driver {version} installed")
    return InstallResult(plan=plan, module_version=version, module_source_dir=source_dir)
