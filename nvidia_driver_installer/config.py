"""Filesystem layout and environment overrides for an installation run.

Every system path is derived from ``root`` so a run can be pointed at a
scratch tree (``NVIDIA_INSTALLER_ROOT``) instead of ``/``.
"""

import getpass
import os
from dataclasses import dataclass, field
from typing import Optional

# Prefix the vendor installer relocates user-space components into
NVIDIA_PREFIX = "/opt/nvidia"

# Unit provisioned by the pre-install step; its presence marks a prepared host
FIXUP_SERVICE = "fix-nvidia-libGL-trigger.service"


def _default_user() -> str:
    return os.environ.get("SUDO_USER") or getpass.getuser()


@dataclass
class InstallerConfig:
    """Locations and identity used throughout an installation run."""
    root: str = "/"
    workdir: str = field(default_factory=os.getcwd)
    patch_dir: Optional[str] = None
    user: str = field(default_factory=_default_user)
    home: Optional[str] = None

    def __post_init__(self):
        self.root = os.path.abspath(self.root)
        self.workdir = os.path.abspath(self.workdir)
        if self.patch_dir is None:
            self.patch_dir = os.path.join(self.workdir, "patches")
        if self.home is None:
            self.home = os.path.expanduser(f"~{self.user}")

    def path(self, *parts: str) -> str:
        """Join absolute system path components onto the configured root."""
        return os.path.join(self.root, *(p.lstrip("/") for p in parts))

    @property
    def cache_dir(self) -> str:
        return os.path.join(self.workdir, "downloads")

    @property
    def staging_dir(self) -> str:
        return self.path("/tmp/nvidia-installer")

    @property
    def os_release(self) -> str:
        return self.path("/etc/os-release")

    @property
    def fixup_unit_file(self) -> str:
        return self.path("/etc/systemd/system", FIXUP_SERVICE)

    @property
    def dkms_binary(self) -> str:
        return self.path("/usr/bin/dkms")

    @property
    def module_src_root(self) -> str:
        return self.path("/usr/src")

    def kernel_build_dir(self, kernel: str) -> str:
        return self.path("/usr/lib/modules", kernel, "build")

    @property
    def nvidia_lib_dir(self) -> str:
        return self.path(NVIDIA_PREFIX, "lib64")

    @property
    def system_lib_dir(self) -> str:
        return self.path("/usr/lib64")

    @property
    def xorg_conf_dir(self) -> str:
        return self.path("/etc/X11/xorg.conf.d")

    @property
    def environment_file(self) -> str:
        return self.path("/etc/environment.d/10-nvidia-vaapi.conf")

    @property
    def session_file(self) -> str:
        return self.path("/var/lib/AccountsService/users", self.user)

    @property
    def udev_rules_source(self) -> str:
        return self.path("/usr/lib/udev/rules.d/61-gdm.rules")

    @property
    def udev_rules_override(self) -> str:
        return self.path("/etc/udev/rules.d/61-gdm.rules")


def load_config() -> InstallerConfig:
    """Build the run configuration from the environment."""
    workdir = os.environ.get("NVIDIA_INSTALLER_WORKDIR") or os.getcwd()
    return InstallerConfig(
        root=os.environ.get("NVIDIA_INSTALLER_ROOT") or "/",
        workdir=workdir,
        patch_dir=os.environ.get("NVIDIA_INSTALLER_PATCH_DIR") or None,
        user=os.environ.get("NVIDIA_INSTALLER_USER") or _default_user(),
    )
