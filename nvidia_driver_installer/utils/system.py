"""System utilities for command execution and privileged file operations

PrivilegedFS and the narrow tool wrappers at the bottom (Downloader,
PackageInstaller, ModuleBuilder, ServiceManager) are the only places the
installer talks to sudo'd coreutils, curl, the vendor installer, dkms and
systemctl.  Each takes a ``runner`` with the signature of
:func:`run_command`, so tests substitute a recorder.
"""

import os
import shlex
import shutil
import subprocess
import urllib.request
from dataclasses import dataclass, field
from typing import Callable, Optional

from .errors import FetchError, PrivilegeError, SystemConfigError
from .logging import log_info, log_error, log_warn

USER_AGENT = "nvidia-driver-installer/1.0"
_FETCH_TIMEOUT = 30  # seconds


def is_root() -> bool:
    return os.geteuid() == 0


def _format_cmd(cmd) -> str:
    if isinstance(cmd, str):
        return cmd
    return shlex.join(str(part) for part in cmd)


def run_command(cmd, check=True, capture_output=False, sudo=False,
                discard_stderr=False, cwd=None, input=None):
    """
    Execute a system command with logging

    Args:
        cmd: Command to execute (string runs through the shell, list does not)
        check: Whether to raise exception on failure
        capture_output: Whether to capture and return output
        sudo: Prefix with sudo unless already running as root
        discard_stderr: Send the command's stderr to /dev/null
        cwd: Working directory for the command
        input: Text fed to the command's stdin

    Returns:
        CompletedProcess object or output string if capture_output=True
    """
    shell = isinstance(cmd, str)
    if sudo and not is_root():
        cmd = f"sudo {cmd}" if shell else ["sudo", *cmd]
    log_info(f"Running: {_format_cmd(cmd)}")

    stderr = subprocess.DEVNULL if discard_stderr else None
    feed = {"input": input, "text": True} if input is not None else {}
    try:
        if capture_output:
            result = subprocess.run(cmd, shell=shell, check=check, cwd=cwd,
                                    stdout=subprocess.PIPE,
                                    stderr=stderr or subprocess.PIPE,
                                    text=True, input=input,
                                    stdin=None if input is not None else subprocess.DEVNULL)
            return result.stdout.strip()
        result = subprocess.run(cmd, shell=shell, check=check, cwd=cwd,
                                stderr=stderr, **feed)
        return result
    except subprocess.CalledProcessError:
        log_error(f"Command failed: {_format_cmd(cmd)}")
        raise


def acquire_privileges(runner=run_command) -> None:
    """Prompt for sudo credentials up front so later steps run unattended.

    Raises:
        PrivilegeError: the prompt failed or was aborted.
    """
    if is_root():
        return
    try:
        result = runner(["sudo", "-v"], check=False)
    except KeyboardInterrupt:
        raise PrivilegeError("Aborted while waiting for sudo credentials") from None
    if result is None or result.returncode != 0:
        raise PrivilegeError()


def get_os_info(path='/etc/os-release'):
    """Get OS information from /etc/os-release"""
    try:
        with open(path, 'r') as f:
            lines = f.readlines()

        info = {}
        for line in lines:
            if '=' in line:
                key, value = line.strip().split('=', 1)
                info[key] = value.strip('"')

        return info
    except OSError:
        return {}


def kernel_release() -> str:
    return os.uname().release


class PrivilegedFS:
    """File operations on system paths.

    Operates directly when the target is writable by the current process
    (root, or a scratch tree in tests) and falls back to sudo'd coreutils
    otherwise.
    """

    def __init__(self, runner=run_command):
        self.runner = runner

    def _sudo(self, cmd: list[str], input: Optional[str] = None) -> None:
        result = self.runner(cmd, check=False, sudo=True, input=input)
        if result is None or result.returncode != 0:
            raise SystemConfigError(f"Could not update system files: {_format_cmd(cmd)}")

    @staticmethod
    def _writable(path: str) -> bool:
        if is_root():
            return True
        parent_ok = os.access(os.path.dirname(path) or ".", os.W_OK)
        if os.path.islink(path):
            return parent_ok
        if os.path.isfile(path):
            return parent_ok and os.access(path, os.W_OK)
        probe = path
        while not os.path.lexists(probe):
            parent = os.path.dirname(probe)
            if parent == probe:
                break
            probe = parent
        return os.access(probe, os.W_OK)

    def makedirs(self, path: str) -> None:
        if os.path.isdir(path):
            return
        if self._writable(path):
            os.makedirs(path, exist_ok=True)
        else:
            self._sudo(["mkdir", "-p", path])

    def write_text(self, path: str, content: str, mode: int = 0o644) -> None:
        self.makedirs(os.path.dirname(path))
        if self._writable(path):
            with open(path, "w") as fh:
                fh.write(content)
            os.chmod(path, mode)
            return
        self._sudo(["dd", f"of={path}", "status=none"], input=content)
        self._sudo(["chmod", format(mode, "o"), path])

    def remove(self, path: str) -> bool:
        """Remove a file, symlink or directory tree.  Returns True if removed."""
        if not os.path.lexists(path):
            return False
        if self._writable(path):
            if os.path.isdir(path) and not os.path.islink(path):
                shutil.rmtree(path)
            else:
                os.remove(path)
        else:
            self._sudo(["rm", "-rf", path])
        return True

    def symlink(self, target: str, link: str) -> None:
        self.makedirs(os.path.dirname(link))
        if self._writable(link):
            os.symlink(target, link)
        else:
            self._sudo(["ln", "-s", target, link])

    def copy(self, src: str, dest: str) -> None:
        self.makedirs(os.path.dirname(dest))
        if self._writable(dest):
            shutil.copy2(src, dest)
        else:
            self._sudo(["cp", "-a", src, dest])


# ---------------------------------------------------------------------------
# External tool wrappers
# ---------------------------------------------------------------------------

class Downloader:
    """Fetches index files over HTTP and artifacts with curl."""

    def __init__(self, runner=run_command):
        self.runner = runner

    def fetch_text(self, url: str) -> str:
        try:
            req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
            with urllib.request.urlopen(req, timeout=_FETCH_TIMEOUT) as resp:
                return resp.read().decode("utf-8", errors="replace")
        except OSError as exc:
            raise FetchError(f"Could not fetch {url}: {exc}") from exc

    def download(self, url: str, dest: str) -> int:
        """Download ``url`` to ``dest``.  Returns curl's exit status."""
        result = self.runner(
            ["curl", "-L", "--progress-bar", "-o", dest, url],
            check=False,
        )
        return result.returncode if result is not None else 1


class PackageInstaller:
    """Runs the vendor installer under sudo and reports its exit status."""

    def __init__(self, runner=run_command):
        self.runner = runner

    def run(self, cmd: list[str], cwd: Optional[str] = None) -> int:
        result = self.runner(cmd, check=False, sudo=True,
                             discard_stderr=True, cwd=cwd)
        return result.returncode if result is not None else 1


class ModuleBuilder:
    """DKMS front end: register, build and verify kernel modules."""

    def __init__(self, runner=run_command):
        self.runner = runner

    def status(self, module: str, version: str, kernel: Optional[str] = None) -> str:
        cmd = ["dkms", "status", "-m", module, "-v", version]
        if kernel:
            cmd += ["-k", kernel]
        return self.runner(cmd, check=False, capture_output=True) or ""

    def is_registered(self, module: str, version: str) -> bool:
        return f"{module}/{version}" in self.status(module, version)

    def add(self, module: str, version: str) -> int:
        result = self.runner(["dkms", "add", "-m", module, "-v", version],
                             check=False, sudo=True)
        return result.returncode if result is not None else 1

    def remove(self, module: str, version: str) -> int:
        result = self.runner(["dkms", "remove", f"{module}/{version}", "--all"],
                             check=False, sudo=True)
        return result.returncode if result is not None else 1

    def build(self, module: str, version: str, kernel: str) -> int:
        result = self.runner(
            ["dkms", "install", "--force", f"{module}/{version}", "-k", kernel],
            check=False, sudo=True,
        )
        return result.returncode if result is not None else 1


class ServiceManager:
    """systemctl wrapper."""

    def __init__(self, runner=run_command):
        self.runner = runner

    def is_active(self, unit: str) -> bool:
        result = self.runner(["systemctl", "is-active", "--quiet", unit], check=False)
        return result is not None and result.returncode == 0

    def daemon_reload(self) -> None:
        result = self.runner(["systemctl", "daemon-reload"], check=False, sudo=True)
        if result is None or result.returncode != 0:
            log_warn("systemctl daemon-reload failed")

    def start(self, unit: str) -> None:
        result = self.runner(["systemctl", "start", unit], check=False, sudo=True)
        if result is None or result.returncode != 0:
            log_warn(f"Could not start {unit}")


@dataclass
class SystemTools:
    """Bundle of collaborators handed to every installation stage."""
    runner: Callable = run_command
    downloader: Downloader = field(default=None)
    installer: PackageInstaller = field(default=None)
    builder: ModuleBuilder = field(default=None)
    services: ServiceManager = field(default=None)
    fs: PrivilegedFS = field(default=None)

    def __post_init__(self):
        self.downloader = self.downloader or Downloader(self.runner)
        self.installer = self.installer or PackageInstaller(self.runner)
        self.builder = self.builder or ModuleBuilder(self.runner)
        self.services = self.services or ServiceManager(self.runner)
        self.fs = self.fs or PrivilegedFS(self.runner)
