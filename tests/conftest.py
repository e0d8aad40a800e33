"""Shared fixtures and fake system tools for the installer test suite."""
from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import Callable

import pytest

from nvidia_driver_installer.config import InstallerConfig
from nvidia_driver_installer.utils.system import PrivilegedFS, SystemTools

KERNEL = "6.10.8-1445.native"

GDM_RULES = """\
# disable Wayland on Hi1710 chipsets
ATTR{vendor}=="0x19e5", ATTR{device}=="0x1711", GOTO="gdm_disable_wayland"
KERNEL!="nvidia", GOTO="gdm_nvidia_end"
# Check if suspend/resume services necessary for working wayland support is available
TEST{0711}!="/usr/bin/nvidia-sleep.sh", GOTO="gdm_disable_wayland"
TEST{0711}!="/usr/lib/systemd/system-sleep/nvidia", GOTO="gdm_disable_wayland"
ENV{NVIDIA_PRESERVE_VIDEO_MEMORY_ALLOCATIONS}!="1", GOTO="gdm_disable_wayland"
LABEL="gdm_nvidia_end"
LABEL="gdm_disable_wayland"
"""


class FakeRunner:
    """Records commands instead of running them.

    ``handlers`` maps a command name (first argv element after sudo) to a
    callable returning the return code, or a string when output is captured.
    """

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.handlers: dict[str, Callable] = {}

    def __call__(self, cmd, check=True, capture_output=False, sudo=False,
                 discard_stderr=False, cwd=None, input=None):
        argv = cmd.split() if isinstance(cmd, str) else list(cmd)
        self.calls.append({"cmd": argv, "sudo": sudo, "cwd": cwd,
                           "discard_stderr": discard_stderr, "input": input})
        handler = self.handlers.get(argv[0])
        result = handler(argv) if handler else ("" if capture_output else 0)
        if capture_output:
            return result
        return subprocess.CompletedProcess(args=argv, returncode=result)

    def commands(self) -> list[list[str]]:
        return [call["cmd"] for call in self.calls]

    def ran(self, *prefix: str) -> bool:
        return any(cmd[:len(prefix)] == list(prefix) for cmd in self.commands())


class FakeDownloader:
    def __init__(self, runner: FakeRunner) -> None:
        self.runner = runner
        self.index = ""
        self.body = b"\x7fELF driver payload " * 64
        self.status = 0
        self.downloads: list[tuple[str, str]] = []

    def fetch_text(self, url: str) -> str:
        return self.index

    def download(self, url: str, dest: str) -> int:
        self.downloads.append((url, dest))
        if self.body is not None:
            with open(dest, "wb") as fh:
                fh.write(self.body)
        return self.status


class FakeInstaller:
    def __init__(self) -> None:
        self.calls: list[tuple[list[str], str | None]] = []
        self.status = 0
        self.on_run: Callable | None = None

    def run(self, cmd, cwd=None) -> int:
        self.calls.append((list(cmd), cwd))
        if self.on_run:
            self.on_run(cmd, cwd)
        return self.status


class FakeBuilder:
    def __init__(self) -> None:
        self.registered: set[str] = set()
        self.added: list[str] = []
        self.removed: list[str] = []
        self.built: list[tuple[str, str]] = []
        self.add_status = 0
        self.build_status = 0
        self.verified = True

    def status(self, module, version, kernel=None) -> str:
        key = f"{module}/{version}"
        if kernel and (key, kernel) in self.built and self.verified:
            return f"{key}, {kernel}, x86_64: installed"
        if key in self.registered:
            return f"{key}: added"
        return ""

    def is_registered(self, module, version) -> bool:
        return f"{module}/{version}" in self.registered

    def add(self, module, version) -> int:
        self.added.append(f"{module}/{version}")
        if self.add_status == 0:
            self.registered.add(f"{module}/{version}")
        return self.add_status

    def remove(self, module, version) -> int:
        self.removed.append(f"{module}/{version}")
        self.registered.discard(f"{module}/{version}")
        return 0

    def build(self, module, version, kernel) -> int:
        if self.build_status == 0:
            self.built.append((f"{module}/{version}", kernel))
        return self.build_status


class FakeServices:
    def __init__(self) -> None:
        self.active: set[str] = set()
        self.reloads = 0
        self.started: list[str] = []

    def is_active(self, unit) -> bool:
        return unit in self.active

    def daemon_reload(self) -> None:
        self.reloads += 1

    def start(self, unit) -> None:
        self.started.append(unit)


@pytest.fixture
def config(tmp_path: Path) -> InstallerConfig:
    for name in ("root", "work", "home"):
        (tmp_path / name).mkdir()
    return InstallerConfig(
        root=str(tmp_path / "root"),
        workdir=str(tmp_path / "work"),
        user="alice",
        home=str(tmp_path / "home"),
    )


@pytest.fixture
def host(config: InstallerConfig) -> InstallerConfig:
    """A prepared Clear Linux host tree under the config root."""
    files = {
        config.os_release: 'NAME="Clear Linux OS"\nID=clear-linux-os\nVERSION_ID=41920\n'
                           'PRETTY_NAME="Clear Linux OS"\n',
        config.fixup_unit_file: "[Unit]\nDescription=Fix NVIDIA libGL\n",
        config.dkms_binary: "#!/bin/sh\n",
        config.udev_rules_source: GDM_RULES,
    }
    for path, content in files.items():
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w") as fh:
            fh.write(content)
    os.makedirs(config.kernel_build_dir(KERNEL))
    return config


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def tools(runner: FakeRunner) -> SystemTools:
    return SystemTools(
        runner=runner,
        downloader=FakeDownloader(runner),
        installer=FakeInstaller(),
        builder=FakeBuilder(),
        services=FakeServices(),
        fs=PrivilegedFS(runner),
    )


def touch(path: str, content: str = "x") -> str:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as fh:
        fh.write(content)
    return path
