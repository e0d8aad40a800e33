"""End-to-end runs of the installation pipeline against fake system tools."""
from __future__ import annotations

import os
import subprocess

import pytest

from conftest import KERNEL, touch
from nvidia_driver_installer import __version__, cli
from nvidia_driver_installer.nvidia.artifacts import PatchFlags
from nvidia_driver_installer.pipeline import run_install
from nvidia_driver_installer.system import finalize
from nvidia_driver_installer.system.postinstall import XORG_CONF_NAME
from nvidia_driver_installer.utils import system
from nvidia_driver_installer.utils.errors import (
    BuildFailed,
    InstallerFailed,
    PrivilegeError,
    SystemConfigError,
    UsageError,
)

RUN_550 = "NVIDIA-Linux-x86_64-550.107.02.run"


@pytest.fixture(autouse=True)
def as_desktop_user(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(system, "is_root", lambda: False)
    monkeypatch.setattr(finalize, "is_root", lambda: False)
    monkeypatch.setattr(finalize.shutil, "which", lambda name: None)


@pytest.fixture
def driver(host, tools):
    path = touch(os.path.join(host.workdir, RUN_550), "payload")

    def fake_install(cmd, cwd):
        os.makedirs(os.path.join(host.module_src_root, "nvidia-550.107.02"), exist_ok=True)
        touch(os.path.join(host.nvidia_lib_dir, "libnvidia-allocator.so.1"))

    tools.installer.on_run = fake_install
    return path


def test_scenario_550_full_run(host, tools, runner, driver) -> None:
    cache = touch(os.path.join(host.home, ".config", "Code", "GPUCache", "data_0"))

    built = run_install("550", host, tools, kernel=KERNEL)

    assert built.kernel_release == KERNEL
    assert built.install.module_version == "550.107.02"
    assert built.install.plan.patches == PatchFlags()
    assert built.install.plan.artifact.path == driver
    assert tools.downloader.downloads == []
    assert runner.ran("sudo", "-v")
    assert tools.installer.calls[0][0][:2] == ["sh", driver]
    assert tools.builder.built == [("nvidia/550.107.02", KERNEL)]
    assert os.path.isfile(os.path.join(host.xorg_conf_dir, XORG_CONF_NAME))
    assert os.path.islink(os.path.join(host.nvidia_lib_dir, "gbm", "nvidia-drm_gbm.so"))
    assert not os.path.exists(os.path.dirname(cache))
    assert runner.ran("sync")


def test_build_failure_skips_configuration(host, tools, runner, driver) -> None:
    tools.builder.build_status = 12

    with pytest.raises(BuildFailed) as excinfo:
        run_install("550", host, tools, kernel=KERNEL)

    assert excinfo.value.exit_code == 12
    assert not os.path.exists(host.environment_file)
    assert not os.path.exists(os.path.join(host.xorg_conf_dir, XORG_CONF_NAME))
    assert tools.services.started == []
    assert not runner.ran("ldconfig")
    assert not runner.ran("sync")


def test_ldconfig_failure_does_not_stop_run(host, tools, runner, driver, capsys) -> None:
    runner.handlers["ldconfig"] = lambda argv: 1

    run_install("550", host, tools, kernel=KERNEL)

    out = capsys.readouterr().out
    assert "ldconfig failed" in out
    assert "sudo reboot" in out
    assert tools.services.started
    assert runner.ran("sync")


def test_installer_failure_stops_before_build(host, tools, driver) -> None:
    tools.installer.status = 5

    with pytest.raises(InstallerFailed):
        run_install("550", host, tools, kernel=KERNEL)

    assert tools.builder.built == []


def test_vgpu_selector_rejected_before_install(host, tools, runner) -> None:
    path = touch(os.path.join(host.workdir, "NVIDIA-Linux-x86_64-550.90.05-vgpu-kvm.run"))

    with pytest.raises(UsageError):
        run_install(path, host, tools, kernel=KERNEL)

    assert tools.downloader.downloads == []
    assert tools.installer.calls == []
    assert not runner.ran("sudo", "-v")


def test_sudo_refusal_is_privilege_error(host, tools, runner, driver) -> None:
    runner.handlers["sudo"] = lambda argv: 1

    with pytest.raises(PrivilegeError) as excinfo:
        run_install("550", host, tools, kernel=KERNEL)

    assert excinfo.value.exit_code == 2
    assert tools.installer.calls == []


def test_interrupted_sudo_prompt_is_privilege_error(runner) -> None:
    def interrupt(argv):
        raise KeyboardInterrupt

    runner.handlers["sudo"] = interrupt

    with pytest.raises(PrivilegeError):
        system.acquire_privileges(runner)


def test_acquire_privileges_skipped_for_root(monkeypatch, runner) -> None:
    monkeypatch.setattr(system, "is_root", lambda: True)

    system.acquire_privileges(runner)

    assert runner.commands() == []


@pytest.mark.parametrize(
    ("error", "code"),
    [
        (UsageError("bad"), 1),
        (PrivilegeError(), 2),
        (SystemConfigError("Could not update system files: rm -rf /etc/x"), 1),
        (InstallerFailed(7), 7),
        (BuildFailed(10), 10),
    ],
)
def test_main_maps_errors_to_exit_codes(monkeypatch, error, code) -> None:
    def fail(selector, config):
        raise error

    monkeypatch.setattr(cli, "run_install", fail)

    assert cli.main(["550"]) == code


@pytest.mark.parametrize("argv", [["550", "extra"], ["--force", "550"]])
def test_main_rejects_extra_arguments(monkeypatch, capsys, argv) -> None:
    monkeypatch.setattr(cli, "run_install", lambda selector, config: pytest.fail("ran"))

    assert cli.main(argv) == 1
    assert "Usage: nvidia-install" in capsys.readouterr().err


def test_main_success(monkeypatch) -> None:
    seen = []
    monkeypatch.setattr(cli, "run_install", lambda selector, config: seen.append(selector))

    assert cli.main(["latest"]) == 0
    assert seen == ["latest"]


def test_main_without_selector(monkeypatch) -> None:
    monkeypatch.setattr(cli, "run_install", lambda selector, config: pytest.fail("ran"))

    assert cli.main([]) == 1


def test_run_command_prefixes_sudo(monkeypatch) -> None:
    recorded = []

    def fake_run(cmd, **kwargs):
        recorded.append((cmd, kwargs))
        return subprocess.CompletedProcess(args=cmd, returncode=0)

    monkeypatch.setattr(system.subprocess, "run", fake_run)

    system.run_command(["ldconfig"], sudo=True, discard_stderr=True)

    cmd, kwargs = recorded[0]
    assert cmd == ["sudo", "ldconfig"]
    assert kwargs["shell"] is False
    assert kwargs["stderr"] is subprocess.DEVNULL


def test_run_command_feeds_input(monkeypatch) -> None:
    recorded = []

    def fake_run(cmd, **kwargs):
        recorded.append(kwargs)
        return subprocess.CompletedProcess(args=cmd, returncode=0)

    monkeypatch.setattr(system.subprocess, "run", fake_run)

    system.run_command(["dd", "of=/etc/x.conf", "status=none"], input="x\n")

    assert recorded[0]["input"] == "x\n"
    assert recorded[0]["text"] is True


def test_version_flag(capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--version"])

    assert excinfo.value.code == 0
    assert __version__ in capsys.readouterr().out
