"""Driver package resolution and download.

Maps a command-line selector to a driver package on disk:
    - a named release ("550", "555", ...) -> fixed download URL
    - "latest"  -> newest run-file listed in NVIDIA's latest.txt index
    - "vulkan"  -> the Vulkan beta driver
    - a path    -> a local run-file, redistributable archive or Vulkan file

Remote packages are reused from the working directory or the download
cache when already present, otherwise downloaded into the cache.
"""

import os
import re
import shutil
from typing import Optional

from ..config import InstallerConfig
from ..utils.errors import FetchError, UsageError
from ..utils.logging import log_info, log_step, log_warn, log_success
from ..utils.system import Downloader, run_command
from .artifacts import ArtifactKind, DriverVersion, ResolvedArtifact

_DOWNLOAD_BASE = "https://us.download.nvidia.com/XFree86/Linux-x86_64"
LATEST_INDEX_URL = "https://download.nvidia.com/XFree86/Linux-x86_64/latest.txt"
VULKAN_BETA_URL = "https://developer.nvidia.com/downloads/vulkan-beta-5504079-linux"

# Named releases -> pinned driver version
NAMED_RELEASES: dict[str, str] = {
    "550": "550.107.02",
    "555": "555.58.02",
    "560": "560.35.03",
    "565": "565.57.01",
}

_RUN_FILE_PATTERN = re.compile(r'^NVIDIA-Linux-x86_64-.+\.run$')
_REDIST_PATTERN = re.compile(r'^nvidia_driver-linux-x86_64-.+-archive\.tar\.xz$')
_VULKAN_PATTERN = re.compile(r'^vulkan-beta-\d+-linux(?:\.run)?$')

# Virtualization-only driver variants (vGPU host/guest, GRID)
_DISALLOWED_SUBSTRINGS: tuple[str, ...] = ("vgpu", "grid")

# Servers answer missing files with an HTML page instead of an error status
_NOT_FOUND_MARKER = re.compile(rb'not found', re.IGNORECASE)
_NOT_FOUND_PROBE_LIMIT = 64 * 1024


def usage_text() -> str:
    names = ", ".join(NAMED_RELEASES)
    return (
        "Usage: nvidia-install <selector>\n"
        f"  selector: latest | vulkan | {names} | path/to/driver\n"
        "  path may be NVIDIA-Linux-x86_64-*.run, "
        "nvidia_driver-linux-x86_64-*-archive.tar.xz or vulkan-beta-*-linux"
    )


def release_url(version: str) -> str:
    return f"{_DOWNLOAD_BASE}/{version}/NVIDIA-Linux-x86_64-{version}.run"


def url_for_selector(selector: str, downloader: Optional[Downloader] = None) -> str:
    """Return the download URL for a remote selector.

    Raises:
        UsageError: selector is not a named release, "latest" or "vulkan".
        FetchError: the latest.txt index could not be read.
    """
    if selector in NAMED_RELEASES:
        return release_url(NAMED_RELEASES[selector])
    if selector == "vulkan":
        return VULKAN_BETA_URL
    if selector == "latest":
        return _latest_release_url(downloader or Downloader())
    raise UsageError(f"Unrecognized selector: {selector}\n{usage_text()}")


def _latest_release_url(downloader: Downloader) -> str:
    """Read latest.txt ("<version> <version>/<filename>") and build the URL."""
    index = downloader.fetch_text(LATEST_INDEX_URL)
    for line in index.splitlines():
        parts = line.split()
        if len(parts) >= 2 and _RUN_FILE_PATTERN.match(os.path.basename(parts[1])):
            log_info(f"Latest driver release: {parts[0]}")
            return f"{_DOWNLOAD_BASE}/{parts[1]}"
    raise FetchError(f"Could not find a driver release in {LATEST_INDEX_URL}")


def classify_filename(filename: str) -> Optional[ArtifactKind]:
    """Return the artifact kind a filename denotes, or None if unrecognized."""
    if _RUN_FILE_PATTERN.match(filename):
        return ArtifactKind.RUN_FILE
    if _REDIST_PATTERN.match(filename):
        return ArtifactKind.REDIST_ARCHIVE
    if _VULKAN_PATTERN.match(filename):
        return ArtifactKind.VULKAN_FILE
    return None


def check_allowed(filename: str) -> None:
    """Reject virtualization-only driver variants.

    Raises:
        UsageError: the filename names a vGPU or GRID package.
    """
    lowered = filename.lower()
    for needle in _DISALLOWED_SUBSTRINGS:
        if needle in lowered:
            raise UsageError(f"{filename}: {needle} drivers are not supported")


def _artifact_for(path: str, url: Optional[str] = None) -> ResolvedArtifact:
    filename = os.path.basename(path)
    check_allowed(filename)
    kind = classify_filename(filename)
    if kind is None:
        raise UsageError(f"Unrecognized driver filename: {filename}\n{usage_text()}")
    version = None
    if kind is not ArtifactKind.VULKAN_FILE:
        version = DriverVersion.from_filename(filename)
        if version is None:
            raise UsageError(f"Cannot determine driver version from {filename}")
    return ResolvedArtifact(path=path, kind=kind, version=version, url=url)


def _present(path: str) -> bool:
    return os.path.isfile(path) and os.path.getsize(path) > 0


def _looks_like_selector_path(selector: str) -> bool:
    return os.sep in selector or classify_filename(os.path.basename(selector)) is not None


def resolve_selector(selector: str, config: InstallerConfig,
                     downloader: Optional[Downloader] = None) -> ResolvedArtifact:
    """Map a selector to a driver package on disk, downloading if needed.

    Raises:
        UsageError: missing, unknown or disallowed selector; local file absent.
        FetchError: index lookup or download failed.
    """
    log_step("Resolving driver package...")
    selector = (selector or "").strip()
    if not selector:
        raise UsageError(f"No driver selector given\n{usage_text()}")

    if selector not in NAMED_RELEASES and selector not in ("latest", "vulkan"):
        if not _looks_like_selector_path(selector):
            raise UsageError(f"Unrecognized selector: {selector}\n{usage_text()}")
        path = os.path.abspath(os.path.expanduser(selector))
        artifact = _artifact_for(path)
        if not _present(path):
            raise UsageError(f"Driver file not found or empty: {selector}")
        log_info(f"Using local driver package {path}")
        return artifact

    downloader = downloader or Downloader()
    url = url_for_selector(selector, downloader)
    filename = os.path.basename(url)

    for candidate in (os.path.join(config.workdir, filename),
                      os.path.join(config.cache_dir, filename)):
        if _present(candidate):
            log_info(f"Reusing {candidate}")
            return _artifact_for(candidate, url)

    # Validate the name before spending bandwidth on it
    _artifact_for(filename, url)
    dest = os.path.join(prepare_cache_dir(config, downloader.runner), filename)
    fetch_artifact(url, dest, downloader)
    return _artifact_for(dest, url)


def _xdg_download_dir(config: InstallerConfig, runner=run_command) -> Optional[str]:
    """The desktop's configured download directory, if it is a real one.

    xdg-user-dir falls back to $HOME when the directory is unset, which
    does not count.
    """
    output = None
    if shutil.which("xdg-user-dir"):
        output = runner(["xdg-user-dir", "DOWNLOAD"], check=False, capture_output=True)
    candidate = (output or "").strip() or os.path.join(config.home, "Downloads")
    if os.path.isdir(candidate) and os.path.abspath(candidate) != os.path.abspath(config.home):
        return candidate
    return None


def prepare_cache_dir(config: InstallerConfig, runner=run_command) -> str:
    """Create the download cache, linking it to the desktop download dir."""
    cache = config.cache_dir
    if os.path.isdir(cache):
        return cache
    if os.path.islink(cache):
        log_warn(f"Removing dangling cache link {cache}")
        os.remove(cache)

    target = _xdg_download_dir(config, runner)
    if target:
        os.symlink(target, cache)
        log_info(f"Linked {cache} -> {target}")
    else:
        os.makedirs(cache, exist_ok=True)
        log_info(f"Created download cache {cache}")
    return cache


def fetch_artifact(url: str, dest: str, downloader: Downloader) -> None:
    """Download ``url`` to ``dest``, removing the partial file on failure.

    Raises:
        FetchError: curl failed, produced nothing, or saved an error page.
    """
    log_info(f"Downloading {url}")
    status = downloader.download(url, dest)
    if status == 0 and _present(dest) and not _is_error_page(dest):
        log_success(f"Downloaded {os.path.basename(dest)}")
        return
    if os.path.lexists(dest):
        os.remove(dest)
    raise FetchError(f"Download failed: {url}")


def _is_error_page(path: str) -> bool:
    if os.path.getsize(path) > _NOT_FOUND_PROBE_LIMIT:
        return False
    with open(path, "rb") as fh:
        return bool(_NOT_FOUND_MARKER.search(fh.read()))
