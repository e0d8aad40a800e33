"""Data passed between installation stages.

Each stage takes the previous stage's record and returns an enriched one:
ResolvedArtifact -> InstallPlan -> InstallResult -> BuildResult.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ArtifactKind(Enum):
    """Which installer layout an artifact uses."""
    RUN_FILE = "run-file"
    REDIST_ARCHIVE = "redist-archive"
    VULKAN_FILE = "vulkan-file"


# Version embedded in a hyphen/period delimited filename, e.g.
# NVIDIA-Linux-x86_64-550.107.02.run or nvidia_driver-linux-x86_64-550.90.07-archive.tar.xz
_FILENAME_VERSION = re.compile(r'-(\d+)\.(\d+)(?:\.(\d+))?(?=[-.])')


@dataclass(frozen=True, order=True)
class DriverVersion:
    major: int
    minor: int
    patch: str = ""

    def __str__(self) -> str:
        if self.patch:
            return f"{self.major}.{self.minor}.{self.patch}"
        return f"{self.major}.{self.minor}"

    @classmethod
    def parse(cls, text: str) -> Optional["DriverVersion"]:
        """Parse ``550.107.02`` style strings.  Returns None if malformed."""
        match = re.fullmatch(r'(\d+)\.(\d+)(?:\.(\d+))?', text.strip())
        if not match:
            return None
        return cls(int(match.group(1)), int(match.group(2)), match.group(3) or "")

    @classmethod
    def from_filename(cls, filename: str) -> Optional["DriverVersion"]:
        match = _FILENAME_VERSION.search(filename)
        if not match:
            return None
        return cls(int(match.group(1)), int(match.group(2)), match.group(3) or "")


@dataclass(frozen=True)
class ResolvedArtifact:
    """A driver package present on disk."""
    path: str
    kind: ArtifactKind
    version: Optional[DriverVersion] = None
    url: Optional[str] = None


@dataclass(frozen=True)
class PatchFlags:
    """Compatibility patches the driver version needs."""
    kernel_6_10: bool = False
    gcc_14: bool = False

    def enabled(self) -> list[str]:
        """Names of enabled flags, in application order."""
        return [name for name in ("kernel_6_10", "gcc_14") if getattr(self, name)]


@dataclass(frozen=True)
class InstallPlan:
    artifact: ResolvedArtifact
    patches: PatchFlags = field(default_factory=PatchFlags)


@dataclass(frozen=True)
class InstallResult:
    plan: InstallPlan
    module_version: str
    module_source_dir: str

    @property
    def major(self) -> Optional[int]:
        version = DriverVersion.parse(self.module_version)
        return version.major if version else None


@dataclass(frozen=True)
class BuildResult:
    install: InstallResult
    kernel_release: str
