"""Driver version policy.

Decides whether a driver release is supported at all and which
compatibility patches it needs before its kernel module will build.
"""

from ..utils.errors import PreconditionError, UsageError
from ..utils.logging import log_info, log_step
from .artifacts import ArtifactKind, DriverVersion, InstallPlan, PatchFlags, ResolvedArtifact

# Releases at or below this major lack support for current kernels
MIN_SUPPORTED_MAJOR = 470

# Only this branch carries patchable releases
_PATCHED_MAJOR = 550

# Inclusive-exclusive minor ranges within the 550 branch
_KERNEL_6_10_MINORS = range(54, 100)   # 550.54 .. 550.99
_GCC_14_MINORS = range(40, 79)         # 550.40 .. 550.78


def patch_flags_for(version: DriverVersion) -> PatchFlags:
    if version.major != _PATCHED_MAJOR:
        return PatchFlags()
    return PatchFlags(
        kernel_6_10=version.minor in _KERNEL_6_10_MINORS,
        gcc_14=version.minor in _GCC_14_MINORS,
    )


def classify(artifact: ResolvedArtifact) -> InstallPlan:
    """Validate the artifact's version and derive its patch flags.

    Raises:
        UsageError: the artifact carries no parsable version.
        PreconditionError: the release is too old to install.
    """
    log_step("Checking driver version...")
    if artifact.kind is ArtifactKind.VULKAN_FILE:
        log_info("Vulkan beta driver: skipping version checks")
        return InstallPlan(artifact=artifact)

    version = artifact.version
    if version is None:
        raise UsageError(f"Cannot determine driver version of {artifact.path}")
    if version.major <= MIN_SUPPORTED_MAJOR:
        raise PreconditionError(
            f"Driver {version} is not supported; "
            f"use a release newer than the {MIN_SUPPORTED_MAJOR} series"
        )

    flags = patch_flags_for(version)
    log_info(f"Driver version {version}")
    for name in flags.enabled():
        log_info(f"  compatibility patch required: {name}")
    return InstallPlan(artifact=artifact, patches=flags)
