"""Exception hierarchy for the installer.

Each class maps one failure category to the exit status the process
terminates with.  Stages raise these; only the CLI turns them into an exit.
"""


class InstallerError(Exception):
    """Base installer error."""

    def __init__(self, message: str, exit_code: int = 1) -> None:
        self.message = message
        self.exit_code = exit_code
        super().__init__(message)


class UsageError(InstallerError):
    """Bad, missing or unsupported selector (1)."""

    def __init__(self, message: str = "Invalid selector") -> None:
        super().__init__(message, exit_code=1)


class PreconditionError(InstallerError):
    """Host is not in a state the installation can proceed from (1)."""

    def __init__(self, message: str = "Precondition failed") -> None:
        super().__init__(message, exit_code=1)


class FetchError(InstallerError):
    """Index lookup or artifact download failed (1)."""

    def __init__(self, message: str = "Download failed") -> None:
        super().__init__(message, exit_code=1)


class PrivilegeError(InstallerError):
    """sudo credentials could not be acquired (2)."""

    def __init__(self, message: str = "Could not acquire sudo credentials") -> None:
        super().__init__(message, exit_code=2)


class SystemConfigError(InstallerError):
    """A privileged file operation on a system path failed (1)."""

    def __init__(self, message: str = "System file update failed") -> None:
        super().__init__(message, exit_code=1)


class InstallerFailed(InstallerError):
    """The vendor installer returned a nonzero status (passed through)."""

    def __init__(self, status: int, message: str | None = None) -> None:
        super().__init__(
            message or f"NVIDIA installer failed with status {status}",
            exit_code=status,
        )


class BuildFailed(InstallerError):
    """The kernel module build or its verification failed (passed through)."""

    def __init__(self, status: int, message: str | None = None) -> None:
        super().__init__(
            message or f"Kernel module build failed with status {status}",
            exit_code=status,
        )
