"""Error taxonomy shared by the catalog, lifecycle manager and boot engine."""

from __future__ import annotations


class BootManagerError(Exception):
    """Base class for every error raised by armboot.

    ``operation`` and ``target`` identify what was being attempted so a
    failure can be diagnosed from the log alone.
    """

    def __init__(self, message: str, *, operation: str = "", target: str = "") -> None:
        super().__init__(message)
        self.operation = operation
        self.target = target

    def __str__(self) -> str:
        msg = super().__str__()
        if self.operation and self.target:
            return f"{self.operation} {self.target}: {msg}"
        if self.operation:
            return f"{self.operation}: {msg}"
        return msg


class NotFound(BootManagerError):
    """The OS or backup archive does not exist."""


class SourceUnavailable(BootManagerError):
    """An install source could not be read or fetched."""


class ExternalToolFailure(BootManagerError):
    """A delegated tool (mount, cp, file, ...) exited non-zero."""

    def __init__(
        self,
        message: str,
        *,
        argv: list[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
        operation: str = "",
        target: str = "",
    ) -> None:
        if stderr and stderr.strip() not in message:
            message = f"{message}\n{stderr.strip()}"
        super().__init__(message, operation=operation, target=target)
        self.argv = list(argv or [])
        self.returncode = returncode
        self.stderr = stderr


class ValidationFailure(BootManagerError):
    """An updated OS failed post-update verification."""


class RegistryCorruption(BootManagerError):
    """The registry file is unreadable. Logged, never propagated."""


class ConfigurationMissing(BootManagerError):
    """A configuration file is absent. Logged, defaults are substituted."""


class NetworkUnavailable(BootManagerError):
    """No network connection could be established."""


class RollbackFailure(BootManagerError):
    """An update failed and restoring the pre-update backup failed too."""

    def __init__(
        self,
        original: BaseException,
        rollback: BaseException,
        *,
        operation: str = "update",
        target: str = "",
    ) -> None:
        super().__init__(
            f"update failed ({original}); rollback also failed ({rollback})",
            operation=operation,
            target=target,
        )
        self.original = original
        self.rollback = rollback
