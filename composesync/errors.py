"""
Exception hierarchy for composesync.

Per-source and per-unit errors are isolated by the engine and reported;
StateTransitionError raised by the snapshot store is fatal to a run.
"""

from typing import Optional


class ComposeSyncError(Exception):
    """Base exception for all composesync errors"""
    pass


class ConfigError(ComposeSyncError):
    """Raised when the configuration is missing or invalid"""
    pass


class LockError(ComposeSyncError):
    """Raised when another reconciliation run holds the run lock"""
    pass


class SourceResolutionError(ComposeSyncError):
    """Raised when a source repository cannot be cloned or updated"""

    def __init__(self, address: str, message: str):
        self.address = address
        super().__init__(f"Failed to resolve source {address}: {message}")


class DescriptorLoadError(ComposeSyncError):
    """Raised when a unit definition cannot be turned into a descriptor"""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"Failed to load unit definition {path}: {message}")


class DuplicateUnitError(DescriptorLoadError):
    """Raised when two unit definitions map to the same unit id in one snapshot"""

    def __init__(self, path: str, unit_id: str):
        self.unit_id = unit_id
        super().__init__(path, f"unit id '{unit_id}' already exists in this snapshot")


class CommandError(ComposeSyncError):
    """
    Raised when an external command exits non-zero or times out.

    Attributes:
        command: The argument vector that was executed
        returncode: Exit status, or None if the command timed out
        stderr: Captured standard error output
    """

    def __init__(self, command, returncode: Optional[int], stderr: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        if returncode is None:
            detail = "timed out"
        else:
            detail = f"exited with status {returncode}"
        message = f"Command '{' '.join(self.command)}' {detail}"
        if stderr.strip():
            message += f": {stderr.strip()}"
        super().__init__(message)


class ApplyError(ComposeSyncError):
    """Raised when a unit could not be brought up with its descriptor"""

    def __init__(self, unit_id: str, message: str):
        self.unit_id = unit_id
        super().__init__(f"Failed to bring up {unit_id}: {message}")


class TeardownError(ComposeSyncError):
    """Raised when a unit could not be stopped and removed"""

    def __init__(self, unit_id: str, message: str):
        self.unit_id = unit_id
        super().__init__(f"Failed to tear down {unit_id}: {message}")


class StateTransitionError(ComposeSyncError):
    """Raised when a snapshot directory cannot be renamed, removed or created"""
    pass
