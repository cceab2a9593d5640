# zbmigrate/modules/errors.py
"""
Exceptions shared by the migration modules.

Structural errors (GraphError, StateIOError) abort a run. Per-package errors
(ExternalCommandError, ConflictError) are turned into Failed outcomes by the
orchestrator and never stop the batch.
"""

from typing import List, Optional, Sequence


class MigrateError(Exception):
    pass


class GraphError(MigrateError):
    def __init__(self, cycle: Sequence[str], message: Optional[str] = None):
        self.cycle: List[str] = sorted(cycle)
        super().__init__(message or f"Dependency cycle detected: {', '.join(self.cycle)}")


class ExternalCommandError(MigrateError):
    def __init__(self, command, returncode: int, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        cmd = command if isinstance(command, str) else " ".join(command)
        super().__init__(stderr.strip() or f"Command failed ({returncode}): {cmd}")


class ConflictError(ExternalCommandError):
    """The target manager refused to overwrite a file or link owned by another package."""


class StateIOError(MigrateError):
    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"{message}: {path}")


class StateLockError(StateIOError):
    pass
