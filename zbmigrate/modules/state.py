# zbmigrate/modules/state.py
"""
Persistent migration state.

File format (JSON, default ~/.zerobrew/migration_state.json):
{
  "migrated_packages": {"<name>": {<PackageRecord>}, ...},
  "failed_packages": ["<name>", ...],
  "homebrew_prefix": "/opt/homebrew"
}

Unknown keys are ignored and missing keys default to empty, so older and
newer files stay readable. Saves go to a temp file in the same directory and
are moved into place with os.replace, so an interrupted write leaves the
previous state intact. A run holds an advisory flock on "<state>.lock".
"""

from __future__ import annotations
import os
import json
import fcntl
import tempfile
import contextlib
from typing import Any, Dict, Iterator, List, Optional

from zbmigrate.modules.config import config
from zbmigrate.modules.errors import StateIOError, StateLockError
from zbmigrate.modules.logger import Logger
from zbmigrate.modules.package import MigrationOutcome, PackageRecord


class MigrationState:
    def __init__(self,
                 migrated_packages: Optional[Dict[str, PackageRecord]] = None,
                 failed_packages: Optional[List[str]] = None,
                 source_prefix: str = ""):
        self.migrated_packages: Dict[str, PackageRecord] = dict(migrated_packages or {})
        self.failed_packages: List[str] = []
        for name in failed_packages or []:
            if name not in self.failed_packages and name not in self.migrated_packages:
                self.failed_packages.append(name)
        self.source_prefix = source_prefix or ""

    def is_migrated(self, name: str) -> bool:
        return name in self.migrated_packages

    def is_failed(self, name: str) -> bool:
        return name in self.failed_packages

    def apply(self, outcome: MigrationOutcome, record: Optional[PackageRecord] = None):
        """
        Apply one outcome. A name is never both migrated and failed: success
        clears an earlier failure, failure clears an earlier success.
        Skipped outcomes leave the state untouched.
        """
        name = outcome.name
        if outcome.status == MigrationOutcome.MIGRATED:
            if record is None:
                record = PackageRecord(name, outcome.version or "")
            elif outcome.version and record.version != outcome.version:
                record = record.replace(version=outcome.version)
            self.migrated_packages[name] = record
            if name in self.failed_packages:
                self.failed_packages.remove(name)
        elif outcome.status == MigrationOutcome.FAILED:
            self.migrated_packages.pop(name, None)
            if name not in self.failed_packages:
                self.failed_packages.append(name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "migrated_packages": {n: r.to_dict() for n, r in sorted(self.migrated_packages.items())},
            "failed_packages": list(self.failed_packages),
            "homebrew_prefix": self.source_prefix,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationState":
        migrated = {}
        for name, raw in (data.get("migrated_packages") or {}).items():
            if raw is not None and not isinstance(raw, dict):
                raise TypeError(f"entry for {name} is not an object")
            raw = dict(raw or {})
            raw.setdefault("name", name)
            migrated[name] = PackageRecord.from_dict(raw)
        return cls(
            migrated_packages=migrated,
            failed_packages=list(data.get("failed_packages") or []),
            source_prefix=str(data.get("homebrew_prefix") or ""),
        )

    def copy(self) -> "MigrationState":
        return MigrationState.from_dict(self.to_dict())


class StateStore:
    def __init__(self, path: Optional[str] = None):
        self.path = os.path.abspath(os.path.expanduser(
            path or config.getpath("paths", "state_file", fallback="~/.zerobrew/migration_state.json")))
        self.lock_path = self.path + ".lock"
        self.log = Logger("state")

    def load(self) -> MigrationState:
        """Return the persisted state, or a fresh one when no file exists yet."""
        if not os.path.exists(self.path):
            self.log.debug(f"No state file at {self.path}, starting fresh")
            return MigrationState()
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as e:
            raise StateIOError(self.path, f"Could not read migration state ({e})") from e
        if not isinstance(data, dict):
            raise StateIOError(self.path, "Migration state is not a JSON object")
        try:
            return MigrationState.from_dict(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise StateIOError(self.path, f"Malformed migration state ({e})") from e

    def save(self, state: MigrationState):
        dirp = os.path.dirname(self.path)
        tmp_path = None
        try:
            os.makedirs(dirp, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".migration_state.", suffix=".tmp", dir=dirp)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(state.to_dict(), fh, indent=2)
                fh.write("\n")
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as e:
            raise StateIOError(self.path, f"Could not write migration state ({e})") from e
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
        self.log.debug(f"State saved to {self.path}")

    def record_outcome(self,
                       name: str,
                       outcome: MigrationOutcome,
                       record: Optional[PackageRecord] = None) -> MigrationState:
        """Load, apply a single outcome, save. Returns the saved state."""
        if outcome.name != name:
            raise ValueError(f"Outcome for {outcome.name} recorded under {name}")
        state = self.load()
        state.apply(outcome, record)
        self.save(state)
        return state

    @contextlib.contextmanager
    def lock(self) -> Iterator[None]:
        """Exclusive advisory lock for the duration of a run; fails fast when held."""
        try:
            os.makedirs(os.path.dirname(self.lock_path), exist_ok=True)
            lf = open(self.lock_path, "a+", encoding="utf-8")
        except OSError as e:
            raise StateIOError(self.lock_path, f"Could not open lock file ({e})") from e
        with lf:
            try:
                fcntl.flock(lf.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except (BlockingIOError, PermissionError) as e:
                raise StateLockError(self.lock_path,
                                     "Another zb-migrate run holds the state lock") from e
            try:
                yield
            finally:
                fcntl.flock(lf.fileno(), fcntl.LOCK_UN)
