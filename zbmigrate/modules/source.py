# zbmigrate/modules/source.py
"""
Package manager adapters.

PackageSource is the capability the orchestrator talks to. The only concrete
implementation shells out to Homebrew (inventory, prefix, cleanup) and
Zerobrew (install, upgrade). All parsing of command output lives here; the
rest of the code only sees PackageRecord lists and InstallResult objects.
"""

from __future__ import annotations
import re
import json
import time
import subprocess
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from zbmigrate.modules.config import config
from zbmigrate.modules.errors import ConflictError, ExternalCommandError
from zbmigrate.modules.logger import Logger
from zbmigrate.modules.package import PackageRecord

CORE_TAPS = ("homebrew/core", "homebrew/cask")

# stderr fragments that mean the target refused to overwrite someone else's file
CONFLICT_PATTERNS = (
    re.compile(r"conflict", re.IGNORECASE),
    re.compile(r"already exists", re.IGNORECASE),
    re.compile(r"could not symlink", re.IGNORECASE),
    re.compile(r"would overwrite", re.IGNORECASE),
)


class CommandResult:
    """Result of one external command"""

    def __init__(self, command, returncode, stdout, stderr, duration):
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        self.duration = duration
        self.timestamp = datetime.now().isoformat()

    def ok(self):
        return self.returncode == 0

    def failure_text(self) -> str:
        return self.stderr.strip() or self.stdout.strip() or f"exit code {self.returncode}"

    def to_dict(self):
        return {
            "command": self.command,
            "returncode": self.returncode,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "duration": self.duration,
            "timestamp": self.timestamp,
        }


class CommandRunner:
    """Runs argv lists with captured output and a hard timeout."""

    def __init__(self, timeout: Optional[int] = None):
        if timeout is None:
            timeout = config.getint("commands", "timeout", fallback=1800)
        self.timeout = timeout or None
        self.log = Logger("command")

    def run(self, command: Sequence[str]) -> CommandResult:
        cmd_str = " ".join(command)
        self.log.debug(f"Running: {cmd_str}")
        start = time.time()
        try:
            proc = subprocess.run(list(command), stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                                  encoding="utf-8", errors="replace", timeout=self.timeout)
            result = CommandResult(command, proc.returncode, proc.stdout, proc.stderr,
                                   time.time() - start)
        except FileNotFoundError:
            result = CommandResult(command, 127, "", f"{command[0]}: command not found",
                                   time.time() - start)
        except subprocess.TimeoutExpired as e:
            result = CommandResult(command, 124, e.stdout if isinstance(e.stdout, str) else "",
                                   f"{cmd_str}: timed out after {self.timeout}s",
                                   time.time() - start)

        self.log.debug(f"Command completed in {result.duration:.2f}s, exit code {result.returncode}")
        if result.stdout.strip():
            self.log.debug(f"stdout: {result.stdout.strip()}")
        if result.stderr.strip():
            self.log.debug(f"stderr: {result.stderr.strip()}")
        return result


def classify_failure(result: CommandResult) -> ExternalCommandError:
    """Turn a failed command into ExternalCommandError, or ConflictError for link collisions."""
    text = result.failure_text()
    for pattern in CONFLICT_PATTERNS:
        if pattern.search(result.stderr):
            return ConflictError(result.command, result.returncode, text)
    return ExternalCommandError(result.command, result.returncode, text)


class InstallResult:
    """Typed result of install/upgrade: success with a version, or a failure reason."""

    def __init__(self,
                 success: bool,
                 version: Optional[str] = None,
                 reason: Optional[str] = None,
                 error: Optional[ExternalCommandError] = None,
                 upgraded: Optional[List[str]] = None):
        self.success = success
        self.version = version
        self.reason = reason
        self.error = error
        self.upgraded = list(upgraded or [])

    @classmethod
    def ok(cls, version: Optional[str] = None, upgraded: Optional[List[str]] = None) -> "InstallResult":
        return cls(True, version=version, upgraded=upgraded)

    @classmethod
    def fail(cls, error: ExternalCommandError) -> "InstallResult":
        return cls(False, reason=str(error), error=error)

    @property
    def is_conflict(self) -> bool:
        return isinstance(self.error, ConflictError)

    def __repr__(self):
        if self.success:
            return f"InstallResult(ok, version={self.version!r})"
        return f"InstallResult(failed, reason={self.reason!r})"


class PackageSource:
    """
    What the migration engine needs from the two package managers.
    Implementations report failures through InstallResult and never raise
    for a single failed package.
    """

    def list_installed(self) -> List[PackageRecord]:
        """Installed formulae with versions and installed dependencies."""
        raise NotImplementedError

    def list_casks(self) -> List[PackageRecord]:
        """Installed GUI application bundles (is_cask=True)."""
        raise NotImplementedError

    def prefix(self) -> str:
        """Install prefix of the source manager."""
        raise NotImplementedError

    def install(self, name: str) -> InstallResult:
        """Install one package with the target manager."""
        raise NotImplementedError

    def upgrade_all(self) -> InstallResult:
        raise NotImplementedError

    def check_outdated(self) -> List[str]:
        raise NotImplementedError

    def uninstall(self, name: str) -> InstallResult:
        """Remove one package from the source manager."""
        raise NotImplementedError


class HomebrewZerobrewSource(PackageSource):
    def __init__(self,
                 brew: Optional[str] = None,
                 zb: Optional[str] = None,
                 runner: Optional[CommandRunner] = None,
                 detailed: bool = True):
        self.brew = brew or config.get("commands", "brew", fallback="brew")
        self.zb = zb or config.get("commands", "zb", fallback="zb")
        self.runner = runner or CommandRunner()
        self.detailed = detailed
        self.log = Logger("source")
        self._prefix: Optional[str] = None

    def _brew(self, *args) -> CommandResult:
        return self.runner.run([self.brew, *args])

    def _zb(self, *args) -> CommandResult:
        return self.runner.run([self.zb, *args])

    # -----------------------
    # inventory
    # -----------------------
    def prefix(self) -> str:
        if self._prefix is None:
            res = self._brew("--prefix")
            if not res.ok():
                raise ExternalCommandError(
                    res.command, res.returncode,
                    f"Failed to detect Homebrew prefix: {res.failure_text()}\n"
                    "Ensure Homebrew is installed and 'brew' is in your PATH "
                    "(try 'brew doctor').")
            self._prefix = res.stdout.strip()
        return self._prefix

    @staticmethod
    def parse_versions(output: str) -> List[tuple]:
        """Parse 'name version [older versions]' lines; malformed lines are skipped."""
        entries = []
        for line in output.splitlines():
            parts = line.split()
            if len(parts) >= 2:
                entries.append((parts[0], parts[1]))
        return entries

    def pinned(self) -> set:
        res = self._brew("list", "--pinned")
        if not res.ok():
            return set()
        return {line.strip() for line in res.stdout.splitlines() if line.strip()}

    def dependencies(self, name: str) -> List[str]:
        res = self._brew("deps", "--installed", name)
        if not res.ok():
            self.log.warning(f"Could not read dependencies of {name}: {res.failure_text()}")
            return []
        return [line.strip() for line in res.stdout.splitlines() if line.strip()]

    def tap(self, name: str) -> Optional[str]:
        res = self._brew("info", "--json=v2", name)
        if not res.ok():
            return None
        try:
            data = json.loads(res.stdout)
            tap = data["formulae"][0].get("tap")
        except (ValueError, KeyError, IndexError, TypeError):
            return None
        if not tap or tap in CORE_TAPS:
            return None
        return tap

    def list_installed(self) -> List[PackageRecord]:
        res = self._brew("list", "--formula", "--versions")
        if not res.ok():
            raise ExternalCommandError(
                res.command, res.returncode,
                f"Failed to list Homebrew formulae: {res.failure_text()}\n"
                "Run 'brew doctor' to check for issues.")
        pinned = self.pinned()
        records = []
        for name, version in self.parse_versions(res.stdout):
            deps: Iterable[str] = ()
            tap = None
            if self.detailed:
                deps = self.dependencies(name)
                tap = self.tap(name)
            records.append(PackageRecord(name, version, deps, tap=tap, pinned=name in pinned))
        self.log.debug(f"Found {len(records)} installed formulae")
        return records

    def list_casks(self) -> List[PackageRecord]:
        res = self._brew("list", "--cask", "--versions")
        if not res.ok():
            return []
        return [PackageRecord(name, version, is_cask=True)
                for name, version in self.parse_versions(res.stdout)]

    # -----------------------
    # actions
    # -----------------------
    @staticmethod
    def _parse_installed_version(name: str, output: str) -> Optional[str]:
        # the name must stand alone: "openssl@3 3.3.1" is not a version of openssl
        m = re.search(rf"(?m)(?<![\w@.+-]){re.escape(name)}\s+v?(\d[\w.\-+]*)", output)
        return m.group(1) if m else None

    def install(self, name: str) -> InstallResult:
        res = self._zb("install", name)
        if not res.ok():
            return InstallResult.fail(classify_failure(res))
        return InstallResult.ok(self._parse_installed_version(name, res.stdout + res.stderr))

    def upgrade_all(self) -> InstallResult:
        res = self._zb("upgrade")
        if not res.ok():
            return InstallResult.fail(classify_failure(res))
        upgraded = re.findall(r"(?m)^(?:==>\s*)?Upgrad(?:ing|ed)\s+(\S+)", res.stdout)
        return InstallResult.ok(upgraded=upgraded)

    def check_outdated(self) -> List[str]:
        res = self._brew("outdated", "--formula", "--quiet")
        if not res.ok():
            raise classify_failure(res)
        return [line.split()[0] for line in res.stdout.splitlines() if line.strip()]

    def uninstall(self, name: str) -> InstallResult:
        res = self._brew("uninstall", "--ignore-dependencies", name)
        if not res.ok():
            return InstallResult.fail(classify_failure(res))
        return InstallResult.ok()


def render_brewfile(formulae: Iterable[PackageRecord], casks: Iterable[PackageRecord] = ()) -> str:
    formulae = list(formulae)
    lines = ["# Zerobrew Migration Brewfile", "# Generated from Homebrew installation", ""]
    taps = sorted({p.tap for p in formulae if p.tap})
    lines.extend(f'tap "{tap}"' for tap in taps)
    lines.append("")
    lines.extend(f'brew "{p.name}"' for p in formulae)
    lines.append("")
    lines.extend(f'cask "{p.name}"' for p in casks)
    return "\n".join(lines) + "\n"
