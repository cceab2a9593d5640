"""
Shared fixtures for zb-migrate tests.

Nothing here shells out: FakeSource stands in for Homebrew/Zerobrew, and
every path the code would write to (state, history, log) points into the
test's tmp_path.
"""

import pytest

from zbmigrate.modules.config import config
from zbmigrate.modules.errors import ConflictError, ExternalCommandError
from zbmigrate.modules.history import History
from zbmigrate.modules.logger import Logger
from zbmigrate.modules.migrate import Migrator
from zbmigrate.modules.package import PackageRecord
from zbmigrate.modules.risk import RiskClassifier, RiskTable
from zbmigrate.modules.source import InstallResult, PackageSource
from zbmigrate.modules.state import StateStore


class SimulatedCrash(BaseException):
    """Raised by FakeSource to mimic the process dying mid-run."""


def rec(name, *deps, version="1.0", **kwargs):
    return PackageRecord(name, version, deps, **kwargs)


def cask(name, version="1.0"):
    return PackageRecord(name, version, is_cask=True)


class FakeSource(PackageSource):
    """
    In-memory PackageSource.

    results maps a name to an InstallResult, or to a string which becomes a
    failed install with that stderr; names not listed install fine.
    crash_after=K raises SimulatedCrash on the (K+1)th install attempt.
    """

    def __init__(self, records=(), casks=(), results=None, crash_after=None,
                 prefix="/opt/homebrew", outdated=(), upgrade_result=None, uninstall_results=None):
        self.records = list(records)
        self.casks = list(casks)
        self.results = dict(results or {})
        self.crash_after = crash_after
        self._prefix = prefix
        self.outdated = list(outdated)
        self.upgrade_result = upgrade_result
        self.uninstall_results = dict(uninstall_results or {})
        self.calls = []

    @property
    def installs(self):
        return [c[1] for c in self.calls if c[0] == "install"]

    def list_installed(self):
        self.calls.append(("list_installed",))
        return list(self.records)

    def list_casks(self):
        self.calls.append(("list_casks",))
        return list(self.casks)

    def prefix(self):
        if self._prefix is None:
            raise ExternalCommandError(["brew", "--prefix"], 1, "brew: command not found")
        return self._prefix

    def install(self, name):
        if self.crash_after is not None and len(self.installs) >= self.crash_after:
            raise SimulatedCrash(name)
        self.calls.append(("install", name))
        result = self.results.get(name)
        if result is None:
            version = next((r.version for r in self.records if r.name == name), "")
            return InstallResult.ok(version)
        if isinstance(result, str):
            error_cls = ConflictError if "conflict" in result.lower() else ExternalCommandError
            return InstallResult.fail(error_cls(["zb", "install", name], 1, result))
        return result

    def upgrade_all(self):
        self.calls.append(("upgrade_all",))
        return self.upgrade_result or InstallResult.ok(upgraded=[])

    def check_outdated(self):
        self.calls.append(("check_outdated",))
        return list(self.outdated)

    def uninstall(self, name):
        self.calls.append(("uninstall", name))
        reason = self.uninstall_results.get(name)
        if reason:
            return InstallResult.fail(ExternalCommandError(["brew", "uninstall", name], 1, reason))
        return InstallResult.ok()


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Point state, history and log files into tmp_path; reset logger switches afterwards."""
    log_file = tmp_path / "zb-migrate.log"
    config.override({
        "paths": {
            "state_file": str(tmp_path / "state.json"),
            "history_file": str(tmp_path / "history.log"),
            "risk_table": "",
        },
        "logging": {"log_file": str(log_file), "log_to_console": False, "level": "info"},
    })
    original_append = Logger._append
    monkeypatch.setattr(Logger, "_append",
                        lambda self, path, line: original_append(self, str(log_file), line))
    yield
    config.reload()
    Logger.set_verbose(False)
    Logger.no_color = False


@pytest.fixture
def store(tmp_path):
    return StateStore(str(tmp_path / "state.json"))


@pytest.fixture
def history(tmp_path):
    return History(str(tmp_path / "history.log"))


@pytest.fixture
def empty_classifier():
    """Classifier with no rules: only taps, pins and casks affect the tier."""
    return RiskClassifier(RiskTable())


@pytest.fixture
def make_migrator(store, history, empty_classifier):
    def factory(source, classifier=None, **kwargs):
        return Migrator(source, store=store, classifier=classifier or empty_classifier,
                        history=history, **kwargs)
    return factory
