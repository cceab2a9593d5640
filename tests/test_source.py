import json
import subprocess

from zbmigrate.modules.errors import ConflictError, ExternalCommandError
from zbmigrate.modules.migrate import EXECUTE
from zbmigrate.modules.package import MigrationOutcome
from zbmigrate.modules.source import (
    CommandResult, CommandRunner, HomebrewZerobrewSource, classify_failure, render_brewfile,
)

from conftest import cask, rec


class ScriptedRunner:
    """Answers argv lists from a table; unknown commands fail with rc 1."""

    def __init__(self, responses):
        self.responses = responses
        self.commands = []

    def run(self, command):
        self.commands.append(list(command))
        rc, out, err = self.responses.get(tuple(command), (1, "", "unknown command"))
        return CommandResult(command, rc, out, err, 0.0)


def make_source(responses, detailed=True):
    return HomebrewZerobrewSource(brew="brew", zb="zb", runner=ScriptedRunner(responses),
                                  detailed=detailed)


def test_inventory_reads_versions_deps_taps_and_pins():
    info = json.dumps({"formulae": [{"name": "tool", "tap": "someone/tools"}]})
    core = json.dumps({"formulae": [{"name": "git", "tap": "homebrew/core"}]})
    source = make_source({
        ("brew", "list", "--formula", "--versions"): (0, "git 2.42.0 2.41.0\npcre2 10.42\ntool 1.0\nbroken\n", ""),
        ("brew", "list", "--pinned"): (0, "pcre2\n", ""),
        ("brew", "deps", "--installed", "git"): (0, "pcre2\ngettext\n", ""),
        ("brew", "deps", "--installed", "pcre2"): (0, "", ""),
        ("brew", "deps", "--installed", "tool"): (1, "", "Error: oops"),
        ("brew", "info", "--json=v2", "git"): (0, core, ""),
        ("brew", "info", "--json=v2", "tool"): (0, info, ""),
    })
    records = {r.name: r for r in source.list_installed()}

    assert sorted(records) == ["git", "pcre2", "tool"]
    assert records["git"].version == "2.42.0"
    assert records["git"].dependencies == ("pcre2", "gettext")
    assert records["git"].tap is None
    assert records["pcre2"].pinned
    assert records["tool"].tap == "someone/tools"
    assert records["tool"].dependencies == ()


def test_inventory_failure_raises():
    source = make_source({("brew", "list", "--formula", "--versions"): (1, "", "Error: broken")})
    try:
        source.list_installed()
    except ExternalCommandError as e:
        assert "Error: broken" in str(e)
    else:
        raise AssertionError("expected ExternalCommandError")


def test_casks_and_prefix():
    source = make_source({
        ("brew", "list", "--cask", "--versions"): (0, "firefox 120.0\n", ""),
        ("brew", "--prefix"): (0, "/opt/homebrew\n", ""),
    })
    assert [(c.name, c.is_cask) for c in source.list_casks()] == [("firefox", True)]
    assert source.prefix() == "/opt/homebrew"
    source.prefix()
    assert source.runner.commands.count(["brew", "--prefix"]) == 1
    assert make_source({}).list_casks() == []


def test_install_success_reports_version():
    source = make_source({("zb", "install", "jq"): (0, "==> Installed jq 1.7.1\n", "")})
    result = source.install("jq")
    assert result.success
    assert result.version == "1.7.1"


def test_install_conflict_is_classified():
    stderr = "Error: Could not symlink bin/jq\nTarget already exists"
    source = make_source({("zb", "install", "jq"): (1, "", stderr)})
    result = source.install("jq")
    assert not result.success
    assert result.is_conflict
    assert result.reason == stderr


def test_plain_failure_is_not_a_conflict():
    err = classify_failure(CommandResult(["zb", "install", "x"], 2, "", "network unreachable\n", 0.1))
    assert type(err) is ExternalCommandError
    assert str(err) == "network unreachable"
    assert isinstance(classify_failure(
        CommandResult(["zb", "install", "x"], 1, "", "would overwrite /x", 0.1)), ConflictError)


def test_upgrade_and_outdated():
    source = make_source({
        ("zb", "upgrade"): (0, "==> Upgrading jq\n==> Upgrading wget\n", ""),
        ("brew", "outdated", "--formula", "--quiet"): (0, "jq\nwget\n", ""),
    })
    assert source.upgrade_all().upgraded == ["jq", "wget"]
    assert source.check_outdated() == ["jq", "wget"]


def test_uninstall_failure_keeps_stderr():
    source = make_source({("brew", "uninstall", "--ignore-dependencies", "git"): (1, "", "Error: in use")})
    result = source.uninstall("git")
    assert not result.success
    assert result.reason == "Error: in use"


def test_runner_missing_binary_and_timeout(monkeypatch):
    runner = CommandRunner(timeout=5)
    result = runner.run(["definitely-not-a-real-binary-zbm"])
    assert result.returncode == 127
    assert "command not found" in result.stderr

    def slow(*args, **kwargs):
        raise subprocess.TimeoutExpired(cmd=args[0], timeout=5)

    monkeypatch.setattr(subprocess, "run", slow)
    result = runner.run(["zb", "install", "llvm"])
    assert result.returncode == 124
    assert "timed out" in result.stderr


def test_install_version_ignores_versioned_dependency_lines():
    out = "==> Installing dependency openssl@3 3.3.1\n==> Installed openssl 3.3.1\n"
    source = make_source({("zb", "install", "openssl"): (0, out, "")})
    assert source.install("openssl").version == "3.3.1"

    only_dep = "==> Installing dependency openssl@3 3.3.1\n"
    source = make_source({("zb", "install", "openssl"): (0, only_dep, "")})
    assert source.install("openssl").version is None


def test_undecodable_output_fails_one_package_only(tmp_path, make_migrator):
    zb = tmp_path / "zb"
    zb.write_text('#!/bin/sh\n'
                  'if [ "$2" = "a" ]; then printf \'bad \\377\\n\' >&2; exit 1; fi\n'
                  'echo "==> Installed $2 2.0"\n')
    zb.chmod(0o755)

    raw = CommandRunner(timeout=30).run([str(zb), "install", "a"])
    assert raw.returncode == 1
    assert raw.stderr.startswith("bad ")

    source = HomebrewZerobrewSource(brew=str(tmp_path / "no-brew"), zb=str(zb),
                                    runner=CommandRunner(timeout=30))
    report = make_migrator(source).run(EXECUTE, records=[rec("a"), rec("b")], casks=[])

    assert report.outcome_for("a").status == MigrationOutcome.FAILED
    assert "bad" in report.outcome_for("a").reason
    assert report.outcome_for("b").status == MigrationOutcome.MIGRATED
    assert report.outcome_for("b").version == "2.0"


def test_brewfile_layout():
    content = render_brewfile([rec("git"), rec("tool", tap="b/tools"), rec("x", tap="a/x")],
                              [cask("firefox")])
    lines = content.splitlines()
    assert lines[0].startswith("#")
    assert lines.index('tap "a/x"') < lines.index('tap "b/tools"') < lines.index('brew "git"')
    assert lines[-1] == 'cask "firefox"'
