import json

import pytest

from zbmigrate.modules.errors import GraphError, StateLockError
from zbmigrate.modules.migrate import (
    ALL, ALREADY_MIGRATED, CASK_SKIPPED, DRY_RUN, EXECUTE, INTERACTIVE, NO,
    NOT_REQUESTED, QUIT, USER_SKIPPED, YES,
)
from zbmigrate.modules.package import MigrationOutcome
from zbmigrate.modules.risk import RiskClassifier, RiskRule, RiskTable, RiskTier

from conftest import FakeSource, SimulatedCrash, cask, rec


def chain():
    # base <- lib <- app, tool is independent
    return [rec("app", "lib"), rec("lib", "base"), rec("base"), rec("tool")]


def test_execute_migrates_in_dependency_order(make_migrator, store):
    source = FakeSource(chain())
    report = make_migrator(source).run(EXECUTE)

    assert source.installs == ["base", "tool", "lib", "app"]
    assert [o.status for o in report.outcomes] == [MigrationOutcome.MIGRATED] * 4
    assert report.exit_code == 0
    state = store.load()
    assert sorted(state.migrated_packages) == ["app", "base", "lib", "tool"]
    assert state.source_prefix == "/opt/homebrew"


def test_second_run_is_idempotent(make_migrator):
    source = FakeSource(chain())
    make_migrator(source).run(EXECUTE)
    source.calls.clear()

    report = make_migrator(source).run(EXECUTE)
    assert source.installs == []
    assert {o.reason for o in report.outcomes} == {ALREADY_MIGRATED}


def test_failed_dependency_skips_dependents(make_migrator, store):
    source = FakeSource(chain(), results={"lib": "Error: lib: build failed"})
    report = make_migrator(source).run(EXECUTE)

    assert source.installs == ["base", "tool", "lib"]
    assert report.outcome_for("lib") == MigrationOutcome.failed("lib", "Error: lib: build failed")
    assert report.outcome_for("app") == MigrationOutcome.skipped("app", "dependency not migrated: lib")
    assert report.exit_code == 1
    assert store.load().failed_packages == ["lib"]


def test_conflict_reason_is_kept_verbatim(make_migrator, store, tmp_path):
    stderr = "Error: Could not symlink bin/foo\nTarget /opt/zerobrew/bin/foo already exists (conflict)"
    source = FakeSource([rec("foo")], results={"foo": stderr})
    report = make_migrator(source).run(EXECUTE)
    assert report.outcome_for("foo").reason == stderr
    assert store.load().source_prefix == "/opt/homebrew"
    log_text = (tmp_path / "zb-migrate.log").read_text()
    assert "foo: link conflict, keep it in Homebrew (/opt/homebrew)" in log_text


def test_crash_leaves_completed_attempts_durable(make_migrator, store):
    records = [rec(n) for n in ("a", "b", "c", "d", "e")]
    source = FakeSource(records, results={"b": "nope"}, crash_after=3)
    with pytest.raises(SimulatedCrash):
        make_migrator(source).run(EXECUTE)

    state = store.load()
    assert sorted(state.migrated_packages) == ["a", "c"]
    assert state.failed_packages == ["b"]

    # restart: migrated ones are skipped, the failed one is tried again
    source.crash_after = None
    source.calls.clear()
    source.results = {}
    report = make_migrator(source).run(EXECUTE)
    assert source.installs == ["b", "d", "e"]
    assert store.load().failed_packages == []
    assert report.exit_code == 0


def test_dry_run_makes_no_calls_and_no_writes(make_migrator, store, history, tmp_path):
    source = FakeSource(chain(), casks=[cask("firefox")])
    report = make_migrator(source).run(DRY_RUN)

    assert source.installs == []
    assert report.planned == ["base", "tool", "lib", "app"]
    assert report.outcome_for("firefox").reason == CASK_SKIPPED
    assert not (tmp_path / "state.json").exists()
    assert not (tmp_path / "state.json.lock").exists()
    assert history.list_history() == []


def test_dry_run_and_execute_agree_when_nothing_fails(make_migrator):
    table = RiskTable([RiskRule("base", RiskTier.KEEP, "system library")])
    classifier = RiskClassifier(table)
    dry = make_migrator(FakeSource(chain()), classifier=classifier).run(DRY_RUN)
    real = make_migrator(FakeSource(chain()), classifier=classifier).run(EXECUTE)

    assert dry.planned == [o.name for o in real.successful]
    assert [(o.name, o.reason) for o in dry.skipped] == [(o.name, o.reason) for o in real.skipped]


def test_keep_is_skipped_and_blocks_dependents_without_force(make_migrator):
    table = RiskTable([RiskRule("base", RiskTier.KEEP, "system library")])
    source = FakeSource(chain())
    report = make_migrator(source, classifier=RiskClassifier(table)).run(EXECUTE)

    assert source.installs == ["tool"]
    assert report.outcome_for("base").reason.startswith("keep in homebrew: known conflict: base")
    assert report.outcome_for("lib").reason == "dependency not migrated: base"

    forced = FakeSource(chain())
    make_migrator(forced, classifier=RiskClassifier(table)).run(EXECUTE, force=True)
    # tool was migrated by the first run
    assert forced.installs == ["base", "lib", "app"]


def test_filter_keeps_requested_and_unmigrated_dependencies(make_migrator, store):
    source = FakeSource(chain())
    make_migrator(source).run(EXECUTE, packages=["base"])
    source.calls.clear()

    report = make_migrator(source).run(EXECUTE, packages=["app"])
    assert source.installs == ["lib", "app"]
    assert report.outcome_for("base").reason == ALREADY_MIGRATED
    assert report.outcome_for("tool").reason == NOT_REQUESTED
    assert "tool" not in store.load().migrated_packages


def test_unknown_requested_name_is_reported(make_migrator):
    source = FakeSource(chain())
    report = make_migrator(source).run(EXECUTE, packages=["tool", "nope"])
    assert report.missing == ["nope"]
    assert source.installs == ["tool"]
    assert report.exit_code == 1


def test_cycle_aborts_before_anything_happens(make_migrator, tmp_path):
    source = FakeSource([rec("P", "Q"), rec("Q", "P"), rec("ok")])
    with pytest.raises(GraphError) as excinfo:
        make_migrator(source).run(EXECUTE)
    assert excinfo.value.cycle == ["P", "Q"]
    assert source.installs == []
    assert not (tmp_path / "state.json").exists()


def test_interactive_answers(make_migrator):
    answers = {"base": YES, "tool": NO, "lib": ALL}
    asked = []

    def confirm(entry, index, total):
        asked.append(entry.name)
        return answers[entry.name]

    source = FakeSource(chain() + [rec("zed", "tool")])
    report = make_migrator(source, confirm=confirm).run(INTERACTIVE)

    assert asked == ["base", "tool", "lib"]
    assert source.installs == ["base", "lib", "app"]
    assert report.outcome_for("tool").reason == USER_SKIPPED
    assert report.outcome_for("zed").reason == "dependency not migrated: tool"


def test_interactive_quit_stops_the_run(make_migrator):
    source = FakeSource(chain())
    report = make_migrator(source, confirm=lambda entry, i, n: QUIT).run(INTERACTIVE)
    assert report.stopped
    assert source.installs == []
    assert report.outcomes == []


def test_held_lock_fails_fast(make_migrator, store):
    source = FakeSource(chain())
    with store.lock():
        with pytest.raises(StateLockError):
            make_migrator(source).run(EXECUTE)
    assert source.installs == []


def test_outcomes_are_written_to_history(make_migrator, history):
    source = FakeSource([rec("a"), rec("b")], results={"b": "broken"}, casks=[cask("iterm2")])
    make_migrator(source).run(EXECUTE)

    entries = list(reversed(history.list_history()))
    assert [(e["package"], e["result"]) for e in entries] == [
        ("a", "migrated"), ("b", "failed"), ("iterm2", "skipped")]
    assert entries[1]["note"] == "broken"
    assert entries[0]["details"]["mode"] == EXECUTE


def test_plan_dict_lists_actions(make_migrator):
    plan = make_migrator(FakeSource(chain())).plan(packages=["lib"])
    data = json.loads(json.dumps(plan.to_dict()))
    actions = {e["name"]: e["action"] for e in data["entries"]}
    assert actions == {"base": "migrate", "tool": "skip", "lib": "migrate", "app": "skip"}


def test_cleanup_requires_force(make_migrator, history):
    source = FakeSource([rec("a"), rec("b")], uninstall_results={"b": "Error: b is required"})
    migrator = make_migrator(source)
    migrator.run(EXECUTE)

    assert migrator.cleanup_source() == {}
    assert ("uninstall", "a") not in source.calls

    results = migrator.cleanup_source(force=True)
    assert results["a"].success
    assert results["b"].reason == "Error: b is required"
    assert [e["package"] for e in history.list_history(action="cleanup")] == ["b", "a"]
