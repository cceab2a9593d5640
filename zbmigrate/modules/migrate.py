# zbmigrate/modules/migrate.py
"""
migrate.py - moves installed Homebrew formulae to Zerobrew.

Main behaviors:
 - Reads the inventory through a PackageSource; casks never enter the graph.
 - Builds the dependency graph and the install order (dependencies first,
   ties broken by name). A cycle aborts the run before anything happens.
 - Classifies every package (safe / risky / keep).
 - For each package in order, either skips it (already migrated, keep tier
   without --force, not requested, a dependency failed or was skipped in this
   run, user declined) or makes exactly one install attempt.
 - Every attempt is written to the state file before the next one starts, so
   an interrupted run can simply be started again.
 - Dry-run computes the same plan without installing, locking or saving.
"""

from __future__ import annotations
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from zbmigrate.modules.errors import ExternalCommandError
from zbmigrate.modules.graph import DependencyGraph, build_graph
from zbmigrate.modules.history import History
from zbmigrate.modules.logger import Logger
from zbmigrate.modules.package import MigrationOutcome, PackageRecord
from zbmigrate.modules.risk import RiskClassifier, RiskReport, RiskTier
from zbmigrate.modules.source import InstallResult, PackageSource
from zbmigrate.modules.state import MigrationState, StateStore

DRY_RUN = "dry-run"
EXECUTE = "execute"
INTERACTIVE = "interactive"
MODES = (DRY_RUN, EXECUTE, INTERACTIVE)

# answers accepted from the interactive confirm callback
YES, NO, ALL, QUIT = "yes", "no", "all", "quit"

ALREADY_MIGRATED = "already migrated"
NOT_REQUESTED = "not requested"
USER_SKIPPED = "user skipped"
CASK_SKIPPED = "casks are not supported by zerobrew"


class PlanEntry:
    def __init__(self, record: PackageRecord, tier: str, reason: str = "",
                 skip_reason: Optional[str] = None):
        self.record = record
        self.tier = tier
        self.reason = reason
        self.skip_reason = skip_reason

    @property
    def name(self) -> str:
        return self.record.name

    @property
    def action(self) -> str:
        return "skip" if self.skip_reason else "migrate"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.record.version,
            "tier": self.tier,
            "reason": self.reason,
            "action": self.action,
            "skip_reason": self.skip_reason,
        }


class MigrationPlan:
    def __init__(self,
                 entries: List[PlanEntry],
                 graph: DependencyGraph,
                 risk: RiskReport,
                 casks: Optional[List[PackageRecord]] = None,
                 missing: Optional[List[str]] = None):
        self.entries = entries
        self.graph = graph
        self.risk = risk
        self.casks = list(casks or [])
        self.missing = list(missing or [])

    @property
    def order(self) -> List[str]:
        return [e.name for e in self.entries]

    def to_migrate(self) -> List[PlanEntry]:
        return [e for e in self.entries if e.action == "migrate"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entries": [e.to_dict() for e in self.entries],
            "casks": [c.name for c in self.casks],
            "missing": self.missing,
        }


class MigrationReport:
    def __init__(self, mode: str, total_formulae: int = 0, total_casks: int = 0):
        self.mode = mode
        self.total_formulae = total_formulae
        self.total_casks = total_casks
        self.outcomes: List[MigrationOutcome] = []
        self.planned: List[str] = []
        self.missing: List[str] = []
        self.stopped = False
        self.plan: Optional[MigrationPlan] = None

    def add(self, outcome: MigrationOutcome):
        self.outcomes.append(outcome)

    def _with(self, status: str) -> List[MigrationOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def successful(self) -> List[MigrationOutcome]:
        return self._with(MigrationOutcome.MIGRATED)

    @property
    def failed(self) -> List[MigrationOutcome]:
        return self._with(MigrationOutcome.FAILED)

    @property
    def skipped(self) -> List[MigrationOutcome]:
        return self._with(MigrationOutcome.SKIPPED)

    def outcome_for(self, name: str) -> Optional[MigrationOutcome]:
        for o in self.outcomes:
            if o.name == name:
                return o
        return None

    @property
    def exit_code(self) -> int:
        return 1 if self.failed or self.missing else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "total_formulae": self.total_formulae,
            "total_casks": self.total_casks,
            "planned": list(self.planned),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "successful": len(self.successful),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
            "missing": list(self.missing),
            "stopped": self.stopped,
        }


class Migrator:
    def __init__(self,
                 source: PackageSource,
                 store: Optional[StateStore] = None,
                 classifier: Optional[RiskClassifier] = None,
                 history: Optional[History] = None,
                 confirm: Optional[Callable[[PlanEntry, int, int], str]] = None,
                 on_attempt: Optional[Callable[[PlanEntry], None]] = None,
                 on_outcome: Optional[Callable[[MigrationOutcome], None]] = None):
        """
        source: package manager capability
        store: state persistence (default: configured state file)
        classifier: risk classifier (default: built-in rule table)
        history: audit log (default: configured history file)
        confirm: interactive callback (entry, index, total) -> yes|no|all|quit
        on_attempt / on_outcome: progress callbacks for the UI
        """
        self.source = source
        self.store = store or StateStore()
        self.classifier = classifier or RiskClassifier()
        self.history = history if history is not None else History()
        self.confirm = confirm
        self.on_attempt = on_attempt
        self.on_outcome = on_outcome
        self.log = Logger("migrate")
        # Homebrew prefix recorded in the state; named in conflict warnings
        self.source_prefix = ""

    # -----------------------
    # analysis
    # -----------------------
    def analyze(self, records: Optional[List[PackageRecord]] = None,
                casks: Optional[List[PackageRecord]] = None):
        """
        Inventory -> graph -> order -> risk.
        Returns (formulae, casks, graph, order, risk); raises GraphError on a cycle.
        """
        if records is None:
            records = self.source.list_installed()
            if casks is None:
                casks = self.source.list_casks()
        formulae = [r for r in records if not r.is_cask]
        casks = [c for c in casks or [] if c.is_cask] + [r for r in records if r.is_cask]
        graph = build_graph(formulae)
        order = graph.topo_sort()
        risk = self.classifier.classify(order, graph, formulae + casks)
        return formulae, casks, graph, order, risk

    def plan(self,
             records: Optional[List[PackageRecord]] = None,
             packages: Optional[Iterable[str]] = None,
             force: bool = False,
             state: Optional[MigrationState] = None,
             casks: Optional[List[PackageRecord]] = None) -> MigrationPlan:
        """
        Compute the ordered plan. With packages, the plan is restricted to
        those names plus their dependencies that are not migrated yet.
        """
        formulae, casks, graph, order, risk = self.analyze(records, casks)
        by_name = {r.name: r for r in formulae}
        state = state if state is not None else self.store.load()

        selected: Optional[Set[str]] = None
        missing: List[str] = []
        if packages is not None:
            requested = list(dict.fromkeys(packages))
            missing = [p for p in requested if p not in by_name]
            selected = set()
            for name in requested:
                if name not in by_name:
                    continue
                selected.add(name)
                selected.update(d for d in graph.transitive_dependencies(name)
                                if not state.is_migrated(d))

        entries = []
        for name in order:
            record = by_name[name]
            tier = risk.tier_of(name)
            entry = PlanEntry(record, tier, risk.reason_of(name))
            if state.is_migrated(name):
                entry.skip_reason = ALREADY_MIGRATED
            elif selected is not None and name not in selected:
                entry.skip_reason = NOT_REQUESTED
            elif tier == RiskTier.KEEP and not force:
                entry.skip_reason = f"keep in homebrew: {entry.reason}"
            entries.append(entry)

        return MigrationPlan(entries, graph, risk, casks, missing)

    # -----------------------
    # execution
    # -----------------------
    def migrate_package(self, record: PackageRecord,
                        prefix: Optional[str] = None) -> MigrationOutcome:
        """Exactly one install attempt; failures are returned, never retried."""
        self.log.info(f"Migrating {record.name} ({record.version})")
        try:
            result = self.source.install(record.name)
        except ExternalCommandError as e:
            result = InstallResult.fail(e)
        if result.success:
            version = result.version or record.version
            self.log.success(f"{record.name} migrated ({version})")
            return MigrationOutcome.migrated(record.name, version)
        reason = result.reason or "install failed"
        if result.is_conflict:
            where = f" ({prefix})" if prefix else ""
            self.log.warning(f"{record.name}: link conflict, keep it in Homebrew{where}: {reason}")
        else:
            self.log.error(f"{record.name}: migration failed: {reason}")
        return MigrationOutcome.failed(record.name, reason)

    def _emit(self, report: MigrationReport, outcome: MigrationOutcome, entry: Optional[PlanEntry],
              mode: str):
        report.add(outcome)
        if mode != DRY_RUN and outcome.reason != NOT_REQUESTED:
            self.history.record(
                "migrate",
                package=outcome.name,
                details={"mode": mode, "tier": entry.tier if entry else RiskTier.KEEP,
                         "version": outcome.version},
                result=outcome.status,
                note=outcome.reason,
            )
        if self.on_outcome:
            self.on_outcome(outcome)

    def _capture_prefix(self, state: MigrationState) -> MigrationState:
        if state.source_prefix:
            return state
        try:
            state.source_prefix = self.source.prefix()
        except ExternalCommandError as e:
            self.log.warning(f"Could not detect source prefix: {e}")
            return state
        self.store.save(state)
        return state

    def run(self,
            mode: str = EXECUTE,
            packages: Optional[Iterable[str]] = None,
            force: bool = False,
            records: Optional[List[PackageRecord]] = None,
            casks: Optional[List[PackageRecord]] = None) -> MigrationReport:
        if mode not in MODES:
            raise ValueError(f"Unknown mode: {mode}")
        if records is None:
            records = self.source.list_installed()
        if casks is None:
            casks = self.source.list_casks()

        # ordering errors surface here, before any lock, install or write
        plan = self.plan(records, packages=packages, force=force, casks=casks)
        report = MigrationReport(mode, len(plan.entries), len(plan.casks))
        report.missing = plan.missing
        report.plan = plan
        for name in plan.missing:
            self.log.error(f"Package not found in Homebrew: {name}")

        if mode == DRY_RUN:
            self._walk(plan, report, mode)
            return report

        with self.store.lock():
            # re-plan against the state as seen under the lock
            state = self._capture_prefix(self.store.load())
            self.source_prefix = state.source_prefix or ""
            plan = self.plan(records, packages=packages, force=force, state=state, casks=casks)
            report.plan = plan
            self._walk(plan, report, mode)
        self.log.info(
            f"Migration finished: {len(report.successful)} migrated, "
            f"{len(report.failed)} failed, {len(report.skipped)} skipped")
        return report

    def _walk(self, plan: MigrationPlan, report: MigrationReport, mode: str):
        # names that failed or were skipped this run; their dependents are not safe to install
        blocked: Set[str] = set()
        ask = mode == INTERACTIVE and self.confirm is not None
        total = len(plan.entries)

        for idx, entry in enumerate(plan.entries, start=1):
            name = entry.name
            if entry.skip_reason:
                if entry.skip_reason not in (ALREADY_MIGRATED, NOT_REQUESTED):
                    blocked.add(name)
                self._emit(report, MigrationOutcome.skipped(name, entry.skip_reason), entry, mode)
                continue

            bad_deps = [d for d in plan.graph.dependencies_of(name) if d in blocked]
            if bad_deps:
                blocked.add(name)
                reason = f"dependency not migrated: {', '.join(bad_deps)}"
                self._emit(report, MigrationOutcome.skipped(name, reason), entry, mode)
                continue

            if mode == DRY_RUN:
                report.planned.append(name)
                continue

            if ask:
                answer = self.confirm(entry, idx, total)
                if answer == QUIT:
                    report.stopped = True
                    self.log.info("Migration stopped by user")
                    break
                if answer == NO:
                    blocked.add(name)
                    self._emit(report, MigrationOutcome.skipped(name, USER_SKIPPED), entry, mode)
                    continue
                if answer == ALL:
                    ask = False

            if self.on_attempt:
                self.on_attempt(entry)
            outcome = self.migrate_package(entry.record, prefix=self.source_prefix)
            if outcome.status != MigrationOutcome.MIGRATED:
                blocked.add(name)
            self.store.record_outcome(name, outcome, entry.record)
            self._emit(report, outcome, entry, mode)

        if report.stopped:
            return
        for cask in plan.casks:
            self._emit(report, MigrationOutcome.skipped(cask.name, CASK_SKIPPED), None, mode)

    # -----------------------
    # cleanup
    # -----------------------
    def cleanup_source(self, names: Optional[Iterable[str]] = None,
                       force: bool = False) -> Dict[str, InstallResult]:
        """
        Uninstall migrated packages from Homebrew. Without force nothing is
        removed. names narrows the set; names that were never migrated are
        ignored. Failures are reported per package.
        """
        if not force:
            return {}
        results: Dict[str, InstallResult] = {}
        with self.store.lock():
            state = self.store.load()
            targets = sorted(state.migrated_packages)
            if names is not None:
                wanted = set(names)
                targets = [n for n in targets if n in wanted]
            for name in targets:
                self.log.info(f"Removing from Homebrew: {name}")
                try:
                    res = self.source.uninstall(name)
                except ExternalCommandError as e:
                    res = InstallResult.fail(e)
                results[name] = res
                self.history.record("cleanup", package=name,
                                    result="ok" if res.success else "fail",
                                    note=res.reason)
        return results
