# zbmigrate/modules/risk.py
"""
Risk classification of installed packages.

Tiers:
 - keep  : the package itself is a known conflict (rule table) or a cask.
 - risky : matches a softer warning rule, comes from a third-party tap, is
           pinned, or depends (directly or transitively) on a keep/risky package.
 - safe  : everything else.

The rule table is data: zbmigrate/data/risk_table.yaml plus an optional user
table configured as [paths] risk_table. Propagation runs once over the
install order so risk reaches the top of a dependency chain in a single pass.
"""

from __future__ import annotations
import os
import fnmatch
from typing import Any, Dict, Iterable, List, Optional

import yaml

from zbmigrate.modules.config import config
from zbmigrate.modules.errors import MigrateError
from zbmigrate.modules.graph import DependencyGraph
from zbmigrate.modules.logger import Logger
from zbmigrate.modules.package import PackageRecord

DEFAULT_TABLE = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
                             "data", "risk_table.yaml")


class RiskTier:
    SAFE = "safe"
    RISKY = "risky"
    KEEP = "keep"

    ALL = (SAFE, RISKY, KEEP)

    @classmethod
    def rank(cls, tier: str) -> int:
        return cls.ALL.index(tier)


class RiskTableError(MigrateError):
    pass


class RiskRule:
    def __init__(self, pattern: str, tier: str, reason: str = ""):
        if tier not in (RiskTier.KEEP, RiskTier.RISKY):
            raise RiskTableError(f"Invalid tier '{tier}' for pattern '{pattern}'")
        self.pattern = pattern
        self.tier = tier
        self.reason = reason or "Known to cause migration issues"

    def matches(self, name: str) -> bool:
        return name == self.pattern or fnmatch.fnmatchcase(name, self.pattern)

    def __repr__(self):
        return f"RiskRule({self.pattern!r}, {self.tier!r})"


class RiskTable:
    def __init__(self, rules: Optional[Iterable[RiskRule]] = None):
        self.rules: List[RiskRule] = list(rules or [])

    @classmethod
    def from_data(cls, data: Any, source: str = "<data>") -> "RiskTable":
        if data is None:
            return cls()
        if not isinstance(data, dict) or not isinstance(data.get("rules", []), list):
            raise RiskTableError(f"Risk table {source} must be a mapping with a 'rules' list")
        rules = []
        for idx, item in enumerate(data.get("rules") or []):
            if not isinstance(item, dict) or "pattern" not in item:
                raise RiskTableError(f"Rule #{idx} in {source} needs a 'pattern'")
            rules.append(RiskRule(str(item["pattern"]),
                                  str(item.get("tier", RiskTier.KEEP)).lower(),
                                  str(item.get("reason", ""))))
        return cls(rules)

    @classmethod
    def load(cls, path: str) -> "RiskTable":
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh)
        except (OSError, yaml.YAMLError) as e:
            raise RiskTableError(f"Could not read risk table {path}: {e}") from e
        return cls.from_data(data, source=path)

    @classmethod
    def default(cls, extra_path: Optional[str] = None) -> "RiskTable":
        table = cls.load(DEFAULT_TABLE)
        if extra_path is None:
            extra_path = config.getpath("paths", "risk_table")
        if extra_path:
            table.extend(cls.load(extra_path))
        return table

    def extend(self, other: "RiskTable"):
        self.rules.extend(other.rules)

    def match(self, name: str) -> Optional[RiskRule]:
        for rule in self.rules:
            if rule.matches(name):
                return rule
        return None


class RiskReport:
    def __init__(self, records: Optional[Dict[str, PackageRecord]] = None):
        self.records: Dict[str, PackageRecord] = dict(records or {})
        self.tiers: Dict[str, str] = {}
        self.reasons: Dict[str, str] = {}
        self.problematic_dependencies: Dict[str, List[str]] = {}

    def set(self, name: str, tier: str, reason: Optional[str] = None):
        self.tiers[name] = tier
        if tier == RiskTier.SAFE:
            self.reasons.pop(name, None)
        elif reason:
            self.reasons[name] = reason

    def tier_of(self, name: str) -> str:
        return self.tiers.get(name, RiskTier.SAFE)

    def reason_of(self, name: str) -> str:
        return self.reasons.get(name, "")

    def by_tier(self, tier: str) -> List[str]:
        return sorted(n for n, t in self.tiers.items() if t == tier)

    def _entry(self, name: str) -> Dict[str, Any]:
        record = self.records.get(name)
        return {
            "name": name,
            "version": record.version if record else "",
            "risk": self.tier_of(name),
            "reason": self.reason_of(name) or "No known problematic dependencies",
            "problematic_dependencies": self.problematic_dependencies.get(name, []),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "safe_to_migrate": [self._entry(n) for n in self.by_tier(RiskTier.SAFE)],
            "risky": [self._entry(n) for n in self.by_tier(RiskTier.RISKY)],
            "should_keep_in_homebrew": [self._entry(n) for n in self.by_tier(RiskTier.KEEP)],
            "total_packages": len(self.tiers),
        }


class RiskClassifier:
    def __init__(self, table: Optional[RiskTable] = None):
        self.table = table if table is not None else RiskTable.default()
        self.log = Logger("risk")

    def _base_tier(self, record: Optional[PackageRecord], name: str):
        rule = self.table.match(name)
        if rule and rule.tier == RiskTier.KEEP:
            return RiskTier.KEEP, f"known conflict: {rule.pattern} ({rule.reason})"
        if rule:
            return RiskTier.RISKY, rule.reason
        if record is not None and record.tap:
            return RiskTier.RISKY, f"third-party tap: {record.tap}"
        if record is not None and record.pinned:
            return RiskTier.RISKY, "pinned in source manager"
        return RiskTier.SAFE, None

    def classify(self,
                 order: List[str],
                 graph: DependencyGraph,
                 records: Optional[Iterable[PackageRecord]] = None) -> RiskReport:
        """
        order: install order from DependencyGraph.topo_sort()
        graph: the graph the order was computed from
        records: optional inventory records (taps, pinned flags, versions, casks)
        """
        by_name = {r.name: r for r in records or ()}
        report = RiskReport(by_name)

        # order lists dependencies first, so every dependency is final when its dependents are visited
        for name in order:
            tier, reason = self._base_tier(by_name.get(name), name)
            report.set(name, tier, reason)

            keep_deps = set()
            keep_dep = risky_dep = None
            for dep in graph.dependencies_of(name):
                dep_tier = report.tier_of(dep)
                keep_deps.update(report.problematic_dependencies.get(dep, []))
                if dep_tier == RiskTier.KEEP:
                    keep_deps.add(dep)
                    keep_dep = keep_dep or dep
                elif dep_tier == RiskTier.RISKY:
                    risky_dep = risky_dep or dep
            if keep_deps:
                report.problematic_dependencies[name] = sorted(keep_deps)

            if tier != RiskTier.SAFE:
                continue
            if keep_dep:
                report.set(name, RiskTier.RISKY, f"depends on {keep_dep}")
            elif risky_dep:
                report.set(name, RiskTier.RISKY, f"depends on {risky_dep}")

        for record in by_name.values():
            if record.is_cask:
                report.set(record.name, RiskTier.KEEP, "cask: not supported by target")

        self.log.debug(
            f"Classified {len(report.tiers)} packages: "
            f"{len(report.by_tier(RiskTier.SAFE))} safe, "
            f"{len(report.by_tier(RiskTier.RISKY))} risky, "
            f"{len(report.by_tier(RiskTier.KEEP))} keep"
        )
        return report
