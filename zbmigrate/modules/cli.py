# zbmigrate/modules/cli.py
"""
Command line interface for zb-migrate.
- Uses rich for colored output, tables, panels and prompts.
- Every command talks to Homebrew/Zerobrew through a PackageSource, so the
  same code paths run against the real tools and the in-memory test source.

Usage examples:
  zb-migrate list --casks
  zb-migrate analyze --json
  zb-migrate export -o Brewfile
  zb-migrate migrate --dry-run
  zb-migrate migrate -p git -p wget
  zb-migrate migrate -i
  zb-migrate status --history 20
  zb-migrate cleanup --force

Exit codes: 0 success, 1 a package failed (or a requested name is unknown),
2 migration error (cycle, state file, lock, external command), 3 unexpected
error, 130 interrupted.
"""

from __future__ import annotations
import argparse
import json
import sys
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from zbmigrate import __version__
from zbmigrate.modules.errors import MigrateError
from zbmigrate.modules.history import History
from zbmigrate.modules.logger import Logger
from zbmigrate.modules.migrate import (
    ALL, DRY_RUN, EXECUTE, INTERACTIVE, NO, NOT_REQUESTED, QUIT, YES,
    Migrator, PlanEntry,
)
from zbmigrate.modules.package import MigrationOutcome
from zbmigrate.modules.risk import RiskClassifier, RiskTier
from zbmigrate.modules.source import HomebrewZerobrewSource, PackageSource, render_brewfile
from zbmigrate.modules.state import StateStore

LOG = Logger("cli")

TIER_STYLES = {
    RiskTier.SAFE: "green",
    RiskTier.RISKY: "yellow",
    RiskTier.KEEP: "red",
}

PROMPT_ANSWERS = {"y": YES, "n": NO, "a": ALL, "q": QUIT}


def make_console(no_color: bool) -> Console:
    if no_color:
        return Console(color_system=None, highlight=False)
    return Console()


def print_panel(console: Console, title: str, text: str, style: str = "green"):
    console.print(Panel(text, title=title, style=style))


class CLI:
    def __init__(self,
                 console: Console,
                 source: Optional[PackageSource] = None,
                 store: Optional[StateStore] = None,
                 history: Optional[History] = None,
                 classifier: Optional[RiskClassifier] = None,
                 verbose: bool = False):
        self.console = console
        self.source = source or HomebrewZerobrewSource()
        self.store = store or StateStore()
        self.history = history if history is not None else History()
        self._classifier = classifier
        self.verbose = verbose

    @property
    def classifier(self) -> RiskClassifier:
        # the rule table is only read by commands that classify
        if self._classifier is None:
            self._classifier = RiskClassifier()
        return self._classifier

    def _migrator(self, **callbacks) -> Migrator:
        return Migrator(self.source, store=self.store, classifier=self.classifier,
                        history=self.history, **callbacks)

    @staticmethod
    def _stdin_is_tty() -> bool:
        return sys.stdin is not None and sys.stdin.isatty()

    def _print_json(self, data: Any):
        self.console.print_json(json.dumps(data, ensure_ascii=False))

    # -----------------------
    # list
    # -----------------------
    def cmd_list(self, args: argparse.Namespace) -> int:
        console = self.console
        records = self.source.list_installed()
        casks = self.source.list_casks() if args.casks else []
        if args.json:
            self._print_json([r.to_dict() for r in records + casks])
            return 0
        table = Table(title=f"Installed Homebrew formulae ({len(records)})")
        table.add_column("Package", style="bold")
        table.add_column("Version")
        table.add_column("Tap")
        table.add_column("Pinned")
        for r in sorted(records, key=lambda r: r.name):
            table.add_row(r.name, r.version, r.tap or "-", "yes" if r.pinned else "")
        console.print(table)
        if args.casks:
            cask_table = Table(title=f"Installed Homebrew casks ({len(casks)})")
            cask_table.add_column("Cask", style="bold")
            cask_table.add_column("Version")
            for c in sorted(casks, key=lambda c: c.name):
                cask_table.add_row(c.name, c.version)
            console.print(cask_table)
        return 0

    # -----------------------
    # analyze
    # -----------------------
    def cmd_analyze(self, args: argparse.Namespace) -> int:
        console = self.console
        _formulae, casks, _graph, order, risk = self._migrator().analyze()
        if args.json:
            self._print_json(risk.to_dict())
            return 0

        table = Table(title=f"Migration risk ({len(order)} formulae, {len(casks)} casks)")
        table.add_column("#", justify="right")
        table.add_column("Package", style="bold")
        table.add_column("Version")
        table.add_column("Risk")
        table.add_column("Reason", overflow="fold")
        for idx, name in enumerate(order, start=1):
            tier = risk.tier_of(name)
            style = TIER_STYLES[tier]
            table.add_row(str(idx), name, risk.records[name].version,
                          f"[{style}]{tier}[/{style}]", escape(risk.reason_of(name)))
        console.print(table)

        summary = (f"safe: {len(risk.by_tier(RiskTier.SAFE))}\n"
                   f"risky: {len(risk.by_tier(RiskTier.RISKY))}\n"
                   f"keep in Homebrew: {len(risk.by_tier(RiskTier.KEEP))}")
        if casks:
            summary += f"\ncasks (not supported by Zerobrew): {len(casks)}"
        print_panel(console, "analyze", summary, style="cyan")
        return 0

    # -----------------------
    # export
    # -----------------------
    def cmd_export(self, args: argparse.Namespace) -> int:
        console = self.console
        content = render_brewfile(self.source.list_installed(), self.source.list_casks())
        if not args.output or args.output == "-":
            console.print(content, markup=False, highlight=False, end="")
            return 0
        try:
            with open(args.output, "w", encoding="utf-8") as fh:
                fh.write(content)
        except OSError as e:
            console.print(f"[red]Could not write {escape(args.output)}: {escape(str(e))}[/red]")
            LOG.error(f"Brewfile export failed: {e}")
            return 2
        console.print(f"[green]Brewfile written to {escape(args.output)}[/green]")
        return 0

    # -----------------------
    # migrate
    # -----------------------
    def _confirm(self, entry: PlanEntry, index: int, total: int) -> str:
        style = TIER_STYLES.get(entry.tier, "white")
        line = (escape(f"[{index}/{total}]") + f" {entry.name} {entry.record.version} "
                f"[{style}]{entry.tier}[/{style}]")
        if entry.reason:
            line += f" ({escape(entry.reason)})"
        self.console.print(line)
        answer = Prompt.ask("Migrate? (y)es / (n)o / (a)ll / (q)uit", choices=list(PROMPT_ANSWERS),
                            default="y", console=self.console, show_choices=False)
        return PROMPT_ANSWERS[answer]

    def _on_attempt(self, entry: PlanEntry):
        self.console.print(f"[blue]Migrating {entry.name} ({entry.record.version})...[/blue]")

    def _on_outcome(self, outcome: MigrationOutcome):
        if outcome.status == MigrationOutcome.MIGRATED:
            self.console.print(f"[green]Migrated[/green] {outcome.name} {outcome.version or ''}")
        elif outcome.status == MigrationOutcome.FAILED:
            self.console.print(f"[red]Failed[/red] {outcome.name}: {escape(outcome.reason or '')}")
        elif outcome.reason != NOT_REQUESTED or self.verbose:
            self.console.print(f"[yellow]Skipped[/yellow] {outcome.name}: {escape(outcome.reason or '')}")

    def _print_dry_run(self, report):
        table = Table(title="Migration plan (dry-run)")
        table.add_column("#", justify="right")
        table.add_column("Package", style="bold")
        table.add_column("Version")
        table.add_column("Risk")
        table.add_column("Action", overflow="fold")
        planned = set(report.planned)
        idx = 0
        for entry in report.plan.entries:
            outcome = report.outcome_for(entry.name)
            if entry.name in planned:
                action = "[green]migrate[/green]"
            elif outcome is not None and (outcome.reason != NOT_REQUESTED or self.verbose):
                action = f"[yellow]skip: {escape(outcome.reason or '')}[/yellow]"
            else:
                continue
            idx += 1
            style = TIER_STYLES[entry.tier]
            table.add_row(str(idx), entry.name, entry.record.version,
                          f"[{style}]{entry.tier}[/{style}]", action)
        self.console.print(table)

    def _print_summary(self, report):
        lines = [
            f"Migrated: {len(report.successful)}",
            f"Failed:   {len(report.failed)}",
            f"Skipped:  {len([o for o in report.skipped if o.reason != NOT_REQUESTED])}",
        ]
        if report.mode == DRY_RUN:
            lines = [f"Would migrate: {len(report.planned)}",
                     f"Would skip:    {len([o for o in report.skipped if o.reason != NOT_REQUESTED])}"]
        if report.missing:
            lines.append(f"Not installed in Homebrew: {', '.join(report.missing)}")
        if report.stopped:
            lines.append("Stopped by user; run again to continue.")
        if report.failed:
            lines.append("Failed packages: " + ", ".join(o.name for o in report.failed))
        style = "red" if report.exit_code else "green"
        print_panel(self.console, f"migrate ({report.mode})", escape("\n".join(lines)), style=style)

    def cmd_migrate(self, args: argparse.Namespace) -> int:
        console = self.console
        mode = EXECUTE
        if args.dry_run:
            mode = DRY_RUN
        elif args.interactive:
            if self._stdin_is_tty():
                mode = INTERACTIVE
            else:
                console.print("[yellow]stdin is not a terminal; running without prompts[/yellow]")
                LOG.warning("Interactive mode requested without a TTY, falling back to execute")

        callbacks: Dict[str, Any] = {}
        if mode != DRY_RUN:
            callbacks = {"on_attempt": self._on_attempt, "on_outcome": self._on_outcome}
        if mode == INTERACTIVE:
            callbacks["confirm"] = self._confirm
        migrator = self._migrator(**callbacks)

        if args.force and mode != DRY_RUN:
            console.print("[yellow]--force: packages classified as keep will be migrated too[/yellow]")
        report = migrator.run(mode, packages=args.package or None, force=args.force)

        if mode == DRY_RUN:
            self._print_dry_run(report)
        self._print_summary(report)
        if report.plan is not None and report.plan.casks:
            console.print(f"[dim]{len(report.plan.casks)} casks stay in Homebrew "
                          f"(not supported by Zerobrew)[/dim]")
        return report.exit_code

    # -----------------------
    # outdated / upgrade
    # -----------------------
    def cmd_outdated(self, args: argparse.Namespace) -> int:
        names = self.source.check_outdated()
        if not names:
            self.console.print("[green]All packages are up to date[/green]")
            return 0
        table = Table(title=f"Outdated packages ({len(names)})")
        table.add_column("Package", style="bold")
        for name in names:
            table.add_row(name)
        self.console.print(table)
        return 0

    def cmd_upgrade(self, args: argparse.Namespace) -> int:
        console = self.console
        console.print("[blue]Upgrading Zerobrew packages...[/blue]")
        res = self.source.upgrade_all()
        self.history.record("upgrade", details={"upgraded": res.upgraded},
                            result="ok" if res.success else "fail", note=res.reason)
        if not res.success:
            console.print(f"[red]Upgrade failed: {escape(res.reason or '')}[/red]")
            return 1
        if res.upgraded:
            print_panel(console, "upgrade", "Upgraded: " + ", ".join(res.upgraded))
        else:
            console.print("[green]Nothing to upgrade[/green]")
        return 0

    # -----------------------
    # status
    # -----------------------
    def cmd_status(self, args: argparse.Namespace) -> int:
        console = self.console
        state = self.store.load()
        info = (f"State file: {self.store.path}\n"
                f"Homebrew prefix: {state.source_prefix or '-'}\n"
                f"Migrated: {len(state.migrated_packages)}\n"
                f"Failed: {len(state.failed_packages)}")
        print_panel(console, "status", escape(info), style="cyan")

        if state.migrated_packages:
            table = Table(title="Migrated packages")
            table.add_column("Package", style="bold")
            table.add_column("Version")
            for name, record in sorted(state.migrated_packages.items()):
                table.add_row(name, record.version)
            console.print(table)
        if state.failed_packages:
            console.print("[red]Failed:[/red] " + ", ".join(state.failed_packages))

        if args.history:
            entries = self.history.list_history(limit=args.history)
            table = Table(title=f"Recent history ({len(entries)})")
            table.add_column("Time")
            table.add_column("Action")
            table.add_column("Package", style="bold")
            table.add_column("Result")
            table.add_column("Note", overflow="fold")
            for e in entries:
                table.add_row(e.get("timestamp", ""), e.get("action", ""), e.get("package") or "-",
                              e.get("result", ""), escape(e.get("note") or ""))
            console.print(table)
        return 0

    # -----------------------
    # cleanup
    # -----------------------
    def cmd_cleanup(self, args: argparse.Namespace) -> int:
        console = self.console
        if not args.force:
            state = self.store.load()
            print_panel(console, "cleanup",
                        f"{len(state.migrated_packages)} migrated packages are still installed in "
                        "Homebrew.\nRemoving them cannot be undone by zb-migrate. "
                        "Re-run with --force to uninstall them.", style="yellow")
            return 0
        results = self._migrator().cleanup_source(args.package or None, force=True)
        if not results:
            console.print("[yellow]Nothing to clean up[/yellow]")
            return 0
        table = Table(title="Homebrew cleanup")
        table.add_column("Package", style="bold")
        table.add_column("Result", overflow="fold")
        for name, res in results.items():
            if res.success:
                table.add_row(name, "[green]removed[/green]")
            else:
                table.add_row(name, f"[red]{escape(res.reason or 'failed')}[/red]")
        console.print(table)
        return 1 if any(not r.success for r in results.values()) else 0


# -----------------------
# CLI wiring and argparse setup
# -----------------------
def build_argparser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="zb-migrate",
                                 description="Migrate Homebrew formulae to Zerobrew")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("-v", "--verbose", action="store_true",
                    help="Show debug logging, including external commands")
    ap.add_argument("--no-color", action="store_true", help="Disable color output")
    sub = ap.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", aliases=["ls"], help="List installed Homebrew packages")
    p_list.add_argument("--casks", action="store_true", help="Also list casks")
    p_list.add_argument("--json", action="store_true")

    p_analyze = sub.add_parser("analyze", aliases=["a"], help="Show install order and migration risk")
    p_analyze.add_argument("--json", action="store_true")

    p_export = sub.add_parser("export", help="Write a Brewfile of the current installation")
    p_export.add_argument("-o", "--output", help="Output path ('-' or omitted prints to stdout)")

    p_migrate = sub.add_parser("migrate", aliases=["m"], help="Install Homebrew formulae with Zerobrew")
    p_migrate.add_argument("--dry-run", action="store_true", help="Show the plan without installing")
    p_migrate.add_argument("-p", "--package", action="append",
                           help="Only this package and its dependencies (repeatable)")
    p_migrate.add_argument("-i", "--interactive", action="store_true",
                           help="Ask before each package")
    p_migrate.add_argument("--force", action="store_true",
                           help="Also migrate packages classified as keep")

    sub.add_parser("outdated", help="List outdated Homebrew formulae")
    sub.add_parser("upgrade", help="Upgrade all Zerobrew packages")

    p_status = sub.add_parser("status", aliases=["st"], help="Show migration state")
    p_status.add_argument("--history", type=int, default=0, metavar="N",
                          help="Also show the N most recent history events")

    p_cleanup = sub.add_parser("cleanup", help="Uninstall migrated packages from Homebrew")
    p_cleanup.add_argument("--force", action="store_true", help="Actually uninstall")
    p_cleanup.add_argument("-p", "--package", action="append",
                           help="Only this migrated package (repeatable)")
    return ap


COMMANDS = {
    "list": "cmd_list", "ls": "cmd_list",
    "analyze": "cmd_analyze", "a": "cmd_analyze",
    "export": "cmd_export",
    "migrate": "cmd_migrate", "m": "cmd_migrate",
    "outdated": "cmd_outdated",
    "upgrade": "cmd_upgrade",
    "status": "cmd_status", "st": "cmd_status",
    "cleanup": "cmd_cleanup",
}


def main(argv: Optional[List[str]] = None, source: Optional[PackageSource] = None,
         console: Optional[Console] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    args = build_argparser().parse_args(argv)
    Logger.set_verbose(args.verbose)
    Logger.no_color = args.no_color
    console = console or make_console(args.no_color)

    try:
        cli = CLI(console=console, source=source, verbose=args.verbose)
        return getattr(cli, COMMANDS[args.command])(args)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted. Completed packages are saved; "
                      "run the same command again to continue.[/yellow]")
        return 130
    except MigrateError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        LOG.error(str(e))
        return 2
    except Exception as e:
        console.print(f"[red]Unexpected error: {escape(str(e))}[/red]")
        LOG.exception("Unexpected error")
        return 3


if __name__ == "__main__":
    raise SystemExit(main())
