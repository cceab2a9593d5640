# zbmigrate/modules/history.py
"""
Audit trail of what zb-migrate did.

One JSON object per line in ~/.zerobrew/migration_history.log (configurable
as [paths] history_file):

{"id": "5f0c...", "timestamp": "2026-03-02T09:15:04Z", "actor": "cli",
 "action": "migrate", "package": "wget",
 "details": {"mode": "execute", "tier": "safe", "version": "1.24.5"},
 "result": "migrated", "note": ""}

action is migrate, cleanup or upgrade; result is the outcome status for
migrate events and ok/fail otherwise. The state file stays the source of
truth; this log only answers "what happened when".
"""

from __future__ import annotations
import os
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from zbmigrate.modules.config import config
from zbmigrate.modules.logger import Logger


def now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class History:
    def __init__(self, history_file: Optional[str] = None):
        path = history_file or config.getpath("paths", "history_file",
                                              fallback="~/.zerobrew/migration_history.log")
        self.history_file = os.path.abspath(os.path.expanduser(path))
        self.log = Logger("history")

    def record(self, action: str, package: Optional[str] = None,
               details: Optional[Dict[str, Any]] = None, result: str = "ok",
               actor: str = "cli", note: Optional[str] = None) -> Dict[str, Any]:
        """
        Append one event. A write failure is logged and swallowed: the state
        file already holds the outcome, so a broken audit trail must not stop
        a migration halfway.
        """
        entry = dict(id=uuid.uuid4().hex, timestamp=now_iso(), actor=actor, action=action,
                     package=package, details=dict(details or {}), result=result, note=note or "")
        line = json.dumps(entry, ensure_ascii=False, sort_keys=True)
        try:
            os.makedirs(os.path.dirname(self.history_file), exist_ok=True)
            with open(self.history_file, "a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        except OSError as e:
            self.log.error(f"Cannot append to history {self.history_file}: {e}")
        return entry

    def entries(self) -> Iterator[Dict[str, Any]]:
        """All readable entries, oldest first. Truncated or foreign lines are skipped."""
        try:
            fh = open(self.history_file, "r", encoding="utf-8")
        except FileNotFoundError:
            return
        with fh:
            for raw in fh:
                raw = raw.strip()
                if not raw:
                    continue
                try:
                    entry = json.loads(raw)
                except ValueError:
                    self.log.debug(f"Skipping unreadable history line: {raw[:80]}")
                    continue
                if isinstance(entry, dict):
                    yield entry

    def list_history(self, limit: int = 50, action: Optional[str] = None,
                     package: Optional[str] = None) -> List[Dict[str, Any]]:
        """Newest first, optionally only one action and/or one package."""
        wanted = [e for e in self.entries()
                  if (action is None or e.get("action") == action)
                  and (package is None or e.get("package") == package)]
        wanted.reverse()
        return wanted[:limit] if limit else wanted
