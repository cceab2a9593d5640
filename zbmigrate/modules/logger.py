# zbmigrate/modules/logger.py
"""
Small named logger shared by every zb-migrate module.

Settings come from the [logging] section. Lines go to a size-rotated log
file and, when log_to_console is set or the CLI runs with -v, to stderr so
they never mix with command output on stdout.
"""

import datetime
import json
import os
import sys
import threading
import traceback

from zbmigrate.modules.config import config

ANSI = {
    "DEBUG": "\033[90m",
    "INFO": "\033[94m",
    "SUCCESS": "\033[92m",
    "WARNING": "\033[93m",
    "ERROR": "\033[91m",
}
ANSI_RESET = "\033[0m"

# one lock for all instances: they usually share the same file
_write_lock = threading.Lock()


class Logger:
    LEVELS = {"DEBUG": 10, "INFO": 20, "SUCCESS": 25, "WARNING": 30, "ERROR": 40}

    # process-wide switches set by the CLI (-v / --no-color)
    verbose = False
    no_color = False

    def __init__(self, name="zb-migrate"):
        self.name = name
        self.log_file = os.path.expanduser(config.get("logging", "log_file",
                                                      fallback="~/.zerobrew/logs/zb-migrate.log"))
        self.log_to_file = config.getboolean("logging", "log_to_file", fallback=True)
        self.log_to_console = config.getboolean("logging", "log_to_console", fallback=False)
        self.color_output = config.getboolean("logging", "color_output", fallback=True)
        self.use_utc = config.getboolean("logging", "timestamp_utc", fallback=False)
        self.as_json = config.get("logging", "log_format", fallback="text").lower() == "json"
        self.max_bytes = config.getint("logging", "max_log_size_kb", fallback=1024) * 1024
        self.threshold = self.LEVELS.get(config.get("logging", "level", fallback="info").upper(), 20)

    @classmethod
    def set_verbose(cls, enabled=True):
        cls.verbose = bool(enabled)

    def _now(self):
        if self.use_utc:
            return datetime.datetime.now(datetime.timezone.utc)
        return datetime.datetime.now()

    def _render(self, level, message):
        stamp = self._now().strftime("%Y-%m-%d %H:%M:%S")
        if self.as_json:
            return json.dumps({"timestamp": stamp, "logger": self.name,
                               "level": level, "message": message})
        return f"[{stamp}] [{self.name}] [{level}] {message}"

    def _rotate(self, path):
        if self.max_bytes <= 0 or not os.path.exists(path) or os.path.getsize(path) <= self.max_bytes:
            return
        try:
            os.replace(path, path + ".1")
        except OSError as e:
            print(f"zb-migrate: cannot rotate {path}: {e}", file=sys.stderr)

    def _append(self, path, line):
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            self._rotate(path)
            with open(path, "a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        except OSError as e:
            # the log file is best effort; keep running without it
            self.log_to_file = False
            print(f"zb-migrate: cannot write log file {path}: {e}", file=sys.stderr)

    def _echo(self, level, line):
        if self.color_output and not self.no_color and not self.as_json:
            line = f"{ANSI.get(level, '')}{line}{ANSI_RESET}"
        print(line, file=sys.stderr)

    def log(self, level, message):
        level = level.upper()
        floor = self.LEVELS["DEBUG"] if self.verbose else self.threshold
        if self.LEVELS.get(level, 0) < floor:
            return
        line = self._render(level, message)
        with _write_lock:
            if self.log_to_console or self.verbose:
                self._echo(level, line)
            if self.log_to_file:
                self._append(self.log_file, line)

    def debug(self, message):
        self.log("DEBUG", message)

    def info(self, message):
        self.log("INFO", message)

    def success(self, message):
        self.log("SUCCESS", message)

    def warning(self, message):
        self.log("WARNING", message)

    def error(self, message):
        self.log("ERROR", message)

    def exception(self, message):
        """error() plus the traceback of the exception being handled."""
        self.log("ERROR", f"{message}\n{traceback.format_exc().rstrip()}")
