import configparser
import os

ENV_VAR = "ZB_MIGRATE_CONF"

# searched in order, the first existing file wins
DEFAULT_LOCATIONS = [
    "~/.zerobrew/zb-migrate.conf",
    "~/.config/zb-migrate/zb-migrate.conf",
    "/etc/zerobrew/zb-migrate.conf",
]

DEFAULTS = {
    "paths": {
        "state_file": "~/.zerobrew/migration_state.json",
        "history_file": "~/.zerobrew/migration_history.log",
        "risk_table": "",
    },
    "commands": {
        "brew": "brew",
        "zb": "zb",
        "timeout": "1800",
    },
    "logging": {
        "level": "info",
        "log_file": "~/.zerobrew/logs/zb-migrate.log",
        "log_to_file": "true",
        "log_to_console": "false",
        "color_output": "true",
        "timestamp_utc": "false",
        "log_format": "text",
        "max_log_size_kb": "1024",
    },
}

_MISSING = (configparser.NoSectionError, configparser.NoOptionError, ValueError)


def candidate_files(locations=None):
    if locations is not None:
        return [os.path.expanduser(p) for p in locations]
    paths = [os.path.expanduser(p) for p in DEFAULT_LOCATIONS]
    env_path = os.environ.get(ENV_VAR)
    if env_path:
        paths.insert(0, os.path.expanduser(env_path))
    return paths


class MigrateConfig:
    """
    INI settings for zb-migrate. Every option has a built-in default, so a
    missing configuration file is not an error.
    """

    def __init__(self, locations=None):
        self.locations = candidate_files(locations)
        self.loaded_from = None
        self.reload()

    def reload(self):
        self.config = configparser.ConfigParser()
        self.config.read_dict(DEFAULTS)
        self.loaded_from = next((p for p in self.locations if os.path.isfile(p)), None)
        if self.loaded_from:
            self.config.read(self.loaded_from, encoding="utf-8")

    def override(self, values):
        """Layer {section: {option: value}} on top of what is loaded."""
        self.config.read_dict({s: {k: str(v) for k, v in opts.items()} for s, opts in values.items()})

    def _typed(self, reader, section, option, fallback):
        try:
            return reader(section, option, fallback=fallback)
        except _MISSING:
            return fallback

    def get(self, section, option, fallback=None):
        return self._typed(self.config.get, section, option, fallback)

    def getboolean(self, section, option, fallback=False):
        return self._typed(self.config.getboolean, section, option, fallback)

    def getint(self, section, option, fallback=0):
        return self._typed(self.config.getint, section, option, fallback)

    def getpath(self, section, option, fallback=None):
        value = self.get(section, option)
        if not value:
            return fallback
        return os.path.abspath(os.path.expanduser(value))

    def __getitem__(self, section):
        if section not in self.config:
            raise KeyError(f"No [{section}] section in zb-migrate configuration")
        return dict(self.config[section])

    def __contains__(self, section):
        return section in self.config


config = MigrateConfig()
