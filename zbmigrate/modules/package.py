# zbmigrate/modules/package.py
"""
Package records and per-package migration outcomes.

A PackageRecord is what the source manager reports for one installed package.
Records are built fresh from the inventory on every run and never change
afterwards; the same dict shape is stored in the state file for migrated
packages:

{
  "name": "git",
  "version": "2.42.0",
  "tap": null,
  "is_cask": false,
  "dependencies": ["pcre2", "gettext"],
  "pinned": false
}
"""

from typing import Any, Dict, Iterable, Optional


class PackageRecord:
    __slots__ = ("name", "version", "dependencies", "is_cask", "tap", "pinned")

    def __init__(self,
                 name: str,
                 version: str = "",
                 dependencies: Optional[Iterable[str]] = None,
                 is_cask: bool = False,
                 tap: Optional[str] = None,
                 pinned: bool = False):
        deps = []
        for dep in dependencies or ():
            if dep and dep != name and dep not in deps:
                deps.append(dep)
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "version", version)
        object.__setattr__(self, "dependencies", tuple(deps))
        object.__setattr__(self, "is_cask", bool(is_cask))
        object.__setattr__(self, "tap", tap or None)
        object.__setattr__(self, "pinned", bool(pinned))

    def __setattr__(self, key, value):
        raise AttributeError(f"PackageRecord is immutable (tried to set {key})")

    def replace(self, **changes) -> "PackageRecord":
        data = self.to_dict()
        data.update(changes)
        return PackageRecord.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "tap": self.tap,
            "is_cask": self.is_cask,
            "dependencies": list(self.dependencies),
            "pinned": self.pinned,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PackageRecord":
        return cls(
            name=data["name"],
            version=data.get("version") or "",
            dependencies=data.get("dependencies") or [],
            is_cask=data.get("is_cask", False),
            tap=data.get("tap"),
            pinned=data.get("pinned", False),
        )

    def __eq__(self, other):
        if not isinstance(other, PackageRecord):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self):
        return hash((self.name, self.version, self.dependencies, self.is_cask, self.tap, self.pinned))

    def __repr__(self):
        return f"PackageRecord({self.name!r}, {self.version!r}, deps={list(self.dependencies)!r})"


class MigrationOutcome:
    """Migrated(version), Failed(reason) or Skipped(reason) for one package."""

    MIGRATED = "migrated"
    FAILED = "failed"
    SKIPPED = "skipped"

    def __init__(self, name: str, status: str, detail: str = ""):
        if status not in (self.MIGRATED, self.FAILED, self.SKIPPED):
            raise ValueError(f"Unknown outcome status: {status}")
        self.name = name
        self.status = status
        self.detail = detail

    @classmethod
    def migrated(cls, name: str, version: str) -> "MigrationOutcome":
        return cls(name, cls.MIGRATED, version)

    @classmethod
    def failed(cls, name: str, reason: str) -> "MigrationOutcome":
        return cls(name, cls.FAILED, reason)

    @classmethod
    def skipped(cls, name: str, reason: str) -> "MigrationOutcome":
        return cls(name, cls.SKIPPED, reason)

    @property
    def version(self) -> Optional[str]:
        return self.detail if self.status == self.MIGRATED else None

    @property
    def reason(self) -> Optional[str]:
        return None if self.status == self.MIGRATED else self.detail

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "status": self.status, "detail": self.detail}

    def __eq__(self, other):
        if not isinstance(other, MigrationOutcome):
            return NotImplemented
        return (self.name, self.status, self.detail) == (other.name, other.status, other.detail)

    def __repr__(self):
        return f"MigrationOutcome({self.name!r}, {self.status!r}, {self.detail!r})"
