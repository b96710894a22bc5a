"""
Shell configuration, persisted as YAML, plus the debug trace helper.
"""
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from docsh.docsh_datatypes import ConfigError

DEFAULTS: Dict[str, Any] = {
    "editor": None,
    "rewrite": True,
    "show-none": False,
    "batch-size": 20,
}


def dbg(*parts):
    if os.environ.get("DOCSH_DEBUG"):
        try:
            print("[DBG]", *parts, file=sys.stderr)
        except Exception:
            pass


def default_config_path() -> Path:
    override = os.environ.get("DOCSH_CONFIG")
    if override:
        return Path(override)
    return Path.home() / ".docsh" / "config.yaml"


class Config:
    """Key/value settings exposed to the shell as `config`."""

    def __init__(self, values: Optional[Dict[str, Any]] = None, path: Optional[Path] = None):
        self.path = path
        self._values = dict(DEFAULTS)
        for key, value in (values or {}).items():
            self.set(key, value)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Config":
        path = Path(path) if path is not None else default_config_path()
        if not path.exists():
            return cls(path=path)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid config file {path}: {e}") from e
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"invalid config file {path}: expected a mapping")
        unknown = [k for k in data if k not in DEFAULTS]
        if unknown:
            dbg("config: ignoring unknown keys", unknown)
        return cls({k: v for k, v in data.items() if k in DEFAULTS}, path=path)

    def get(self, key: str) -> Any:
        if key not in self._values:
            raise KeyError(f"unknown config key {key!r}")
        return self._values[key]

    def set(self, key: str, value: Any) -> str:
        if key not in DEFAULTS:
            raise KeyError(f"unknown config key {key!r}")
        self._values[key] = value
        return f"Setting {key!r} has been changed"

    def save(self):
        if self.path is None:
            raise ConfigError("config has no file to save to")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        changed = {k: v for k, v in self._values.items() if v != DEFAULTS[k]}
        self.path.write_text(yaml.safe_dump(changed, sort_keys=False), encoding="utf-8")

    def __repr__(self):
        return f"Config({self._values!r})"
