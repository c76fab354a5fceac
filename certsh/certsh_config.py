"""
Process configuration: an optional configuration file plus command-line
overrides.

Arguments of the form key=value override configuration keys; every other
argument is handed to the interpreter as a program argument.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

DEFAULTS: Dict[str, Any] = {
    "executableName": "certsh",
    "writeFolder": "",
    "scriptFolder": "",
    "logLevel": 0,
    "maxExpansionDepth": 64,
}


def _coerce(value: str) -> Any:
    """Command-line values are text; numbers and booleans are unwrapped."""
    low = value.strip().lower()
    if low in ("true", "false"):
        return low == "true"
    try:
        return int(value)
    except ValueError:
        return value


class Config:
    """Key/value configuration with defaults."""

    def __init__(self, values: Optional[Dict[str, Any]] = None):
        self.values: Dict[str, Any] = dict(DEFAULTS)
        if values:
            self.values.update(values)
        self.args: List[str] = []
        self.source: Optional[str] = None

    def load(self, folder: Optional[str], argv: Optional[List[str]] = None,
             filename: str = "certsh.yaml") -> bool:
        """
        Reads the YAML file folder/filename when it exists, then applies argv.

        Returns False when the file exists but does not decode to a mapping.
        """
        if folder:
            path = Path(folder) / filename
            if path.is_file():
                try:
                    data = path.read_bytes()
                except OSError:
                    return False
                try:
                    parsed = yaml.safe_load(data)
                except yaml.YAMLError:
                    return False
                if parsed is None:
                    parsed = {}
                if not isinstance(parsed, dict):
                    return False
                self.values.update(parsed)
                self.source = str(path)

        self.args = []
        for arg in argv or []:
            key, sep, value = arg.partition("=")
            if sep and key and not key.startswith("-") and os.sep not in key:
                self.values[key] = _coerce(value)
            else:
                self.args.append(arg)
        return True

    def get(self, key: str, default: Any = None) -> Any:
        value = self.values.get(key)
        if value is None:
            return default
        if isinstance(default, int) and not isinstance(default, bool) and isinstance(value, str):
            try:
                return int(value)
            except ValueError:
                return default
        return value

    def set(self, key: str, value: Any):
        self.values[key] = value

    def dumps(self) -> str:
        return yaml.safe_dump(self.values, sort_keys=False)


__all__ = ["Config", "DEFAULTS"]
