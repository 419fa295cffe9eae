"""Configuration sources that feed the rule store."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Protocol

import yaml

from decision_platform.exceptions import ConfigError


class ConfigSource(Protocol):
    """Supplies the raw rule configuration document."""

    def read(self) -> Any:
        """Return the parsed document.

        Raises:
            OSError: If the underlying storage cannot be read.
            ConfigError: If the content cannot be parsed.
        """
        ...

    def describe(self) -> str:
        """Human-readable location of the configuration."""
        ...


class YamlFileSource:
    """Reads rule configuration from a YAML file on disk."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def read(self) -> Any:
        if not self.path.exists():
            raise FileNotFoundError(f"Rules config not found: {self.path}")

        with open(self.path, "r", encoding="utf-8") as f:
            try:
                return yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {self.path}: {e}") from e
            except UnicodeDecodeError as e:
                raise ConfigError(f"Rules config {self.path} is not valid UTF-8: {e}") from e
            except RecursionError as e:
                raise ConfigError(f"Rules config {self.path} is nested too deeply") from e

    def describe(self) -> str:
        return str(self.path)


class StaticSource:
    """Serves an in-memory document, e.g. for embedding or tests."""

    def __init__(self, document: Any, name: str = "<static>"):
        self.document = document
        self.name = name

    def read(self) -> Any:
        return copy.deepcopy(self.document)

    def describe(self) -> str:
        return self.name
