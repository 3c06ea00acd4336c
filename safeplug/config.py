"""Project configuration — loads and validates safeplug.yaml with Pydantic."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, field_validator

METADATA_DIR = ".safeplug"
PLUGINS_DIR = "plugins"
CONFIG_FILE = "safeplug.yaml"


class RuntimeConfig(BaseModel):
    """The sandboxed runtime used to execute plugin scripts."""

    binary: str = "deno"
    cache_dependencies: bool = True


class RegistryConfig(BaseModel):
    """Git registries plugins are installed from."""

    sources: list[str] = []

    @field_validator("sources", mode="before")
    @classmethod
    def _deduplicate_sources(cls, v: list[str]) -> list[str]:
        """Remove duplicate sources while preserving order."""
        seen: set[str] = set()
        result: list[str] = []
        for source in v or []:
            if source not in seen:
                seen.add(source)
                result.append(source)
        return result


class ProjectConfig(BaseModel):
    """Settings for one SafePlug project.

    Registry sources are validated when they are used, not here, so a
    bad entry fails the install that touches it with a clear message.
    """

    name: str = ""
    project_root: str = "."
    project_variables: dict[str, Any] = {}
    runtime: RuntimeConfig = RuntimeConfig()
    registry: RegistryConfig = RegistryConfig()

    def root_path(self) -> Path:
        """Return the resolved project root path."""
        return Path(self.project_root).resolve()

    def metadata_path(self) -> Path:
        """Return the project's metadata directory."""
        return self.root_path() / METADATA_DIR

    def plugins_path(self) -> Path:
        """Return the directory installed plugins live in."""
        return self.metadata_path() / PLUGINS_DIR


def load_config(path: Path | str = CONFIG_FILE) -> ProjectConfig:
    """Load and validate a project config file.

    Args:
        path: Path to the YAML config file.

    Returns:
        A validated ProjectConfig instance.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If the config file contains invalid configuration.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    text = config_path.read_text(encoding="utf-8")
    data = yaml.safe_load(text)

    if data is None:
        raise ValueError(f"Config file is empty: {config_path}")
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a YAML mapping: {config_path}")

    return ProjectConfig(**data)
