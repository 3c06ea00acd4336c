"""Plugin manifest models and loaders."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from safeplug.arguments import CommandArgs
from safeplug.config import ProjectConfig
from safeplug.denylists import INVALID_PLUGIN_NAME_CHARS
from safeplug.errors import ManifestError, PluginNotFoundError, ValidationError
from safeplug.permissions import DeclaredPermissions

MANIFEST_FILE = "manifest.toml"
USER_CONFIG_FILE = "config.toml"


class PluginMeta(BaseModel):
    """The ``[plugin]`` table.

    Unknown keys are ignored, which includes a misplaced
    ``[plugin.permissions]`` table: permissions belong at top level.
    """

    name: str
    version: str = "0.0.0"
    description: str | None = None
    registry: str | None = None


class PluginCommand(BaseModel):
    """One ``[commands.<name>]`` table."""

    script: str
    description: str | None = None
    instructions: str | None = None
    args: CommandArgs | None = None
    permissions: DeclaredPermissions | None = None


class PluginManifest(BaseModel):
    """A parsed ``manifest.toml``."""

    plugin: PluginMeta
    permissions: DeclaredPermissions | None = None
    commands: dict[str, PluginCommand] = {}
    deno_dependencies: dict[str, str] = {}

    def command_names(self) -> list[str]:
        """Return declared command names, sorted."""
        return sorted(self.commands)


def load_manifest(path: Path | str) -> PluginManifest:
    """Load and validate a plugin manifest.

    Raises:
        ManifestError: If the file is missing, isn't valid TOML, or
            doesn't match the manifest schema.
    """
    manifest_path = Path(path)
    if not manifest_path.is_file():
        raise ManifestError(f"Manifest not found: {manifest_path}")
    try:
        data = tomllib.loads(manifest_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ManifestError(f"Invalid TOML in {manifest_path}: {exc}") from exc
    try:
        return PluginManifest(**data)
    except PydanticValidationError as exc:
        raise ManifestError(f"Invalid manifest {manifest_path}:\n{exc}") from exc


def load_user_config(path: Path | str) -> dict[str, Any]:
    """Load a plugin's user-editable ``config.toml``; missing means empty."""
    config_path = Path(path)
    if not config_path.is_file():
        return {}
    try:
        return tomllib.loads(config_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ManifestError(f"Invalid TOML in {config_path}: {exc}") from exc


def installed_plugins(config: ProjectConfig) -> list[str]:
    """Return the names of plugins installed in the project."""
    plugins_dir = config.plugins_path()
    if not plugins_dir.is_dir():
        return []
    return sorted(
        p.name for p in plugins_dir.iterdir() if p.is_dir() and (p / MANIFEST_FILE).is_file()
    )


def validate_plugin_name(name: str) -> str:
    """Check that *name* is safe to use as a directory name.

    Raises:
        ValidationError: If the name is empty, contains path separators
            or other reserved characters, or contains ``..``.
    """
    if not name or not name.strip():
        raise ValidationError("plugin name", name, "plugin name cannot be empty")
    if ".." in name or any(ch in INVALID_PLUGIN_NAME_CHARS for ch in name):
        raise ValidationError("plugin name", name, "plugin name contains invalid characters")
    return name


def find_plugin(config: ProjectConfig, plugin_name: str) -> Path:
    """Return the directory of an installed plugin.

    Raises:
        ValidationError: If the name itself is unsafe.
        PluginNotFoundError: If the plugin or its manifest is missing.
    """
    validate_plugin_name(plugin_name)
    plugin_path = config.plugins_path() / plugin_name
    if not plugin_path.is_dir():
        available = ", ".join(installed_plugins(config)) or "(none)"
        raise PluginNotFoundError(
            f"Plugin '{plugin_name}' not found in {config.plugins_path()}.\n"
            f"→ Available plugins: {available}\n"
            f"→ To install it, run `safeplug add {plugin_name}`"
        )
    if not (plugin_path / MANIFEST_FILE).is_file():
        raise PluginNotFoundError(
            f"{MANIFEST_FILE} not found for plugin '{plugin_name}'.\n"
            f"→ Expected to find: {plugin_path / MANIFEST_FILE}\n"
            "→ The plugin may be corrupted; reinstall it with `safeplug add --force`."
        )
    return plugin_path
