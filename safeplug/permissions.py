"""Permission compiler: turns declared permissions into a sandbox policy.

Declared permissions come from a plugin's manifest and are untrusted.
Every entry is run through its validator; rejected entries are dropped
with a warning instead of aborting the run, so a bad declaration only
narrows what the plugin itself may do.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

from safeplug.config import METADATA_DIR
from safeplug.errors import ValidationError
from safeplug.validators import validate_command, validate_host, validate_path

if TYPE_CHECKING:
    from safeplug.manifest import PluginManifest

logger = logging.getLogger(__name__)


class DeclaredPermissions(BaseModel):
    """Permissions a manifest asks for, at plugin or command scope.

    ``env_access`` is tri-state: ``None`` means "inherit".
    """

    model_config = ConfigDict(frozen=True)

    file_read: list[str] = []
    file_write: list[str] = []
    env_access: bool | None = None
    network: list[str] = []
    run_commands: list[str] = []


class PermissionPolicy(BaseModel):
    """The validated, merged permission set granted to one invocation."""

    model_config = ConfigDict(frozen=True)

    file_read: frozenset[str] = frozenset()
    file_write: frozenset[str] = frozenset()
    env_access: bool = False
    network: frozenset[str] = frozenset()
    run_commands: frozenset[str] = frozenset()


# (field name, validator) pairs shared by both scopes.
_VALIDATED_FIELDS: tuple[tuple[str, Callable[[str], str]], ...] = (
    ("file_read", validate_path),
    ("file_write", validate_path),
    ("network", validate_host),
    ("run_commands", validate_command),
)


def safe_defaults(project_root: Path | str) -> PermissionPolicy:
    """Return the baseline policy every plugin starts from.

    Read access to the project root and its metadata directory, write
    access to the project root, environment access, and nothing else.
    These entries are generated by the host, not declared by the plugin,
    so they don't go through the validators.
    """
    root = Path(project_root)
    return PermissionPolicy(
        file_read=frozenset({str(root), str(root / METADATA_DIR)}),
        file_write=frozenset({str(root)}),
        env_access=True,
    )


def _accepted(
    entries: list[str], validator: Callable[[str], str], field: str, scope: str
) -> set[str]:
    accepted: set[str] = set()
    for entry in entries:
        try:
            accepted.add(validator(entry))
        except ValidationError as exc:
            logger.warning("Dropping %s %s entry %r: %s", scope, field, entry, exc.reason)
    return accepted


def merge_declared(
    base: PermissionPolicy,
    declared: DeclaredPermissions | None,
    scope: str = "declared",
) -> PermissionPolicy:
    """Merge one layer of declared permissions into *base*.

    List fields are unioned with the validated entries.  ``env_access``
    replaces the base value only when the declaration sets it.

    Args:
        base: Policy produced by the previous layer.
        declared: Untrusted declarations, or ``None`` for no change.
        scope: Label used in warnings (e.g. ``"plugin"``).

    Returns:
        A new policy; *base* is left untouched.
    """
    if declared is None:
        return base

    merged: dict[str, object] = {}
    for field, validator in _VALIDATED_FIELDS:
        current: frozenset[str] = getattr(base, field)
        merged[field] = current | _accepted(getattr(declared, field), validator, field, scope)

    env_access = base.env_access if declared.env_access is None else declared.env_access
    return PermissionPolicy(env_access=env_access, **merged)


def compile_policy(
    defaults: PermissionPolicy,
    plugin: DeclaredPermissions | None = None,
    command: DeclaredPermissions | None = None,
) -> PermissionPolicy:
    """Compile plugin-level then command-level declarations over *defaults*.

    Command grants add to plugin grants; a command-level ``env_access``
    overrides the plugin's.
    """
    policy = merge_declared(defaults, plugin, scope="plugin")
    return merge_declared(policy, command, scope="command")


def compile_for_command(
    manifest: PluginManifest, command_name: str, project_root: Path | str
) -> PermissionPolicy:
    """Compile the policy for one command of a loaded manifest."""
    command = manifest.commands.get(command_name)
    return compile_policy(
        safe_defaults(project_root),
        manifest.permissions,
        command.permissions if command is not None else None,
    )
