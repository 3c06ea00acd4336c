"""Execution context handed to a plugin process."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from safeplug.manifest import PluginManifest


class ContextMeta(BaseModel):
    """Identity of the running plugin."""

    name: str
    version: str
    description: str | None = None
    registry: str | None = None


class ManifestSummary(BaseModel):
    """The parts of the manifest a running plugin may see.

    Commands are listed by name only so a plugin can't read the
    permission grants of its sibling commands.
    """

    plugin: ContextMeta
    commands: list[str] = []
    deno_dependencies: dict[str, str] = {}


class ExecutionContext(BaseModel):
    """Everything one invocation passes to the plugin script."""

    manifest: ManifestSummary
    config: dict[str, Any] = {}
    project_variables: dict[str, Any] = {}
    plugin_args: dict[str, Any] = {}
    meta: ContextMeta
    project_root: str
    dry_run: bool = False

    def to_json(self) -> str:
        """Serialize for the transport file."""
        return self.model_dump_json(indent=2)


def build_context(
    manifest: PluginManifest,
    *,
    plugin_name: str,
    plugin_args: dict[str, Any],
    user_config: dict[str, Any],
    project_variables: dict[str, Any],
    project_root: str,
    registry: str | None = None,
    dry_run: bool = False,
) -> ExecutionContext:
    """Assemble the context for one invocation.

    Args:
        manifest: The plugin's loaded manifest.
        plugin_name: Installed directory name of the plugin.
        plugin_args: Arguments already typed against the command schema.
        user_config: Contents of the plugin's ``config.toml``.
        project_variables: Project-wide variables from ``safeplug.yaml``.
        project_root: Absolute project root.
        registry: Where the plugin was installed from, if known.
        dry_run: Whether the plugin should avoid side effects.
    """
    meta = ContextMeta(
        name=plugin_name,
        version=manifest.plugin.version,
        description=manifest.plugin.description,
        registry=registry or manifest.plugin.registry,
    )
    return ExecutionContext(
        manifest=ManifestSummary(
            plugin=meta,
            commands=manifest.command_names(),
            deno_dependencies=dict(manifest.deno_dependencies),
        ),
        config=user_config,
        project_variables=project_variables,
        plugin_args=plugin_args,
        meta=meta,
        project_root=project_root,
        dry_run=dry_run,
    )
