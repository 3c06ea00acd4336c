"""Plugin executor that compiles permissions, launches, and audits one command."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from safeplug.arguments import coerce_plugin_args
from safeplug.audit import AuditEvent, write_audit
from safeplug.config import ProjectConfig
from safeplug.context import build_context
from safeplug.errors import (
    ArgumentValidationError,
    LaunchError,
    ManifestError,
    PluginNotFoundError,
    RegistryError,
    ValidationError,
)
from safeplug.launcher import cache_dependencies, launch, runtime_flags
from safeplug.manifest import (
    MANIFEST_FILE,
    USER_CONFIG_FILE,
    find_plugin,
    load_manifest,
    load_user_config,
)
from safeplug.permissions import compile_for_command
from safeplug.registry import read_origins
from safeplug.validators import UrlPurpose, validate_url

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Result of a plugin execution."""

    ok: bool
    message: str
    grants: list[str] = field(default_factory=list)
    exit_code: int | None = None


def split_target(target: str) -> tuple[str, str]:
    """Split ``plugin:command``.

    Raises:
        ValueError: If either half is missing.
    """
    plugin, sep, command = target.partition(":")
    if not sep or not plugin or not command:
        raise ValueError(f"Expected PLUGIN:COMMAND, got {target!r}")
    return plugin, command


def run_plugin(
    config: ProjectConfig,
    plugin_name: str,
    command_name: str,
    raw_args: dict[str, str] | None = None,
    dry_run: bool = False,
) -> RunResult:
    """Run one plugin command inside the sandbox.

    Steps:
    1. Locate the plugin and load its manifest and user config.
    2. Validate every dependency URL (any rejection aborts the run).
    3. Type the caller's arguments against the command schema.
    4. Compile the permission policy (bad declarations are dropped).
    5. Build the execution context and launch the script.

    Args:
        config: The active project configuration.
        plugin_name: Installed plugin directory name.
        command_name: Command declared in the manifest.
        raw_args: ``name -> value`` strings from the command line.
        dry_run: Passed through to the plugin.

    Returns:
        A RunResult; failures carry a user-facing message.
    """
    root = config.root_path()
    action = f"{plugin_name}:{command_name}"

    def fail(
        status: str, msg: str, grants: list[str] | None = None, code: int | None = None
    ) -> RunResult:
        write_audit(root, AuditEvent(action=action, status=status, detail=msg, grants=grants or []))
        return RunResult(ok=False, message=msg, grants=grants or [], exit_code=code)

    try:
        plugin_dir = find_plugin(config, plugin_name)
        manifest = load_manifest(plugin_dir / MANIFEST_FILE)
        user_config = load_user_config(plugin_dir / USER_CONFIG_FILE)
        origin = read_origins(config).get(plugin_name)
    except (ValidationError, PluginNotFoundError, ManifestError, RegistryError) as exc:
        return fail("error", str(exc))

    command = manifest.commands.get(command_name)
    if command is None:
        available = ", ".join(manifest.command_names()) or "(none)"
        return fail(
            "error",
            f"Command '{command_name}' not found in plugin '{plugin_name}'.\n"
            f"→ Available commands: {available}",
        )

    script = (plugin_dir / command.script).resolve()
    try:
        script.relative_to(plugin_dir.resolve())
    except ValueError:
        msg = f"Script '{command.script}' is outside plugin directory '{plugin_dir}'"
        return fail("denied", msg)

    for dep_name, dep_url in manifest.deno_dependencies.items():
        try:
            validate_url(dep_url, UrlPurpose.DEPENDENCY)
        except ValidationError as exc:
            return fail(
                "denied",
                f"Security validation failed for dependency '{dep_name}' ({dep_url}): "
                f"{exc.reason}\n"
                "→ Dependencies must use https URLs on public hosts.",
            )

    try:
        plugin_args = coerce_plugin_args(raw_args or {}, command.args, plugin_name, command_name)
    except ArgumentValidationError as exc:
        return fail("error", str(exc))

    policy = compile_for_command(manifest, command_name, root)
    grants = runtime_flags(policy)
    logger.debug("Compiled grants for %s: %s", action, grants)

    context = build_context(
        manifest,
        plugin_name=plugin_name,
        plugin_args=plugin_args,
        user_config=user_config,
        project_variables=config.project_variables,
        project_root=str(root),
        registry=origin,
        dry_run=dry_run,
    )

    try:
        if config.runtime.cache_dependencies:
            cache_dependencies(manifest.deno_dependencies, config.runtime.binary)
        exit_code = launch(policy, script, context, runtime=config.runtime.binary)
    except LaunchError as exc:
        code = getattr(exc, "returncode", None)
        return fail("error", f"Plugin '{action}' failed: {exc}", grants, code)

    msg = f"Plugin '{action}' completed successfully"
    write_audit(root, AuditEvent(action=action, status="ok", detail=msg, grants=grants))
    return RunResult(ok=True, message=msg, grants=grants, exit_code=exit_code)
