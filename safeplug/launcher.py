"""Sandbox launcher: runs a plugin script under a compiled policy.

The policy becomes Deno permission flags, the execution context is
written to a private temp file, and the script is run with inherited
stdio so interactive plugins can talk to the user.  The temp file is
removed on every exit path.
"""

from __future__ import annotations

import logging
import os
import secrets
import shutil
import subprocess
import tempfile
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path

from safeplug.context import ExecutionContext
from safeplug.errors import (
    DependencyCacheError,
    PluginExecutionError,
    RuntimeNotFoundError,
    ScriptNotFoundError,
)
from safeplug.permissions import PermissionPolicy
from safeplug.validators import UrlPurpose, validate_url

logger = logging.getLogger(__name__)

DEFAULT_RUNTIME = "deno"
TRANSPORT_PREFIX = "safeplug-context-"


def _allowlist(flag: str, entries: Iterable[str]) -> list[str]:
    values = sorted(set(entries))
    if not values:
        return []
    return [f"{flag}={','.join(values)}"]


def runtime_flags(policy: PermissionPolicy, extra_read: Iterable[str] = ()) -> list[str]:
    """Translate a policy into runtime permission flags.

    An allowlist flag is omitted when its set is empty; the runtime would
    otherwise read a bare ``--allow-read=`` very differently from no flag.

    Args:
        policy: The compiled policy.
        extra_read: Host-generated read grants (the transport file) that
            are added to the read allowlist without validation.

    Returns:
        Flags in a fixed order with sorted values.
    """
    flags = _allowlist("--allow-read", [*policy.file_read, *extra_read])
    flags += _allowlist("--allow-write", policy.file_write)
    if policy.env_access:
        flags.append("--allow-env")
    flags += _allowlist("--allow-net", policy.network)
    flags += _allowlist("--allow-run", policy.run_commands)
    return flags


def _remove_transport(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove context file %s: %s", path, exc)


@contextmanager
def transport_file(
    context: ExecutionContext, directory: Path | str | None = None
) -> Iterator[Path]:
    """Write *context* to a uniquely named file and remove it on exit.

    The file is created exclusively with owner-only permissions.  Its
    name carries the process id plus a random token, so concurrent hosts
    and repeated launches never collide.
    """
    base = Path(directory) if directory is not None else Path(tempfile.gettempdir())
    path = base / f"{TRANSPORT_PREFIX}{os.getpid()}-{secrets.token_hex(8)}.json"
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(context.to_json())
        yield path
    finally:
        _remove_transport(path)


def _resolve_runtime(runtime: str) -> str:
    binary = shutil.which(runtime)
    if binary is None:
        raise RuntimeNotFoundError(f"Plugin runtime '{runtime}' is not installed or not on PATH")
    return binary


def cache_dependencies(dependencies: dict[str, str], runtime: str = DEFAULT_RUNTIME) -> None:
    """Pre-fetch declared dependencies with the runtime's cache command.

    Each URL is validated again right before it is fetched.

    Raises:
        UnsafeURLError: If a URL fails validation.
        DependencyCacheError: If the runtime can't fetch a dependency.
    """
    if not dependencies:
        return
    binary = _resolve_runtime(runtime)
    for name, url in sorted(dependencies.items()):
        validate_url(url, UrlPurpose.DEPENDENCY)
        logger.debug("Caching dependency %s from %s", name, url)
        completed = subprocess.run([binary, "cache", url], check=False)
        if completed.returncode != 0:
            raise DependencyCacheError(f"Failed to cache dependency '{name}' ({url})")


def build_command(
    binary: str, policy: PermissionPolicy, script: Path, transport: Path
) -> list[str]:
    """Return the full argument vector for one launch."""
    return [
        binary,
        "run",
        *runtime_flags(policy, extra_read=[str(transport)]),
        str(script),
        str(transport),
    ]


def launch(
    policy: PermissionPolicy,
    script_path: Path | str,
    context: ExecutionContext,
    runtime: str = DEFAULT_RUNTIME,
    transport_dir: Path | str | None = None,
) -> int:
    """Run a plugin script in the sandbox.

    Args:
        policy: The compiled permission policy.
        script_path: The command's script.
        context: Data for the plugin; its file path is the last argument.
        runtime: Runtime binary name.
        transport_dir: Where to put the context file (system temp dir by
            default).

    Returns:
        The exit status, always 0 on return.

    Raises:
        ScriptNotFoundError: The script doesn't exist.
        RuntimeNotFoundError: The runtime isn't installed.
        PluginExecutionError: The plugin exited non-zero.
    """
    script = Path(script_path)
    if not script.is_file():
        raise ScriptNotFoundError(f"Plugin script not found: {script}")
    binary = _resolve_runtime(runtime)

    with transport_file(context, transport_dir) as transport:
        argv = build_command(binary, policy, script, transport)
        logger.debug("Launching plugin: %s", argv)
        try:
            completed = subprocess.run(argv, check=False)
        except FileNotFoundError as exc:
            raise RuntimeNotFoundError(f"Plugin runtime '{runtime}' could not be started") from exc

    if completed.returncode != 0:
        raise PluginExecutionError(
            f"Plugin exited with error (status {completed.returncode})", completed.returncode
        )
    return completed.returncode
