"""Install and update plugins from git registries.

Every registry source and every dependency URL goes through
``validate_url`` before anything is cloned or copied.  A rejected URL
aborts the whole operation: every plugin is checked before the first one
is copied, so there is no partial install.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from safeplug.audit import AuditEvent, write_audit
from safeplug.config import ProjectConfig
from safeplug.errors import RegistryError, SafePlugError, ValidationError
from safeplug.manifest import (
    MANIFEST_FILE,
    find_plugin,
    installed_plugins,
    load_manifest,
    validate_plugin_name,
)
from safeplug.validators import UrlPurpose, validate_url

logger = logging.getLogger(__name__)

LOCK_FILE = "installed.yaml"


@dataclass
class InstallReport:
    """Outcome of an add or update run, one plugin name per entry."""

    installed: list[str] = field(default_factory=list)
    planned: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Origin lock file
# ---------------------------------------------------------------------------


def read_origins(config: ProjectConfig) -> dict[str, str]:
    """Return the ``plugin -> registry`` map recorded at install time.

    Raises:
        RegistryError: If the lock file is not valid YAML.
    """
    path = config.metadata_path() / LOCK_FILE
    if not path.is_file():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise RegistryError(f"Invalid origin lock file {path}: {exc}") from exc
    if not isinstance(data, dict):
        return {}
    return {str(k): str(v) for k, v in data.items()}


def record_origin(config: ProjectConfig, plugin_name: str, origin: str) -> None:
    origins = read_origins(config)
    origins[plugin_name] = origin
    path = config.metadata_path() / LOCK_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(origins, sort_keys=True), encoding="utf-8")


# ---------------------------------------------------------------------------
# Cloning
# ---------------------------------------------------------------------------


def clone_registry(url: str, dest: Path | str) -> Path:
    """Shallow-clone a registry after validating its URL.

    Raises:
        UnsafeURLError: If the URL is rejected; nothing is cloned.
        RegistryError: If git fails or isn't installed.
    """
    url = validate_url(url, UrlPurpose.REGISTRY)
    target = Path(dest)
    logger.debug("Cloning registry %s into %s", url, target)
    try:
        completed = subprocess.run(
            ["git", "clone", "--depth", "1", "--", url, str(target)],
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError as exc:
        raise RegistryError("git is not installed or not on PATH") from exc
    if completed.returncode != 0:
        raise RegistryError(f"Failed to clone {url}: {completed.stderr.strip()}")
    return target


def find_plugin_in_clone(clone_dir: Path, plugin_name: str) -> Path | None:
    """Locate a plugin in a registry checkout: ``plugins/<name>`` first, then ``<name>``."""
    for candidate in (clone_dir / "plugins" / plugin_name, clone_dir / plugin_name):
        if candidate.is_dir():
            return candidate
    return None


def check_dependencies(plugin_dir: Path) -> None:
    """Validate the dependency URLs of a plugin that is about to be installed.

    Raises:
        ManifestError: If the candidate has no valid manifest.
        UnsafeURLError: If any dependency URL is rejected.
    """
    manifest = load_manifest(plugin_dir / MANIFEST_FILE)
    for url in manifest.deno_dependencies.values():
        validate_url(url, UrlPurpose.DEPENDENCY)


def install_from_path(
    config: ProjectConfig, plugin_name: str, source: Path, origin: str, force: bool = False
) -> Path:
    """Copy a checked plugin directory into the project and record its origin."""
    dest = config.plugins_path() / plugin_name
    if dest.exists():
        if not force:
            raise RegistryError(
                f"Plugin '{plugin_name}' already exists in the project. Use --force to overwrite."
            )
        shutil.rmtree(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copytree(source, dest, ignore=shutil.ignore_patterns(".git"))
    record_origin(config, plugin_name, origin)
    logger.info("Installed plugin %s from %s", plugin_name, origin)
    return dest


def _audit_failure(root: Path, actions: list[str], exc: SafePlugError) -> None:
    status = "denied" if isinstance(exc, ValidationError) else "error"
    for action in actions:
        write_audit(root, AuditEvent(action=action, status=status, detail=str(exc)))


# ---------------------------------------------------------------------------
# add / update
# ---------------------------------------------------------------------------


def install_plugins(
    config: ProjectConfig,
    names: list[str],
    registry: str | None = None,
    force: bool = False,
    dry_run: bool = False,
) -> InstallReport:
    """Install plugins from the configured registries (or *registry*).

    Each source is validated before any of them is cloned, and every
    requested plugin is located and checked before the first one is
    copied.  A plugin is installed from the first registry that contains
    it.  Failures are audited as ``add:<name>`` events unless this is a
    dry run.

    Raises:
        ValidationError: If a plugin name is unsafe.
        UnsafeURLError: If a registry or dependency URL is rejected.
        RegistryError: If there are no sources or a clone fails.
        ManifestError: If a candidate plugin has no valid manifest.
    """
    root = config.root_path()
    report = InstallReport()

    def fail(targets: list[str], exc: SafePlugError) -> None:
        if not dry_run:
            _audit_failure(root, [f"add:{name}" for name in targets], exc)

    try:
        for name in names:
            validate_plugin_name(name)
        sources = [registry] if registry else list(config.registry.sources)
        if not sources:
            raise RegistryError(
                "No registry sources found. "
                "Add registry.sources to safeplug.yaml or pass --registry <url>."
            )
        sources = [validate_url(source, UrlPurpose.REGISTRY) for source in sources]
    except SafePlugError as exc:
        fail(names, exc)
        raise

    with tempfile.TemporaryDirectory(prefix="safeplug-registry-") as tmp:
        try:
            clones = [
                (source, clone_registry(source, Path(tmp) / str(i)))
                for i, source in enumerate(sources)
            ]
        except SafePlugError as exc:
            fail(names, exc)
            raise

        plan: list[tuple[str, str, Path]] = []
        for name in names:
            if (config.plugins_path() / name).exists() and not force:
                logger.warning("Plugin %s is already installed; use --force to overwrite", name)
                report.skipped.append(name)
                continue

            found = next(
                (
                    (source, path)
                    for source, clone in clones
                    if (path := find_plugin_in_clone(clone, name)) is not None
                ),
                None,
            )
            if found is None:
                report.missing.append(name)
                continue

            source, path = found
            try:
                check_dependencies(path)
            except SafePlugError as exc:
                fail([name], exc)
                raise
            plan.append((name, source, path))

        for name, source, path in plan:
            if dry_run:
                report.planned.append(name)
                continue
            install_from_path(config, name, path, source, force=force)
            write_audit(root, AuditEvent(action=f"add:{name}", status="ok", detail=source))
            report.installed.append(name)

    return report


def update_plugins(
    config: ProjectConfig, names: list[str] | None = None, dry_run: bool = False
) -> InstallReport:
    """Reinstall plugins from the registry they came from.

    With no *names*, every installed plugin is updated.  All origins are
    validated before the first clone, and every plugin is cloned and
    checked before the first one is replaced.

    Raises:
        UnsafeURLError: If a recorded origin or a dependency URL is rejected.
        RegistryError: If a clone fails.
    """
    root = config.root_path()
    targets = names if names else installed_plugins(config)
    origins = read_origins(config)
    report = InstallReport()

    def fail(name: str, exc: SafePlugError) -> None:
        if not dry_run:
            _audit_failure(root, [f"update:{name}"], exc)

    plan: list[tuple[str, str]] = []
    for name in targets:
        try:
            plugin_path = find_plugin(config, name)
            origin = (
                origins.get(name) or load_manifest(plugin_path / MANIFEST_FILE).plugin.registry
            )
            if not origin:
                logger.warning("Plugin %s has no recorded registry; it can't be updated", name)
                report.skipped.append(name)
                continue
            plan.append((name, validate_url(origin, UrlPurpose.REGISTRY)))
        except SafePlugError as exc:
            fail(name, exc)
            raise

    if dry_run:
        report.planned.extend(name for name, _ in plan)
        return report

    with tempfile.TemporaryDirectory(prefix="safeplug-update-") as tmp:
        clones: dict[str, Path] = {}
        staged: list[tuple[str, str, Path]] = []
        for name, origin in plan:
            try:
                if origin not in clones:
                    clones[origin] = clone_registry(origin, Path(tmp) / str(len(clones)))
                source = find_plugin_in_clone(clones[origin], name)
                if source is None:
                    report.missing.append(name)
                    continue
                check_dependencies(source)
            except SafePlugError as exc:
                fail(name, exc)
                raise
            staged.append((name, origin, source))

        for name, origin, source in staged:
            install_from_path(config, name, source, origin, force=True)
            write_audit(root, AuditEvent(action=f"update:{name}", status="ok", detail=origin))
            report.installed.append(name)

    return report
