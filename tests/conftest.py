"""Shared test fixtures for SafePlug."""

from __future__ import annotations

import json
import subprocess
import tomllib
from pathlib import Path

import pytest

from safeplug.config import ProjectConfig
from safeplug.manifest import PluginManifest

DEMO_MANIFEST = """\
[plugin]
name = "demo"
version = "1.2.0"
description = "Demo plugin"

[permissions]
file_read = ["./config", "/etc/passwd"]
network = ["api.github.com", "localhost"]
run_commands = ["git"]

[commands.hello]
description = "Say hello"
script = "./hello.ts"

[commands.hello.args.required]
name = { description = "Who to greet", arg_type = "string" }

[commands.hello.args.optional]
loud = { description = "Shout", arg_type = "boolean", default_value = "false" }

[commands.hello.permissions]
run_commands = ["docker", "git", "rm -rf /"]
env_access = false

[commands.status]
description = "Show status"
script = "./status.ts"
"""


class FakeRuntime:
    """Stands in for ``subprocess.run`` and records every launch.

    For ``<runtime> run`` invocations the transport file (last argument)
    is read while it still exists, so tests can inspect the context.
    """

    def __init__(self) -> None:
        self.returncode = 0
        self.calls: list[list[str]] = []
        self.transports: list[Path] = []
        self.contexts: list[dict] = []

    def __call__(self, argv: list[str], **kwargs: object) -> subprocess.CompletedProcess:
        self.calls.append(list(argv))
        if len(argv) > 1 and argv[1] == "run":
            transport = Path(argv[-1])
            self.transports.append(transport)
            self.contexts.append(json.loads(transport.read_text(encoding="utf-8")))
        return subprocess.CompletedProcess(argv, self.returncode)


def write_plugin(
    plugins_dir: Path, name: str, manifest: str, scripts: tuple[str, ...] = ()
) -> Path:
    """Create an installed plugin directory with a manifest and scripts."""
    plugin_dir = plugins_dir / name
    plugin_dir.mkdir(parents=True, exist_ok=True)
    (plugin_dir / "manifest.toml").write_text(manifest, encoding="utf-8")
    for script in scripts:
        (plugin_dir / script).write_text("console.log('hi');\n", encoding="utf-8")
    return plugin_dir


@pytest.fixture()
def tmp_project(tmp_path: Path) -> Path:
    """Create a project with one installed plugin called ``demo``."""
    (tmp_path / "safeplug.yaml").write_text(
        "name: test-project\n"
        "project_root: " + str(tmp_path).replace("\\", "/") + "\n"
        "project_variables:\n"
        "  team: platform\n"
        "runtime:\n"
        "  binary: deno\n",
        encoding="utf-8",
    )
    plugin_dir = write_plugin(
        tmp_path / ".safeplug" / "plugins", "demo", DEMO_MANIFEST, ("hello.ts", "status.ts")
    )
    (plugin_dir / "config.toml").write_text('greeting = "Hello"\n', encoding="utf-8")
    return tmp_path


@pytest.fixture()
def config(tmp_project: Path) -> ProjectConfig:
    """Return a ProjectConfig rooted at the temporary project."""
    return ProjectConfig(
        name="test-project",
        project_root=str(tmp_project),
        project_variables={"team": "platform"},
    )


@pytest.fixture()
def manifest() -> PluginManifest:
    """The demo plugin's manifest, parsed."""
    return PluginManifest(**tomllib.loads(DEMO_MANIFEST))


@pytest.fixture()
def fake_runtime(monkeypatch: pytest.MonkeyPatch) -> FakeRuntime:
    """Pretend the runtime is installed and capture its invocations."""
    runtime = FakeRuntime()
    monkeypatch.setattr("safeplug.launcher.shutil.which", lambda name: f"/usr/local/bin/{name}")
    monkeypatch.setattr("safeplug.launcher.subprocess.run", runtime)
    return runtime
