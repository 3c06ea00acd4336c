"""Tests for safeplug.launcher."""

from __future__ import annotations

import json
import logging
import os
import stat
from pathlib import Path

import pytest

from safeplug.context import ExecutionContext, build_context
from safeplug.errors import (
    DependencyCacheError,
    LaunchError,
    PluginExecutionError,
    RuntimeNotFoundError,
    ScriptNotFoundError,
    UnsafeURLError,
)
from safeplug.launcher import (
    TRANSPORT_PREFIX,
    build_command,
    cache_dependencies,
    launch,
    runtime_flags,
    transport_file,
)
from safeplug.manifest import PluginManifest
from safeplug.permissions import PermissionPolicy, safe_defaults
from tests.conftest import FakeRuntime

ROOT = Path("/test/project")


@pytest.fixture()
def context(manifest: PluginManifest) -> ExecutionContext:
    return build_context(
        manifest,
        plugin_name="demo",
        plugin_args={"name": "World"},
        user_config={"greeting": "Hello"},
        project_variables={"team": "platform"},
        project_root=str(ROOT),
    )


@pytest.fixture()
def script(tmp_path: Path) -> Path:
    path = tmp_path / "hello.ts"
    path.write_text("console.log('hi');\n", encoding="utf-8")
    return path


def _transports(directory: Path) -> list[Path]:
    return sorted(directory.glob(f"{TRANSPORT_PREFIX}*"))


# ---------------------------------------------------------------------------
# Flag formatting
# ---------------------------------------------------------------------------


class TestRuntimeFlags:
    def test_safe_defaults(self) -> None:
        assert runtime_flags(safe_defaults(ROOT)) == [
            "--allow-read=/test/project,/test/project/.safeplug",
            "--allow-write=/test/project",
            "--allow-env",
        ]

    def test_empty_policy_has_no_flags(self) -> None:
        assert runtime_flags(PermissionPolicy()) == []

    def test_values_are_sorted_and_comma_joined(self) -> None:
        policy = PermissionPolicy(
            network=frozenset({"registry.npmjs.org", "api.github.com"}),
            run_commands=frozenset({"git", "docker"}),
        )
        assert runtime_flags(policy) == [
            "--allow-net=api.github.com,registry.npmjs.org",
            "--allow-run=docker,git",
        ]

    def test_fixed_flag_order(self) -> None:
        policy = PermissionPolicy(
            file_read=frozenset({"./a"}),
            file_write=frozenset({"./b"}),
            env_access=True,
            network=frozenset({"example.com"}),
            run_commands=frozenset({"git"}),
        )
        names = [flag.split("=")[0] for flag in runtime_flags(policy)]
        assert names == [
            "--allow-read",
            "--allow-write",
            "--allow-env",
            "--allow-net",
            "--allow-run",
        ]

    def test_env_flag_absent_when_denied(self) -> None:
        assert "--allow-env" not in runtime_flags(PermissionPolicy(file_read=frozenset({"./a"})))

    def test_extra_read_is_added(self) -> None:
        policy = PermissionPolicy(file_read=frozenset({"./a"}))
        assert runtime_flags(policy, extra_read=["/tmp/ctx.json"]) == [
            "--allow-read=./a,/tmp/ctx.json"
        ]

    def test_extra_read_alone_produces_flag(self) -> None:
        assert runtime_flags(PermissionPolicy(), extra_read=["/tmp/ctx.json"]) == [
            "--allow-read=/tmp/ctx.json"
        ]

    def test_build_command_layout(self) -> None:
        argv = build_command(
            "/usr/bin/deno",
            PermissionPolicy(network=frozenset({"example.com"})),
            Path("/p/hello.ts"),
            Path("/tmp/ctx.json"),
        )
        assert argv == [
            "/usr/bin/deno",
            "run",
            "--allow-read=/tmp/ctx.json",
            "--allow-net=example.com",
            "/p/hello.ts",
            "/tmp/ctx.json",
        ]


# ---------------------------------------------------------------------------
# Transport file
# ---------------------------------------------------------------------------


class TestTransportFile:
    def test_written_then_removed(self, tmp_path: Path, context: ExecutionContext) -> None:
        with transport_file(context, tmp_path) as path:
            assert path.parent == tmp_path
            assert path.name.startswith(f"{TRANSPORT_PREFIX}{os.getpid()}-")
            data = json.loads(path.read_text(encoding="utf-8"))
            assert data["plugin_args"] == {"name": "World"}
        assert not path.exists()

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permission bits")
    def test_owner_only_permissions(self, tmp_path: Path, context: ExecutionContext) -> None:
        with transport_file(context, tmp_path) as path:
            assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_removed_when_body_raises(self, tmp_path: Path, context: ExecutionContext) -> None:
        with pytest.raises(RuntimeError), transport_file(context, tmp_path):
            raise RuntimeError("boom")
        assert _transports(tmp_path) == []

    def test_names_are_unique(self, tmp_path: Path, context: ExecutionContext) -> None:
        with transport_file(context, tmp_path) as first:
            with transport_file(context, tmp_path) as second:
                assert first != second

    def test_cleanup_failure_is_logged(
        self,
        tmp_path: Path,
        context: ExecutionContext,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        def refuse(self: Path, missing_ok: bool = False) -> None:
            raise PermissionError("read-only")

        monkeypatch.setattr(Path, "unlink", refuse)
        with caplog.at_level(logging.WARNING, logger="safeplug.launcher"):
            with transport_file(context, tmp_path):
                pass
        assert "Could not remove context file" in caplog.text


# ---------------------------------------------------------------------------
# Launch
# ---------------------------------------------------------------------------


class TestLaunch:
    def test_successful_launch(
        self,
        tmp_path: Path,
        script: Path,
        context: ExecutionContext,
        fake_runtime: FakeRuntime,
    ) -> None:
        code = launch(safe_defaults(ROOT), script, context, transport_dir=tmp_path)
        assert code == 0

        argv = fake_runtime.calls[0]
        transport = fake_runtime.transports[0]
        assert argv[:2] == ["/usr/local/bin/deno", "run"]
        assert argv[-2:] == [str(script), str(transport)]
        assert argv[2].startswith("--allow-read=")
        assert str(transport) in argv[2].split("=", 1)[1].split(",")
        assert not transport.exists()

    def test_context_reaches_plugin(
        self,
        tmp_path: Path,
        script: Path,
        context: ExecutionContext,
        fake_runtime: FakeRuntime,
    ) -> None:
        launch(safe_defaults(ROOT), script, context, transport_dir=tmp_path)
        data = fake_runtime.contexts[0]
        assert data["meta"]["name"] == "demo"
        assert data["manifest"]["commands"] == ["hello", "status"]
        assert data["project_variables"] == {"team": "platform"}
        assert data["config"] == {"greeting": "Hello"}
        assert data["dry_run"] is False

    def test_non_zero_exit_raises(
        self,
        tmp_path: Path,
        script: Path,
        context: ExecutionContext,
        fake_runtime: FakeRuntime,
    ) -> None:
        fake_runtime.returncode = 3
        with pytest.raises(PluginExecutionError, match="status 3") as exc_info:
            launch(safe_defaults(ROOT), script, context, transport_dir=tmp_path)
        assert exc_info.value.returncode == 3
        assert _transports(tmp_path) == []

    def test_transport_removed_when_launch_errors(
        self,
        tmp_path: Path,
        script: Path,
        context: ExecutionContext,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def explode(argv: list[str], **kwargs: object) -> None:
            assert Path(argv[-1]).exists()
            raise OSError("exec failed")

        monkeypatch.setattr("safeplug.launcher.shutil.which", lambda name: "/usr/bin/deno")
        monkeypatch.setattr("safeplug.launcher.subprocess.run", explode)
        with pytest.raises(OSError, match="exec failed"):
            launch(safe_defaults(ROOT), script, context, transport_dir=tmp_path)
        assert _transports(tmp_path) == []

    def test_missing_script(
        self, tmp_path: Path, context: ExecutionContext, fake_runtime: FakeRuntime
    ) -> None:
        with pytest.raises(ScriptNotFoundError):
            launch(safe_defaults(ROOT), tmp_path / "nope.ts", context, transport_dir=tmp_path)
        assert fake_runtime.calls == []
        assert _transports(tmp_path) == []

    def test_missing_runtime(
        self,
        tmp_path: Path,
        script: Path,
        context: ExecutionContext,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr("safeplug.launcher.shutil.which", lambda name: None)
        with pytest.raises(RuntimeNotFoundError, match="Install Deno"):
            launch(safe_defaults(ROOT), script, context, transport_dir=tmp_path)
        assert _transports(tmp_path) == []

    def test_launch_errors_carry_hints(self) -> None:
        err = ScriptNotFoundError("Plugin script not found: x.ts")
        assert isinstance(err, LaunchError)
        assert str(err).startswith("Plugin script not found: x.ts\n→ ")


class TestCacheDependencies:
    def test_caches_each_dependency(self, fake_runtime: FakeRuntime) -> None:
        cache_dependencies(
            {
                "oak": "https://deno.land/x/oak/mod.ts",
                "std": "https://deno.land/std/path/mod.ts",
            }
        )
        assert fake_runtime.calls == [
            ["/usr/local/bin/deno", "cache", "https://deno.land/x/oak/mod.ts"],
            ["/usr/local/bin/deno", "cache", "https://deno.land/std/path/mod.ts"],
        ]

    def test_nothing_to_cache(self, fake_runtime: FakeRuntime) -> None:
        cache_dependencies({})
        assert fake_runtime.calls == []

    def test_failure_raises(self, fake_runtime: FakeRuntime) -> None:
        fake_runtime.returncode = 1
        with pytest.raises(DependencyCacheError, match="oak"):
            cache_dependencies({"oak": "https://deno.land/x/oak/mod.ts"})

    def test_unsafe_url_never_fetched(self, fake_runtime: FakeRuntime) -> None:
        with pytest.raises(UnsafeURLError):
            cache_dependencies({"evil": "http://deno.land/x/evil.ts"})
        assert fake_runtime.calls == []
