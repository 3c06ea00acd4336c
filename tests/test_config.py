"""Tests for safeplug.config."""

from pathlib import Path

import pytest

from safeplug.config import ProjectConfig, RegistryConfig, RuntimeConfig, load_config


class TestProjectConfigModel:
    def test_defaults(self) -> None:
        c = ProjectConfig()
        assert c.project_variables == {}
        assert c.runtime.binary == "deno"
        assert c.runtime.cache_dependencies is True
        assert c.registry.sources == []

    def test_root_path_resolves(self) -> None:
        c = ProjectConfig(project_root=".")
        assert c.root_path().is_absolute()

    def test_plugins_path(self, tmp_path: Path) -> None:
        c = ProjectConfig(project_root=str(tmp_path))
        assert c.metadata_path() == tmp_path.resolve() / ".safeplug"
        assert c.plugins_path() == tmp_path.resolve() / ".safeplug" / "plugins"

    def test_deduplicates_sources(self) -> None:
        a, b = "https://a.example/r.git", "https://b.example/r.git"
        r = RegistryConfig(sources=[a, b, a])
        assert r.sources == [a, b]

    def test_runtime_override(self) -> None:
        runtime = RuntimeConfig(binary="/opt/deno/bin/deno", cache_dependencies=False)
        c = ProjectConfig(runtime=runtime)
        assert c.runtime.binary == "/opt/deno/bin/deno"
        assert c.runtime.cache_dependencies is False


class TestLoadConfig:
    def test_load_valid_config(self, tmp_path: Path) -> None:
        config_file = tmp_path / "safeplug.yaml"
        config_file.write_text(
            "name: demo\n"
            "project_root: .\n"
            "project_variables:\n"
            "  env: staging\n"
            "registry:\n"
            "  sources:\n"
            "    - https://github.com/acme/plugins.git\n",
            encoding="utf-8",
        )
        c = load_config(config_file)
        assert c.name == "demo"
        assert c.project_variables == {"env": "staging"}
        assert c.registry.sources == ["https://github.com/acme/plugins.git"]

    def test_registry_sources_not_validated_on_load(self, tmp_path: Path) -> None:
        config_file = tmp_path / "safeplug.yaml"
        config_file.write_text("registry:\n  sources:\n    - file:///etc\n", encoding="utf-8")
        assert load_config(config_file).registry.sources == ["file:///etc"]

    def test_missing_file_raises(self) -> None:
        with pytest.raises(FileNotFoundError):
            load_config("/nonexistent/safeplug.yaml")

    def test_empty_file_raises(self, tmp_path: Path) -> None:
        config_file = tmp_path / "safeplug.yaml"
        config_file.write_text("", encoding="utf-8")
        with pytest.raises(ValueError, match="empty"):
            load_config(config_file)

    def test_non_mapping_raises(self, tmp_path: Path) -> None:
        config_file = tmp_path / "safeplug.yaml"
        config_file.write_text("- just\n- a list\n", encoding="utf-8")
        with pytest.raises(ValueError, match="mapping"):
            load_config(config_file)

    def test_invalid_field_raises(self, tmp_path: Path) -> None:
        config_file = tmp_path / "safeplug.yaml"
        config_file.write_text("runtime:\n  cache_dependencies: sometimes\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_config(config_file)
