"""Tests for compiler configuration loading and resolution."""

import logging
import os

import pytest

from promptmill.config.compiler_config import (
    INCLUDE_BASE_INCLUDING_FILE,
    find_config_file,
    load_compiler_config,
)
from promptmill.config.tool_vocabulary import KNOWN_TOOLS, parse_tool_list, unknown_tools
from promptmill.types import SectionLabel

from conftest import write_file


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """Working directory with no promptmill.yaml above it."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestDefaults:
    """Built-in configuration."""

    def test_defaults(self, isolated):
        config = load_compiler_config(search=False, env={})
        assert config.source == "default"
        assert config.fragment_roots == (isolated.resolve(),)
        assert config.include_base == "root"
        assert config.budget_tolerance == 0.15
        assert config.output_dir == (isolated / "compiled").resolve()
        assert config.known_models == ("inherit", "haiku", "sonnet", "opus")
        assert config.default_core_prompts == "developer"

    def test_default_target_map(self, isolated):
        config = load_compiler_config(search=False, env={})
        assert config.target_for(SectionLabel.WORKFLOW) == "workflow.md"
        assert config.target_for(SectionLabel.DOMAIN_PATTERN) == "examples.md"
        assert config.target_for(SectionLabel.FRONTMATTER) is None
        assert config.target_for(SectionLabel.CLOSING_BOILERPLATE) is None

    def test_keyword_order_is_kept(self, isolated):
        config = load_compiler_config(search=False, env={})
        labels = [label for label, _ in config.category_keywords]
        assert labels[0] == SectionLabel.WORKFLOW
        assert labels[-1] == SectionLabel.INTRO


class TestConfigFile:
    """promptmill.yaml loading."""

    def test_relative_roots_resolve_against_file(self, isolated):
        path = write_file(
            isolated / "repo" / "promptmill.yaml",
            "fragment_roots: [core, shared]\noutput_dir: out\n",
        )
        config = load_compiler_config(path, env={})
        repo = (isolated / "repo").resolve()
        assert config.fragment_roots == (repo / "core", repo / "shared")
        assert config.output_dir == repo / "out"
        assert config.source == str(path)

    def test_found_by_searching_upward(self, isolated, monkeypatch):
        write_file(isolated / "promptmill.yaml", "budget_tolerance: 0.3\n")
        nested = isolated / "agents" / "frontend"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)
        assert find_config_file() == (isolated / "promptmill.yaml").resolve()
        assert load_compiler_config(env={}).budget_tolerance == 0.3

    def test_target_map_replaces_wholesale(self, isolated):
        path = write_file(isolated / "promptmill.yaml", "target_map:\n  Intro: who.md\n")
        config = load_compiler_config(path, env={})
        assert config.target_for(SectionLabel.INTRO) == "who.md"
        assert config.target_for(SectionLabel.WORKFLOW) is None

    def test_defaults_merge_key_wise(self, isolated):
        path = write_file(isolated / "promptmill.yaml", "defaults:\n  model: sonnet\n")
        config = load_compiler_config(path, env={})
        assert config.default_model == "sonnet"
        assert config.default_ending_prompts == "developer"

    def test_infrastructure_target_ignored(self, isolated, caplog):
        path = write_file(isolated / "promptmill.yaml", "target_map:\n  Frontmatter: fm.md\n  Intro: intro.md\n")
        with caplog.at_level(logging.WARNING):
            config = load_compiler_config(path, env={})
        assert dict(config.target_map) == {SectionLabel.INTRO: "intro.md"}
        assert "infrastructure label" in caplog.text

    def test_missing_explicit_file(self, isolated):
        with pytest.raises(FileNotFoundError):
            load_compiler_config(isolated / "nope.yaml", env={})

    def test_malformed_yaml(self, isolated):
        path = write_file(isolated / "promptmill.yaml", "fragment_roots: [unclosed\n")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_compiler_config(path, env={})

    def test_non_mapping(self, isolated):
        path = write_file(isolated / "promptmill.yaml", "- a\n- b\n")
        with pytest.raises(ValueError, match="must be a mapping"):
            load_compiler_config(path, env={})

    def test_invalid_include_base(self, isolated):
        path = write_file(isolated / "promptmill.yaml", "include_base: sideways\n")
        with pytest.raises(ValueError, match="include_base"):
            load_compiler_config(path, env={})

    def test_unknown_label(self, isolated):
        path = write_file(isolated / "promptmill.yaml", "target_map:\n  Appendix: appendix.md\n")
        with pytest.raises(ValueError):
            load_compiler_config(path, env={})


class TestOverrides:
    """Environment and explicit overrides."""

    def test_env_overrides_file(self, isolated):
        path = write_file(isolated / "promptmill.yaml", "include_base: root\nbudget_tolerance: 0.1\n")
        env = {
            "PROMPTMILL_FRAGMENT_ROOTS": os.pathsep.join(["a", "b"]),
            "PROMPTMILL_INCLUDE_BASE": INCLUDE_BASE_INCLUDING_FILE,
            "PROMPTMILL_BUDGET_TOLERANCE": "0.25",
            "PROMPTMILL_MAX_WORKERS": "3",
        }
        config = load_compiler_config(path, env=env)
        assert config.fragment_roots == (isolated.resolve() / "a", isolated.resolve() / "b")
        assert config.include_base == INCLUDE_BASE_INCLUDING_FILE
        assert config.budget_tolerance == 0.25
        assert config.max_workers == 3

    def test_bad_env_numbers_ignored(self, isolated):
        env = {"PROMPTMILL_BUDGET_TOLERANCE": "lots", "PROMPTMILL_MAX_WORKERS": "many"}
        config = load_compiler_config(search=False, env=env)
        assert config.budget_tolerance == 0.15
        assert config.max_workers is None

    def test_explicit_overrides_win(self, isolated):
        env = {"PROMPTMILL_FRAGMENT_ROOTS": "from-env"}
        config = load_compiler_config(search=False, env=env, overrides={"fragment_roots": ["from-cli"]})
        assert config.fragment_roots == ((isolated / "from-cli").resolve(),)

    @pytest.mark.parametrize("value,expected", [(-0.5, 0.0), (2.0, 1.0), (0.4, 0.4)])
    def test_tolerance_clamped(self, isolated, value, expected):
        config = load_compiler_config(search=False, env={}, overrides={"budget_tolerance": value})
        assert config.budget_tolerance == expected


class TestToolVocabulary:
    """Known tool names."""

    def test_unknown_tools(self):
        assert "Read" in KNOWN_TOOLS
        assert unknown_tools(["Read", "Teleport", "Bash"]) == ["Teleport"]
        assert unknown_tools(["Read"], known=["Grep"]) == ["Read"]

    def test_parse_tool_list(self):
        assert parse_tool_list("Read, Write,  Grep") == ["Read", "Write", "Grep"]
        assert parse_tool_list(["Read", " Edit ", "Read"]) == ["Read", "Edit"]
        assert parse_tool_list(None) == []

    def test_profile_expands(self):
        assert parse_tool_list("read_only") == ["Read", "Grep", "Glob"]
