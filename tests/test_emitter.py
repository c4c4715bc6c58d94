"""Tests for target emission and atomic writes."""

import os

import pytest

from promptmill.classifier import SectionClassifier
from promptmill.emitter import TargetEmitter, atomic_write_text, staged_directory, write_targets
from promptmill.types import SectionLabel


@pytest.fixture
def ranges(config, frontend_expanded):
    return SectionClassifier.from_config(config).classify(frontend_expanded)


@pytest.fixture
def targets(ranges, frontend_expanded):
    return TargetEmitter().emit(ranges, frontend_expanded)


def by_name(targets):
    return {t.name: t for t in targets}


class TestEmit:
    """Tests for grouping ranges into target files."""

    def test_default_target_files(self, targets):
        assert [t.name for t in targets] == [
            "intro.md",
            "workflow.md",
            "examples.md",
            "critical-reminders.md",
        ]

    def test_infrastructure_never_emitted(self, targets):
        text = "".join(t.text for t in targets)
        assert "name: frontend-developer" not in text
        assert "already in your context" not in text
        assert "DISPLAY ALL 5 CORE PRINCIPLES" not in text

    def test_chunks_joined_with_single_blank_line(self, targets):
        intro = by_name(targets)["intro.md"]
        assert intro.lines == (
            "# Frontend Developer Agent",
            "You are an expert frontend developer.",
            "",
            "**Core Principles**",
            "1. Investigate before acting.",
            "2. Follow existing patterns.",
            "3. Verify every change.",
        )
        assert intro.origins[2] is None
        assert intro.origins[3] == 17

    def test_pattern_and_examples_share_a_file_in_source_order(self, targets):
        examples = by_name(targets)["examples.md"]
        assert examples.lines[0] == "## Code Patterns"
        assert examples.lines[4] == "## Examples"
        assert [r.label for r in examples.ranges] == [SectionLabel.DOMAIN_PATTERN, SectionLabel.EXAMPLES]

    def test_origins_point_at_identical_lines(self, targets, frontend_expanded):
        for target in targets:
            for text, origin in zip(target.lines, target.origins):
                if origin is not None:
                    assert frontend_expanded.lines[origin] == text

    def test_caller_supplied_target_map(self, ranges, frontend_expanded):
        emitter = TargetEmitter({SectionLabel.WORKFLOW: "how.md", SectionLabel.INTRO: "who.md"})
        targets = emitter.emit(ranges, frontend_expanded)
        assert [t.name for t in targets] == ["who.md", "how.md"]

    def test_per_call_target_map(self, ranges, frontend_expanded):
        targets = TargetEmitter().emit(ranges, frontend_expanded, {SectionLabel.EXAMPLES: "samples.md"})
        assert [t.name for t in targets] == ["samples.md"]

    def test_infrastructure_labels_ignored_in_map(self, ranges, frontend_expanded):
        emitter = TargetEmitter({SectionLabel.FRONTMATTER: "fm.md", SectionLabel.INTRO: "intro.md"})
        assert [t.name for t in emitter.emit(ranges, frontend_expanded)] == ["intro.md"]


class TestWrites:
    """Tests for atomic file output."""

    def test_write_targets(self, targets, tmp_path):
        out_dir = tmp_path / "out" / "frontend-developer"
        written = write_targets(targets, out_dir)
        assert [p.name for p in written] == [t.name for t in targets]
        assert (out_dir / "workflow.md").read_text(encoding="utf-8").startswith("## Investigation Process\n")

    def test_no_temp_files_left_behind(self, tmp_path):
        path = tmp_path / "nested" / "file.md"
        atomic_write_text(path, "content\n")
        assert path.read_text(encoding="utf-8") == "content\n"
        assert os.listdir(path.parent) == ["file.md"]

    def test_failed_write_keeps_previous_content(self, tmp_path, monkeypatch):
        path = tmp_path / "file.md"
        path.write_text("original\n", encoding="utf-8")

        def failing_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", failing_replace)
        with pytest.raises(OSError):
            atomic_write_text(path, "new\n")

        assert path.read_text(encoding="utf-8") == "original\n"
        assert os.listdir(tmp_path) == ["file.md"]


class TestStagedDirectory:
    """Whole-directory replacement of one document's output."""

    def test_replaces_previous_contents(self, tmp_path):
        out_dir = tmp_path / "out" / "agent"
        atomic_write_text(out_dir / "old.md", "old\n")

        with staged_directory(out_dir) as staging:
            atomic_write_text(staging / "new.md", "new\n")
            assert (out_dir / "old.md").is_file()

        assert os.listdir(out_dir) == ["new.md"]
        assert os.listdir(tmp_path / "out") == ["agent"]

    def test_error_in_block_keeps_previous_output(self, tmp_path):
        out_dir = tmp_path / "agent"
        atomic_write_text(out_dir / "intro.md", "kept\n")

        with pytest.raises(RuntimeError):
            with staged_directory(out_dir) as staging:
                atomic_write_text(staging / "intro.md", "replacement\n")
                raise RuntimeError("stop")

        assert (out_dir / "intro.md").read_text(encoding="utf-8") == "kept\n"
        assert os.listdir(tmp_path) == ["agent"]

    def test_error_before_first_publish_leaves_nothing(self, tmp_path):
        with pytest.raises(RuntimeError):
            with staged_directory(tmp_path / "agent") as staging:
                atomic_write_text(staging / "intro.md", "partial\n")
                raise RuntimeError("stop")

        assert os.listdir(tmp_path) == []
