"""Tests for agent config descriptor generation and serialization."""

import pytest
import yaml

from promptmill.classifier import SectionClassifier, frontmatter_text
from promptmill.config_generator import (
    ConfigGenerator,
    dump_descriptor,
    format_title,
    load_descriptor,
)
from promptmill.errors import ConfigValidationError
from promptmill.types import AgentConfigDescriptor, ExpandedDocument, LineOrigin, SkillRef, SourceDocument

from conftest import make_agent


def expanded_from(text, path="agent.md"):
    lines = tuple(text.splitlines())
    return ExpandedDocument(
        source=SourceDocument(path=path, raw_text=text),
        lines=lines,
        line_map=tuple(LineOrigin(path, i + 1) for i in range(len(lines))),
    )


@pytest.fixture
def generator(config):
    return ConfigGenerator.from_config(config)


@pytest.fixture
def classifier(config):
    return SectionClassifier.from_config(config)


def generate(generator, classifier, text):
    expanded = expanded_from(text)
    ranges = classifier.classify(expanded)
    return generator.generate(frontmatter_text(expanded, ranges), ranges, expanded)


class TestCanonicalAgent:
    """Descriptor for the full sample agent."""

    @pytest.fixture
    def descriptor(self, generator, classifier, frontend_expanded):
        ranges = classifier.classify(frontend_expanded)
        generated = generator.generate(frontmatter_text(frontend_expanded, ranges), ranges, frontend_expanded)
        assert generated.warnings == ()
        return generated.descriptor

    def test_core_fields(self, descriptor):
        assert descriptor.name == "frontend-developer"
        assert descriptor.title == "Frontend Developer Agent"
        assert descriptor.description == "Implements frontend features from detailed specs"
        assert descriptor.model == "opus"
        assert descriptor.tools == ("Read", "Write", "Edit", "Grep", "Glob", "Bash")

    def test_prompt_set_refs_default_from_config(self, descriptor):
        assert descriptor.core_prompts_ref == "developer"
        assert descriptor.ending_prompts_ref == "developer"
        assert descriptor.output_format_ref == "output-formats-developer"

    def test_skills_split_by_list(self, descriptor):
        assert descriptor.skills.precompiled == (
            SkillRef(
                id="frontend-react",
                path="skills/frontend-react/SKILL.md",
                name="React",
                description="Component architecture",
            ),
            SkillRef(
                id="frontend/styling-scss-modules",
                path="skills/frontend-styling-scss-modules/SKILL.md",
                name="frontend/styling-scss-modules",
                description="SCSS Modules patterns",
            ),
        )
        assert descriptor.skills.dynamic == (
            SkillRef(
                id="backend/api-hono",
                path="skills/backend-api-hono/SKILL.md",
                name="backend/api-hono",
                description="Hono API routes",
            ),
        )


class TestFrontmatter:
    """Tests for frontmatter validation."""

    def test_missing_required_fields(self, generator, classifier):
        text = "---\nmodel: opus\n---\nBody.\n"
        with pytest.raises(ConfigValidationError) as exc_info:
            generate(generator, classifier, text)
        problems = exc_info.value.problems
        assert "missing required field 'name'" in problems
        assert "missing required field 'description'" in problems

    def test_blank_name_is_missing(self, generator, classifier):
        with pytest.raises(ConfigValidationError):
            generate(generator, classifier, "---\nname: '  '\ndescription: x\n---\nBody.\n")

    def test_malformed_yaml(self, generator, classifier):
        with pytest.raises(ConfigValidationError) as exc_info:
            generate(generator, classifier, "---\nname: [unclosed\ndescription: x\n---\nBody.\n")
        assert "YAML parse error" in str(exc_info.value)

    def test_non_mapping_frontmatter(self):
        with pytest.raises(ConfigValidationError):
            ConfigGenerator.parse_frontmatter("- just\n- a list\n")

    def test_no_frontmatter_is_missing_fields(self, generator, classifier):
        with pytest.raises(ConfigValidationError):
            generate(generator, classifier, "Body only.\n")

    @pytest.mark.parametrize("name", ["../../escaped", ".hidden", "a/b", "-flag", "two words"])
    def test_name_must_be_one_path_segment(self, generator, classifier, name):
        text = f"---\nname: '{name}'\ndescription: x\n---\nBody.\n"
        with pytest.raises(ConfigValidationError) as exc_info:
            generate(generator, classifier, text)
        assert any(p.startswith(f"invalid name '{name}'") for p in exc_info.value.problems)

    def test_dotted_name_accepted(self, generator, classifier):
        generated = generate(generator, classifier, "---\nname: api.v2_worker\ndescription: x\n---\nBody.\n")
        assert generated.descriptor.name == "api.v2_worker"


class TestFields:
    """Tests for individual descriptor fields."""

    def test_title_falls_back_to_formatted_name(self, generator, classifier):
        generated = generate(generator, classifier, make_agent("api-reviewer", "No heading here.\n"))
        assert generated.descriptor.title == "Api Reviewer"

    def test_frontmatter_title_wins(self, generator, classifier):
        text = make_agent("x", "# Heading Title\n", extra_frontmatter="title: Explicit Title\n")
        assert generate(generator, classifier, text).descriptor.title == "Explicit Title"

    def test_tools_as_list(self, generator, classifier):
        text = make_agent("x", "Body.\n", extra_frontmatter="tools:\n  - Read\n  - Grep\n")
        assert generate(generator, classifier, text).descriptor.tools == ("Read", "Grep")

    def test_unknown_tool_is_a_warning(self, generator, classifier):
        text = make_agent("x", "Body.\n", extra_frontmatter="tools: Read, Teleport\n")
        generated = generate(generator, classifier, text)
        assert generated.descriptor.tools == ("Read", "Teleport")
        assert [w.kind for w in generated.warnings] == ["UNKNOWN_TOOL"]
        assert "Teleport" in generated.warnings[0].message

    def test_unknown_model_is_a_warning(self, generator, classifier):
        text = make_agent("x", "Body.\n", extra_frontmatter="model: gpt-9\n")
        generated = generate(generator, classifier, text)
        assert [w.kind for w in generated.warnings] == ["UNKNOWN_MODEL"]

    def test_default_model(self, generator, classifier):
        assert generate(generator, classifier, make_agent("x", "Body.\n")).descriptor.model == "inherit"

    def test_prompt_refs_from_frontmatter(self, generator, classifier):
        text = make_agent(
            "x",
            "Body.\n",
            extra_frontmatter="core_prompts: reviewer\nending_prompts: reviewer\noutput_format: output-formats-reviewer\n",
        )
        descriptor = generate(generator, classifier, text).descriptor
        assert descriptor.core_prompts_ref == "reviewer"
        assert descriptor.ending_prompts_ref == "reviewer"
        assert descriptor.output_format_ref == "output-formats-reviewer"

    def test_frontmatter_skills_are_precompiled(self, generator, classifier):
        text = make_agent(
            "x",
            "Body.\n",
            extra_frontmatter="skills:\n  - frontend/react\n  - id: testing/vitest\n    usage: when writing tests\n",
        )
        skills = generate(generator, classifier, text).descriptor.skills
        assert [s.id for s in skills.precompiled] == ["frontend/react", "testing/vitest"]
        assert skills.precompiled[1].description == "when writing tests"
        assert skills.dynamic == ()

    def test_duplicate_skill_ids_keep_first(self, generator, classifier):
        body = (
            "The following skills are already in your context:\n"
            "**Pre-compiled Skills:**\n"
            "- `frontend/react` - first\n"
            "- `frontend/react` - second\n"
        )
        text = make_agent("x", body, extra_frontmatter="skills:\n  - frontend/react\n")
        skills = generate(generator, classifier, text).descriptor.skills
        assert len(skills.precompiled) == 1
        assert skills.precompiled[0].description == "first"


class TestSkillItems:
    """Tests for parsing one skill list item."""

    def test_bold_name_with_separator(self):
        ref = ConfigGenerator().parse_skill_item("- **Zustand Stores** - Client state")
        assert ref.id == "zustand-stores"
        assert ref.name == "Zustand Stores"
        assert ref.description == "Client state"
        assert ref.path == "skills/zustand-stores/SKILL.md"

    def test_plain_name(self):
        ref = ConfigGenerator().parse_skill_item("* Accessibility")
        assert (ref.id, ref.name, ref.description) == ("accessibility", "Accessibility", "")

    def test_link_to_plain_file(self):
        ref = ConfigGenerator().parse_skill_item("- [Testing](skills/testing.md)")
        assert ref.id == "testing"
        assert ref.path == "skills/testing.md"

    def test_empty_item(self):
        assert ConfigGenerator().parse_skill_item("- ") is None


class TestSerialization:
    """Descriptor YAML round-trip and schema validation."""

    @pytest.fixture
    def descriptor(self):
        return AgentConfigDescriptor(
            name="frontend-developer",
            title="Frontend Developer",
            description="Implements frontend features",
            model="opus",
            tools=("Read", "Write"),
            core_prompts_ref="developer",
            ending_prompts_ref="developer",
            output_format_ref=None,
        )

    def test_round_trip(self, descriptor):
        assert load_descriptor(dump_descriptor(descriptor)) == descriptor

    def test_key_order_is_fixed(self, descriptor):
        keys = list(yaml.safe_load(dump_descriptor(descriptor)).keys())
        assert keys == [
            "name",
            "title",
            "description",
            "model",
            "tools",
            "core_prompts",
            "ending_prompts",
            "output_format",
            "skills",
        ]

    def test_schema_rejects_unknown_keys(self, descriptor):
        text = dump_descriptor(descriptor) + "color: green\n"
        with pytest.raises(ConfigValidationError) as exc_info:
            load_descriptor(text)
        assert "schema violation" in str(exc_info.value)

    def test_schema_rejects_wrong_types(self):
        text = "name: x\ntitle: X\ndescription: d\nmodel: opus\ntools: Read\nskills: {precompiled: [], dynamic: []}\n"
        with pytest.raises(ConfigValidationError):
            load_descriptor(text)

    def test_schema_rejects_path_like_name(self, descriptor):
        text = dump_descriptor(descriptor).replace("name: frontend-developer", "name: ../outside", 1)
        with pytest.raises(ConfigValidationError):
            load_descriptor(text)

    def test_format_title(self):
        assert format_title("frontend-developer") == "Frontend Developer"
        assert format_title("pm_agent") == "Pm Agent"
