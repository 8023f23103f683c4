"""Playbook compiler tests — document parsing and fail-closed validation.

Covers section extraction (phases, questions, rules, scoring, report),
header handling (frontmatter, preamble lines, title), typed rule coercion,
the default phase skeleton, and every ParseError path.  A compile either
returns a complete Template or raises; there is no partial result.
"""

import hashlib

import pytest

from helpers.documents import build_document, question
from playbook_engine.compiler import coerce_scalar, compile_template
from playbook_engine.constants import DEFAULT_PHASES
from playbook_engine.errors import ParseError


# =====================================================================
# Happy path
# =====================================================================


class TestCompileBasics:
    """Well-formed documents compile into the expected Template."""

    def test_phases_and_questions_in_declaration_order(self):
        """Phase list and question order follow the document."""
        doc = build_document(
            [
                question("q1", "greet"),
                question("q2", "discover"),
                question("q3", "greet"),
            ],
            phases=["greet", "discover"],
        )
        t = compile_template(doc)

        assert t.phases == ["greet", "discover"]
        assert [q.id for q in t.questions] == ["q1", "q2", "q3"]
        assert [q.id for q in t.ordered_questions()] == ["q1", "q3", "q2"], (
            "Traversal is phase order, then declaration order"
        )

    def test_every_question_phase_is_declared(self):
        """Compiled templates never reference an undeclared phase."""
        doc = build_document(
            [question("q1", "a"), question("q2", "b")],
            phases=["a", "b", "c"],
        )
        t = compile_template(doc)
        for q in t.questions:
            assert q.phase in t.phases, f"{q.id} bound to undeclared phase {q.phase}"

    def test_header_fields(self):
        """Slug, category and title come from the document header."""
        doc = build_document([question("q1", "greet")], phases=["greet"],
                             slug="my-book", category="ops", title="Ops Review")
        t = compile_template(doc)

        assert t.identifier == "my-book"
        assert t.category == "ops"
        assert t.name == "Ops Review", "'Playbook:' prefix is stripped from the title"

    def test_type_defaults_to_free_text(self):
        doc = build_document([question("q1", "greet")], phases=["greet"])
        q = compile_template(doc).questions[0]
        assert q.type == "free_text"
        assert q.options is None

    def test_choice_question_keeps_options(self):
        doc = build_document(
            [question("q1", "greet", type="single_choice", options=["a", "b"])],
            phases=["greet"],
        )
        q = compile_template(doc).questions[0]
        assert q.type == "single_choice"
        assert q.options == ["a", "b"]
        assert q.is_choice

    def test_numeric_options_are_strings(self):
        """Options are normalised to strings even when YAML reads numbers."""
        doc = build_document(
            [question("q1", "greet", type="scale", options=[1, 2, 3])],
            phases=["greet"],
        )
        assert compile_template(doc).questions[0].options == ["1", "2", "3"]

    def test_keyword_overrides_win_over_header(self):
        doc = build_document([question("q1", "greet")], phases=["greet"], slug="from-doc")
        t = compile_template(doc, identifier="from-caller", name="N", category="C")
        assert (t.identifier, t.name, t.category) == ("from-caller", "N", "C")

    def test_compile_is_deterministic(self):
        """Compiling the same text twice yields equal templates."""
        doc = build_document([question("q1", "greet")], phases=["greet"])
        assert compile_template(doc) == compile_template(doc)


class TestDefaultPhases:
    """A document without a Phases section gets the five-phase skeleton."""

    def test_missing_phase_block_uses_default_skeleton(self):
        doc = build_document([question("q1", "greet_frame")], phases=None)
        t = compile_template(doc)

        assert t.phases == DEFAULT_PHASES
        assert t.phases == [
            "greet_frame",
            "discover_probe",
            "validate_quantify",
            "synthesize_reflect",
            "advance_close",
        ]
        assert t.compile_info.used_default_phases is True

    def test_explicit_phase_block_is_not_default(self):
        doc = build_document([question("q1", "greet")], phases=["greet"])
        assert compile_template(doc).compile_info.used_default_phases is False

    def test_default_skeleton_still_checks_phase_membership(self):
        """Questions must still reference one of the default phases."""
        doc = build_document([question("q1", "greet")], phases=None)
        with pytest.raises(ParseError, match="undeclared phase 'greet'"):
            compile_template(doc)


class TestCompileInfo:
    """compile_info records counts and a source back-reference."""

    def test_counts(self):
        doc = build_document(
            [question("q1", "a"), question("q2", "b")],
            phases=["a", "b", "c"],
        )
        info = compile_template(doc).compile_info
        assert info.phase_count == 3
        assert info.question_count == 2

    def test_source_ref_defaults_to_digest(self):
        doc = build_document([question("q1", "a")], phases=["a"])
        expected = "sha256:" + hashlib.sha256(doc.encode("utf-8")).hexdigest()
        assert compile_template(doc).compile_info.source_ref == expected

    def test_explicit_source_ref(self):
        doc = build_document([question("q1", "a")], phases=["a"])
        info = compile_template(doc, source_ref="source-42").compile_info
        assert info.source_ref == "source-42"


# =====================================================================
# Rules, scoring and report
# =====================================================================


class TestRules:
    """Rule lines are parsed into typed key/value pairs."""

    def test_typed_coercion(self):
        doc = build_document(
            [question("q1", "a")],
            phases=["a"],
            rules={
                "forceCompliance": "false",
                "oneQuestionMode": "True",
                "localMaxQuestions": "15",
                "weight": "0.5",
                "tone": "warm",
                "label": '"42"',
            },
        )
        rules = compile_template(doc).rules_overrides
        assert rules == {
            "forceCompliance": False,
            "oneQuestionMode": True,
            "localMaxQuestions": 15,
            "weight": 0.5,
            "tone": "warm",
            "label": "42",
        }

    def test_no_rules_section(self):
        doc = build_document([question("q1", "a")], phases=["a"])
        assert compile_template(doc).rules_overrides == {}

    def test_malformed_rule_line(self):
        doc = build_document([question("q1", "a")], phases=["a"]) + "\n## Rules\njust words\n"
        with pytest.raises(ParseError, match="malformed rule line"):
            compile_template(doc)

    def test_duplicate_rule(self):
        doc = build_document([question("q1", "a")], phases=["a"]) + "\n## Rules\nx: 1\nx: 2\n"
        with pytest.raises(ParseError, match="duplicate rule 'x'"):
            compile_template(doc)

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("true", True),
            ("FALSE", False),
            ("-3", -3),
            ("1e3", 1000.0),
            (".5", 0.5),
            ("'quoted'", "quoted"),
            ("12 items", "12 items"),
            ("", ""),
        ],
    )
    def test_coerce_scalar(self, raw, expected):
        result = coerce_scalar(raw)
        assert result == expected
        assert type(result) is type(expected)


class TestOpaqueSections:
    """Scoring and report sections are kept verbatim."""

    def test_verbatim_text(self):
        scoring = "dimensions:\n  - id: impact\n    weight: 0.6"
        doc = build_document([question("q1", "a")], phases=["a"],
                             scoring=scoring, report="sections: []")
        t = compile_template(doc)
        assert t.scoring_model == scoring
        assert t.report_spec == "sections: []"

    def test_absent_sections_are_none(self):
        t = compile_template(build_document([question("q1", "a")], phases=["a"]))
        assert t.scoring_model is None
        assert t.report_spec is None

    def test_blank_section_is_none(self):
        doc = build_document([question("q1", "a")], phases=["a"], scoring="   ")
        assert compile_template(doc).scoring_model is None


# =====================================================================
# Fail-closed behaviour
# =====================================================================


class TestParseErrors:
    """Structural problems abort the whole compile."""

    def test_duplicate_question_id(self):
        doc = build_document(
            [question("q1", "a"), question("q1", "a", text="Again?")],
            phases=["a"],
        )
        with pytest.raises(ParseError) as exc_info:
            compile_template(doc)
        assert "duplicate question id 'q1'" in exc_info.value.problems

    def test_undeclared_phase(self):
        doc = build_document([question("q1", "nowhere")], phases=["a"])
        with pytest.raises(ParseError, match="undeclared phase 'nowhere'"):
            compile_template(doc)

    def test_duplicate_phase(self):
        doc = build_document([question("q1", "a")], phases=["a", "a"])
        with pytest.raises(ParseError, match="duplicate phase 'a'"):
            compile_template(doc)

    @pytest.mark.parametrize("missing", ["id", "phase", "text"])
    def test_missing_required_field(self, missing):
        entry = question("q1", "a")
        del entry[missing]
        doc = build_document([entry], phases=["a"])
        with pytest.raises(ParseError, match=f"missing required field\\(s\\): {missing}"):
            compile_template(doc)

    def test_unknown_type(self):
        doc = build_document([question("q1", "a", type="essay")], phases=["a"])
        with pytest.raises(ParseError, match="unknown type 'essay'"):
            compile_template(doc)

    @pytest.mark.parametrize("qtype", ["single_choice", "multi_choice", "scale"])
    def test_choice_without_options(self, qtype):
        doc = build_document([question("q1", "a", type=qtype)], phases=["a"])
        with pytest.raises(ParseError, match="requires options"):
            compile_template(doc)

    def test_missing_questions_section(self):
        doc = "slug: x\n## Phases\n- a\n"
        with pytest.raises(ParseError, match="no 'Questions' section"):
            compile_template(doc)

    def test_empty_phases_section(self):
        doc = "slug: x\n## Phases\n\n## Questions\n- id: q1\n  phase: a\n  text: Hi\n"
        with pytest.raises(ParseError, match="'Phases' section is empty"):
            compile_template(doc)

    def test_questions_not_a_list(self):
        doc = "slug: x\n## Phases\n- a\n## Questions\nid: q1\n"
        with pytest.raises(ParseError, match="must be a list"):
            compile_template(doc)

    def test_invalid_yaml_in_questions(self):
        doc = "slug: x\n## Phases\n- a\n## Questions\n- id: [unclosed\n"
        with pytest.raises(ParseError, match="not valid YAML"):
            compile_template(doc)

    def test_unclosed_frontmatter(self):
        with pytest.raises(ParseError, match="frontmatter"):
            compile_template("---\nslug: x\n## Questions\n")

    def test_duplicate_section(self):
        doc = build_document([question("q1", "a")], phases=["a"]) + "\n## Phases\n- b\n"
        with pytest.raises(ParseError, match="duplicate 'Phases' section"):
            compile_template(doc)

    def test_non_text_input(self):
        with pytest.raises(ParseError, match="must be text"):
            compile_template(b"slug: x")

    def test_all_problems_reported_together(self):
        """One compile reports every problem it found."""
        doc = build_document(
            [
                question("q1", "a"),
                question("q1", "a"),
                question("q2", "ghost"),
            ],
            phases=["a"],
        )
        with pytest.raises(ParseError) as exc_info:
            compile_template(doc)
        problems = exc_info.value.problems
        assert any("duplicate question id" in p for p in problems)
        assert any("undeclared phase 'ghost'" in p for p in problems)

    def test_parse_error_is_value_error(self):
        """Callers that map ValueError at the edge still catch ParseError."""
        with pytest.raises(ValueError):
            compile_template("nothing here")


# =====================================================================
# Document variants
# =====================================================================


class TestDocumentVariants:
    """Header styles and loose formatting the authoring format allows."""

    def test_preamble_header_lines(self):
        doc = (
            "# Playbook: Preamble Style\n"
            "slug: pre\n"
            "category: Throughput\n"
            "objective: Find the slow step.\n"
            "\n"
            "## Questions\n"
            "- id: q1\n"
            "  phase: greet_frame\n"
            "  text: Hello?\n"
        )
        t = compile_template(doc)
        assert t.identifier == "pre"
        assert t.name == "Preamble Style"
        assert t.objective == "Find the slow step."

    def test_frontmatter_metadata(self):
        doc = (
            "---\nslug: fm\nversion: 1.0.0\nprotocol: standard-discovery\npersona: melissa\n---\n"
            "## Questions\n- id: q1\n  phase: greet_frame\n  text: Hi\n"
        )
        t = compile_template(doc)
        assert t.version == "1.0.0"
        assert t.protocol_ref == "standard-discovery"
        assert t.persona_ref == "melissa"
        assert t.name == "fm", "name falls back to the slug"
        assert t.category == "general"

    def test_headings_are_case_insensitive_and_bullets_optional(self):
        doc = (
            "slug: loose\n"
            "## PHASES\n"
            "* one\n"
            "two\n"
            "## questions\n"
            "- id: q1\n  phase: two\n  text: Hi\n"
        )
        assert compile_template(doc).phases == ["one", "two"]

    def test_unknown_sections_are_ignored(self):
        doc = build_document([question("q1", "a")], phases=["a"]) + "\n## Notes\nanything\n"
        assert compile_template(doc).identifier == "demo"

    def test_windows_line_endings(self):
        doc = build_document([question("q1", "a")], phases=["a"]).replace("\n", "\r\n")
        assert compile_template(doc).phases == ["a"]


class TestBareDocuments:
    """Documents with only phase and question blocks, no header at all."""

    def test_questions_only_uses_default_phases(self):
        """A lone Questions section compiles onto the default skeleton."""
        doc = "## Questions\n- id: q1\n  phase: greet_frame\n  text: Hi?\n"
        t = compile_template(doc)

        digest = hashlib.sha256(doc.encode("utf-8")).hexdigest()
        assert t.identifier == f"playbook-{digest[:12]}", "identifier derived from the digest"
        assert t.name == t.identifier
        assert t.phases == DEFAULT_PHASES
        assert t.compile_info.used_default_phases is True

    def test_identifier_is_deterministic(self):
        doc = "## Phases\n- a\n## Questions\n- id: q1\n  phase: a\n  text: Hi\n"
        assert compile_template(doc).identifier == compile_template(doc).identifier

    def test_identifier_from_title(self):
        doc = (
            "# Playbook: Enterprise Bottleneck & Throughput\n"
            "## Questions\n- id: q1\n  phase: greet_frame\n  text: Hi\n"
        )
        t = compile_template(doc)
        assert t.identifier == "enterprise-bottleneck-throughput"
        assert t.name == "Enterprise Bottleneck & Throughput"

    def test_bare_document_still_fails_closed(self):
        """Deriving an identifier never hides structural problems."""
        doc = "## Questions\n- id: q1\n  phase: nowhere\n  text: Hi\n"
        with pytest.raises(ParseError, match="undeclared phase 'nowhere'"):
            compile_template(doc)


class TestShippedPlaybooks:
    """The playbooks under playbooks/ compile cleanly."""

    def test_minimal_playbook(self, repo_root):
        path = repo_root / "playbooks" / "bottleneck-minimal-v1.md"
        t = compile_template(path.read_text(encoding="utf-8"))

        assert t.identifier == "bottleneck-minimal-v1"
        assert t.name == "Bottleneck Discovery Workshop (Minimal)"
        assert t.phases == ["greet_frame", "discover_probe"]
        assert len(t.questions) == 5
        assert t.rules_overrides == {"oneQuestionMode": True, "maxFollowups": 2}
        assert t.scoring_model.startswith("(Not implemented")

    def test_throughput_playbook(self, repo_root):
        path = repo_root / "playbooks" / "bottleneck-throughput-v1.md"
        t = compile_template(path.read_text(encoding="utf-8"))

        assert t.identifier == "bottleneck_throughput_v1"
        assert t.name == "Enterprise Bottleneck & Throughput Accelerator"
        assert len(t.phases) == 5
        assert t.get_question("q_frequency").type == "scale"
        assert t.rules_overrides["localMaxQuestions"] == 15
        assert "exec_summary" in t.report_spec
