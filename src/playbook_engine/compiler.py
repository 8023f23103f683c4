"""Playbook compiler — turns an authored Markdown playbook into a ``Template``.

The authoring format is deliberately loose (Markdown with a YAML-ish question
list) but compilation is fail-closed: any structural problem aborts the
whole compile with a :class:`ParseError` listing every issue found.  No
partial template is ever returned.

Document layout::

    ---                                  (optional YAML frontmatter)
    slug: bottleneck-minimal-v1
    category: process-optimization
    ---
    # Playbook: Bottleneck Discovery     (title -> name)
    ## Phases                            (one phase per line, optional)
    - greet_frame
    ## Questions                         (YAML list of {id, phase, text, type?, options?})
    - id: q_intro
      phase: greet_frame
      text: "..."
    ## Rules                             (key: value overrides, optional)
    maxFollowups: 2
    ## Scoring / ## Report               (kept verbatim, optional)

Usage::

    template = compile_template(markdown, source_ref="playbooks/bottleneck.md")
"""

from __future__ import annotations

import hashlib
import logging
import re
from typing import Any

import yaml
from pydantic import ValidationError

from playbook_engine.constants import (
    DEFAULT_PHASES,
    KNOWN_SECTIONS,
    QUESTION_TYPES,
    SECTION_PHASES,
    SECTION_QUESTIONS,
    SECTION_REPORT,
    SECTION_RULES,
    SECTION_SCORING,
)
from playbook_engine.errors import ParseError
from playbook_engine.models.template import (
    CompileInfo,
    Question,
    Template,
    template_problems,
)

logger = logging.getLogger(__name__)

# Header keys understood in frontmatter or in ``key: value`` preamble lines.
_HEADER_KEYS = {"slug", "name", "category", "objective", "protocol", "persona", "version"}

_HEADER_LINE = re.compile(r"^([A-Za-z_][\w-]*)\s*:\s*(.*)$")
_INT_LITERAL = re.compile(r"^[+-]?\d+$")
_FLOAT_LITERAL = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$")
_BULLET = re.compile(r"^(?:[-*+]|\d+[.)])\s+")
_NON_SLUG = re.compile(r"[^a-z0-9]+")

DEFAULT_CATEGORY = "general"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def compile_template(
    raw: str,
    *,
    source_ref: str | None = None,
    identifier: str | None = None,
    name: str | None = None,
    category: str | None = None,
) -> Template:
    """Compile a Markdown playbook into a validated :class:`Template`.

    Args:
        raw: the full document text.
        source_ref: back-reference recorded in ``compile_info`` for audit
            (e.g. a file path or a source row id).  Defaults to a sha256
            digest of ``raw``.
        identifier, name, category: override the values found in the
            document header.  Useful when the source record already carries
            them.  A document without a slug gets a slug of its title, or
            ``playbook-<digest prefix>`` when it has no title either.

    Returns:
        The compiled template.

    Raises:
        ParseError: if the document is structurally invalid (duplicate
            question id, undeclared phase reference, missing required field,
            malformed section...).
    """
    if not isinstance(raw, str):
        raise ParseError(f"document must be text, got {type(raw).__name__}")

    text = raw.replace("\r\n", "\n")
    header, body = _split_frontmatter(text)
    title, preamble, sections = _split_sections(body)

    # Preamble "key: value" lines fill whatever the frontmatter left unset
    for key, value in preamble.items():
        header.setdefault(key, value)

    problems: list[str] = []
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()

    # No slug: derive one from the title, else from the document digest
    identifier = (
        identifier
        or _header_str(header, "slug")
        or _slugify(_header_str(header, "name") or title)
        or f"playbook-{digest[:12]}"
    )
    name = name or _header_str(header, "name") or title or identifier
    category = category or _header_str(header, "category") or DEFAULT_CATEGORY

    # --- Phases ---
    used_default_phases = SECTION_PHASES not in sections
    if used_default_phases:
        phases = list(DEFAULT_PHASES)
    else:
        phases = _parse_phases(sections[SECTION_PHASES], problems)

    # --- Questions ---
    if SECTION_QUESTIONS in sections:
        questions = _parse_questions(sections[SECTION_QUESTIONS], problems)
    else:
        problems.append("document has no 'Questions' section")
        questions = []

    # --- Rules / scoring / report ---
    rules = _parse_rules(sections.get(SECTION_RULES, ""), problems)
    scoring = _verbatim(sections.get(SECTION_SCORING))
    report = _verbatim(sections.get(SECTION_REPORT))

    problems.extend(template_problems(phases, questions))
    if problems:
        raise ParseError(problems)

    if source_ref is None:
        source_ref = "sha256:" + digest

    try:
        template = Template(
            identifier=identifier,
            name=name,
            category=category,
            phases=phases,
            questions=questions,
            objective=_header_str(header, "objective"),
            version=_header_str(header, "version"),
            protocol_ref=_header_str(header, "protocol"),
            persona_ref=_header_str(header, "persona"),
            rules_overrides=rules,
            scoring_model=scoring,
            report_spec=report,
            compile_info=CompileInfo(
                phase_count=len(phases),
                question_count=len(questions),
                source_ref=source_ref,
                used_default_phases=used_default_phases,
            ),
        )
    except ValidationError as exc:
        raise ParseError([err["msg"] for err in exc.errors()]) from exc

    logger.info(
        "Compiled template %s: %d phases, %d questions%s",
        template.identifier,
        len(phases),
        len(questions),
        " (default phases)" if used_default_phases else "",
    )
    return template


# ---------------------------------------------------------------------------
# Document splitting
# ---------------------------------------------------------------------------

def _split_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Split an optional ``---`` fenced YAML frontmatter from the body."""
    lines = text.split("\n")
    if not lines or lines[0].strip() != "---":
        return {}, text

    for idx in range(1, len(lines)):
        if lines[idx].strip() == "---":
            raw_header = "\n".join(lines[1:idx])
            body = "\n".join(lines[idx + 1:])
            break
    else:
        raise ParseError("frontmatter is not closed with '---'")

    try:
        header = yaml.safe_load(raw_header) if raw_header.strip() else {}
    except yaml.YAMLError as exc:
        raise ParseError(f"frontmatter is not valid YAML: {exc}") from exc
    if not isinstance(header, dict):
        raise ParseError("frontmatter must be a mapping of key: value pairs")
    return header, body


def _split_sections(body: str) -> tuple[str | None, dict[str, Any], dict[str, str]]:
    """Split the body into (title, preamble header, {section: text}).

    ``## Heading`` starts a section; headings are matched case-insensitively.
    A single ``# Title`` before the first section names the playbook.
    """
    title: str | None = None
    preamble: dict[str, Any] = {}
    sections: dict[str, list[str]] = {}
    current: str | None = None

    for line in body.split("\n"):
        stripped = line.strip()

        if stripped.startswith("## "):
            current = stripped[3:].strip().lower()
            if current in sections:
                raise ParseError(f"duplicate '{stripped[3:].strip()}' section")
            sections[current] = []
            if current not in KNOWN_SECTIONS:
                logger.debug("Ignoring unknown section '%s'", current)
            continue

        if current is not None:
            sections[current].append(line)
            continue

        # --- Preamble: everything before the first section ---
        if stripped.startswith("# ") and title is None:
            title = _strip_title(stripped[2:])
            continue
        match = _HEADER_LINE.match(stripped)
        if match and match.group(1).lower() in _HEADER_KEYS:
            preamble[match.group(1).lower()] = _unquote(match.group(2).strip())

    return title, preamble, {k: "\n".join(v) for k, v in sections.items()}


def _strip_title(title: str) -> str:
    """Drop the conventional ``Playbook:`` prefix from a title line."""
    title = title.strip()
    if title.lower().startswith("playbook:"):
        title = title[len("playbook:"):].strip()
    return title


# ---------------------------------------------------------------------------
# Section parsers: each appends problems instead of raising, so one
# compile reports every issue at once
# ---------------------------------------------------------------------------

def _parse_phases(section: str, problems: list[str]) -> list[str]:
    """One phase name per line, optionally bulleted."""
    phases: list[str] = []
    for line in section.split("\n"):
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or stripped.startswith("<!--"):
            continue
        phases.append(_BULLET.sub("", stripped).strip())
    if not phases:
        problems.append("'Phases' section is empty")
    return phases


def _parse_questions(section: str, problems: list[str]) -> list[Question]:
    """Parse the YAML question list into ``Question`` models.

    Entries with problems are reported and dropped; the caller fails the
    compile whenever ``problems`` is non-empty.
    """
    try:
        raw = yaml.safe_load(section)
    except yaml.YAMLError as exc:
        problems.append(f"'Questions' section is not valid YAML: {exc}")
        return []

    if raw is None:
        problems.append("'Questions' section is empty")
        return []
    if not isinstance(raw, list):
        problems.append("'Questions' section must be a list of question entries")
        return []

    questions: list[Question] = []
    for idx, entry in enumerate(raw, start=1):
        where = f"question #{idx}"
        if not isinstance(entry, dict):
            problems.append(f"{where} must be a mapping")
            continue

        # id / phase / text are required and must be non-blank scalars
        missing = [
            key for key in ("id", "phase", "text")
            if entry.get(key) is None or not str(entry[key]).strip()
        ]
        if missing:
            label = f"{where} ('{entry['id']}')" if entry.get("id") is not None else where
            problems.append(f"{label} is missing required field(s): {', '.join(missing)}")
            continue

        qid = str(entry["id"]).strip()
        qtype = str(entry.get("type") or "free_text").strip()
        if qtype not in QUESTION_TYPES:
            problems.append(f"question '{qid}' has unknown type '{qtype}'")
            continue

        options = entry.get("options")
        if options is not None:
            if not isinstance(options, list):
                problems.append(f"question '{qid}' options must be a list")
                continue
            options = [str(opt) for opt in options]

        questions.append(Question(
            id=qid,
            phase=str(entry["phase"]).strip(),
            text=str(entry["text"]).strip(),
            type=qtype,
            options=options,
        ))
    return questions


def _parse_rules(section: str, problems: list[str]) -> dict[str, Any]:
    """``key: value`` lines with boolean/numeric coercion."""
    rules: dict[str, Any] = {}
    for line in section.split("\n"):
        stripped = _BULLET.sub("", line.strip())
        if not stripped or stripped.startswith("#"):
            continue
        key, sep, value = stripped.partition(":")
        key = key.strip()
        if not sep or not key:
            problems.append(f"malformed rule line: '{stripped}'")
            continue
        if key in rules:
            problems.append(f"duplicate rule '{key}'")
            continue
        rules[key] = coerce_scalar(value)
    return rules


def _verbatim(section: str | None) -> str | None:
    """Opaque section text, or None when absent or blank."""
    if section is None:
        return None
    text = section.strip()
    return text or None


# ---------------------------------------------------------------------------
# Scalar helpers
# ---------------------------------------------------------------------------

def coerce_scalar(value: str) -> bool | int | float | str:
    """Coerce a rule value: boolean literal, then numeric literal, else string.

    Quoted values are always strings (quotes removed).
    """
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if _INT_LITERAL.match(value):
        return int(value)
    if _FLOAT_LITERAL.match(value):
        return float(value)
    return value


def _slugify(text: str | None) -> str | None:
    """``"Bottleneck & Throughput"`` -> ``"bottleneck-throughput"``."""
    if not text:
        return None
    slug = _NON_SLUG.sub("-", text.lower()).strip("-")
    return slug or None


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _header_str(header: dict[str, Any], key: str) -> str | None:
    value = header.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None
