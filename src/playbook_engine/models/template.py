"""Compiled playbook models — the executable question graph.

A ``Template`` is produced by :func:`playbook_engine.compiler.compile_template`
and consumed by the registry and the facilitation engine:

  - Question: a single prompt with a stable id, bound to one phase
  - CompileInfo: audit metadata recorded by the compiler
  - Template: ordered phases + ordered questions + opaque authoring extras

The structural invariants live in :func:`template_problems` so that both the
model validator (at construction) and the registry (at activation) apply the
exact same checks.
"""

from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, model_validator

from playbook_engine.constants import CHOICE_TYPES

QuestionType = Literal["free_text", "single_choice", "multi_choice", "scale"]


class Question(BaseModel):
    """One interview question.

    ``options`` is required for choice and scale types and ignored by the
    engine otherwise; it is carried through for the prompt layer.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    phase: str
    text: str
    type: QuestionType = "free_text"
    options: Optional[List[str]] = None

    @property
    def is_choice(self) -> bool:
        """True for single_choice, multi_choice and scale questions."""
        return self.type in CHOICE_TYPES


class CompileInfo(BaseModel):
    """What the compiler saw, kept for audit.

    ``source_ref`` is the caller-supplied source reference, or a
    ``sha256:`` digest of the raw document when none was given.
    """

    model_config = ConfigDict(frozen=True)

    phase_count: int
    question_count: int
    source_ref: str
    used_default_phases: bool = False


def template_problems(
    phases: list[str], questions: list[Question]
) -> list[str]:
    """Return every structural problem in a phase/question set.

    An empty list means the set is valid.  Checks, in order:
    at least one phase, unique phase names, unique question ids, every
    question bound to a declared phase, choice questions carry options.
    """
    problems: list[str] = []

    if not phases:
        problems.append("template declares no phases")

    seen_phases: set[str] = set()
    for phase in phases:
        if not phase or not phase.strip():
            problems.append("phase names must be non-empty")
        elif phase in seen_phases:
            problems.append(f"duplicate phase '{phase}'")
        seen_phases.add(phase)

    seen_ids: set[str] = set()
    for q in questions:
        if q.id in seen_ids:
            problems.append(f"duplicate question id '{q.id}'")
        seen_ids.add(q.id)
        if q.phase not in seen_phases:
            problems.append(
                f"question '{q.id}' references undeclared phase '{q.phase}'"
            )
        if q.is_choice and not q.options:
            problems.append(f"question '{q.id}' of type '{q.type}' requires options")

    return problems


class Template(BaseModel):
    """A compiled, validated playbook.

    Question order within a phase is declaration order and is the traversal
    order used by :meth:`FacilitationEngine.next_question`.
    """

    model_config = ConfigDict(frozen=True)

    identifier: str
    name: str
    category: str
    phases: List[str]
    questions: List[Question]

    # Header metadata carried through from the source document
    objective: Optional[str] = None
    version: Optional[str] = None
    protocol_ref: Optional[str] = None
    persona_ref: Optional[str] = None

    # Opaque authoring extras; the engine never interprets these
    rules_overrides: dict[str, Any] = {}
    scoring_model: Optional[str] = None
    report_spec: Optional[str] = None

    compile_info: CompileInfo

    @model_validator(mode="after")
    def _chk(self):
        problems = template_problems(self.phases, self.questions)
        if problems:
            raise ValueError("; ".join(problems))
        return self

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    def has_question(self, question_id: str) -> bool:
        return any(q.id == question_id for q in self.questions)

    def get_question(self, question_id: str) -> Question:
        """Look up a question by id.

        Raises:
            KeyError: if the template does not declare ``question_id``.
        """
        for q in self.questions:
            if q.id == question_id:
                return q
        raise KeyError(question_id)

    def questions_in_phase(self, phase: str) -> list[Question]:
        """Questions bound to ``phase``, in declaration order."""
        return [q for q in self.questions if q.phase == phase]

    def ordered_questions(self) -> list[Question]:
        """All questions ordered by phase order, then declaration order."""
        ordered: list[Question] = []
        for phase in self.phases:
            ordered.extend(self.questions_in_phase(phase))
        return ordered
