"""Protocol and persona models.

The ``Protocol`` is the rule set that governs a session: the authoritative
phase advancement order and the session-wide budgets.  Authored documents
and protocol YAML files spell fields in camelCase (``maxQuestions``); the
model accepts both that and the snake_case attribute names.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class Protocol(BaseModel):
    """Session rules applied by :class:`FacilitationEngine`.

    ``phases`` may differ from a template's own phase list; advancement
    always follows the protocol's order.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    slug: Optional[str] = None
    phases: List[str]
    one_question_mode: bool = True
    max_questions: int = Field(ge=1)
    max_followups: int = Field(ge=0)
    drift_soft_limit: int = Field(ge=0)
    drift_hard_limit: int = Field(ge=0)
    allow_question_merging: bool = False
    allow_question_skipping: bool = False
    strict_phases: bool = True

    @model_validator(mode="after")
    def _chk(self):
        if not self.phases:
            raise ValueError("protocol must declare at least one phase")
        if len(set(self.phases)) != len(self.phases):
            raise ValueError("protocol phases must be unique")
        if self.drift_soft_limit > self.drift_hard_limit:
            raise ValueError("drift_soft_limit must be <= drift_hard_limit")
        return self

    def next_phase(self, phase: str) -> str | None:
        """The phase after ``phase`` in protocol order.

        Returns None when ``phase`` is the last phase or is not part of
        this protocol.
        """
        try:
            idx = self.phases.index(phase)
        except ValueError:
            return None
        if idx + 1 < len(self.phases):
            return self.phases[idx + 1]
        return None


class Persona(BaseModel):
    """Facilitator persona used by the prompt layer."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    slug: str
    name: str
    description: Optional[str] = None
    base_tone: Optional[str] = None
