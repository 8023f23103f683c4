"""Session models — the contract between the engine and its callers.

``SessionState`` is the record of one conversation's progress.  It is
frozen: the engine never mutates it, every transition returns a new
instance.  Persisting it (and archiving it at end of life) belongs to the
caller.

Result types:
  - DriftResult: new state plus the soft-limit advisory flag
  - PhaseProgress: answered/total counts for one phase
"""

from __future__ import annotations

import enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class SessionStatus(str, enum.Enum):
    """Conceptual lifecycle of a session against one template.

    Transitions:
        not_started -> in_phase   (first answer recorded)
        in_phase -> completed     (every question of every phase answered)
    """

    NOT_STARTED = "not_started"
    IN_PHASE = "in_phase"
    COMPLETED = "completed"


class SessionState(BaseModel):
    """Progress of one conversation.

    ``total_questions_asked`` counts answers in the current phase and resets
    on phase advance; ``questions_asked_total`` is the session-wide count
    checked against ``max_questions``.  Follow-up and drift counters are
    session-wide and only ever grow.
    """

    model_config = ConfigDict(frozen=True)

    session_id: str
    current_phase: Optional[str] = None
    current_question_id: Optional[str] = None
    answers: dict[str, Any] = {}
    total_questions_asked: int = 0
    questions_asked_total: int = 0
    followup_count: int = 0
    drift_count: int = 0
    skipped_question_ids: frozenset[str] = frozenset()

    @classmethod
    def start(cls, session_id: str) -> "SessionState":
        """Zero state for a new session: no phase, no answers, no counters."""
        return cls(session_id=session_id)

    def has_answer(self, question_id: str) -> bool:
        return question_id in self.answers


class DriftResult(BaseModel):
    """Outcome of :meth:`FacilitationEngine.record_drift`.

    ``soft_limit_reached`` is advisory: the dialogue layer should steer the
    conversation back on topic, but the session may continue.
    """

    model_config = ConfigDict(frozen=True)

    state: SessionState
    soft_limit_reached: bool


class PhaseProgress(BaseModel):
    """Answered/total question counts for one template phase."""

    phase: str
    answered: int
    total: int

    @property
    def complete(self) -> bool:
        # Zero-question phases are never complete
        return self.total > 0 and self.answered == self.total
