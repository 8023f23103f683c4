"""Public model re-exports for playbook_engine.

Consumers should import from ``playbook_engine.models`` rather than
reaching into sub-modules directly.
"""

# --- Template ---
from playbook_engine.models.template import (
    CompileInfo,
    Question,
    QuestionType,
    Template,
    template_problems,
)

# --- Protocol / persona ---
from playbook_engine.models.protocol import Persona, Protocol

# --- Session ---
from playbook_engine.models.session import (
    DriftResult,
    PhaseProgress,
    SessionState,
    SessionStatus,
)

__all__ = [
    # Template
    "CompileInfo",
    "Question",
    "QuestionType",
    "Template",
    "template_problems",
    # Protocol
    "Persona",
    "Protocol",
    # Session
    "DriftResult",
    "PhaseProgress",
    "SessionState",
    "SessionStatus",
]
