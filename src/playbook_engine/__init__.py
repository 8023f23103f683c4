"""playbook_engine — Markdown playbook compiler and phase-gated facilitation SDK.

Public API:
    compile_template   — compile an authored Markdown playbook into a Template
    TemplateRegistry   — keeps exactly one active template per identifier
    FacilitationEngine — next question, answers, phase advancement, limits
    Template           — compiled playbook (phases + questions)
    Protocol           — phase order and session budgets
    SessionState       — immutable progress record of one conversation
    SessionStatus      — not_started / in_phase / completed
    DriftResult        — record_drift outcome with soft-limit advisory flag

Protocol helpers:
    default_protocol   — protocol from PLAYBOOK_DEFAULT_* env defaults
    load_protocol      — protocol from a YAML file
    resolve_protocol   — apply a template's rule overrides to a protocol

Errors (all ``ValueError`` subclasses with a stable ``code``):
    ParseError, TemplateValidationError, TemplateNotFound,
    InvalidQuestion, PhaseViolation, LimitExceeded, SkipNotAllowed
"""

from playbook_engine.compiler import compile_template
from playbook_engine.engine import FacilitationEngine
from playbook_engine.errors import (
    InvalidQuestion,
    LimitExceeded,
    ParseError,
    PhaseViolation,
    PlaybookError,
    SkipNotAllowed,
    TemplateNotFound,
    TemplateValidationError,
)
from playbook_engine.models import (
    CompileInfo,
    DriftResult,
    Persona,
    PhaseProgress,
    Protocol,
    Question,
    SessionState,
    SessionStatus,
    Template,
)
from playbook_engine.prompt import PromptManager
from playbook_engine.protocol import default_protocol, load_protocol, resolve_protocol
from playbook_engine.registry import TemplateRegistry

__all__ = [
    # Compiler, registry, engine
    "compile_template",
    "TemplateRegistry",
    "FacilitationEngine",
    "PromptManager",
    # Models
    "CompileInfo",
    "DriftResult",
    "Persona",
    "PhaseProgress",
    "Protocol",
    "Question",
    "SessionState",
    "SessionStatus",
    "Template",
    # Protocol helpers
    "default_protocol",
    "load_protocol",
    "resolve_protocol",
    # Errors
    "PlaybookError",
    "ParseError",
    "TemplateValidationError",
    "TemplateNotFound",
    "InvalidQuestion",
    "PhaseViolation",
    "LimitExceeded",
    "SkipNotAllowed",
]
