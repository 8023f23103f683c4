"""Playbook constants shared across the SDK.

These values are referenced by the compiler, the protocol loader and the
engine.  They mirror conventions of the Markdown authoring format used by
the playbooks under ``playbooks/``.

The protocol limits can be overridden via environment variables so that
deployments can tune session budgets without code changes.
"""

import os

# Phase skeleton used when a playbook omits its ``## Phases`` section.
# Authoring-format names for the greet, discover, validate, synthesize and
# advance stages, in that order.
DEFAULT_PHASES: list[str] = [
    "greet_frame",
    "discover_probe",
    "validate_quantify",
    "synthesize_reflect",
    "advance_close",
]

# Question types the compiler accepts.  ``free_text`` is the default.
QUESTION_TYPES: set[str] = {"free_text", "single_choice", "multi_choice", "scale"}

# Types that are only meaningful with an options list.
CHOICE_TYPES: set[str] = {"single_choice", "multi_choice", "scale"}

# Default protocol limits.
# Overridable via PLAYBOOK_DEFAULT_* env vars.
DEFAULT_MAX_QUESTIONS = int(os.getenv("PLAYBOOK_DEFAULT_MAX_QUESTIONS", "25"))
DEFAULT_MAX_FOLLOWUPS = int(os.getenv("PLAYBOOK_DEFAULT_MAX_FOLLOWUPS", "3"))
DEFAULT_DRIFT_SOFT_LIMIT = int(os.getenv("PLAYBOOK_DEFAULT_DRIFT_SOFT_LIMIT", "3"))
DEFAULT_DRIFT_HARD_LIMIT = int(os.getenv("PLAYBOOK_DEFAULT_DRIFT_HARD_LIMIT", "5"))

# Section headings recognised by the compiler (lower-cased).
SECTION_PHASES = "phases"
SECTION_QUESTIONS = "questions"
SECTION_RULES = "rules"
SECTION_SCORING = "scoring"
SECTION_REPORT = "report"
KNOWN_SECTIONS: set[str] = {
    SECTION_PHASES,
    SECTION_QUESTIONS,
    SECTION_RULES,
    SECTION_SCORING,
    SECTION_REPORT,
}

# Limit names reported by LimitExceeded.  These match the camelCase protocol
# field names used in authored documents.
LIMIT_MAX_QUESTIONS = "maxQuestions"
LIMIT_MAX_FOLLOWUPS = "maxFollowups"
LIMIT_DRIFT_HARD = "driftHardLimit"
