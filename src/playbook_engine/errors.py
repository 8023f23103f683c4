"""Typed errors raised by the compiler, registry and engine.

Every error derives from :class:`PlaybookError`, itself a ``ValueError`` so
that callers which already map SDK ``ValueError`` to client responses keep
working.  Each class carries a stable ``code`` string that the dialogue
layer can dispatch on without parsing messages.

Errors are raised before any new state is built.  Templates, protocols and
session states are immutable, so a rejected call never leaves a partially
updated value behind: the caller still holds the exact input it passed in.
"""

from __future__ import annotations


class PlaybookError(ValueError):
    """Base class for all playbook SDK errors."""

    code = "playbook_error"


class ParseError(PlaybookError):
    """The document could not be compiled into a valid template.

    ``problems`` lists every structural issue found, in document order.
    """

    code = "parse_error"

    def __init__(self, problems: list[str] | str) -> None:
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class TemplateValidationError(PlaybookError):
    """A template failed structural validation at activation time."""

    code = "validation_error"

    def __init__(self, identifier: str, problems: list[str]) -> None:
        self.identifier = identifier
        self.problems = list(problems)
        super().__init__(
            f"Template '{identifier}' is invalid: " + "; ".join(self.problems)
        )


class TemplateNotFound(PlaybookError):
    """No active template exists for the identifier."""

    code = "not_found"

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(f"No active template found for '{identifier}'")


class InvalidQuestion(PlaybookError):
    """The answer references a question id the template does not declare."""

    code = "invalid_question"

    def __init__(self, question_id: str, identifier: str) -> None:
        self.question_id = question_id
        super().__init__(
            f"Question '{question_id}' not found in template '{identifier}'"
        )


class PhaseViolation(PlaybookError):
    """Strict-phase mode rejected an answer outside the allowed phases."""

    code = "phase_violation"

    def __init__(self, question_id: str, phase: str, allowed: list[str]) -> None:
        self.question_id = question_id
        self.phase = phase
        self.allowed = list(allowed)
        super().__init__(
            f"Question '{question_id}' belongs to phase '{phase}'; "
            f"only {self.allowed} may be answered now"
        )


class LimitExceeded(PlaybookError):
    """A session budget was exhausted.

    ``limit`` is one of ``maxQuestions``, ``maxFollowups`` or
    ``driftHardLimit``.
    """

    code = "limit_exceeded"

    def __init__(self, limit: str, maximum: int) -> None:
        self.limit = limit
        self.maximum = maximum
        super().__init__(f"Limit {limit} exceeded (max {maximum})")


class SkipNotAllowed(PlaybookError):
    """The protocol does not allow skipping questions."""

    code = "skip_not_allowed"

    def __init__(self, question_id: str) -> None:
        self.question_id = question_id
        super().__init__(
            f"Cannot skip '{question_id}': protocol does not allow question skipping"
        )
