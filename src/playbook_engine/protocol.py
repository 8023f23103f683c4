"""Protocol configuration — defaults from environment, YAML loading, overrides.

Three ways to obtain a :class:`Protocol`:

  1. ``default_protocol()``: the five default phases plus limits read from
     ``PLAYBOOK_DEFAULT_*`` environment variables.
  2. ``load_protocol(path)``: a YAML file such as
     ``protocols/standard-discovery.yaml`` (camelCase or snake_case keys).
  3. ``resolve_protocol(protocol, template)``: a base protocol with the
     template's ``## Rules`` overrides applied.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from playbook_engine import constants
from playbook_engine.errors import TemplateValidationError
from playbook_engine.models.protocol import Protocol
from playbook_engine.models.template import Template

logger = logging.getLogger(__name__)

# Rule keys that map onto a differently named protocol field.
_RULE_ALIASES: dict[str, str] = {
    "localMaxQuestions": "max_questions",
    "local_max_questions": "max_questions",
}

# Protocol fields a template may not override from its rules section.
_NON_OVERRIDABLE = {"slug", "phases"}

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


@dataclass(frozen=True)
class ProtocolDefaults:
    """Immutable protocol defaults read from environment at startup."""

    phases: list[str] = field(default_factory=lambda: list(constants.DEFAULT_PHASES))
    max_questions: int = constants.DEFAULT_MAX_QUESTIONS
    max_followups: int = constants.DEFAULT_MAX_FOLLOWUPS
    drift_soft_limit: int = constants.DEFAULT_DRIFT_SOFT_LIMIT
    drift_hard_limit: int = constants.DEFAULT_DRIFT_HARD_LIMIT


def load_protocol_defaults() -> ProtocolDefaults:
    """Build defaults from ``PLAYBOOK_DEFAULT_*`` environment variables.

    Read at call time; the import-time values in ``constants`` are the
    fallback.
    """
    return ProtocolDefaults(
        max_questions=_env_int("PLAYBOOK_DEFAULT_MAX_QUESTIONS", constants.DEFAULT_MAX_QUESTIONS),
        max_followups=_env_int("PLAYBOOK_DEFAULT_MAX_FOLLOWUPS", constants.DEFAULT_MAX_FOLLOWUPS),
        drift_soft_limit=_env_int("PLAYBOOK_DEFAULT_DRIFT_SOFT_LIMIT", constants.DEFAULT_DRIFT_SOFT_LIMIT),
        drift_hard_limit=_env_int("PLAYBOOK_DEFAULT_DRIFT_HARD_LIMIT", constants.DEFAULT_DRIFT_HARD_LIMIT),
    )


def _env_int(name: str, fallback: int) -> int:
    return int(os.getenv(name, str(fallback)))


def default_protocol(defaults: ProtocolDefaults | None = None) -> Protocol:
    """A strict, one-question-at-a-time protocol over the default phases."""
    defaults = defaults or load_protocol_defaults()
    return Protocol(
        slug="default",
        phases=list(defaults.phases),
        max_questions=defaults.max_questions,
        max_followups=defaults.max_followups,
        drift_soft_limit=defaults.drift_soft_limit,
        drift_hard_limit=defaults.drift_hard_limit,
    )


def load_protocol(path: Path | str) -> Protocol:
    """Load a protocol from a YAML mapping.

    Missing limits fall back to :func:`load_protocol_defaults`.  A file
    without a ``slug`` gets the file stem.

    Raises:
        FileNotFoundError: if the file does not exist.
        ValueError: if the file is not a mapping or fails validation.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Missing protocol file: {path}")
    with path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    if not isinstance(raw, dict):
        raise ValueError(f"Protocol file {path} must contain a mapping")

    defaults = load_protocol_defaults()
    data: dict[str, Any] = {
        "slug": path.stem,
        "phases": list(defaults.phases),
        "max_questions": defaults.max_questions,
        "max_followups": defaults.max_followups,
        "drift_soft_limit": defaults.drift_soft_limit,
        "drift_hard_limit": defaults.drift_hard_limit,
    }
    for key, value in raw.items():
        data[_field_name(str(key))] = value

    protocol = Protocol.model_validate(data)
    logger.info("Loaded protocol %s from %s", protocol.slug, path)
    return protocol


def resolve_protocol(protocol: Protocol, template: Template) -> Protocol:
    """Apply ``template.rules_overrides`` on top of ``protocol``.

    Recognised keys are protocol field names (camelCase or snake_case) and
    ``localMaxQuestions``.  Other keys are left for the dialogue layer and
    ignored here.

    Raises:
        TemplateValidationError: if the overrides produce an invalid protocol.
    """
    updates: dict[str, Any] = {}
    for key, value in template.rules_overrides.items():
        name = _field_name(key)
        if name not in Protocol.model_fields or name in _NON_OVERRIDABLE:
            logger.debug("Rule '%s' of %s is not a protocol override", key, template.identifier)
            continue
        updates[name] = value

    if not updates:
        return protocol

    try:
        resolved = Protocol.model_validate({**protocol.model_dump(), **updates})
    except ValidationError as exc:
        raise TemplateValidationError(
            template.identifier,
            [f"rules override: {err['msg']}" for err in exc.errors()],
        ) from exc

    logger.debug("Resolved protocol %s for %s with %s", protocol.slug, template.identifier, updates)
    return resolved


def _field_name(key: str) -> str:
    """Map an authored key (``maxFollowups``) to a field name (``max_followups``)."""
    if key in _RULE_ALIASES:
        return _RULE_ALIASES[key]
    return _CAMEL_BOUNDARY.sub("_", key).lower()
