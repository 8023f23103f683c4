"""TemplateRegistry — compiled playbooks keyed by identifier.

The registry guarantees exactly one active template per identifier: once a
template has been activated for an identifier there is never zero and never
two active versions.  Earlier versions stay in the history as inactive.

Usage::

    registry = TemplateRegistry()
    registry.load_directory("playbooks/")     # compile + activate every *.md

    template = registry.get_active("bottleneck-minimal-v1")

The registry is in-memory.  Persisting compiled templates is the caller's
concern; a persistence layer can hydrate a registry with :meth:`activate`.
Activation calls for the same identifier must be serialised by the caller.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict

from playbook_engine.compiler import compile_template
from playbook_engine.errors import TemplateNotFound, TemplateValidationError
from playbook_engine.models.template import Template, template_problems

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Utility helpers
# ---------------------------------------------------------------------------

def find_repo_root(start: Optional[Path] = None) -> Path:
    """Walk upwards from *start* to find the repo root (dir with pyproject.toml or .git).

    Falls back to cwd if no marker is found.
    """
    p = (start or Path(__file__).resolve()).parent
    for parent in [p, *p.parents]:
        if (parent / "pyproject.toml").exists() or (parent / ".git").exists():
            return parent
    return Path.cwd()


def load_text(path: Path | str) -> str:
    """Read a single playbook document."""
    if isinstance(path, str):
        path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Missing playbook file: {path}")
    return path.read_text(encoding="utf-8")


def validate_template(template: Template) -> list[str]:
    """Structural problems in an already-built template.

    Templates built through ``model_construct`` or ``model_copy(update=...)``
    skip pydantic validation, so the registry re-checks before activating.
    """
    problems = template_problems(list(template.phases), list(template.questions))
    if not template.identifier or not template.identifier.strip():
        problems.insert(0, "template has no identifier")
    return problems


# ---------------------------------------------------------------------------
# TemplateRegistry
# ---------------------------------------------------------------------------

class RegistryEntry(BaseModel):
    """One registered template version."""

    model_config = ConfigDict(frozen=True)

    template: Template
    is_active: bool


class TemplateRegistry:
    """In-memory store of compiled templates with single-active semantics."""

    def __init__(self) -> None:
        # identifier -> versions in activation order
        self._entries: dict[str, list[RegistryEntry]] = {}

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    def activate(self, template: Template) -> Template:
        """Make ``template`` the active version for its identifier.

        Validation runs before any mutation; on failure the registry is
        untouched.  On success any previously active version for the same
        identifier is deactivated in the same step.

        Raises:
            TemplateValidationError: if the template is structurally invalid.
        """
        problems = validate_template(template)
        if problems:
            raise TemplateValidationError(template.identifier or "<unnamed>", problems)

        previous = self._entries.get(template.identifier, [])
        updated = [
            RegistryEntry(template=e.template, is_active=False) for e in previous
        ]
        updated.append(RegistryEntry(template=template, is_active=True))

        # Single assignment: readers see either the old or the new list
        self._entries[template.identifier] = updated

        logger.info(
            "Activated template %s (%d questions, source=%s); %d earlier version(s)",
            template.identifier,
            len(template.questions),
            template.compile_info.source_ref,
            len(previous),
        )
        return template

    def compile_and_activate(self, raw: str, *, source_ref: str | None = None) -> Template:
        """Compile a document and activate the result.

        Raises:
            ParseError: if the document does not compile; nothing is activated.
        """
        return self.activate(compile_template(raw, source_ref=source_ref))

    def load_directory(self, directory: str | Path | None = None) -> list[Template]:
        """Compile and activate every ``*.md`` playbook in ``directory``.

        Files are processed in name order.  Defaults to ``playbooks/`` under
        the repo root.  A file that fails to compile aborts the load with
        its ``ParseError``; templates activated before it stay active.
        """
        if directory is None:
            directory = find_repo_root() / "playbooks"
        base = Path(directory)
        if not base.is_dir():
            raise FileNotFoundError(f"Missing playbook directory: {base}")

        loaded = []
        for path in sorted(base.glob("*.md")):
            loaded.append(self.compile_and_activate(load_text(path), source_ref=str(path)))
        logger.info("TemplateRegistry loaded %d playbook(s) from %s", len(loaded), base)
        return loaded

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    def get_active(self, identifier: str) -> Template:
        """Return the active template for ``identifier``.

        Raises:
            TemplateNotFound: if no template was ever activated for it.
        """
        for entry in self._entries.get(identifier, []):
            if entry.is_active:
                return entry.template
        raise TemplateNotFound(identifier)

    def history(self, identifier: str) -> list[RegistryEntry]:
        """All registered versions for ``identifier``, oldest first."""
        return list(self._entries.get(identifier, []))

    def identifiers(self) -> list[str]:
        """Identifiers with an active template, sorted."""
        return sorted(self._entries)

    def __contains__(self, identifier: str) -> bool:
        return identifier in self._entries
