"""PromptManager — Jinja2-based prompt renderer for the LLM facilitator.

Loads templates from the ``template/`` directory and renders the current
question of a session, together with persona, playbook and protocol
constraints, into a single deterministic prompt string.

Templates are dispatched by question type; choice-like types share one
template that lists the options.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import jinja2

from playbook_engine.models.protocol import Persona, Protocol
from playbook_engine.models.session import SessionState
from playbook_engine.models.template import Question, Template

# --- question type-to-template mapping ---
_QTYPE_TEMPLATES: dict[str, str] = {
    "free_text": "free_text.jinja2",
    "single_choice": "choice.jinja2",
    "multi_choice": "choice.jinja2",
    "scale": "choice.jinja2",
}


class PromptManager:
    """Jinja2-based prompt renderer for the facilitator turn.

    Args:
        template_dir: optional override for the template directory.
            Defaults to ``template/`` sibling of this module.
    """

    def __init__(self, template_dir: Path | None = None) -> None:
        if template_dir is None:
            template_dir = Path(__file__).parent / "template"
        self._env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(template_dir)),
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=jinja2.StrictUndefined,
        )

    def render_question(
        self,
        *,
        persona: Persona,
        protocol: Protocol,
        template: Template,
        state: SessionState,
        question: Question,
    ) -> str:
        """Render the prompt asking ``question`` in the current session.

        Prior answers are listed in traversal order so the model has the
        conversational context.  The protocol decides whether the model may
        merge questions or must ask exactly one.
        """
        template_name = _QTYPE_TEMPLATES.get(question.type, "free_text.jinja2")
        jt = self._env.get_template(template_name)
        return jt.render(
            persona=persona,
            protocol=protocol,
            playbook=template,
            question=question,
            phase=state.current_phase or question.phase,
            history=self.history(state, template),
        ).strip() + "\n"

    def render(self, template_name: str, **context: Any) -> str:
        """Render a named template with arbitrary context."""
        return self._env.get_template(template_name).render(**context)

    @staticmethod
    def history(state: SessionState, template: Template) -> list[dict[str, Any]]:
        """Answered questions as ``{id, question, answer, skipped}`` dicts."""
        return [
            {
                "id": q.id,
                "question": q.text,
                "answer": state.answers[q.id],
                "skipped": q.id in state.skipped_question_ids,
            }
            for q in template.ordered_questions()
            if q.id in state.answers
        ]
