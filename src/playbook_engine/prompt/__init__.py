"""Prompt rendering for the LLM facilitator.

Provides ``PromptManager``, a Jinja2-based template engine that renders the
current question of a session into an LLM-ready prompt string.
"""

from playbook_engine.prompt.manager import PromptManager

__all__ = ["PromptManager"]
