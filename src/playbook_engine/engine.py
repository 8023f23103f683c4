"""FacilitationEngine — drives one conversation through a compiled playbook.

Stateless engine pattern: every call receives the template, the protocol and
the caller's ``SessionState`` explicitly and returns a *new* state.  Nothing
is kept between calls and no I/O happens here, so the caller owns loading
and saving sessions (and must serialise answer submission per session).

Conceptual states (see :class:`SessionStatus`):
    not_started  no current phase yet
    in_phase     a current phase is set
    completed    every question of every template phase has an answer

Transition order inside :meth:`FacilitationEngine.apply_answer`:
    1. unknown question id            -> InvalidQuestion
    2. strict phases, phase not open  -> PhaseViolation
    3. session question budget spent  -> LimitExceeded("maxQuestions")
    4. record answer, bump counters, set current question / initial phase
    5. completion check on the phase of the answered question
    6. if complete, advance one step from the current phase along
       ``protocol.phases`` (resetting the per-phase counter)

Advancement happens synchronously inside ``apply_answer``, so a state
observed between two answers always reflects everything answered so far.
"""

from __future__ import annotations

import logging
from typing import Any

from playbook_engine.constants import (
    LIMIT_DRIFT_HARD,
    LIMIT_MAX_FOLLOWUPS,
    LIMIT_MAX_QUESTIONS,
)
from playbook_engine.errors import (
    InvalidQuestion,
    LimitExceeded,
    PhaseViolation,
    SkipNotAllowed,
)
from playbook_engine.models.protocol import Protocol
from playbook_engine.models.session import (
    DriftResult,
    PhaseProgress,
    SessionState,
    SessionStatus,
)
from playbook_engine.models.template import Question, Template

logger = logging.getLogger(__name__)


class FacilitationEngine:
    """Applies protocol rules to session states.

    The engine holds no per-session or process-wide state; a single
    instance can serve any number of sessions and templates.
    """

    # ==================================================================
    # Read-only queries
    # ==================================================================

    def next_question(self, state: SessionState, template: Template) -> Question | None:
        """First unanswered question by phase order, then declaration order.

        Returns None when every question has an answer.  Calling this twice
        without an intervening answer returns the same question.
        """
        for question in template.ordered_questions():
            if question.id not in state.answers:
                return question
        return None

    def status(self, state: SessionState, template: Template) -> SessionStatus:
        """Where the session stands against ``template``."""
        if template.questions and all(q.id in state.answers for q in template.questions):
            return SessionStatus.COMPLETED
        if state.current_phase is None:
            return SessionStatus.NOT_STARTED
        return SessionStatus.IN_PHASE

    def progress(self, state: SessionState, template: Template) -> list[PhaseProgress]:
        """Answered/total counts for every template phase, in phase order."""
        result = []
        for phase in template.phases:
            questions = template.questions_in_phase(phase)
            result.append(PhaseProgress(
                phase=phase,
                answered=sum(1 for q in questions if q.id in state.answers),
                total=len(questions),
            ))
        return result

    def allowed_phases(
        self, state: SessionState, template: Template, protocol: Protocol
    ) -> list[str]:
        """Phases whose questions strict mode accepts right now.

        That is the current phase plus, when the current phase is already
        complete, the phase that follows it in protocol order.

        Before the first answer there is no current phase yet, and the
        window is the phase of :meth:`next_question`.  That follows the
        template's phase order, not the protocol's, so a strict session
        always opens on the first question the template would ask; the
        answer then seeds ``current_phase``.  Without strict phases any
        question may be answered first and its phase seeds the session.
        """
        current = state.current_phase
        if current is None:
            upcoming = self.next_question(state, template)
            if upcoming is None:
                return []
            current = upcoming.phase

        allowed = [current]
        if self._phase_complete(current, state.answers, template):
            successor = protocol.next_phase(current)
            if successor is not None:
                allowed.append(successor)
        return allowed

    # ==================================================================
    # Transitions
    # ==================================================================

    def apply_answer(
        self,
        state: SessionState,
        question_id: str,
        answer: Any,
        template: Template,
        protocol: Protocol,
    ) -> SessionState:
        """Record an answer and advance the phase if it is now complete.

        Re-answering a question overwrites the stored value.  The question
        counters still increase per call, but phase completion is decided by
        which ids have an answer, not by how many calls were made.

        Raises:
            InvalidQuestion: ``question_id`` is not declared in ``template``.
            PhaseViolation: strict mode and the question's phase is not open.
            LimitExceeded: the session already asked ``max_questions``.
        """
        return self._record(state, question_id, answer, template, protocol, skipped=False)

    def skip_question(
        self,
        state: SessionState,
        question_id: str,
        template: Template,
        protocol: Protocol,
    ) -> SessionState:
        """Mark a question as skipped (recorded as a ``None`` answer).

        Goes through the same checks and advancement as :meth:`apply_answer`.

        Raises:
            SkipNotAllowed: the protocol does not allow question skipping.
            InvalidQuestion, PhaseViolation, LimitExceeded: as apply_answer.
        """
        if not protocol.allow_question_skipping:
            logger.warning("Session %s: skip of %s rejected by protocol", state.session_id, question_id)
            raise SkipNotAllowed(question_id)
        return self._record(state, question_id, None, template, protocol, skipped=True)

    def record_followup(self, state: SessionState, protocol: Protocol) -> SessionState:
        """Count one caller-issued follow-up question.

        Raises:
            LimitExceeded: the follow-up would exceed ``max_followups``.
        """
        count = state.followup_count + 1
        if count > protocol.max_followups:
            logger.warning(
                "Session %s: follow-up budget spent (%d)", state.session_id, protocol.max_followups,
            )
            raise LimitExceeded(LIMIT_MAX_FOLLOWUPS, protocol.max_followups)
        return state.model_copy(update={"followup_count": count})

    def record_drift(self, state: SessionState, protocol: Protocol) -> DriftResult:
        """Count one off-topic turn.

        The result's ``soft_limit_reached`` flag is set once the count goes
        past ``drift_soft_limit``.

        Raises:
            LimitExceeded: the count would go past ``drift_hard_limit``.
        """
        count = state.drift_count + 1
        if count > protocol.drift_hard_limit:
            logger.warning(
                "Session %s: drift hard limit reached (%d)", state.session_id, protocol.drift_hard_limit,
            )
            raise LimitExceeded(LIMIT_DRIFT_HARD, protocol.drift_hard_limit)

        soft = count > protocol.drift_soft_limit
        if soft:
            logger.info("Session %s: drift past soft limit (%d)", state.session_id, count)
        return DriftResult(
            state=state.model_copy(update={"drift_count": count}),
            soft_limit_reached=soft,
        )

    # ==================================================================
    # Internal
    # ==================================================================

    def _record(
        self,
        state: SessionState,
        question_id: str,
        answer: Any,
        template: Template,
        protocol: Protocol,
        *,
        skipped: bool,
    ) -> SessionState:
        # --- 1. Question must exist ---
        if not template.has_question(question_id):
            logger.warning(
                "Session %s: unknown question %s for %s",
                state.session_id, question_id, template.identifier,
            )
            raise InvalidQuestion(question_id, template.identifier)
        question = template.get_question(question_id)

        # --- 2. Strict phase gate ---
        if protocol.strict_phases:
            allowed = self.allowed_phases(state, template, protocol)
            if question.phase not in allowed:
                logger.warning(
                    "Session %s: %s (phase %s) outside open phases %s",
                    state.session_id, question_id, question.phase, allowed,
                )
                raise PhaseViolation(question_id, question.phase, allowed)

        # --- 3. Session question budget ---
        if state.questions_asked_total + 1 > protocol.max_questions:
            logger.warning(
                "Session %s: question budget spent (%d)", state.session_id, protocol.max_questions,
            )
            raise LimitExceeded(LIMIT_MAX_QUESTIONS, protocol.max_questions)

        # --- 4. Record ---
        answers = {**state.answers, question_id: answer}
        skipped_ids = set(state.skipped_question_ids)
        if skipped:
            skipped_ids.add(question_id)
        else:
            skipped_ids.discard(question_id)

        current_phase = state.current_phase or question.phase
        asked_in_phase = state.total_questions_asked + 1

        # --- 5. Completion of the answered question's phase ---
        # --- 6. Advance one step from the current phase ---
        if self._phase_complete(question.phase, answers, template):
            successor = protocol.next_phase(current_phase)
            if successor is not None:
                logger.info(
                    "Session %s: phase %s complete, advancing %s -> %s",
                    state.session_id, question.phase, current_phase, successor,
                )
                current_phase = successor
                asked_in_phase = 0
            elif current_phase not in protocol.phases:
                logger.warning(
                    "Session %s: phase %s is not in protocol %s; cannot advance",
                    state.session_id, current_phase, protocol.slug,
                )

        logger.debug(
            "Session %s: recorded %s (phase=%s, asked=%d/%d)",
            state.session_id, question_id, current_phase,
            state.questions_asked_total + 1, protocol.max_questions,
        )
        return state.model_copy(update={
            "answers": answers,
            "current_phase": current_phase,
            "current_question_id": question_id,
            "total_questions_asked": asked_in_phase,
            "questions_asked_total": state.questions_asked_total + 1,
            "skipped_question_ids": frozenset(skipped_ids),
        })

    @staticmethod
    def _phase_complete(phase: str, answers: dict[str, Any], template: Template) -> bool:
        """A phase is complete when it has questions and all are answered."""
        questions = template.questions_in_phase(phase)
        return bool(questions) and all(q.id in answers for q in questions)
