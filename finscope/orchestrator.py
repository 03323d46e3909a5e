import asyncio
from datetime import datetime
from uuid import uuid4
from zoneinfo import ZoneInfo

from loguru import logger

from finscope.config import Settings, get_settings
from finscope.errors import GuardViolation, PersistenceFailure
from finscope.intake import messages
from finscope.intake.extractor import RuleExtractor, classify_reply
from finscope.intake.guard import evaluate
from finscope.intake.machine import Transition, advance, complete_save, fail_save
from finscope.intake.sanitizer import REDACTION_MARKER, detect_injection, is_redacted, sanitize_user_input
from finscope.models.schemas import ConversationState, Extraction, TurnResult, UserMessage
from finscope.sessions import SessionStore


class Orchestrator:
    """Runs one conversational turn: sanitize, extract, transition, guard, persist."""

    def __init__(
        self,
        repo,
        extractor=None,
        history=None,
        sessions: SessionStore | None = None,
        settings: Settings | None = None,
        clock=None,
    ):
        settings = settings or get_settings()
        self.repo = repo
        self.fallback = RuleExtractor()
        self.extractor = extractor or self.fallback
        self.history = history
        self.sessions = sessions or SessionStore(settings.session_timeout_minutes)
        self.tz = ZoneInfo(settings.timezone)
        self.max_input_length = settings.max_input_length
        self.llm_timeout = settings.llm_timeout_seconds
        self.save_timeout = settings.save_timeout_seconds
        self.clock = clock or (lambda: datetime.now(self.tz))

    async def handle_turn(self, session_id: str, text: str, user_id: str | None = None) -> TurnResult:
        async with self.sessions.lock(session_id):
            now = self.clock()
            state = self.sessions.get(session_id, now, user_id=user_id)
            if user_id and state.user_id is None:
                state = state.model_copy(update={"user_id": user_id})

            result = await self._turn(state, text, now)

            if self.history is not None:
                self.history.add(session_id, "user", text)
                self.history.add(session_id, "assistant", result.reply)
            return result

    def state(self, session_id: str) -> ConversationState | None:
        return self.sessions.peek(session_id)

    async def discard(self, session_id: str) -> bool:
        """Abandon a session once its running turn, if any, has finished."""
        async with self.sessions.lock(session_id):
            return self.sessions.discard(session_id)

    async def _extractions(self, text: str, state: ConversationState, rules: Extraction) -> list[Extraction]:
        if self.extractor is self.fallback:
            return [rules]
        try:
            extraction = await asyncio.wait_for(
                asyncio.to_thread(self.extractor.extract, text, state),
                timeout=self.llm_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Extraction timed out after {}s, using rules", self.llm_timeout)
            return [rules]
        return [extraction, rules]

    def _checked(self, transition: Transition) -> Transition:
        decision = evaluate(transition.action, transition.state)
        if not decision.allowed:
            raise GuardViolation(decision)
        return transition

    async def _turn(self, state: ConversationState, raw_text: str, now: datetime) -> TurnResult:
        clean = sanitize_user_input(raw_text, self.max_input_length)
        attempt = detect_injection(raw_text)
        if attempt or is_redacted(clean):
            logger.warning(
                "Prompt injection attempt in session {}: {}",
                state.session_id,
                attempt or REDACTION_MARKER,
            )
        message = UserMessage(text=clean, received_at=now)

        rules = self.fallback.extract(clean, state)
        # the model may not widen the topic beyond what the message itself shows
        topical = rules.in_scope or classify_reply(clean) is not None

        transition = None
        for extraction in await self._extractions(clean, state, rules):
            candidate = advance(state, message, extraction)
            if not topical:
                candidate.action = candidate.action.model_copy(update={"on_topic": False})
            try:
                transition = self._checked(candidate)
                break
            except GuardViolation as e:
                logger.warning(
                    "Guard rejected action in session {}: {}",
                    state.session_id,
                    e.decision.reason,
                )

        if transition is None:
            # no compliant action could be produced; the state stays as it was
            self.sessions.put(state)
            return TurnResult(reply=messages.REPHRASE, stage=state.stage, outcome="guard_violation")

        if transition.error is not None:
            logger.info(
                "Session {} recovered from {}: {}",
                state.session_id,
                type(transition.error).__name__,
                transition.outcome,
            )

        if transition.action.action == "save":
            return await self._save(transition)

        self.sessions.put(transition.state)
        return TurnResult(
            reply=transition.action.message,
            stage=transition.state.stage,
            outcome=transition.outcome,
            draft=transition.action.draft,
        )

    async def _save(self, transition: Transition) -> TurnResult:
        state = transition.state
        draft = transition.action.draft
        if state.save_key is None:
            # kept until the draft is saved or dropped, so a retry reuses it
            state = state.model_copy(update={"save_key": uuid4().hex})
        try:
            outcome = await asyncio.wait_for(
                asyncio.to_thread(self.repo.save, draft, state.user_id, state.save_key),
                timeout=self.save_timeout,
            )
        except (PersistenceFailure, asyncio.TimeoutError) as e:
            logger.error("Save failed for session {}: {!r}", state.session_id, e)
            held = fail_save(state)
            self.sessions.put(held)
            return TurnResult(
                reply=messages.SAVE_FAILED,
                stage=held.stage,
                outcome="save_failed",
                draft=draft,
            )

        self.sessions.put(complete_save(state))
        logger.info(
            "Saved {} #{} ({}) for session {}",
            draft.kind,
            outcome.record_id,
            outcome.action,
            state.session_id,
        )
        if outcome.action == "updated":
            reply, result = messages.updated(draft), "updated"
        else:
            reply, result = messages.saved(draft), "saved"
        return TurnResult(
            reply=reply,
            stage="idle",
            outcome=result,
            draft=draft,
            record_id=outcome.record_id,
        )
