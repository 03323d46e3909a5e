"""
Intake state machine.

    idle --(financial intent)--> collecting --(all required fields)--> confirm_pending
    confirm_pending --(affirmative + successful save)--> idle
    confirm_pending --(negative / correction)--> collecting
    any --(out-of-domain)--> same stage, nothing mutated

`advance` is pure: it never touches the input state and never performs I/O.
Saving is the orchestrator's job; it reports back through `complete_save`
or `fail_save`, so the draft is only discarded once the gateway accepted it.
"""

from dataclasses import dataclass

from finscope.errors import AmbiguousValue, IntakeError, OutOfScopeInput, UnresolvedField
from finscope.intake import messages
from finscope.intake.extractor import classify_reply, named_fields
from finscope.intake.parsing import parse_amount, parse_date
from finscope.models.schemas import (
    AgentAction,
    ConversationState,
    Extraction,
    TransactionDraft,
    UserMessage,
)

FIELD_ORDER = ("kind", "amount", "date", "category", "description")

REQUIRED_FIELDS = {
    "expense": ("kind", "amount", "date", "category"),
    "income": ("kind", "amount", "date", "category"),
    "bill": ("kind", "amount", "date", "category"),
    "goal": ("kind", "amount", "description"),
}

MAX_TRANSCRIPT = 20
MAX_CLARIFICATIONS = 1

IDLE_REPLIES = {
    "greeting": messages.GREETING,
    "affirmative": messages.NOTHING_PENDING,
}


@dataclass
class Transition:
    state: ConversationState
    action: AgentAction
    outcome: str
    error: IntakeError | None = None


def new_state(session_id: str, user_id: str | None = None) -> ConversationState:
    return ConversationState(session_id=session_id, user_id=user_id)


def missing_fields(state: ConversationState) -> list[str]:
    kind = state.collected.kind
    if kind is None:
        return ["kind"]
    filled = state.collected.filled()
    return [field for field in FIELD_ORDER if field in REQUIRED_FIELDS[kind] and field not in filled]


def build_draft(state: ConversationState) -> TransactionDraft:
    collected = state.collected
    return TransactionDraft(
        kind=collected.kind,
        amount=collected.amount,
        date=collected.date,
        category=collected.category,
        description=collected.description,
        account_type=state.account_type,
    )


def reset(state: ConversationState, forget_account: bool = False) -> ConversationState:
    """Empty draft. The account type is remembered unless asked to forget."""
    fresh = new_state(state.session_id, state.user_id)
    fresh.updated_at = state.updated_at
    if not forget_account:
        fresh.account_type = state.account_type
    return fresh


def complete_save(state: ConversationState) -> ConversationState:
    """The gateway accepted the draft: start over with an empty state."""
    return reset(state)


def fail_save(state: ConversationState) -> ConversationState:
    """The gateway failed: hold the draft at confirm_pending for a retry."""
    return state.model_copy(update={"stage": "confirm_pending", "confirmed": False})


def _differs(current, new) -> bool:
    if current is None:
        return True
    if isinstance(current, str):
        return current.strip().lower() != str(new).strip().lower()
    return current != new


def _clear(state: ConversationState, field: str) -> None:
    setattr(state.collected, field, None)
    state.evidence.pop(field, None)


def _merge(state: ConversationState, message: UserMessage, extraction: Extraction) -> AmbiguousValue | None:
    """Fold extracted values into the draft. Only materially different values overwrite."""
    collected = state.collected

    if extraction.account_type:
        state.account_type = extraction.account_type
    elif state.pending_field == "account_type" and state.account_type is None:
        # an answer naming neither defaults to personal
        state.account_type = "PF"

    if extraction.kind and _differs(collected.kind, extraction.kind):
        collected.kind = extraction.kind
        state.evidence["kind"] = message.text

    for field in ("category", "description"):
        value = getattr(extraction, field)
        if value and _differs(getattr(collected, field), value):
            setattr(collected, field, value.strip())
            state.evidence[field] = value

    ambiguity = None
    if extraction.amount_text:
        try:
            amount = parse_amount(extraction.amount_text)
        except AmbiguousValue as exc:
            ambiguity = exc
        else:
            if _differs(collected.amount, amount):
                collected.amount = amount
                state.evidence["amount"] = extraction.amount_text
            state.clarifications.pop("amount", None)

    if extraction.date_text:
        prefer_past = collected.kind in ("expense", "income")
        try:
            when = parse_date(extraction.date_text, message.received_at.date(), prefer_past)
        except AmbiguousValue as exc:
            ambiguity = ambiguity or exc
        else:
            if _differs(collected.date, when):
                collected.date = when
                state.evidence["date"] = extraction.date_text
            state.clarifications.pop("date", None)

    return ambiguity


def _remember(state: ConversationState, text: str) -> None:
    state.transcript = (state.transcript + [text])[-MAX_TRANSCRIPT:]


def _clarify(state: ConversationState, ambiguity: AmbiguousValue) -> Transition:
    field = ambiguity.field
    # the new message put this value in doubt, so it no longer counts as filled
    _clear(state, field)
    state.stage = "collecting"
    state.pending_field = field
    state.presented = None
    state.confirmed = False

    attempts = state.clarifications.get(field, 0) + 1
    if attempts > MAX_CLARIFICATIONS:
        state.clarifications.pop(field, None)
        action = AgentAction(action="reply", field=field, message=messages.unresolved(field))
        return Transition(state, action, "unresolved", UnresolvedField(field))

    state.clarifications[field] = attempts
    action = AgentAction(action="clarify", field=field, message=ambiguity.question)
    return Transition(state, action, "clarify", ambiguity)


def _ask(state: ConversationState, field: str) -> Transition:
    state.stage = "collecting"
    state.pending_field = field
    state.presented = None
    state.confirmed = False
    action = AgentAction(action="ask", field=field, message=messages.ask_field(field, state.collected.kind))
    return Transition(state, action, "ask")


def _next_step(state: ConversationState) -> Transition:
    """Ask for the first missing field, or present the completed draft.

    The account type is asked once per session, after the draft fields.
    """
    missing = missing_fields(state)
    if missing:
        return _ask(state, missing[0])

    if state.account_type is None:
        return _ask(state, "account_type")

    draft = build_draft(state)
    state.stage = "confirm_pending"
    state.pending_field = None
    state.presented = draft
    state.confirmed = False
    action = AgentAction(action="present", draft=draft, message=messages.render_summary(draft))
    return Transition(state, action, "present")


def _has_values(extraction: Extraction) -> bool:
    return any(
        (
            extraction.kind,
            extraction.amount_text,
            extraction.date_text,
            extraction.category,
            extraction.description,
            extraction.account_type,
        )
    )


def _confirm_turn(state: ConversationState, message: UserMessage, extraction: Extraction, reply: str | None) -> Transition:
    before = state.collected.model_copy()
    account_before = state.account_type
    if extraction.in_scope or reply is not None:
        _remember(state, message.text)

    ambiguity = _merge(state, message, extraction) if extraction.in_scope else None
    if ambiguity:
        return _clarify(state, ambiguity)

    changed = {
        field
        for field in FIELD_ORDER
        if getattr(before, field) != getattr(state.collected, field)
    }
    if state.account_type != account_before:
        changed.add("account_type")

    if reply == "affirmative" and not changed:
        state.confirmed = True
        action = AgentAction(action="save", draft=state.presented, message="Salvando...")
        return Transition(state, action, "save")

    disputed = set()
    if reply == "negative":
        disputed = set(named_fields(message.text)) - changed
    for field in disputed:
        _clear(state, field)
        state.clarifications.pop(field, None)

    if changed or disputed:
        return _next_step(state)

    if reply == "negative":
        state.confirmed = False
        action = AgentAction(action="reply", message=messages.WHICH_FIELD)
        return Transition(state, action, "which_field")

    if not extraction.in_scope and reply is None:
        action = AgentAction(action="refuse", message=messages.REFUSAL)
        return Transition(state, action, "out_of_scope", OutOfScopeInput())

    # restating the same summary never re-asks a field
    return _next_step(state)


def advance(state: ConversationState, message: UserMessage, extraction: Extraction) -> Transition:
    """Compute the next state and the candidate action for one user turn.

    The action is marked on topic only when the message was about finance
    or was a control reply; the guard rejects anything else but refusals.
    """
    reply = classify_reply(message.text)
    transition = _route(state, message, extraction, reply)
    on_topic = extraction.in_scope or reply is not None
    transition.action = transition.action.model_copy(update={"on_topic": on_topic})
    return transition


def _route(state: ConversationState, message: UserMessage, extraction: Extraction, reply: str | None) -> Transition:
    next_state = state.model_copy(deep=True)
    next_state.updated_at = message.received_at

    if reply == "reset":
        fresh = reset(next_state, forget_account=True)
        return Transition(fresh, AgentAction(action="cancel", message=messages.RESET), "reset")

    if reply == "cancel":
        if state.stage == "idle":
            return Transition(next_state, AgentAction(action="reply", message=messages.CAPABILITIES), "noop")
        fresh = reset(next_state)
        return Transition(fresh, AgentAction(action="cancel", message=messages.CANCELLED), "cancelled")

    if state.stage == "confirm_pending":
        return _confirm_turn(next_state, message, extraction, reply)

    if reply is not None and not _has_values(extraction):
        if state.stage == "idle":
            text = IDLE_REPLIES.get(reply, messages.CAPABILITIES)
            return Transition(next_state, AgentAction(action="reply", message=text), "noop")
        # nothing new while collecting: repeat the open question
        return _next_step(next_state)

    if not extraction.in_scope:
        action = AgentAction(action="refuse", message=messages.REFUSAL)
        return Transition(next_state, action, "out_of_scope", OutOfScopeInput())

    if state.stage == "idle" and "?" in message.text:
        return Transition(next_state, AgentAction(action="reply", message=messages.CAPABILITIES), "question")

    _remember(next_state, message.text)
    ambiguity = _merge(next_state, message, extraction)
    if ambiguity:
        return _clarify(next_state, ambiguity)

    if not next_state.collected.filled():
        # in scope, but nothing to record
        idle = state.model_copy(update={"updated_at": message.received_at})
        return Transition(idle, AgentAction(action="reply", message=messages.CAPABILITIES), "noop")

    return _next_step(next_state)
