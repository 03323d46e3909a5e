"""
Guard policy applied to every candidate action before it reaches the user.

Rules, first violation wins:
1. Only finance. Refusals are always allowed.
2. Never ask again for a field that is already filled.
3. No save without an affirmative confirmation at confirm_pending.
4. No numeric or date value that cannot be traced back to user text.
5. A save must carry exactly the draft that was last presented.
"""

from finscope.intake.parsing import fold
from finscope.models.schemas import AgentAction, ConversationState, GuardDecision

ALLOWED = GuardDecision(allowed=True)


def _reject(reason: str) -> GuardDecision:
    return GuardDecision(allowed=False, reason=reason)


def _traceable(fragment: str | None, transcript: list[str]) -> bool:
    if not fragment:
        return False
    needle = fold(fragment.strip())
    return any(needle in fold(line) for line in transcript)


def evaluate(action: AgentAction, state: ConversationState) -> GuardDecision:
    if action.action != "refuse" and not action.on_topic:
        return _reject("off_topic")

    filled = state.collected.filled()
    known = set(filled)
    if state.account_type is not None:
        known.add("account_type")
    if action.action in ("ask", "clarify") and action.field in known:
        return _reject(f"re-asks filled field '{action.field}'")

    if action.action == "save" and (state.stage != "confirm_pending" or not state.confirmed):
        return _reject("save without affirmative confirmation")

    if action.action in ("present", "save"):
        draft = action.draft
        if draft is None:
            return _reject("missing draft")
        for field, value in draft.model_dump(exclude={"account_type"}).items():
            if value != filled.get(field):
                return _reject(f"draft {field} differs from collected value")
        if draft.account_type != state.account_type:
            return _reject("draft account_type differs from session account")
        if not _traceable(state.evidence.get("amount"), state.transcript):
            return _reject("amount not traceable to user input")
        if draft.date is not None and not _traceable(state.evidence.get("date"), state.transcript):
            return _reject("date not traceable to user input")

    if action.action == "save" and action.draft != state.presented:
        return _reject("save without presented summary")

    return ALLOWED
