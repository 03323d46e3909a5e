from datetime import date as Date
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

TransactionKind = Literal["expense", "income", "bill", "goal"]
AccountType = Literal["PF", "PJ"]
FieldName = Literal["kind", "amount", "date", "category", "description", "account_type"]
Stage = Literal["idle", "collecting", "confirm_pending"]


class TransactionDraft(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: TransactionKind
    amount: Decimal = Field(gt=0)
    date: Date | None = None
    category: str | None = None
    description: str | None = None
    account_type: AccountType = "PF"

    @model_validator(mode="after")
    def _date_required_unless_goal(self):
        if self.date is None and self.kind != "goal":
            raise ValueError(f"{self.kind} requires a date")
        return self


class CollectedFields(BaseModel):
    kind: TransactionKind | None = None
    amount: Decimal | None = None
    date: Date | None = None
    category: str | None = None
    description: str | None = None

    def filled(self) -> dict:
        return self.model_dump(exclude_none=True)


class ConversationState(BaseModel):
    session_id: str
    user_id: str | None = None
    stage: Stage = "idle"
    collected: CollectedFields = Field(default_factory=CollectedFields)
    # remembered across drafts for the whole session
    account_type: AccountType | None = None
    # field -> fragment of user text the value was derived from
    evidence: dict[str, str] = {}
    pending_field: FieldName | None = None
    clarifications: dict[str, int] = {}
    presented: TransactionDraft | None = None
    confirmed: bool = False
    save_key: str | None = None
    transcript: list[str] = []
    updated_at: datetime = Field(default_factory=datetime.now)

    @computed_field
    @property
    def awaiting_confirmation(self) -> bool:
        return self.stage == "confirm_pending"


class GuardDecision(BaseModel):
    allowed: bool
    reason: str | None = None


class AgentAction(BaseModel):
    action: Literal["ask", "clarify", "present", "save", "refuse", "reply", "cancel"]
    message: str
    field: FieldName | None = None
    draft: TransactionDraft | None = None
    on_topic: bool = True


class Extraction(BaseModel):
    in_scope: bool = False
    kind: TransactionKind | None = None
    amount_text: str | None = None
    date_text: str | None = None
    category: str | None = None
    description: str | None = None
    account_type: AccountType | None = None


class UserMessage(BaseModel):
    text: str
    received_at: datetime = Field(default_factory=datetime.now)


class TransactionRecord(BaseModel):
    id: int | None = None
    user_id: str | None = None
    kind: TransactionKind
    amount: Decimal
    date: Date | None = None
    category: str | None = None
    description: str | None = None
    account_type: AccountType = "PF"
    source: str = "ai"
    idempotency_key: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)

    def to_draft(self) -> TransactionDraft:
        return TransactionDraft(
            kind=self.kind,
            amount=self.amount,
            date=self.date,
            category=self.category,
            description=self.description,
            account_type=self.account_type,
        )


class ChatMessage(BaseModel):
    session_id: str
    role: Literal["user", "assistant"]
    content: str
    created_at: datetime = Field(default_factory=datetime.now)


class SaveOutcome(BaseModel):
    record_id: int
    action: Literal["created", "updated", "existing"] = "created"


class TurnResult(BaseModel):
    reply: str
    stage: Stage
    outcome: str
    draft: TransactionDraft | None = None
    record_id: int | None = None


class ChatRequest(BaseModel):
    session_id: str
    message: str
    user_id: str | None = None
