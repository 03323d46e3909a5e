from fastapi import APIRouter, HTTPException
from loguru import logger

from finscope.config import get_settings
from finscope.deps import history, orchestrator, repo
from finscope.models.schemas import (
    AccountType,
    ChatMessage,
    ChatRequest,
    ConversationState,
    TransactionKind,
    TransactionRecord,
    TurnResult,
)

router = APIRouter()
settings = get_settings()


@router.post("/chat", response_model=TurnResult)
async def chat(request: ChatRequest):
    logger.info("Chat turn for session {}", request.session_id)
    return await orchestrator.handle_turn(
        request.session_id, request.message, user_id=request.user_id
    )


@router.get("/sessions/{session_id}", response_model=ConversationState)
def get_session(session_id: str):
    state = orchestrator.state(session_id)
    if state is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return state


@router.delete("/sessions/{session_id}")
async def discard_session(session_id: str):
    if not await orchestrator.discard(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    logger.info("Discarded session {}", session_id)
    return {"detail": "Session discarded"}


@router.get("/sessions/{session_id}/history", response_model=list[ChatMessage])
def get_history(session_id: str, limit: int | None = None):
    return history.recent(session_id, limit=limit or settings.history_limit)


@router.get("/transactions", response_model=list[TransactionRecord])
def list_transactions(
    user_id: str | None = None,
    kind: TransactionKind | None = None,
    account_type: AccountType | None = None,
):
    return repo.get_all(user_id=user_id, kind=kind, account_type=account_type)


@router.get("/transactions/{transaction_id}", response_model=TransactionRecord)
def get_transaction(transaction_id: int):
    record = repo.get(transaction_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return record


@router.delete("/transactions/{transaction_id}")
def delete_transaction(transaction_id: int):
    if not repo.delete(transaction_id):
        raise HTTPException(status_code=404, detail="Transaction not found")
    logger.info("Deleted transaction #{}", transaction_id)
    return {"detail": "Transaction deleted"}
