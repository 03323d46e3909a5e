import threading
from datetime import date
from weakref import WeakKeyDictionary

from tinydb import Query, TinyDB
from tinydb.storages import MemoryStorage

from finscope.errors import PersistenceFailure
from finscope.models.schemas import ChatMessage, SaveOutcome, TransactionDraft, TransactionRecord

# Bills and goals are looked up before inserting; the field that names them.
MATCH_FIELDS = {"bill": "category", "goal": "description"}

_db_locks: "WeakKeyDictionary[TinyDB, threading.RLock]" = WeakKeyDictionary()
_db_locks_guard = threading.Lock()


def open_db(db_path: str | None) -> TinyDB:
    if db_path is None:
        return TinyDB(storage=MemoryStorage)
    return TinyDB(db_path)


def db_lock(db: TinyDB) -> threading.RLock:
    """One lock per database. TinyDB rewrites the whole file on each write."""
    with _db_locks_guard:
        return _db_locks.setdefault(db, threading.RLock())


def _same_month(stored: str | None, when: date | None) -> bool:
    if stored is None or when is None:
        return stored is None and when is None
    return stored[:7] == when.isoformat()[:7]


def _similar_name(stored: str | None, name: str | None) -> bool:
    if not stored or not name:
        return False
    stored, name = stored.lower(), name.lower()
    return stored in name or name in stored


class TransactionRepository:
    """Persistence gateway for confirmed drafts.

    Saves are idempotent per key: retrying a save that already landed returns
    the existing record. A bill in the same month, or a goal, whose name
    matches an existing one updates that record instead of adding another.
    """

    def __init__(self, db_path: str | None = "finscope_ledger.json", db: TinyDB | None = None):
        self.db = db if db is not None else open_db(db_path)
        self.table = self.db.table("transactions")
        self._lock = db_lock(self.db)

    def save(self, draft: TransactionDraft, user_id: str | None = None, key: str | None = None) -> SaveOutcome:
        try:
            with self._lock:
                return self._save(draft, user_id, key)
        except (OSError, ValueError) as e:
            raise PersistenceFailure(f"could not save transaction: {e}") from e

    def _save(self, draft: TransactionDraft, user_id: str | None, key: str | None) -> SaveOutcome:
        Tx = Query()
        values = draft.model_dump(mode="json")

        if key:
            doc = self.table.get(Tx.idempotency_key == key)
            if doc is not None:
                # same draft confirmed again, possibly corrected in between
                if any(doc.get(field) != value for field, value in values.items()):
                    self.table.update(values, doc_ids=[doc.doc_id])
                return SaveOutcome(record_id=doc.doc_id, action="existing")

        match = self._match(draft, user_id)
        if match is not None:
            self.table.update(
                {"amount": values["amount"], "date": values["date"], "idempotency_key": key},
                doc_ids=[match.doc_id],
            )
            return SaveOutcome(record_id=match.doc_id, action="updated")

        record = TransactionRecord(user_id=user_id, idempotency_key=key, **draft.model_dump())
        data = record.model_dump(mode="json")
        data.pop("id", None)
        return SaveOutcome(record_id=self.table.insert(data), action="created")

    def _match(self, draft: TransactionDraft, user_id: str | None):
        field = MATCH_FIELDS.get(draft.kind)
        if field is None:
            return None
        Tx = Query()
        docs = self.table.search(
            (Tx.user_id == user_id) & (Tx.kind == draft.kind) & (Tx.account_type == draft.account_type)
        )
        for doc in docs:
            if draft.kind == "bill" and not _same_month(doc.get("date"), draft.date):
                continue
            if _similar_name(doc.get(field), getattr(draft, field)):
                return doc
        return None

    def get(self, id: int) -> TransactionRecord | None:
        with self._lock:
            doc = self.table.get(doc_id=id)
        if doc is None:
            return None
        return TransactionRecord(id=doc.doc_id, **doc)

    def get_all(
        self,
        user_id: str | None = None,
        kind: str | None = None,
        account_type: str | None = None,
    ) -> list[TransactionRecord]:
        Tx = Query()
        conditions = []
        if user_id:
            conditions.append(Tx.user_id == user_id)
        if kind:
            conditions.append(Tx.kind == kind)
        if account_type:
            conditions.append(Tx.account_type == account_type)

        with self._lock:
            if conditions:
                query = conditions[0]
                for condition in conditions[1:]:
                    query &= condition
                docs = self.table.search(query)
            else:
                docs = self.table.all()
        return [TransactionRecord(id=doc.doc_id, **doc) for doc in docs]

    def delete(self, id: int) -> bool:
        with self._lock:
            doc = self.table.get(doc_id=id)
            if doc is None:
                return False
            self.table.remove(doc_ids=[id])
        return True


class ChatHistoryRepository:
    def __init__(self, db_path: str | None = "finscope_ledger.json", db: TinyDB | None = None):
        self.db = db if db is not None else open_db(db_path)
        self.table = self.db.table("chat_history")
        self._lock = db_lock(self.db)

    def add(self, session_id: str, role: str, content: str) -> ChatMessage:
        message = ChatMessage(session_id=session_id, role=role, content=content)
        with self._lock:
            self.table.insert(message.model_dump(mode="json"))
        return message

    def recent(self, session_id: str, limit: int = 20) -> list[ChatMessage]:
        Msg = Query()
        with self._lock:
            docs = self.table.search(Msg.session_id == session_id)
        return [ChatMessage(**doc) for doc in docs[-limit:]]
