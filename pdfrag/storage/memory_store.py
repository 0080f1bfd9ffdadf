import threading
from collections import defaultdict
from typing import Dict, List, Optional, Tuple
from pdfrag.models.billing import Account, BillingState
from pdfrag.models.chat import ChatThread, ChatTurn
from pdfrag.models.document import DocumentRecord, IngestionRecord
from pdfrag.storage.base import RecordStore

class InMemoryRecordStore(RecordStore):
    """
    Implements RecordStore with process-local dicts.
    A single re-entrant lock serializes every read-modify-write, so usage
    increments and conditional customer creation are atomic across threads.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self.accounts: Dict[str, Account] = {}
        self.billing: Dict[str, BillingState] = {}
        self.documents: Dict[str, DocumentRecord] = {}
        self.ingestion_records: Dict[str, IngestionRecord] = {}
        self.threads: Dict[str, ChatThread] = {}
        self.turns: Dict[str, List[ChatTurn]] = defaultdict(list)
        self.usage: Dict[Tuple[str, str], int] = {}

    def _commit(self) -> None:
        """Hook called after every mutation while the lock is held."""
        pass

    def save_account(self, account: Account) -> None:
        with self._lock:
            self.accounts[account.account_id] = account
            self._commit()

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._lock:
            return self.accounts.get(account_id)

    def get_account_by_token(self, token_identifier: str) -> Optional[Account]:
        with self._lock:
            for account in self.accounts.values():
                if account.token_identifier == token_identifier:
                    return account
            return None

    def get_billing_state(self, account_id: str) -> BillingState:
        with self._lock:
            state = self.billing.get(account_id)
            return state.model_copy() if state else BillingState(account_id=account_id)

    def set_billing_customer_if_absent(self, account_id: str, customer_id: str) -> str:
        with self._lock:
            state = self.billing.setdefault(account_id, BillingState(account_id=account_id))
            if state.customer_id is None:
                state.customer_id = customer_id
                self._commit()
            return state.customer_id

    def set_subscription(self, account_id: str, subscription_item_id: Optional[str]) -> None:
        with self._lock:
            state = self.billing.setdefault(account_id, BillingState(account_id=account_id))
            state.has_subscription = subscription_item_id is not None
            state.subscription_item_id = subscription_item_id
            self._commit()

    def save_document(self, document: DocumentRecord) -> None:
        with self._lock:
            self.documents[document.doc_id] = document
            self._commit()

    def get_document(self, doc_id: str) -> Optional[DocumentRecord]:
        with self._lock:
            return self.documents.get(doc_id)

    def list_documents(self, owner_id: str) -> List[DocumentRecord]:
        with self._lock:
            documents = [d for d in self.documents.values() if d.owner_id == owner_id]
        return sorted(documents, key=lambda d: d.created_at, reverse=True)

    def save_ingestion_record(self, record: IngestionRecord) -> None:
        with self._lock:
            self.ingestion_records[record.doc_id] = record
            # Mirror onto the document row when it is known
            document = self.documents.get(record.doc_id)
            if document is not None:
                self.documents[record.doc_id] = document.model_copy(update={
                    "rag_summary": record.summary,
                    "rag_keywords": record.keywords,
                    "rag_embedding": record.embedding,
                    "last_rag_updated_at": record.last_updated_at,
                })
            self._commit()

    def get_ingestion_record(self, doc_id: str) -> Optional[IngestionRecord]:
        with self._lock:
            return self.ingestion_records.get(doc_id)

    def save_thread(self, thread: ChatThread) -> None:
        with self._lock:
            self.threads[thread.thread_id] = thread
            self._commit()

    def get_thread(self, thread_id: str) -> Optional[ChatThread]:
        with self._lock:
            return self.threads.get(thread_id)

    def list_threads(self, owner_id: str, doc_id: Optional[str] = None) -> List[ChatThread]:
        with self._lock:
            threads = [t for t in self.threads.values()
                       if t.owner_id == owner_id and (doc_id is None or t.doc_id == doc_id)]
        return sorted(threads, key=lambda t: t.created_at, reverse=True)

    def append_turn(self, turn: ChatTurn) -> None:
        with self._lock:
            self.turns[turn.thread_id].append(turn)
            self._commit()

    def list_turns(self, thread_id: str, limit: Optional[int] = None) -> List[ChatTurn]:
        with self._lock:
            # Stable sort keeps append order for identical timestamps
            turns = sorted(self.turns.get(thread_id, []), key=lambda t: t.created_at)
            if limit is not None:
                turns = turns[-limit:] if limit > 0 else []
            return list(turns)

    def increment_usage(self, account_id: str, period_key: str, delta: int) -> int:
        with self._lock:
            key = (account_id, period_key)
            self.usage[key] = self.usage.get(key, 0) + delta
            self._commit()
            return self.usage[key]

    def get_usage(self, account_id: str, period_key: str) -> int:
        with self._lock:
            return self.usage.get((account_id, period_key), 0)
