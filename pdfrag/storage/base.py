from abc import ABC, abstractmethod
from typing import List, Dict, Optional
from pdfrag.models.chunk import Chunk, IndexHit
from pdfrag.models.billing import Account, BillingState
from pdfrag.models.chat import ChatThread, ChatTurn
from pdfrag.models.document import DocumentRecord, IngestionRecord

class VectorStore(ABC):
    @abstractmethod
    def upsert(self, chunks: List[Chunk]) -> None:
        pass

    @abstractmethod
    def search(self, vector: List[float], top_k: int, filters: Optional[Dict] = None) -> List[IndexHit]:
        pass

    @abstractmethod
    def has_document(self, doc_id: str) -> bool:
        """True when at least one chunk tagged with doc_id is indexed."""
        pass

    @abstractmethod
    def scroll_document(self, doc_id: str, limit: int) -> List[IndexHit]:
        """Returns up to `limit` chunks of a document in ordinal order."""
        pass

    @abstractmethod
    def delete_document(self, doc_id: str) -> None:
        pass

    @abstractmethod
    def collection_exists(self) -> bool:
        pass

class RecordStore(ABC):
    """
    System of record for accounts, billing state, documents, threads and usage.
    Implementations must make every mutation atomic with respect to concurrent callers.
    """

    # Accounts and billing
    @abstractmethod
    def save_account(self, account: Account) -> None:
        pass

    @abstractmethod
    def get_account(self, account_id: str) -> Optional[Account]:
        pass

    @abstractmethod
    def get_account_by_token(self, token_identifier: str) -> Optional[Account]:
        pass

    @abstractmethod
    def get_billing_state(self, account_id: str) -> BillingState:
        pass

    @abstractmethod
    def set_billing_customer_if_absent(self, account_id: str, customer_id: str) -> str:
        """Stores customer_id only if none exists yet. Returns the stored reference."""
        pass

    @abstractmethod
    def set_subscription(self, account_id: str, subscription_item_id: Optional[str]) -> None:
        pass

    # Documents
    @abstractmethod
    def save_document(self, document: DocumentRecord) -> None:
        pass

    @abstractmethod
    def get_document(self, doc_id: str) -> Optional[DocumentRecord]:
        pass

    @abstractmethod
    def list_documents(self, owner_id: str) -> List[DocumentRecord]:
        """Documents owned by `owner_id`, newest first."""
        pass

    @abstractmethod
    def save_ingestion_record(self, record: IngestionRecord) -> None:
        pass

    @abstractmethod
    def get_ingestion_record(self, doc_id: str) -> Optional[IngestionRecord]:
        pass

    # Threads
    @abstractmethod
    def save_thread(self, thread: ChatThread) -> None:
        pass

    @abstractmethod
    def get_thread(self, thread_id: str) -> Optional[ChatThread]:
        pass

    @abstractmethod
    def list_threads(self, owner_id: str, doc_id: Optional[str] = None) -> List[ChatThread]:
        """Threads owned by `owner_id`, optionally bound to one document, newest first."""
        pass

    @abstractmethod
    def append_turn(self, turn: ChatTurn) -> None:
        pass

    @abstractmethod
    def list_turns(self, thread_id: str, limit: Optional[int] = None) -> List[ChatTurn]:
        """Turns in creation-time ascending order; `limit` keeps the most recent ones."""
        pass

    # Usage
    @abstractmethod
    def increment_usage(self, account_id: str, period_key: str, delta: int) -> int:
        pass

    @abstractmethod
    def get_usage(self, account_id: str, period_key: str) -> int:
        pass
