import os
import json
import logging
from pdfrag.models.billing import Account, BillingState
from pdfrag.models.chat import ChatThread, ChatTurn
from pdfrag.models.document import DocumentRecord, IngestionRecord
from pdfrag.storage.memory_store import InMemoryRecordStore

logger = logging.getLogger(__name__)

class JsonFileRecordStore(InMemoryRecordStore):
    """
    Implements RecordStore on the local disk.
    - Keeps the in-memory semantics (and locking) of InMemoryRecordStore.
    - Writes a full JSON snapshot after every mutation, replacing the file atomically.
    """

    def __init__(self, path: str = "./data/records.json"):
        super().__init__()
        self.path = path
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._load()

    def _load(self) -> None:
        if not os.path.exists(self.path):
            return

        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)

        self.accounts = {k: Account(**v) for k, v in data.get("accounts", {}).items()}
        self.billing = {k: BillingState(**v) for k, v in data.get("billing", {}).items()}
        self.documents = {k: DocumentRecord(**v) for k, v in data.get("documents", {}).items()}
        self.ingestion_records = {k: IngestionRecord(**v) for k, v in data.get("ingestion_records", {}).items()}
        self.threads = {k: ChatThread(**v) for k, v in data.get("threads", {}).items()}
        for thread_id, turns in data.get("turns", {}).items():
            self.turns[thread_id] = [ChatTurn(**t) for t in turns]
        # Usage keys are "account_id|period_key" on disk
        for key, units in data.get("usage", {}).items():
            account_id, period_key = key.rsplit("|", 1)
            self.usage[(account_id, period_key)] = units
        logger.info(f"Loaded record store snapshot from {self.path}")

    def _commit(self) -> None:
        data = {
            "accounts": {k: v.model_dump() for k, v in self.accounts.items()},
            "billing": {k: v.model_dump() for k, v in self.billing.items()},
            "documents": {k: v.model_dump() for k, v in self.documents.items()},
            "ingestion_records": {k: v.model_dump() for k, v in self.ingestion_records.items()},
            "threads": {k: v.model_dump() for k, v in self.threads.items()},
            "turns": {k: [t.model_dump(mode="json") for t in v] for k, v in self.turns.items()},
            "usage": {f"{a}|{p}": units for (a, p), units in self.usage.items()},
        }
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, self.path)
