import hashlib
import threading
import time
from typing import List, Optional

import numpy as np
import pytest

from pdfrag.config.settings import (BillingConfig, ChatConfig, EmbeddingConfig, IngestionConfig,
                                    QdrantConfig)
from pdfrag.core.billing.gate import BillingGate
from pdfrag.core.billing.provider import BillingProvider
from pdfrag.core.billing.usage_meter import UsageMeter
from pdfrag.core.chat.gateway import ChatGateway
from pdfrag.core.embed.embedder import Embedder
from pdfrag.core.generate.stream_parser import RecordKind, StreamRecord, Usage
from pdfrag.models.billing import Account, Subscription, SubscriptionItem
from pdfrag.models.chat import ChatThread
from pdfrag.models.document import DocumentRecord
from pdfrag.storage.memory_store import InMemoryRecordStore
from pdfrag.storage.qdrant_store import QdrantVectorStore

VECTOR_DIM = 8
PRICE_ID = "price_metered"
SUMMARY_JSON = ('{"summary": "A paper about attention.", '
                '"keywords": ["attention", "transformer", "encoder", "decoder", "translation"]}')


class FakeModel:
    """Stands in for SentenceTransformer: deterministic vectors from a text hash."""

    def __init__(self, dim: int = VECTOR_DIM):
        self.dim = dim
        self.calls = 0
        self._lock = threading.Lock()

    def _vector(self, text: str) -> np.ndarray:
        digest = hashlib.sha256(text.encode()).digest()
        vec = np.array([b + 1 for b in digest[:self.dim]], dtype=np.float32)
        return vec / np.linalg.norm(vec)

    def encode(self, texts, **kwargs):
        with self._lock:
            self.calls += 1
        if isinstance(texts, str):
            return self._vector(texts)
        return np.stack([self._vector(t) for t in texts])


class ScriptedLLM:
    """LLMClient double: canned completions and a scripted record stream."""

    def __init__(self, completion: str = SUMMARY_JSON, script: Optional[List[StreamRecord]] = None,
                 fail_after: Optional[int] = None):
        self.completion = completion
        self.script = script or []
        self.fail_after = fail_after
        self.generate_calls = 0
        self.stream_calls = 0
        self.closed = False

    def generate(self, messages, json_mode=False) -> str:
        self.generate_calls += 1
        return self.completion

    def stream_records(self, messages):
        from pdfrag.core.exceptions import UpstreamError
        self.stream_calls += 1
        try:
            for i, record in enumerate(self.script):
                if self.fail_after is not None and i == self.fail_after:
                    raise UpstreamError("llm", "connection reset")
                yield record
        finally:
            self.closed = True


class FakeBillingProvider(BillingProvider):
    def __init__(self, subscriptions: Optional[List[Subscription]] = None, create_delay: float = 0.0):
        self.subscriptions = subscriptions or []
        self.create_delay = create_delay
        self.customers_created = 0
        self.idempotency_keys: List[str] = []
        self.usage_reports: List[tuple] = []
        self.checkouts: List[str] = []
        self._lock = threading.Lock()

    def create_customer(self, account, idempotency_key):
        time.sleep(self.create_delay)
        with self._lock:
            self.customers_created += 1
            self.idempotency_keys.append(idempotency_key)
            return f"cus_{self.customers_created}"

    def list_active_subscriptions(self, customer_id, price_id):
        return list(self.subscriptions)

    def create_checkout_session(self, customer_id, account_id, price_id):
        self.checkouts.append(account_id)
        return f"https://checkout.example/{account_id}"

    def report_usage(self, subscription_item_id, quantity, idempotency_key):
        self.usage_reports.append((subscription_item_id, quantity, idempotency_key))


def text(t: str) -> StreamRecord:
    return StreamRecord(kind=RecordKind.TEXT, text=t)


def usage(prompt: int, completion: int) -> StreamRecord:
    return StreamRecord(kind=RecordKind.USAGE, usage=Usage(prompt_tokens=prompt, completion_tokens=completion))


def subscription(sub_id: str, created: int, item_id: str, price_id: str = PRICE_ID) -> Subscription:
    return Subscription(subscription_id=sub_id, created=created,
                        items=[SubscriptionItem(item_id=item_id, price_id=price_id)])


@pytest.fixture
def fake_model():
    return FakeModel()


@pytest.fixture
def embedder(fake_model):
    return Embedder(EmbeddingConfig(vector_dim=VECTOR_DIM), model=fake_model)


@pytest.fixture
def vector_store():
    return QdrantVectorStore(QdrantConfig(mode="memory", collection_name="test_chunks"), vector_dim=VECTOR_DIM)


@pytest.fixture
def records():
    store = InMemoryRecordStore()
    store.save_account(Account(account_id="acct_1", name="Ada", token_identifier="token-ada"))
    store.save_account(Account(account_id="acct_2", name="Bob", token_identifier="token-bob"))
    store.save_document(DocumentRecord(doc_id="doc_1", file_name="1706.03762.pdf",
                                       source_url="https://arxiv.org/pdf/1706.03762",
                                       owner_id="acct_1", created_at=1))
    store.save_thread(ChatThread(thread_id="thread_1", owner_id="acct_1", doc_id="doc_1",
                                 title="Attention", created_at=1))
    return store


@pytest.fixture
def billing_config():
    return BillingConfig(free_tier_units=100, metered_price_id=PRICE_ID)


@pytest.fixture
def provider():
    return FakeBillingProvider()


@pytest.fixture
def meter(records):
    return UsageMeter(records)


@pytest.fixture
def gate(records, provider, meter, billing_config):
    return BillingGate(records, provider, meter, billing_config)


@pytest.fixture
def ingestion_config():
    return IngestionConfig(mode="cache", max_workers=4, summary_context_chunks=12, min_keywords=5)


@pytest.fixture
def make_gateway(embedder, vector_store, records, meter, gate):
    """Builds a ChatGateway around a scripted stream."""
    def _make(llm: ScriptedLLM, config: Optional[ChatConfig] = None) -> ChatGateway:
        return ChatGateway(llm=llm, embedder=embedder, vector_store=vector_store, records=records,
                           meter=meter, gate=gate, config=config or ChatConfig())
    return _make
