from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from pdfrag.api.main import create_app
from pdfrag.config.settings import (AppSettings, BillingConfig, ChatConfig, ChunkingConfig, EmbeddingConfig,
                                    IngestionConfig, QdrantConfig)
from pdfrag.core.chat.gateway import ChatGateway
from pdfrag.core.chunk.chunker import Chunker
from pdfrag.core.pipeline.ingestion import IngestionPipeline
from pdfrag.core.pipeline.metadata_writer import LocalMetadataWriter, MetadataService
from pdfrag.tests.create_sample_pdf import build_sample_pdf

from conftest import PRICE_ID, VECTOR_DIM, ScriptedLLM, text, usage

SERVICE = {"X-Service-Token": "svc-secret"}
ADA = {"Authorization": "Bearer token-ada"}
BOB = {"Authorization": "Bearer token-bob"}

@pytest.fixture
def settings():
    return AppSettings(
        embedding=EmbeddingConfig(vector_dim=VECTOR_DIM),
        qdrant=QdrantConfig(mode="memory", collection_name="test_chunks"),
        billing=BillingConfig(free_tier_units=100, metered_price_id=PRICE_ID),
        ingestion=IngestionConfig(max_workers=2),
        chat=ChatConfig(),
        service_api_key="svc-secret"
    )

@pytest.fixture
def llm():
    return ScriptedLLM(script=[text("Hel"), text("lo, "), text("world"), usage(30, 12)])

@pytest.fixture
def client(settings, llm, records, vector_store, embedder, meter, gate):
    metadata_service = MetadataService(records, settings.service_api_key)
    fetcher = MagicMock()
    fetcher.fetch.return_value = build_sample_pdf(["Attention is all you need.", "Multi-head attention."])
    components = {
        "records": records,
        "vector_store": vector_store,
        "metadata_service": metadata_service,
        "usage_meter": meter,
        "billing_gate": gate,
        "ingestion_pipeline": IngestionPipeline(
            vector_store=vector_store,
            embedder=embedder,
            llm=llm,
            metadata_writer=LocalMetadataWriter(metadata_service, settings.service_api_key),
            chunker=Chunker(ChunkingConfig()),
            config=settings.ingestion,
            fetcher=fetcher
        ),
        "chat_gateway": ChatGateway(llm=llm, embedder=embedder, vector_store=vector_store, records=records,
                                    meter=meter, gate=gate, config=settings.chat),
    }
    with TestClient(create_app(settings=settings, components=components)) as test_client:
        yield test_client

def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}

def test_ingest_requires_service_token(client):
    body = {"documentId": "doc_2", "sourceURL": "https://arxiv.org/pdf/1706.03762"}
    assert client.post("/api/ingest", json=body).status_code == 401
    assert client.post("/api/ingest", json=body, headers={"X-Service-Token": "nope"}).status_code == 401

def test_ingest_and_query_flow(client, records):
    body = {"documentId": "doc_2", "sourceURL": "https://arxiv.org/pdf/1706.03762?lang=en", "ownerId": "acct_1"}
    response = client.post("/api/ingest?wait=true", json=body, headers=SERVICE)

    assert response.status_code == 200
    job = response.json()
    print(f"Job: {job['job_id']} status={job['status']}")
    assert job["status"] == "completed"
    assert job["result"]["file_name"] == "1706.03762.pdf"
    assert job["result"]["chunks_indexed"] == 2

    status = client.get(f"/api/ingest/status/{job['job_id']}", headers=SERVICE)
    assert status.json()["status"] == "completed"
    assert client.get("/api/ingest/status/missing", headers=SERVICE).status_code == 404

    document = records.get_document("doc_2")
    assert document.page_count == 2
    assert document.rag_summary == "A paper about attention."

    query = {"indexName": "test_chunks", "queryVector": [0.1] * VECTOR_DIM, "topK": 5,
             "filter": {"documentId": "doc_2"}}
    results = client.post("/api/index/query", json=query, headers=SERVICE).json()["results"]
    assert len(results) == 2
    assert all(r["metadata"]["doc_id"] == "doc_2" for r in results)

    bad_dim = dict(query, queryVector=[0.1, 0.2])
    assert client.post("/api/index/query", json=bad_dim, headers=SERVICE).status_code == 422
    unknown = dict(query, indexName="other")
    assert client.post("/api/index/query", json=unknown, headers=SERVICE).status_code == 404

    deleted = client.delete("/api/documents/doc_2", headers=SERVICE)
    assert deleted.json() == {"doc_id": "doc_2", "success": True}
    assert client.post("/api/index/query", json=query, headers=SERVICE).json()["results"] == []

def test_rag_meta_write_back(client, records):
    body = {"documentId": "doc_1", "summary": "Transformers.", "keywords": ["attention"], "lastUpdatedAt": 7}

    assert client.post("/api/documents/doc_1/rag-meta", json=body).status_code == 401
    assert records.get_ingestion_record("doc_1") is None

    response = client.post("/api/documents/doc_1/rag-meta", json=body, headers=SERVICE)
    assert response.status_code == 200
    assert records.get_document("doc_1").rag_keywords == ["attention"]

    mismatched = client.post("/api/documents/doc_9/rag-meta", json=body, headers=SERVICE)
    assert mismatched.status_code == 400

    assert client.get("/api/documents/doc_1", headers=ADA).json()["rag_summary"] == "Transformers."
    assert client.get("/api/documents/doc_1", headers=BOB).status_code == 404

def test_chat_streams_events_and_meters(client, meter):
    body = {"message": "What is attention?", "documentId": "doc_1", "threadId": "thread_1"}
    response = client.post("/api/chat", json=body, headers=ADA)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.text == "data: Hel\n\ndata: lo, \n\ndata: world\n\n"

    messages = client.get("/api/threads/thread_1/messages", headers=ADA).json()
    assert [(m["author"], m["text"]) for m in messages] == [("user", "What is attention?"),
                                                           ("agent", "Hello, world")]
    summary = client.get("/api/usage", headers=ADA).json()
    assert summary["units"] == 42
    assert summary["ceiling"] == 100
    assert summary["has_subscription"] is False

def test_chat_blocked_returns_checkout(client, meter):
    meter.increment("acct_1", meter.current_period(), 100)
    body = {"message": "Hi", "documentId": "doc_1", "threadId": "thread_1"}

    response = client.post("/api/chat", json=body, headers=ADA)

    assert response.status_code == 402
    assert response.json()["checkoutUrl"] == "https://checkout.example/acct_1"
    assert client.get("/api/threads/thread_1/messages", headers=ADA).json() == []

def test_chat_auth_and_ownership(client):
    body = {"message": "Hi", "documentId": "doc_1", "threadId": "thread_1"}
    assert client.post("/api/chat", json=body).status_code == 401
    assert client.post("/api/chat", json=body, headers={"Authorization": "Bearer unknown"}).status_code == 401
    assert client.post("/api/chat", json=body, headers=BOB).status_code == 403
    assert client.get("/api/threads/thread_1/messages", headers=BOB).status_code == 403

    missing = dict(body, threadId="thread_missing")
    assert client.post("/api/chat", json=missing, headers=ADA).status_code == 404

    empty = dict(body, message="")
    assert client.post("/api/chat", json=empty, headers=ADA).status_code == 422

def test_create_thread(client):
    created = client.post("/api/threads", json={"documentId": "doc_1", "title": "Heads"}, headers=ADA)
    assert created.status_code == 200
    thread = created.json()
    assert thread["owner_id"] == "acct_1"
    assert thread["doc_id"] == "doc_1"

    assert client.post("/api/threads", json={"documentId": "doc_1"}, headers=BOB).status_code == 404
    assert client.post("/api/threads", json={"documentId": "doc_none"}, headers=ADA).status_code == 404

def test_list_documents_and_threads_for_caller(client, records):
    documents = client.get("/api/documents", headers=ADA)
    assert documents.status_code == 200
    assert [d["doc_id"] for d in documents.json()] == ["doc_1"]
    assert client.get("/api/documents", headers=BOB).json() == []
    assert client.get("/api/documents").status_code == 401

    created = client.post("/api/threads", json={"documentId": "doc_1", "title": "Heads"}, headers=ADA).json()

    threads = client.get("/api/threads", params={"documentId": "doc_1"}, headers=ADA).json()
    assert [t["thread_id"] for t in threads] == [created["thread_id"], "thread_1"]
    assert client.get("/api/threads", params={"documentId": "doc_other"}, headers=ADA).json() == []
    assert len(client.get("/api/threads", headers=ADA).json()) == 2
    assert client.get("/api/threads", headers=BOB).json() == []
