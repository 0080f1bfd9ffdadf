"""
Storage factories: the only place that branches on configured backends.
"""

import logging

from pdfrag.config.settings import AppSettings
from pdfrag.storage.base import RecordStore, VectorStore
from pdfrag.storage.file_store import JsonFileRecordStore
from pdfrag.storage.memory_store import InMemoryRecordStore
from pdfrag.storage.qdrant_store import QdrantVectorStore

logger = logging.getLogger(__name__)


def build_record_store(settings: AppSettings) -> RecordStore:
    backend = settings.storage.backend.lower()

    if backend == "memory":
        logger.info("Creating in-memory record store")
        return InMemoryRecordStore()

    elif backend == "json":
        logger.info(f"Creating JSON file record store at {settings.storage.json_path}")
        return JsonFileRecordStore(path=settings.storage.json_path)

    raise ValueError(f"Unknown storage backend: {settings.storage.backend}")


def build_vector_store(settings: AppSettings) -> VectorStore:
    if settings.qdrant.mode not in ("local", "memory", "cloud"):
        raise ValueError(f"Unknown qdrant mode: {settings.qdrant.mode}")

    logger.info(f"Creating Qdrant vector store ({settings.qdrant.mode} mode)")
    return QdrantVectorStore(
        config=settings.qdrant,
        vector_dim=settings.embedding.vector_dim,
        api_key=settings.qdrant_api_key
    )
