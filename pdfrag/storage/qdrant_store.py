import logging
import uuid
from typing import List, Dict, Optional
from qdrant_client import QdrantClient
from qdrant_client.http import models as rest
from pdfrag.config.settings import QdrantConfig
from pdfrag.models.chunk import Chunk, IndexHit
from pdfrag.storage.base import VectorStore

logger = logging.getLogger(__name__)


def _to_uuid(chunk_id: str) -> str:
    """Convert a SHA-256 hex string to a deterministic UUID (Qdrant-compatible point ID).
    Takes the first 32 hex chars and formats as standard UUID.
    """
    return str(uuid.UUID(chunk_id[:32]))


def _build_client(config: QdrantConfig, api_key: str = "") -> QdrantClient:
    if config.mode == "memory":
        return QdrantClient(location=":memory:")
    if config.mode == "cloud":
        return QdrantClient(url=config.cloud_url, api_key=api_key or None)
    return QdrantClient(path=config.local_path)


def _build_filter(filters: Optional[Dict]) -> Optional[rest.Filter]:
    if not filters:
        return None
    must_clauses = []
    for key, value in filters.items():
        if value is None:
            continue
        if isinstance(value, list):
            must_clauses.append(rest.FieldCondition(key=key, match=rest.MatchAny(any=value)))
        else:
            must_clauses.append(rest.FieldCondition(key=key, match=rest.MatchValue(value=value)))
    return rest.Filter(must=must_clauses) if must_clauses else None


class QdrantVectorStore(VectorStore):
    """
    Implements VectorStore on Qdrant. The same class serves local-disk,
    in-memory and cloud deployments; only the client construction differs.
    """

    def __init__(self, config: QdrantConfig, vector_dim: int, api_key: str = "",
                 client: Optional[QdrantClient] = None):
        self.config = config
        self.vector_dim = vector_dim
        self.client = client or _build_client(config, api_key)
        self._ensure_collection()

    def _ensure_collection(self):
        if not self.collection_exists():
            logger.info(f"Creating Qdrant collection: {self.config.collection_name}")
            self.client.create_collection(
                collection_name=self.config.collection_name,
                vectors_config=rest.VectorParams(
                    size=self.vector_dim,
                    distance=rest.Distance.COSINE
                ),
                hnsw_config=rest.HnswConfigDiff(
                    m=self.config.hnsw_m,
                    ef_construct=self.config.hnsw_ef_construct
                )
            )
            # Payload indexes back the exact-match filters on document id / name
            for field, schema in [("doc_id", rest.PayloadSchemaType.KEYWORD),
                                  ("file_name", rest.PayloadSchemaType.KEYWORD),
                                  ("ordinal", rest.PayloadSchemaType.INTEGER)]:
                self.client.create_payload_index(
                    collection_name=self.config.collection_name,
                    field_name=field,
                    field_schema=schema
                )

    def collection_exists(self) -> bool:
        collections = self.client.get_collections().collections
        return any(c.name == self.config.collection_name for c in collections)

    def upsert(self, chunks: List[Chunk]) -> None:
        points = []
        for chunk in chunks:
            if chunk.embedding is None:
                continue

            payload = chunk.metadata.model_dump()
            payload["text"] = chunk.text

            points.append(rest.PointStruct(
                id=_to_uuid(chunk.metadata.chunk_id),
                vector=chunk.embedding,
                payload=payload
            ))

        if points:
            self.client.upsert(
                collection_name=self.config.collection_name,
                points=points
            )

    def search(self, vector: List[float], top_k: int, filters: Optional[Dict] = None) -> List[IndexHit]:
        results = self.client.query_points(
            collection_name=self.config.collection_name,
            query=vector,
            limit=top_k,
            query_filter=_build_filter(filters),
            search_params=rest.SearchParams(
                hnsw_ef=self.config.hnsw_ef
            )
        ).points

        return [
            IndexHit(
                # Return the app-level chunk_id from payload, not the internal Qdrant UUID
                id=r.payload.get("chunk_id", str(r.id)),
                score=r.score,
                metadata=r.payload
            )
            for r in results
        ]

    def has_document(self, doc_id: str) -> bool:
        result = self.client.count(
            collection_name=self.config.collection_name,
            count_filter=_build_filter({"doc_id": doc_id}),
            exact=True
        )
        return result.count > 0

    def scroll_document(self, doc_id: str, limit: int) -> List[IndexHit]:
        # Failed chunks leave gaps in the ordinals; take the first indexed ones
        points, _ = self.client.scroll(
            collection_name=self.config.collection_name,
            scroll_filter=_build_filter({"doc_id": doc_id}),
            limit=limit,
            order_by=rest.OrderBy(key="ordinal", direction=rest.Direction.ASC),
            with_payload=True,
            with_vectors=False
        )
        hits = [
            IndexHit(id=p.payload.get("chunk_id", str(p.id)), score=1.0, metadata=p.payload)
            for p in points
            if p.payload
        ]
        return sorted(hits, key=lambda h: h.metadata.get("ordinal", 0))

    def delete_document(self, doc_id: str) -> None:
        self.client.delete(
            collection_name=self.config.collection_name,
            points_selector=rest.FilterSelector(
                filter=_build_filter({"doc_id": doc_id})
            )
        )
