from pydantic import BaseModel

class ChunkMetadata(BaseModel):
    # Identity
    chunk_id: str                    # sha256(f"{doc_id}:{ordinal}")
    doc_id: str
    file_name: str
    ordinal: int                     # 0-based position in document
    # Source location
    page_number: int | None = None
    section: str | None = None       # "Page 3"
    # Derived by the chunk enricher
    summary: str | None = None
    keywords: list[str] | None = None
    # Chunk properties
    token_count: int
    num_pages: int | None = None
    embedding_model: str | None = None

class Chunk(BaseModel):
    metadata: ChunkMetadata
    text: str
    embedding: list[float] | None = None    # None before embedding step

class IndexHit(BaseModel):
    id: str                          # app-level chunk_id, not the Qdrant point UUID
    score: float
    metadata: dict
