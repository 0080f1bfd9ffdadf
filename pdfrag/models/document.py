from pydantic import BaseModel, ConfigDict, Field
from enum import Enum

class IngestionStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"

class IngestionOutcome(str, Enum):
    completed = "completed"
    cached = "cached"                # existence check short-circuited
    failed = "failed"

class IngestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(alias="documentId", min_length=1)
    source_url: str = Field(alias="sourceURL", min_length=1)
    owner_id: str | None = Field(default=None, alias="ownerId")

class ChunkFailure(BaseModel):
    ordinal: int
    chunk_id: str
    error: str

class IngestionResult(BaseModel):
    doc_id: str
    file_name: str = ""
    summary: str
    keywords: list[str] = []
    status: IngestionOutcome
    page_count: int = 0
    chunks_indexed: int = 0
    chunk_failures: list[ChunkFailure] = []
    persisted: bool = False

class IngestionJob(BaseModel):
    job_id: str
    doc_id: str
    status: IngestionStatus
    progress: int                    # 0-100, -1 on failure
    message: str
    created_at: str
    completed_at: str | None = None
    result: IngestionResult | None = None

class IngestionRecord(BaseModel):
    """Derived metadata written back to the system of record, all fields at once."""
    doc_id: str
    summary: str
    keywords: list[str]
    embedding: list[float] | None = None
    last_updated_at: int             # epoch millis

class MetadataWriteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(alias="documentId", min_length=1)
    summary: str | None = None
    keywords: list[str] | None = None
    embedding: list[float] | None = None
    last_updated_at: int | None = Field(default=None, alias="lastUpdatedAt")

class DocumentRecord(BaseModel):
    doc_id: str
    file_name: str
    source_url: str
    owner_id: str | None = None
    page_count: int = 0
    created_at: int
    rag_summary: str | None = None
    rag_keywords: list[str] | None = None
    rag_embedding: list[float] | None = None
    last_rag_updated_at: int | None = None
