from pydantic import BaseModel, ConfigDict, Field
from pdfrag.models.chunk import IndexHit

class IndexFilter(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    doc_id: str | None = Field(default=None, alias="documentId")
    file_name: str | None = Field(default=None, alias="fileName")

class IndexQueryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    index_name: str = Field(alias="indexName")
    query_vector: list[float] = Field(alias="queryVector", min_length=1)
    top_k: int = Field(default=5, alias="topK", ge=1, le=100)
    filter: IndexFilter | None = None

class IndexQueryResponse(BaseModel):
    results: list[IndexHit]
