import logging
from fastapi import APIRouter, Depends, HTTPException

from pdfrag.api.deps import get_settings, get_vector_store, service_caller
from pdfrag.config.settings import AppSettings
from pdfrag.models.query import IndexQueryRequest, IndexQueryResponse
from pdfrag.storage.base import VectorStore

router = APIRouter(dependencies=[Depends(service_caller)])
logger = logging.getLogger(__name__)

@router.post("/index/query", response_model=IndexQueryResponse, summary="Top-K similarity query over the chunk index")
def query_index(
    request_data: IndexQueryRequest,
    vector_store: VectorStore = Depends(get_vector_store),
    settings: AppSettings = Depends(get_settings)
):
    if request_data.index_name != settings.qdrant.collection_name:
        raise HTTPException(status_code=404, detail=f"Unknown index: {request_data.index_name}")
    if len(request_data.query_vector) != settings.embedding.vector_dim:
        raise HTTPException(status_code=422, detail=f"queryVector must have {settings.embedding.vector_dim} dimensions.")

    filters = request_data.filter.model_dump(exclude_none=True) if request_data.filter else None
    try:
        hits = vector_store.search(request_data.query_vector, top_k=request_data.top_k, filters=filters)
    except Exception:
        logger.exception("Index query failed.")
        raise HTTPException(status_code=502, detail="Vector index query failed.")
    return IndexQueryResponse(results=hits)
