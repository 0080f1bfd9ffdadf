import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, Header, HTTPException

from pdfrag.api.deps import current_account, get_metadata_service, get_records, get_vector_store, service_caller
from pdfrag.core.pipeline.metadata_writer import MetadataService
from pdfrag.models.billing import Account
from pdfrag.models.document import DocumentRecord, IngestionRecord, MetadataWriteRequest
from pdfrag.storage.base import RecordStore, VectorStore

router = APIRouter()
logger = logging.getLogger(__name__)

@router.post("/documents/{doc_id}/rag-meta", response_model=IngestionRecord,
             summary="Write derived summary/keywords back to the system of record")
def write_rag_meta(
    doc_id: str,
    request_data: MetadataWriteRequest,
    x_service_token: Optional[str] = Header(default=None),
    service: MetadataService = Depends(get_metadata_service)
):
    """
    Service-to-service write-back. The shared secret is checked inside MetadataService,
    the same check the in-process writer goes through.
    """
    if request_data.document_id != doc_id:
        raise HTTPException(status_code=400, detail="documentId does not match the path.")
    return service.write_back(x_service_token, request_data)

@router.get("/documents", response_model=List[DocumentRecord], summary="List the caller's documents")
def list_documents(
    account: Account = Depends(current_account),
    records: RecordStore = Depends(get_records)
):
    return records.list_documents(account.account_id)

@router.get("/documents/{doc_id}", response_model=DocumentRecord, summary="Get a document and its derived metadata")
def get_document(
    doc_id: str,
    account: Account = Depends(current_account),
    records: RecordStore = Depends(get_records)
):
    document = records.get_document(doc_id)
    if document is None or (document.owner_id is not None and document.owner_id != account.account_id):
        raise HTTPException(status_code=404, detail="Document not found.")
    return document

@router.delete("/documents/{doc_id}", dependencies=[Depends(service_caller)],
               summary="Delete a document's vectors from the index")
def delete_document(
    doc_id: str,
    vector_store: VectorStore = Depends(get_vector_store)
):
    logger.info(f"Deleting vectors for doc_id: {doc_id}")
    try:
        vector_store.delete_document(doc_id)
    except Exception:
        logger.exception(f"Failed to delete vectors for {doc_id}")
        raise HTTPException(status_code=500, detail=f"Could not delete vectors for {doc_id}.")
    return {"doc_id": doc_id, "success": True}
