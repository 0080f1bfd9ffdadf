import logging
import time
import uuid
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Request, BackgroundTasks

from pdfrag.api.deps import get_ingestion_pipeline, get_records, service_caller
from pdfrag.core.pipeline.ingestion import IngestionPipeline
from pdfrag.core.pipeline.naming import resolve_file_name
from pdfrag.models.document import (DocumentRecord, IngestRequest, IngestionJob,
                                    IngestionOutcome, IngestionStatus)
from pdfrag.storage.base import RecordStore

router = APIRouter(dependencies=[Depends(service_caller)])
logger = logging.getLogger(__name__)

@router.post("/ingest", response_model=IngestionJob, summary="Ingest a PDF from a URL into the index")
def ingest_document(
    request_data: IngestRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    wait: bool = False,
    pipeline: IngestionPipeline = Depends(get_ingestion_pipeline),
    records: RecordStore = Depends(get_records)
):
    """
    1. Registers the document on first request.
    2. Dispatches the ingestion pipeline to BackgroundTasks (or runs inline with ?wait=true).
    3. Returns the IngestionJob; the pipeline result lands on job.result.
    """
    doc_id = request_data.document_id
    if records.get_document(doc_id) is None:
        records.save_document(DocumentRecord(
            doc_id=doc_id,
            file_name=resolve_file_name(request_data.source_url),
            source_url=request_data.source_url,
            owner_id=request_data.owner_id,
            created_at=int(time.time() * 1000)
        ))

    job_id = str(uuid.uuid4())
    logger.info(f"Ingestion requested for doc_id: {doc_id}, job_id: {job_id}")

    jobs_db = request.app.state.jobs_db
    job = IngestionJob(
        job_id=job_id,
        doc_id=doc_id,
        status=IngestionStatus.pending,
        progress=0,
        message="Queued for processing",
        created_at=datetime.now(timezone.utc).isoformat()
    )
    jobs_db[job_id] = job

    # Callback to update the in-memory job state from the pipeline
    def progress_callback(progress: int, message: str):
        target_job = jobs_db.get(job_id)
        if not target_job:
            return
        target_job.progress = progress
        target_job.message = message
        target_job.status = IngestionStatus.failed if progress < 0 else IngestionStatus.processing

    def run_pipeline():
        result = pipeline.run(doc_id, request_data.source_url, progress_callback=progress_callback)
        job.result = result
        job.completed_at = datetime.now(timezone.utc).isoformat()
        if result.status == IngestionOutcome.failed:
            job.status = IngestionStatus.failed
            job.progress = -1
            job.message = result.summary
        else:
            job.status = IngestionStatus.completed
            job.progress = 100
        if result.page_count:
            document = records.get_document(doc_id)
            if document is not None:
                records.save_document(document.model_copy(update={"page_count": result.page_count}))

    if wait:
        run_pipeline()
    else:
        background_tasks.add_task(run_pipeline)

    return job

@router.get("/ingest/status/{job_id}", response_model=IngestionJob, summary="Get the status of an ingestion job")
def get_ingest_status(job_id: str, request: Request):
    jobs_db = request.app.state.jobs_db
    if job_id not in jobs_db:
        raise HTTPException(status_code=404, detail="Job ID not found.")
    return jobs_db[job_id]
