import logging
import time
from abc import ABC, abstractmethod
from typing import Optional
import httpx
from pdfrag.core.auth import require_service_token
from pdfrag.core.exceptions import UpstreamError
from pdfrag.models.document import IngestionRecord, MetadataWriteRequest
from pdfrag.storage.base import RecordStore

logger = logging.getLogger(__name__)


class MetadataService:
    """
    Receiving side of the metadata write-back.
    Authenticated by the shared service secret, not by end-user identity.
    """

    def __init__(self, records: RecordStore, service_token: str):
        self.records = records
        self.service_token = service_token

    def write_back(self, token: Optional[str], request: MetadataWriteRequest) -> IngestionRecord:
        require_service_token(self.service_token, token)

        existing = self.records.get_ingestion_record(request.document_id)
        record = IngestionRecord(
            doc_id=request.document_id,
            summary=request.summary if request.summary is not None else (existing.summary if existing else ""),
            keywords=request.keywords if request.keywords is not None else (existing.keywords if existing else []),
            embedding=request.embedding if request.embedding is not None else (existing.embedding if existing else None),
            last_updated_at=request.last_updated_at or int(time.time() * 1000)
        )
        # One call, whole record: readers never observe a half-written record
        self.records.save_ingestion_record(record)
        logger.info(f"[{record.doc_id}] metadata written back ({len(record.keywords)} keywords)")
        return record


class MetadataWriter(ABC):
    """Sending side used by the ingestion pipeline."""

    @abstractmethod
    def write(self, record: IngestionRecord) -> None:
        pass


def _to_request(record: IngestionRecord) -> MetadataWriteRequest:
    return MetadataWriteRequest(
        document_id=record.doc_id,
        summary=record.summary,
        keywords=record.keywords,
        embedding=record.embedding,
        last_updated_at=record.last_updated_at
    )


class LocalMetadataWriter(MetadataWriter):
    """In-process write-back: same trust check, no network hop."""

    def __init__(self, service: MetadataService, service_token: str):
        self.service = service
        self.service_token = service_token

    def write(self, record: IngestionRecord) -> None:
        self.service.write_back(self.service_token, _to_request(record))


class HttpMetadataWriter(MetadataWriter):
    """Posts the record to the system of record's write-back endpoint."""

    def __init__(self, base_url: str, service_token: str, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.service_token = service_token
        self.timeout = timeout

    def write(self, record: IngestionRecord) -> None:
        url = f"{self.base_url}/api/documents/{record.doc_id}/rag-meta"
        body = _to_request(record).model_dump(by_alias=True, exclude_none=True)
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(url, json=body, headers={"X-Service-Token": self.service_token})
        except httpx.HTTPError as e:
            raise UpstreamError("records", f"Metadata write-back failed: {e}") from e

        if not response.is_success:
            raise UpstreamError("records", f"Metadata write-back failed: HTTP {response.status_code} {response.text}")
