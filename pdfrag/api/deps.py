from typing import Optional
from fastapi import Depends, Header, Request

from pdfrag.config.settings import AppSettings
from pdfrag.core.auth import require_service_token, resolve_account
from pdfrag.core.billing.usage_meter import UsageMeter
from pdfrag.core.billing.gate import BillingGate
from pdfrag.core.chat.gateway import ChatGateway
from pdfrag.core.pipeline.ingestion import IngestionPipeline
from pdfrag.core.pipeline.metadata_writer import MetadataService
from pdfrag.models.billing import Account
from pdfrag.storage.base import RecordStore, VectorStore

# Components live on app.state, built once in the lifespan
def get_settings(request: Request) -> AppSettings:
    return request.app.state.settings

def get_records(request: Request) -> RecordStore:
    return request.app.state.records

def get_vector_store(request: Request) -> VectorStore:
    return request.app.state.vector_store

def get_ingestion_pipeline(request: Request) -> IngestionPipeline:
    return request.app.state.ingestion_pipeline

def get_metadata_service(request: Request) -> MetadataService:
    return request.app.state.metadata_service

def get_chat_gateway(request: Request) -> ChatGateway:
    return request.app.state.chat_gateway

def get_usage_meter(request: Request) -> UsageMeter:
    return request.app.state.usage_meter

def get_billing_gate(request: Request) -> BillingGate:
    return request.app.state.billing_gate

def current_account(
    authorization: Optional[str] = Header(default=None),
    records: RecordStore = Depends(get_records)
) -> Account:
    """End-user identity from the bearer token."""
    return resolve_account(records, authorization)

def service_caller(
    x_service_token: Optional[str] = Header(default=None),
    settings: AppSettings = Depends(get_settings)
) -> str:
    """Guard for every service-to-service route. Returns the accepted token."""
    require_service_token(settings.service_api_key, x_service_token)
    return x_service_token
