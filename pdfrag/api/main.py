import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pdfrag.config.settings import AppSettings, load_settings
from pdfrag.core.billing.gate import BillingGate
from pdfrag.core.billing.provider import StripeBillingProvider
from pdfrag.core.billing.usage_meter import UsageMeter
from pdfrag.core.chat.gateway import ChatGateway
from pdfrag.core.chunk.chunker import Chunker
from pdfrag.core.embed.embedder import Embedder
from pdfrag.core.exceptions import (AuthorizationError, NotFoundError, PdfRagError,
                                    UpstreamError, ValidationError)
from pdfrag.core.generate.llm_client import LLMClient
from pdfrag.core.pipeline.ingestion import IngestionPipeline
from pdfrag.core.pipeline.metadata_writer import HttpMetadataWriter, LocalMetadataWriter, MetadataService
from pdfrag.storage.factory import build_record_store, build_vector_store

logger = logging.getLogger(__name__)

def build_components(settings: AppSettings) -> Dict[str, Any]:
    """Builds every long-lived component once. Keys become app.state attributes."""
    records = build_record_store(settings)
    vector_store = build_vector_store(settings)

    # Heavy model load happens once here, not per request
    embedder = Embedder(settings.embedding)
    llm_client = LLMClient(settings.llm, api_key=settings.openrouter_api_key)
    chunker = Chunker(settings.chunking, embedding_model=settings.embedding.model_name)

    metadata_service = MetadataService(records, settings.service_api_key)
    if settings.ingestion.metadata_sink == "http":
        metadata_writer = HttpMetadataWriter(settings.ingestion.metadata_url, settings.service_api_key)
    else:
        metadata_writer = LocalMetadataWriter(metadata_service, settings.service_api_key)

    ingestion_pipeline = IngestionPipeline(
        vector_store=vector_store,
        embedder=embedder,
        llm=llm_client,
        metadata_writer=metadata_writer,
        chunker=chunker,
        config=settings.ingestion
    )

    usage_meter = UsageMeter(records)
    billing_gate = BillingGate(
        records=records,
        provider=StripeBillingProvider(settings.billing, api_key=settings.stripe_api_key),
        meter=usage_meter,
        config=settings.billing
    )
    chat_gateway = ChatGateway(
        llm=llm_client,
        embedder=embedder,
        vector_store=vector_store,
        records=records,
        meter=usage_meter,
        gate=billing_gate,
        config=settings.chat
    )

    return {
        "records": records,
        "vector_store": vector_store,
        "ingestion_pipeline": ingestion_pipeline,
        "metadata_service": metadata_service,
        "usage_meter": usage_meter,
        "billing_gate": billing_gate,
        "chat_gateway": chat_gateway,
    }

def create_app(settings: Optional[AppSettings] = None, components: Optional[Dict[str, Any]] = None) -> FastAPI:
    """
    `components` replaces build_components (tests pass fakes); it must carry
    the same keys.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # --- Startup ---
        app_settings = settings or load_settings()
        logger.info("Initializing pdfrag storage, billing and pipelines...")
        app.state.settings = app_settings
        for name, component in (components or build_components(app_settings)).items():
            setattr(app.state, name, component)

        # In-memory job store for ingestion status tracking
        app.state.jobs_db = {}
        logger.info("Initialization complete. All systems ready.")

        yield

        # --- Shutdown ---
        logger.info("Shutting down pdfrag...")

    app = FastAPI(
        title="pdfrag API",
        description="PDF ingestion, retrieval and metered streaming chat",
        version="1.0.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PdfRagError)
    async def pdfrag_error_handler(request: Request, exc: PdfRagError):
        if isinstance(exc, AuthorizationError):
            status_code = exc.status_code
        elif isinstance(exc, NotFoundError):
            status_code = 404
        elif isinstance(exc, ValidationError):
            status_code = 422
        elif isinstance(exc, UpstreamError):
            status_code = 502
            logger.error(f"Upstream failure on {request.url.path}: {exc}")
        else:
            status_code = 500
            logger.error(f"Unhandled service error on {request.url.path}: {exc}")
        return JSONResponse(status_code=status_code, content={"error": exc.message})

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "ok"}

    @app.get("/", tags=["System"])
    def root():
        return {"message": "pdfrag API is running."}

    from pdfrag.api.routes import chat, documents, ingest, query

    app.include_router(ingest.router, prefix="/api", tags=["Ingestion"])
    app.include_router(documents.router, prefix="/api", tags=["Documents"])
    app.include_router(query.router, prefix="/api", tags=["Index"])
    app.include_router(chat.router, prefix="/api", tags=["Chat"])

    return app

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
app = create_app()
