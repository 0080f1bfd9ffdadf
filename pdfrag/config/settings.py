from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel
import yaml
import os

class ChunkingConfig(BaseModel):
    chunk_size: int = 512
    chunk_overlap: int = 50
    min_chunk_tokens: int = 16
    encoding: str = "cl100k_base"

class EmbeddingConfig(BaseModel):
    model_name: str = "BAAI/bge-large-en-v1.5"
    vector_dim: int = 1024
    query_prefix: str = "Represent this sentence for searching relevant passages: "
    normalise: bool = True

class QdrantConfig(BaseModel):
    mode: str = "local"              # "local" | "memory" | "cloud"
    local_path: str = "./data/qdrant_store"
    cloud_url: str = ""
    collection_name: str = "pdf_chunks"
    hnsw_m: int = 16
    hnsw_ef_construct: int = 100
    hnsw_ef: int = 64

class LLMConfig(BaseModel):
    provider: str = "openrouter"
    base_url: str = "https://openrouter.ai/api/v1"
    model: str = "google/gemini-2.5-flash"
    fallback_model: str = "mistralai/mistral-7b-instruct"
    max_tokens: int = 1024
    temperature: float = 0.1
    request_timeout: float = 60.0
    max_retries: int = 3

class IngestionConfig(BaseModel):
    mode: str = "cache"              # "cache" | "refresh"
    max_workers: int = 4
    fetch_timeout: float = 60.0
    enrich_chunks: bool = True
    summary_context_chunks: int = 12
    min_keywords: int = 5
    metadata_sink: str = "local"     # "local" | "http"
    metadata_url: str = "http://localhost:8000"

class ChatConfig(BaseModel):
    top_k: int = 5
    history_turns: int = 2
    stream_deadline_seconds: float = 120.0

class BillingConfig(BaseModel):
    free_tier_units: int = 100_000
    metered_price_id: str = ""
    stripe_base_url: str = "https://api.stripe.com/v1"
    # Usage records on subscription items were removed in 2025-03-31.basil
    stripe_api_version: str = "2024-06-20"
    checkout_success_url: str = "http://localhost:3000/dashboard?checkout=success"
    checkout_cancel_url: str = "http://localhost:3000/dashboard?checkout=cancel"
    request_timeout: float = 30.0

class StorageConfig(BaseModel):
    backend: str = "memory"          # "memory" | "json"
    json_path: str = "./data/records.json"

class AppSettings(BaseSettings):
    chunking: ChunkingConfig = ChunkingConfig()
    embedding: EmbeddingConfig = EmbeddingConfig()
    qdrant: QdrantConfig = QdrantConfig()
    llm: LLMConfig = LLMConfig()
    ingestion: IngestionConfig = IngestionConfig()
    chat: ChatConfig = ChatConfig()
    billing: BillingConfig = BillingConfig()
    storage: StorageConfig = StorageConfig()
    openrouter_api_key: str = ""
    stripe_api_key: str = ""
    service_api_key: str = ""
    qdrant_api_key: str = ""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

def load_settings(config_path: str = "pdfrag/config/config.yaml") -> AppSettings:
    """Loads settings from config.yaml and applies env overrides."""

    # Try multiple paths for convenience during testing vs running
    paths_to_try = [
        config_path,
        "config.yaml",
        "config/config.yaml",
        os.path.join(os.path.dirname(__file__), "config.yaml")
    ]

    yaml_data = {}
    for path in paths_to_try:
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                yaml_data = yaml.safe_load(f) or {}
            break

    # Sections come from yaml, secrets from env / .env
    return AppSettings(
        chunking=ChunkingConfig(**yaml_data.get("chunking", {})),
        embedding=EmbeddingConfig(**yaml_data.get("embedding", {})),
        qdrant=QdrantConfig(**yaml_data.get("qdrant", {})),
        llm=LLMConfig(**yaml_data.get("llm", {})),
        ingestion=IngestionConfig(**yaml_data.get("ingestion", {})),
        chat=ChatConfig(**yaml_data.get("chat", {})),
        billing=BillingConfig(**yaml_data.get("billing", {})),
        storage=StorageConfig(**yaml_data.get("storage", {}))
    )
