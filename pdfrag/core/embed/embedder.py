import logging
from typing import List, Optional
from sentence_transformers import SentenceTransformer
from pdfrag.config.settings import EmbeddingConfig

logger = logging.getLogger(__name__)

class Embedder:
    """
    Handles embedding generation for chunk texts, summaries and queries.
    - The model handle is built once by the application and injected here.
    - Vectors are L2-normalised when configured.
    """

    def __init__(self, config: EmbeddingConfig, model: Optional[SentenceTransformer] = None):
        self.config = config
        if model is None:
            logger.info(f"Loading embedding model: {self.config.model_name}...")
            model = SentenceTransformer(self.config.model_name, device="cpu")
        self.model = model

    def embed_text(self, text: str) -> List[float]:
        embedding = self.model.encode(
            text,
            normalize_embeddings=self.config.normalise
        )
        return embedding.tolist()

    def embed_query(self, query: str) -> List[float]:
        """
        Generates an embedding for a single query string.
        Applies the query prefix required by BGE models.
        """
        return self.embed_text(f"{self.config.query_prefix}{query}")
