import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Callable, Optional, Tuple
from pdfrag.config.settings import IngestionConfig
from pdfrag.core.chunk.chunker import Chunker
from pdfrag.core.embed.embedder import Embedder
from pdfrag.core.generate.enricher import ChunkEnricher, parse_summary_json
from pdfrag.core.generate.llm_client import LLMClient
from pdfrag.core.generate.prompt_builder import PromptBuilder
from pdfrag.core.parse.pdf_parser import PDFParser
from pdfrag.core.pipeline.fetcher import SourceFetcher
from pdfrag.core.pipeline.metadata_writer import MetadataWriter
from pdfrag.core.pipeline.naming import resolve_file_name
from pdfrag.models.chunk import Chunk
from pdfrag.models.document import ChunkFailure, IngestionOutcome, IngestionRecord, IngestionResult
from pdfrag.storage.base import VectorStore

logger = logging.getLogger(__name__)

ALREADY_INDEXED = "Document is already indexed."

class StageFailure(Exception):
    """Internal: a stage ended the run. Converted to a failed IngestionResult."""

class IngestionPipeline:
    """
    Orchestrates the ingestion process in strict order:
    resolve name -> existence check -> fetch -> chunk/embed/upsert -> summarize -> persist

    `run` never raises: every outcome is an IngestionResult.
    """

    def __init__(self,
                 vector_store: VectorStore,
                 embedder: Embedder,
                 llm: LLMClient,
                 metadata_writer: MetadataWriter,
                 chunker: Chunker,
                 config: IngestionConfig,
                 fetcher: Optional[SourceFetcher] = None,
                 parser: Optional[PDFParser] = None):
        self.vector_store = vector_store
        self.embedder = embedder
        self.llm = llm
        self.metadata_writer = metadata_writer
        self.chunker = chunker
        self.config = config
        self.fetcher = fetcher or SourceFetcher(timeout=config.fetch_timeout)
        self.parser = parser or PDFParser()
        self.enricher = ChunkEnricher(llm)

    def run(self,
            doc_id: str,
            source_url: str,
            progress_callback: Optional[Callable[[int, str], None]] = None,
            mode: Optional[str] = None) -> IngestionResult:
        """
        Runs the full ingestion pipeline for a single document.
        `mode` overrides the configured policy: "cache" short-circuits on an
        already indexed document, "refresh" always re-ingests.
        """
        mode = mode or self.config.mode

        def update_progress(progress: int, message: str):
            if progress_callback:
                progress_callback(progress, message)
            logger.info(f"[{doc_id}] {progress}%: {message}")

        file_name = ""
        try:
            # 1. Canonical name
            file_name = resolve_file_name(source_url)
            update_progress(5, f"Resolved file name {file_name}")

            # 2. Existence check
            exists = self._stage("existence check", self.vector_store.has_document, doc_id)
            if exists and mode == "cache":
                update_progress(100, "Already indexed, skipping ingestion")
                return IngestionResult(doc_id=doc_id, file_name=file_name, summary=ALREADY_INDEXED,
                                       keywords=[], status=IngestionOutcome.cached)
            update_progress(10, "Re-ingesting indexed document" if exists else "Document not indexed yet")

            # 3. Fetch
            pdf_bytes = self._stage("fetch", self.fetcher.fetch, source_url)
            update_progress(20, f"Downloaded {len(pdf_bytes)} bytes")

            # 4. Extract, chunk, embed, upsert
            pages = self._stage("text extraction", self.parser.extract_pages, pdf_bytes)
            markdown = PDFParser.to_markdown(pages)
            chunks = self.chunker.chunk_document(doc_id, file_name, markdown, num_pages=len(pages))
            if not chunks:
                raise StageFailure(f"No extractable text in {file_name}")
            update_progress(30, f"Extracted {len(pages)} pages into {len(chunks)} chunks")

            indexed, failures = self._index_chunks(doc_id, chunks)
            if indexed == 0:
                raise StageFailure(f"All {len(chunks)} chunks failed to index")
            if failures:
                logger.warning(f"[{doc_id}] {len(failures)} of {len(chunks)} chunks failed to index")
            update_progress(80, f"Indexed {indexed}/{len(chunks)} chunks")

            # 5. Summarize
            summary, keywords = self._summarize(doc_id, file_name)
            update_progress(90, f"Summary ready with {len(keywords)} keywords")

        except StageFailure as e:
            logger.error(f"[{doc_id}] Ingestion failed: {e}")
            if progress_callback:
                progress_callback(-1, str(e)) # Use -1 to indicate failure
            return IngestionResult(doc_id=doc_id, file_name=file_name, summary=str(e),
                                   keywords=[], status=IngestionOutcome.failed)
        except Exception as e:
            logger.exception(f"[{doc_id}] Ingestion failed unexpectedly")
            if progress_callback:
                progress_callback(-1, str(e))
            return IngestionResult(doc_id=doc_id, file_name=file_name, summary=f"Ingestion failed: {e}",
                                   keywords=[], status=IngestionOutcome.failed)

        result = IngestionResult(
            doc_id=doc_id,
            file_name=file_name,
            summary=summary,
            keywords=keywords,
            status=IngestionOutcome.completed,
            page_count=len(pages),
            chunks_indexed=indexed,
            chunk_failures=failures
        )

        # 6. Persist
        record = IngestionRecord(
            doc_id=doc_id,
            summary=summary,
            keywords=keywords,
            embedding=self._embed_summary(doc_id, summary),
            last_updated_at=int(time.time() * 1000)
        )
        try:
            self.metadata_writer.write(record)
            result.persisted = True
            update_progress(100, "Ingestion completed successfully")
        except Exception:
            # Expensive stages are not re-run; the caller sees persisted=False
            logger.exception(f"[{doc_id}] Failed to persist ingestion record")
            update_progress(100, "Ingestion completed, metadata not persisted")

        return result

    def _stage(self, name: str, fn, *args):
        try:
            return fn(*args)
        except Exception as e:
            raise StageFailure(f"{name.capitalize()} failed: {e}") from e

    def _index_one(self, chunk: Chunk) -> None:
        if self.config.enrich_chunks:
            try:
                self.enricher.enrich(chunk)
            except Exception as e:
                # Metadata is optional; the chunk is still indexed
                logger.warning(f"Chunk {chunk.metadata.ordinal} enrichment failed: {e}")
        chunk.embedding = self.embedder.embed_text(chunk.text)
        self.vector_store.upsert([chunk])

    def _index_chunks(self, doc_id: str, chunks: List[Chunk]) -> Tuple[int, List[ChunkFailure]]:
        """Best-effort fan-out: a failing chunk is recorded and the rest continue."""
        failures = []

        def record_failure(chunk: Chunk, error: Exception):
            logger.warning(f"[{doc_id}] chunk {chunk.metadata.ordinal} failed: {error}")
            failures.append(ChunkFailure(ordinal=chunk.metadata.ordinal,
                                         chunk_id=chunk.metadata.chunk_id,
                                         error=str(error)))

        if self.config.max_workers <= 1:
            for chunk in chunks:
                try:
                    self._index_one(chunk)
                except Exception as e:
                    record_failure(chunk, e)
        else:
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
                futures = {pool.submit(self._index_one, chunk): chunk for chunk in chunks}
                for future in as_completed(futures):
                    error = future.exception()
                    if error is not None:
                        record_failure(futures[future], error)

        failures.sort(key=lambda f: f.ordinal)
        return len(chunks) - len(failures), failures

    def _summarize(self, doc_id: str, file_name: str) -> Tuple[str, List[str]]:
        hits = self._stage("summary context lookup", self.vector_store.scroll_document,
                           doc_id, self.config.summary_context_chunks)
        context = "\n\n".join(h.metadata.get("text", "") for h in hits)
        if not context.strip():
            raise StageFailure(f"Summary failed: no indexed content for {file_name}")

        messages = PromptBuilder.build_document_summary_prompt(file_name, context, self.config.min_keywords)
        output = self._stage("summary generation", self.llm.generate, messages, True)
        summary, keywords = parse_summary_json(output)
        if summary is None and not keywords:
            # Plain prose instead of JSON still counts as a summary
            summary = output.strip()
        if not summary:
            raise StageFailure("Summary generation failed: empty model output")
        if len(keywords) < self.config.min_keywords:
            logger.warning(f"[{doc_id}] only {len(keywords)} keywords generated (wanted {self.config.min_keywords})")
        return summary, keywords

    def _embed_summary(self, doc_id: str, summary: str) -> Optional[List[float]]:
        try:
            return self.embedder.embed_text(summary)
        except Exception as e:
            logger.warning(f"[{doc_id}] summary embedding failed: {e}")
            return None
