import hashlib
import re
from typing import List, Tuple, Optional
import tiktoken
from pdfrag.config.settings import ChunkingConfig
from pdfrag.models.chunk import Chunk, ChunkMetadata

PAGE_HEADER = re.compile(r"^## (Page\s*(\d+))\s*$", re.MULTILINE)


def make_chunk_id(doc_id: str, ordinal: int) -> str:
    """Deterministic chunk identity: re-ingesting a document overwrites the same points."""
    return hashlib.sha256(f"{doc_id}:{ordinal}".encode()).hexdigest()


class Chunker:
    """
    Implements page-aware overlapping chunking over '## Page N' markdown.
    - Each page marker opens a section ("Page N"); chunks never cross sections.
    - Sections are split into token windows of chunk_size with chunk_overlap.
    - A trailing window shorter than min_chunk_tokens is folded into its predecessor.
    """

    def __init__(self, config: ChunkingConfig, embedding_model: Optional[str] = None):
        self.config = config
        self.embedding_model = embedding_model
        self.encoder = tiktoken.get_encoding(config.encoding)

    def chunk_document(self, doc_id: str, file_name: str, markdown: str,
                       num_pages: Optional[int] = None) -> List[Chunk]:
        chunks = []
        ordinal = 0

        for section, page_number, text in self._split_sections(markdown):
            tokens = self.encoder.encode(text)
            for start, end in self._get_token_ranges(len(tokens), self.config.chunk_size, self.config.chunk_overlap):
                c_text = self.encoder.decode(tokens[start:end]).strip()
                if not c_text:
                    continue
                metadata = ChunkMetadata(
                    chunk_id=make_chunk_id(doc_id, ordinal),
                    doc_id=doc_id,
                    file_name=file_name,
                    ordinal=ordinal,
                    page_number=page_number,
                    section=section,
                    token_count=end - start,
                    num_pages=num_pages,
                    embedding_model=self.embedding_model
                )
                chunks.append(Chunk(text=c_text, metadata=metadata))
                ordinal += 1

        return chunks

    def _split_sections(self, markdown: str) -> List[Tuple[Optional[str], Optional[int], str]]:
        """Returns (section label, page number, body) triples in document order."""
        sections = []
        matches = list(PAGE_HEADER.finditer(markdown))

        preamble = markdown[:matches[0].start()] if matches else markdown
        if preamble.strip():
            sections.append((None, None, preamble.strip()))

        for i, m in enumerate(matches):
            body_end = matches[i + 1].start() if i + 1 < len(matches) else len(markdown)
            body = markdown[m.end():body_end].strip()
            if body:
                sections.append((m.group(1), int(m.group(2)), body))
        return sections

    def _get_token_ranges(self, total_tokens: int, size: int, overlap: int) -> List[Tuple[int, int]]:
        """Helper to compute token index ranges (start, end) without string matching."""
        if overlap >= size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")

        ranges = []
        s = 0
        while s < total_tokens:
            e = min(s + size, total_tokens)
            if ranges and e == total_tokens and e - ranges[-1][1] < self.config.min_chunk_tokens:
                # Fold a tail with too few new tokens into the previous window
                prev_s, _ = ranges.pop()
                ranges.append((prev_s, e))
                break
            ranges.append((s, e))
            if e >= total_tokens:
                break
            s = e - overlap
        return ranges
