import json
import logging
import re
from typing import List, Optional, Tuple
from pdfrag.core.generate.llm_client import LLMClient
from pdfrag.core.generate.prompt_builder import PromptBuilder
from pdfrag.models.chunk import Chunk

logger = logging.getLogger(__name__)

FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


def parse_summary_json(output: str) -> Tuple[Optional[str], List[str]]:
    """
    Reads {"summary": ..., "keywords": [...]} from model output.
    Tolerates code fences; returns (None, []) when nothing usable is present.
    """
    text = FENCE.sub("", output.strip())
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        # Fall back to the outermost {...} span
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            return None, []
        try:
            data = json.loads(text[start:end + 1])
        except json.JSONDecodeError:
            return None, []

    if not isinstance(data, dict):
        return None, []

    summary = data.get("summary")
    summary = summary.strip() if isinstance(summary, str) and summary.strip() else None

    keywords = data.get("keywords") or []
    if isinstance(keywords, str):
        keywords = [k for k in keywords.split(",")]
    cleaned = []
    for k in keywords:
        if isinstance(k, str) and k.strip() and k.strip() not in cleaned:
            cleaned.append(k.strip())
    return summary, cleaned


class ChunkEnricher:
    """Attaches an LLM-derived summary and keyword list to each chunk."""

    def __init__(self, llm: LLMClient):
        self.llm = llm

    def enrich(self, chunk: Chunk) -> Chunk:
        output = self.llm.generate(PromptBuilder.build_chunk_enrichment_prompt(chunk.text), json_mode=True)
        summary, keywords = parse_summary_json(output)
        if summary is None and not keywords:
            logger.warning(f"Chunk {chunk.metadata.ordinal} enrichment returned no usable JSON")
            return chunk
        chunk.metadata.summary = summary
        chunk.metadata.keywords = keywords or None
        return chunk
