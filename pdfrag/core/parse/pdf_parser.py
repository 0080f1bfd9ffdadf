import fitz  # PyMuPDF
from typing import List, Dict, Any
from collections import Counter

class PDFParser:
    """
    PDF text extractor (PyMuPDF).
    Pulls the text blocks of every page, drops running headers/footers that repeat
    at the same position across pages, and returns one text string per page.
    """

    def __init__(self, header_footer_threshold: int = 3):
        self.header_footer_threshold = header_footer_threshold

    def extract_pages(self, pdf_bytes: bytes) -> List[str]:
        """
        Main entry point. Raises ValueError if the bytes are not a readable PDF.
        """
        try:
            doc = fitz.open(stream=pdf_bytes, filetype="pdf")
        except Exception as e:
            raise ValueError(f"Not a readable PDF: {e}") from e

        try:
            blocks = self._extract_raw_blocks(doc)
            page_count = doc.page_count
        finally:
            doc.close()

        suppress = self._identify_repetitive_blocks(blocks)

        pages: List[List[str]] = [[] for _ in range(page_count)]
        for b in blocks:
            if (round(b["y0"], 0), b["text"]) in suppress:
                continue
            pages[b["page_number"] - 1].append(b["text"])

        return ["\n".join(lines) for lines in pages]

    def _extract_raw_blocks(self, doc) -> List[Dict[str, Any]]:
        blocks = []
        for page_num, page in enumerate(doc):
            page_dict = page.get_text("dict")
            for b in page_dict["blocks"]:
                if b["type"] != 0:  # Text blocks only
                    continue
                lines = []
                for line in b["lines"]:
                    lines.append("".join(span["text"] for span in line["spans"]))
                text = "\n".join(l for l in lines if l.strip()).strip()
                if text:
                    blocks.append({
                        "text": text,
                        "page_number": page_num + 1,
                        "y0": b["bbox"][1],
                    })
        return blocks

    def _identify_repetitive_blocks(self, blocks: List[Dict[str, Any]]) -> set:
        """
        Detects text that appears at the same Y-position on multiple pages.
        Used to filter out headers and footers.
        """
        pos_text_counts = Counter((round(b["y0"], 0), b["text"]) for b in blocks)
        return {pos for pos, count in pos_text_counts.items()
                if count >= self.header_footer_threshold}

    @staticmethod
    def to_markdown(pages: List[str]) -> str:
        """Concatenates page texts with '## Page N' markers."""
        return "".join(f"\n\n## Page {i}\n\n{text}" for i, text in enumerate(pages, start=1))
