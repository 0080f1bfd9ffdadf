import fitz
from typing import List, Optional

def build_sample_pdf(pages: List[str], header: Optional[str] = None) -> bytes:
    """One page per entry; `header` is repeated at the top of every page."""
    doc = fitz.open()
    for body in pages:
        page = doc.new_page()
        if header:
            page.insert_text((50, 40), header, fontsize=9)
        y = 120
        for line in body.split("\n"):
            page.insert_text((50, y), line, fontsize=12)
            y += 20
    data = doc.tobytes()
    doc.close()
    return data

def create_sample_pdf(path: str):
    data = build_sample_pdf([
        "Introduction to RAG\nThis is a document about Retrieval Augmented Generation.",
        "Section 2: Benefits\nRAG reduces hallucinations by grounding the model in factual data."
    ], header="pdfrag sample")
    with open(path, "wb") as f:
        f.write(data)

if __name__ == "__main__":
    create_sample_pdf("sample.pdf")
    print("Created sample.pdf")
