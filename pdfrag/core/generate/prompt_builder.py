from pdfrag.models.chat import Author, ChatTurn
from pdfrag.models.chunk import IndexHit

SYSTEM_PROMPT = """You are a PDF question-answering assistant.
Rules: answer only from context, cite page numbers,
say 'not found in document' if absent, do not speculate.
Answer in the language the user writes in."""

ROLE_BY_AUTHOR = {Author.user: "user", Author.agent: "assistant", Author.system: "system"}

class PromptBuilder:
    @staticmethod
    def build_chat_messages(question: str, hits: list[IndexHit], history: list[ChatTurn]) -> list[dict]:
        """
        Compiles the system prompt, retrieved chunks and recent thread turns for the chat model.
        """
        context_parts = []
        for hit in hits:
            meta = hit.metadata
            source = meta.get("file_name", "unknown")
            page = meta.get("page_number")
            header = f"[SOURCE: {source} | Page {page}]" if page else f"[SOURCE: {source}]"
            context_parts.append(f"{header}\n{meta.get('text', '')}")

        context_str = "\n\n".join(context_parts) if context_parts else "(no indexed content found)"

        messages = [{"role": "system", "content": SYSTEM_PROMPT}]
        for turn in history:
            messages.append({"role": ROLE_BY_AUTHOR[turn.author], "content": turn.text})
        messages.append({
            "role": "user",
            "content": f"Context:\n---\n{context_str}\n---\nQuestion: {question}"
        })
        return messages

    @staticmethod
    def build_chunk_enrichment_prompt(text: str) -> list[dict]:
        system_msg = ("You label document excerpts. Reply with a JSON object "
                      '{"summary": "<one sentence>", "keywords": ["<keyword>", ...]} and nothing else.')
        return [
            {"role": "system", "content": system_msg},
            {"role": "user", "content": f"Excerpt:\n---\n{text}\n---"}
        ]

    @staticmethod
    def build_document_summary_prompt(file_name: str, context: str, min_keywords: int) -> list[dict]:
        """
        Builds messages for the document-level summary and keyword list.
        """
        system_msg = ("You are a professional analyst. Summarize the document based ONLY on the context. "
                      f'Reply with a JSON object {{"summary": "<3-5 sentences>", "keywords": [<at least {min_keywords} keywords>]}} '
                      "and nothing else.")
        user_prompt = f"Document: {file_name}\nContext:\n---\n{context}\n---\nProvide the summary now."
        return [
            {"role": "system", "content": system_msg},
            {"role": "user", "content": user_prompt}
        ]
