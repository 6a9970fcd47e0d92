"""Plain text of .docx documents."""

import asyncio

from docx import Document


class DocxReader:
    suffixes = (".docx",)

    async def read_text(self, file_path: str) -> str:
        return await asyncio.to_thread(self._read_sync, file_path)

    @staticmethod
    def _read_sync(file_path: str) -> str:
        document = Document(file_path)
        paragraphs = [(paragraph.text or "").strip() for paragraph in document.paragraphs]
        return "\n".join(text for text in paragraphs if text)
