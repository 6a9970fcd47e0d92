"""Tesseract OCR."""

import asyncio

from cips.extraction.base import ExtractionResult


class TesseractOcr:
    """OCR through pytesseract; the blocking call runs in a worker thread."""

    default_language = "eng"

    async def recognize(self, file_path: str, languages: list[str]) -> ExtractionResult:
        lang = "+".join(languages) if languages else self.default_language
        text = await asyncio.to_thread(self._recognize_sync, file_path, lang)
        return ExtractionResult(text=(text or "").strip(), model=f"tesseract:{lang}")

    @staticmethod
    def _recognize_sync(file_path: str, lang: str) -> str:
        # Optional dependency (the "ocr" extra).
        import pytesseract
        from PIL import Image

        with Image.open(file_path) as image:
            return pytesseract.image_to_string(image, lang=lang)
