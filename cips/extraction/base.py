"""Pluggable text-extraction capabilities."""

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class ExtractionResult:
    text: str
    model: str


class OcrEngine(Protocol):
    async def recognize(self, file_path: str, languages: list[str]) -> ExtractionResult: ...


class Transcriber(Protocol):
    async def transcribe(
        self, file_path: str, api_key: str, model: str, language: str | None = None
    ) -> ExtractionResult: ...


class DocumentReader(Protocol):
    suffixes: tuple[str, ...]

    async def read_text(self, file_path: str) -> str: ...


@dataclass
class Capabilities:
    ocr: OcrEngine
    asr: Transcriber
    documents: DocumentReader
