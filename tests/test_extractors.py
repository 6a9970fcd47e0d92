"""Tests for the concrete extraction capabilities."""

import httpx
import pytest
from docx import Document

from cips.errors import ExtractionError, MissingCredentialError
from cips.extraction.asr import OpenAiTranscriber
from cips.extraction.docx import DocxReader


def write_docx(path, paragraphs: list[str]) -> str:
    document = Document()
    for text in paragraphs:
        document.add_paragraph(text)
    document.save(str(path))
    return str(path)


async def test_docx_reader_joins_paragraphs(tmp_path):
    path = write_docx(tmp_path / "plan.docx", ["Quarterly & plan", "Item\tOwner"])

    assert await DocxReader().read_text(path) == "Quarterly & plan\nItem\tOwner"


async def test_docx_reader_drops_blank_paragraphs(tmp_path):
    path = write_docx(tmp_path / "notes.docx", ["  first  ", "", "   ", "second"])

    assert await DocxReader().read_text(path) == "first\nsecond"


async def test_empty_docx_is_empty_text(tmp_path):
    path = write_docx(tmp_path / "empty.docx", [])

    assert await DocxReader().read_text(path) == ""


def transcriber(handler) -> OpenAiTranscriber:
    return OpenAiTranscriber(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.fixture
def audio(tmp_path):
    path = tmp_path / "voice.opus"
    path.write_bytes(b"OggS")
    return str(path)


async def test_transcription_returns_text(audio):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert b"gpt-4o-transcribe" in request.content
        assert b"OggS" in request.content
        return httpx.Response(200, json={"text": "  hello there "})

    asr = transcriber(handler)
    result = await asr.transcribe(audio, "sk-test", "gpt-4o-transcribe")

    assert result.text == "hello there"
    assert result.model == "gpt-4o-transcribe"
    await asr.aclose()


async def test_transcription_without_key_is_not_attempted(audio):
    calls = []
    asr = transcriber(lambda request: calls.append(request) or httpx.Response(200, json={}))

    with pytest.raises(MissingCredentialError):
        await asr.transcribe(audio, "", "gpt-4o-transcribe")
    assert calls == []
    await asr.aclose()


async def test_rejected_key_is_credential_error(audio):
    asr = transcriber(lambda request: httpx.Response(401, json={"error": {"message": "bad key"}}))

    with pytest.raises(MissingCredentialError):
        await asr.transcribe(audio, "sk-bad", "gpt-4o-transcribe")
    await asr.aclose()


async def test_server_error_message_is_surfaced(audio):
    asr = transcriber(lambda request: httpx.Response(400, json={"error": {"message": "unsupported format"}}))

    with pytest.raises(ExtractionError, match="unsupported format"):
        await asr.transcribe(audio, "sk-test", "gpt-4o-transcribe")
    await asr.aclose()
