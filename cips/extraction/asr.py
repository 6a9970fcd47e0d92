"""Speech-to-text through the OpenAI transcription API."""

from pathlib import Path

import aiofiles
import httpx

from cips.errors import ExtractionError, MissingCredentialError
from cips.extraction.base import ExtractionResult

TRANSCRIPTION_URL = "https://api.openai.com/v1/audio/transcriptions"


class OpenAiTranscriber:
    def __init__(self, client: httpx.AsyncClient | None = None, timeout_s: float = 120.0):
        self._client = client
        self._timeout_s = timeout_s

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        self._client = httpx.AsyncClient(timeout=self._timeout_s)
        return self._client

    async def transcribe(
        self, file_path: str, api_key: str, model: str, language: str | None = None
    ) -> ExtractionResult:
        if not api_key:
            raise MissingCredentialError("missing OpenAI API key")
        path = Path(file_path)
        async with aiofiles.open(path, "rb") as fh:
            audio = await fh.read()
        data = {"model": model}
        if language:
            data["language"] = language
        response = await self._get_client().post(
            TRANSCRIPTION_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            data=data,
            files={"file": (path.name, audio)},
        )
        if response.status_code in {401, 403}:
            raise MissingCredentialError("OpenAI transcription auth error: check the API key")
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400:
            message = (body.get("error") or {}).get("message") if isinstance(body, dict) else None
            raise ExtractionError(message or f"OpenAI transcription failed ({response.status_code})")
        text = body.get("text") if isinstance(body, dict) else None
        return ExtractionResult(text=(text or "").strip(), model=model)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
