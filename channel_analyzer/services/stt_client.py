"""
Deepgram speech-to-text client used by the media worker.
"""

from pathlib import Path
from typing import Any, Dict, Optional

import httpx

from channel_analyzer.utils.logger import get_logger

logger = get_logger(__name__)


class TranscriptionBackendError(Exception):
    """Raised when the speech-to-text backend cannot be reached or returns an error."""
    pass


class DeepgramClient:
    """
    Pre-recorded transcription against the Deepgram listen endpoint.

    Audio is streamed from disk; the API key is only ever sent in the
    Authorization header and never included in errors or logs.
    """

    def __init__(self, api_key: str, base_url: str = "https://api.deepgram.com/v1", model: str = "general",
                 http_client: Optional[httpx.Client] = None, timeout: float = 30 * 60) -> None:
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._client = http_client or httpx.Client(timeout=timeout)

    def transcribe(self, audio_path: Path, language: str = "en") -> Dict[str, Any]:
        """
        Send a WAV file to the backend and normalize its response.

        Args:
            audio_path: Path of the mono 16 kHz WAV file
            language: Language hint

        Returns:
            Dict with text, language and duration_seconds

        Raises:
            TranscriptionBackendError: If the request fails or the response is unusable
        """
        size_mb = audio_path.stat().st_size / (1024 * 1024)
        logger.info("Sending audio to Deepgram", size_mb=round(size_mb, 2), model=self.model, language=language)

        try:
            with open(audio_path, "rb") as audio:
                response = self._client.post(
                    f"{self.base_url}/listen",
                    params={"model": self.model, "language": language},
                    headers={
                        "Authorization": f"Token {self._api_key}",
                        "Content-Type": "audio/wav",
                    },
                    content=audio,
                )
        except httpx.RequestError as e:
            raise TranscriptionBackendError(f"Failed to connect to Deepgram API: {e.__class__.__name__}") from e

        if response.status_code != 200:
            error_body = response.text[:300] if response.text else "No response body"
            raise TranscriptionBackendError(f"Deepgram returned {response.status_code}: {error_body}")

        try:
            data = response.json()
        except ValueError as e:
            raise TranscriptionBackendError("Failed to parse Deepgram response JSON") from e

        return self.normalize_response(data, language)

    @staticmethod
    def normalize_response(data: Dict[str, Any], language_hint: str) -> Dict[str, Any]:
        """
        Extract transcript text, detected language and duration from a Deepgram response.

        Missing pieces fall back to empty text, the language hint, and zero seconds.
        """
        try:
            alternative = data.get("results", {}).get("channels", [{}])[0].get("alternatives", [{}])[0]
        except (IndexError, AttributeError, TypeError):
            alternative = {}

        languages = alternative.get("languages") or []
        duration = (data.get("metadata") or {}).get("duration") or 0

        return {
            "text": (alternative.get("transcript") or "").strip(),
            "language": languages[0] if languages else language_hint,
            "duration_seconds": int(round(float(duration))),
        }

    def close(self) -> None:
        self._client.close()
