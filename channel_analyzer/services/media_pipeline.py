"""
Media extraction pipeline run by the media worker.
Downloads the best audio for a resource, transcodes it to mono 16 kHz WAV,
and sends it to the speech-to-text backend.
"""

import shutil
import subprocess
import tempfile
import time
from pathlib import Path
from typing import List, Optional

from channel_analyzer.schemas.dispatch import TranscribeRequest, TranscribeResponse
from channel_analyzer.services.stt_client import DeepgramClient, TranscriptionBackendError
from channel_analyzer.utils.logger import get_logger

logger = get_logger(__name__)

DOWNLOAD_TIMEOUT_SECONDS = 20 * 60
TRANSCODE_TIMEOUT_SECONDS = 10 * 60
TARGET_SAMPLE_RATE = 16000
TARGET_CHANNELS = 1


class ExtractionStageError(Exception):
    """Raised when one stage of the extraction pipeline fails."""

    stage = "extraction"

    def __init__(self, message: str, details: Optional[str] = None) -> None:
        super().__init__(message)
        self.details = details


class DownloadError(ExtractionStageError):
    """Raised when the audio download fails."""
    stage = "download"


class TranscodeError(ExtractionStageError):
    """Raised when audio conversion fails."""
    stage = "transcode"


class BackendError(ExtractionStageError):
    """Raised when the speech-to-text backend fails."""
    stage = "backend"


def _run(args: List[str], timeout: int) -> subprocess.CompletedProcess:
    return subprocess.run(args, capture_output=True, text=True, timeout=timeout, check=False)


class MediaPipeline:
    """
    Download -> transcode -> transcribe, inside a private temporary directory.

    The directory and every file in it are removed on every exit path, so no
    audio bytes outlive a request.
    """

    def __init__(self, stt_client: DeepgramClient, work_root: Optional[str] = None) -> None:
        """
        Initialize the pipeline.

        Args:
            stt_client: Speech-to-text backend client
            work_root: Parent directory for per-request temp dirs (system default if None)
        """
        self.stt_client = stt_client
        self.work_root = work_root

    def process(self, request: TranscribeRequest) -> TranscribeResponse:
        """
        Produce a transcript for one resource.

        Raises:
            DownloadError, TranscodeError, BackendError: Stage-specific failures
        """
        start_time = time.time()
        workspace = Path(tempfile.mkdtemp(prefix="media-", dir=self.work_root))

        try:
            source = self.download(request.resource_url, workspace)
            wav = self.transcode(source, workspace)
            result = self.transcribe(wav, request.language_hint)
        finally:
            self.cleanup(workspace)

        logger.info("Transcription complete",
                    duration_seconds=result.duration_seconds,
                    characters=len(result.text),
                    wall_clock_seconds=round(time.time() - start_time, 2))
        return result

    def download(self, resource_url: str, workspace: Path) -> Path:
        """Fetch the best available audio stream with yt-dlp."""
        logger.info("Downloading audio", resource_url=resource_url)

        args = [
            "yt-dlp",
            "--no-playlist",
            "-f", "bestaudio/best",
            "-o", str(workspace / "source.%(ext)s"),
            resource_url,
        ]

        try:
            result = _run(args, DOWNLOAD_TIMEOUT_SECONDS)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise DownloadError("Audio download failed", details=str(e)) from e

        if result.returncode != 0:
            raise DownloadError(
                "Audio download failed",
                details=f"yt-dlp exited with code {result.returncode}: {(result.stderr or '')[:300]}",
            )

        downloaded = sorted(workspace.glob("source.*"))
        if not downloaded:
            raise DownloadError("Audio download failed", details="No audio file found after download")

        logger.info("Audio download complete", path=str(downloaded[0]))
        return downloaded[0]

    def transcode(self, source: Path, workspace: Path) -> Path:
        """Convert downloaded audio to mono 16 kHz WAV with ffmpeg."""
        output = workspace / "audio.wav"

        args = [
            "ffmpeg",
            "-y",
            "-i", str(source),
            "-ac", str(TARGET_CHANNELS),
            "-ar", str(TARGET_SAMPLE_RATE),
            "-f", "wav",
            str(output),
        ]

        try:
            result = _run(args, TRANSCODE_TIMEOUT_SECONDS)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise TranscodeError("Audio conversion failed", details=str(e)) from e

        if result.returncode != 0 or not output.exists():
            raise TranscodeError(
                "Audio conversion failed",
                details=f"ffmpeg exited with code {result.returncode}: {(result.stderr or '')[-300:]}",
            )

        logger.info("Audio conversion complete", path=str(output))
        return output

    def transcribe(self, wav: Path, language_hint: str) -> TranscribeResponse:
        """Send the WAV file to the backend and normalize the result."""
        try:
            data = self.stt_client.transcribe(wav, language_hint)
        except TranscriptionBackendError as e:
            raise BackendError("Deepgram transcription failed", details=str(e)) from e

        return TranscribeResponse(
            duration_seconds=data["duration_seconds"],
            text=data["text"],
            language=data["language"],
        )

    @staticmethod
    def cleanup(workspace: Path) -> None:
        """Delete the request workspace and everything in it."""
        shutil.rmtree(workspace, ignore_errors=True)
        if workspace.exists():
            logger.error("Failed to delete media workspace", path=str(workspace))
        else:
            logger.info("Cleaned up media workspace", path=str(workspace))
