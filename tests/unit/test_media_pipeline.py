"""
Tests for the media extraction pipeline and the Deepgram client.
"""

import subprocess
from pathlib import Path
from typing import List
from unittest.mock import Mock, patch

import httpx
import pytest

from channel_analyzer.schemas.dispatch import TranscribeRequest
from channel_analyzer.services import media_pipeline
from channel_analyzer.services.media_pipeline import (
    BackendError,
    DownloadError,
    MediaPipeline,
    TranscodeError,
)
from channel_analyzer.services.stt_client import DeepgramClient, TranscriptionBackendError

DEEPGRAM_RESPONSE = {
    "metadata": {"duration": 932.6},
    "results": {"channels": [{"alternatives": [{"transcript": " hello world ", "languages": ["en"]}]}]},
}


def completed(args: List[str], returncode: int = 0, stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=args, returncode=returncode, stdout="", stderr=stderr)


def fake_run_factory(workspaces: List[Path], download_rc: int = 0, transcode_rc: int = 0):
    """Simulate yt-dlp and ffmpeg by writing the files they would produce."""

    def fake_run(args: List[str], timeout: int) -> subprocess.CompletedProcess:
        if args[0] == "yt-dlp":
            template = Path(args[args.index("-o") + 1])
            workspaces.append(template.parent)
            if download_rc == 0:
                (template.parent / "source.webm").write_bytes(b"audio")
            return completed(args, download_rc, "ERROR: video unavailable")
        output = Path(args[-1])
        if transcode_rc == 0:
            output.write_bytes(b"RIFF")
        return completed(args, transcode_rc, "Invalid data found")

    return fake_run


@pytest.fixture
def stt_client() -> Mock:
    client = Mock()
    client.transcribe.return_value = {"text": "hello world", "language": "en", "duration_seconds": 933}
    return client


@pytest.fixture
def request_body() -> TranscribeRequest:
    return TranscribeRequest(resource_url="https://www.youtube.com/watch?v=A")


class TestMediaPipeline:
    """Test the download -> transcode -> transcribe pipeline."""

    def test_process_success_cleans_up(self, tmp_path: Path, stt_client: Mock, request_body: TranscribeRequest) -> None:
        workspaces: List[Path] = []
        pipeline = MediaPipeline(stt_client, work_root=str(tmp_path))

        with patch.object(media_pipeline, "_run", side_effect=fake_run_factory(workspaces)):
            result = pipeline.process(request_body)

        assert result.text == "hello world"
        assert result.duration_seconds == 933
        wav_path, language = stt_client.transcribe.call_args[0]
        assert wav_path.name == "audio.wav"
        assert language == "en"
        assert not workspaces[0].exists()

    def test_download_failure(self, tmp_path: Path, stt_client: Mock, request_body: TranscribeRequest) -> None:
        workspaces: List[Path] = []
        pipeline = MediaPipeline(stt_client, work_root=str(tmp_path))

        with patch.object(media_pipeline, "_run", side_effect=fake_run_factory(workspaces, download_rc=1)):
            with pytest.raises(DownloadError, match="Audio download failed") as exc_info:
                pipeline.process(request_body)

        assert "video unavailable" in exc_info.value.details
        assert exc_info.value.stage == "download"
        stt_client.transcribe.assert_not_called()
        assert not workspaces[0].exists()

    def test_missing_binary_is_download_failure(self, tmp_path: Path, stt_client: Mock,
                                                 request_body: TranscribeRequest) -> None:
        pipeline = MediaPipeline(stt_client, work_root=str(tmp_path))

        with patch.object(media_pipeline, "_run", side_effect=FileNotFoundError("yt-dlp")):
            with pytest.raises(DownloadError):
                pipeline.process(request_body)

        assert list(tmp_path.iterdir()) == []

    def test_transcode_failure(self, tmp_path: Path, stt_client: Mock, request_body: TranscribeRequest) -> None:
        workspaces: List[Path] = []
        pipeline = MediaPipeline(stt_client, work_root=str(tmp_path))

        with patch.object(media_pipeline, "_run", side_effect=fake_run_factory(workspaces, transcode_rc=1)):
            with pytest.raises(TranscodeError, match="Audio conversion failed"):
                pipeline.process(request_body)

        stt_client.transcribe.assert_not_called()
        assert not workspaces[0].exists()

    def test_backend_failure(self, tmp_path: Path, stt_client: Mock, request_body: TranscribeRequest) -> None:
        workspaces: List[Path] = []
        stt_client.transcribe.side_effect = TranscriptionBackendError("Deepgram returned 500: oops")
        pipeline = MediaPipeline(stt_client, work_root=str(tmp_path))

        with patch.object(media_pipeline, "_run", side_effect=fake_run_factory(workspaces)):
            with pytest.raises(BackendError) as exc_info:
                pipeline.process(request_body)

        assert exc_info.value.details == "Deepgram returned 500: oops"
        assert not workspaces[0].exists()

    def test_transcode_arguments(self, tmp_path: Path, stt_client: Mock) -> None:
        calls = []

        def fake_run(args: List[str], timeout: int) -> subprocess.CompletedProcess:
            calls.append(args)
            Path(args[-1]).write_bytes(b"RIFF")
            return completed(args)

        source = tmp_path / "source.m4a"
        source.write_bytes(b"audio")
        with patch.object(media_pipeline, "_run", side_effect=fake_run):
            MediaPipeline(stt_client).transcode(source, tmp_path)

        args = calls[0]
        assert args[0] == "ffmpeg"
        assert args[args.index("-ac") + 1] == "1"
        assert args[args.index("-ar") + 1] == "16000"


class TestDeepgramClient:
    """Test the DeepgramClient class."""

    def test_transcribe_sends_token_and_normalizes(self, tmp_path: Path) -> None:
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["auth"] = request.headers["Authorization"]
            captured["params"] = dict(request.url.params)
            return httpx.Response(200, json=DEEPGRAM_RESPONSE)

        wav = tmp_path / "audio.wav"
        wav.write_bytes(b"RIFF")
        client = DeepgramClient("dg-key", http_client=httpx.Client(transport=httpx.MockTransport(handler)))

        result = client.transcribe(wav, "en")

        assert result == {"text": "hello world", "language": "en", "duration_seconds": 933}
        assert captured["auth"] == "Token dg-key"
        assert captured["params"]["language"] == "en"

    def test_error_status_raises_without_key(self, tmp_path: Path) -> None:
        wav = tmp_path / "audio.wav"
        wav.write_bytes(b"RIFF")
        client = DeepgramClient(
            "dg-key",
            http_client=httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(402, text="Payment required"))),
        )

        with pytest.raises(TranscriptionBackendError, match="402") as exc_info:
            client.transcribe(wav, "en")

        assert "dg-key" not in str(exc_info.value)

    def test_normalize_falls_back_to_hint(self) -> None:
        result = DeepgramClient.normalize_response({}, "fr")

        assert result == {"text": "", "language": "fr", "duration_seconds": 0}
