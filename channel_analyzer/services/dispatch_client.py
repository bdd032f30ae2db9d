"""
Signed dispatch of extraction requests to the media worker.
Handles request signing, bounded retries with exponential backoff, and error classification.
"""

import time
from typing import Callable, Optional

import httpx
from pydantic import ValidationError

from channel_analyzer.schemas.dispatch import TranscribeRequest, TranscribeResponse
from channel_analyzer.utils.logger import get_logger
from channel_analyzer.utils.signing import SIGNATURE_HEADER, canonical_body, sign_body

logger = get_logger(__name__)


class DispatchError(Exception):
    """Base class for dispatch failures."""
    pass


class DispatchRejectedError(DispatchError):
    """Raised when the worker rejects a request as malformed (4xx). Never retried."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class DispatchAuthenticationError(DispatchRejectedError):
    """Raised when the worker rejects the request signature. A configuration bug, never retried."""
    pass


class TransientWorkerError(DispatchError):
    """Raised when the worker keeps failing after every allowed attempt."""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class DispatchClient:
    """
    Client for the media worker's signed transcription endpoint.

    Each request is serialized once, signed over those exact bytes, and sent
    with the signature in a side-channel header. Network errors, timeouts and
    5xx responses are retried; 4xx responses are surfaced immediately.
    """

    def __init__(
        self,
        base_url: str,
        secret: str,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        timeout: float = 30 * 60,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Initialize the dispatch client.

        Args:
            base_url: Media worker base URL
            secret: Pre-shared signing secret
            max_attempts: Total attempts per request, including the first
            base_delay: Backoff before the second attempt, in seconds
            max_delay: Backoff ceiling, in seconds
            timeout: Wall-clock limit for a single attempt, in seconds
            http_client: Optional preconfigured client (tests inject a mock transport)
            sleep: Sleep function used between attempts
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.base_url = base_url.rstrip("/")
        self._secret = secret
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._client = http_client or httpx.Client(timeout=timeout)
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """
        Delay to wait before the given attempt (1-based).

        Returns:
            0 for the first attempt, then base, 2*base, 4*base, ... capped at max_delay
        """
        if attempt <= 1:
            return 0.0
        return min(self.base_delay * (2 ** (attempt - 2)), self.max_delay)

    def transcribe(self, request: TranscribeRequest) -> TranscribeResponse:
        """
        Ask the worker to extract a transcript for one resource.

        Args:
            request: Extraction request

        Returns:
            Normalized transcript from the worker

        Raises:
            DispatchAuthenticationError: Signature rejected (401/403)
            DispatchRejectedError: Request rejected as invalid (other 4xx)
            TransientWorkerError: Every attempt failed transiently
        """
        body = canonical_body(request.model_dump(mode="json"))
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign_body(body, self._secret),
        }
        url = f"{self.base_url}/transcribe"

        logger.info("Dispatching transcription request",
                    resource_url=request.resource_url,
                    language_hint=request.language_hint,
                    mode=request.mode.value)

        last_error = "Unknown error"

        for attempt in range(1, self.max_attempts + 1):
            delay = self.backoff_delay(attempt)
            if delay:
                logger.warning(f"Retry attempt {attempt}/{self.max_attempts} after {delay:.1f}s delay",
                               resource_url=request.resource_url)
                self._sleep(delay)

            start_time = time.time()
            try:
                response = self._client.post(url, content=body, headers=headers, timeout=self.timeout)
            except httpx.TimeoutException:
                last_error = f"Request timed out after {self.timeout:.0f}s"
                logger.error("Dispatch attempt timed out", attempt=attempt, resource_url=request.resource_url)
                continue
            except httpx.RequestError as e:
                last_error = f"Network error: {e.__class__.__name__}"
                logger.error("Dispatch attempt failed to reach worker",
                             attempt=attempt,
                             error=str(e),
                             worker_url=self.base_url)
                continue

            duration = time.time() - start_time
            logger.info("Worker responded",
                        attempt=attempt,
                        status_code=response.status_code,
                        duration_seconds=round(duration, 2))

            if response.status_code == 200:
                try:
                    result = TranscribeResponse.model_validate(response.json())
                except (ValueError, ValidationError) as e:
                    last_error = f"Malformed worker response: {e.__class__.__name__}"
                    logger.error("Worker returned malformed response", attempt=attempt)
                    continue

                logger.info("Transcription successful",
                            duration_seconds=result.duration_seconds,
                            characters=len(result.text),
                            attempts=attempt)
                return result

            message = self._error_message(response)

            if response.status_code in (401, 403):
                logger.error("Worker rejected request signature, not retrying", status_code=response.status_code)
                raise DispatchAuthenticationError(f"Media worker authentication failed: {message}", response.status_code)

            if 400 <= response.status_code < 500:
                logger.error("Worker rejected request, not retrying", status_code=response.status_code)
                raise DispatchRejectedError(f"Media worker rejected request: {message}", response.status_code)

            last_error = message
            logger.error("Dispatch attempt failed", attempt=attempt, error=message)

        raise TransientWorkerError(
            f"Transcription failed after {self.max_attempts} attempts: {last_error}",
            attempts=self.max_attempts,
        )

    def check_health(self) -> bool:
        """
        Probe the worker's health endpoint.

        Returns:
            True if the worker answered {"status": "ok"}
        """
        try:
            response = self._client.get(f"{self.base_url}/health", timeout=5.0)
        except httpx.RequestError as e:
            logger.error("Media worker health check failed", error=str(e))
            return False

        try:
            healthy = response.status_code == 200 and response.json().get("status") == "ok"
        except ValueError:
            healthy = False
        if not healthy:
            logger.error("Media worker unhealthy", status_code=response.status_code)
        return healthy

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return f"HTTP {response.status_code}"
        if not isinstance(data, dict):
            return f"HTTP {response.status_code}"
        error = data.get("error") or f"HTTP {response.status_code}"
        details = data.get("details")
        return f"{error} - {details}" if details else error

    def __enter__(self) -> "DispatchClient":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Optional[type], exc_val: Optional[BaseException], exc_tb: Optional[object]) -> None:
        """Context manager exit."""
        self.close()
