"""
Tests for the batch pipeline driver.
"""

import json
from datetime import datetime
from typing import Dict, Optional, Set
from unittest.mock import Mock

import httpx
import pytest
from sqlalchemy.orm import Session

from channel_analyzer.agents.kinds import get_agent_kind
from channel_analyzer.agents.orchestrator import AgentOrchestrator
from channel_analyzer.models.analysis import AnalysisRecord
from channel_analyzer.models.transcript import Transcript
from channel_analyzer.schemas.analysis import UrgencyLevel
from channel_analyzer.schemas.item import CatalogEntry
from channel_analyzer.services.analysis_service import AnalysisService
from channel_analyzer.services.catalog_service import (
    YOUTUBE_API_BASE,
    CatalogScanner,
    CatalogUnavailableError,
    YouTubeCatalogClient,
)
from channel_analyzer.services.dispatch_client import DispatchClient, TransientWorkerError
from channel_analyzer.services.item_service import ItemStore
from channel_analyzer.services.notifier import DiscordNotifier
from channel_analyzer.services.transcript_service import TranscriptService
from channel_analyzer.workers.pipeline_runner import ItemBusyError, PipelineDriver, TranscriptNotFoundError
from tests.factories import final_step, make_finding, make_output


def entry(item_id: str, hours_ago: int = 0, duration: Optional[str] = "PT10M") -> CatalogEntry:
    return CatalogEntry(
        external_id=item_id,
        title=f"Video {item_id}",
        published_at=datetime(2025, 11, 2, 15 - hours_ago),
        iso_duration=duration,
    )


class FakeWorker:
    """Media worker stand-in behind a real DispatchClient."""

    def __init__(self, failing: Set[str] = frozenset()) -> None:
        self.failing = set(failing)
        self.calls: Dict[str, int] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        resource_url = json.loads(request.content)["resource_url"]
        item_id = httpx.URL(resource_url).params["v"]
        self.calls[item_id] = self.calls.get(item_id, 0) + 1
        if item_id in self.failing:
            return httpx.Response(500, json={"error": "Audio download failed", "details": "yt-dlp exited with code 1"})
        return httpx.Response(200, json={
            "duration_seconds": 600,
            "text": f"Transcript of {item_id}: Ryan Rollins is a must add.",
            "language": "en",
        })


@pytest.fixture
def scanner_client() -> Mock:
    client = Mock()
    client.list.return_value = [entry("A", 0), entry("B", 1), entry("C", 2)]
    return client


@pytest.fixture
def worker() -> FakeWorker:
    return FakeWorker(failing={"B"})


@pytest.fixture
def reasoning_client() -> Mock:
    client = Mock()
    client.run.return_value = final_step(make_output([
        make_finding("Ryan Rollins", urgency="HIGH"),
        make_finding("Jaylon Tyson", urgency="MEDIUM"),
    ]))
    return client


@pytest.fixture
def notifier() -> Mock:
    mock_notifier = Mock(spec=DiscordNotifier)
    mock_notifier.notify_findings.return_value = True
    mock_notifier.notify_error.return_value = True
    return mock_notifier


@pytest.fixture
def driver(test_db: Session, scanner_client: Mock, worker: FakeWorker, reasoning_client: Mock,
           notifier: Mock) -> PipelineDriver:
    dispatcher = DispatchClient(
        base_url="http://media-worker:3001",
        secret="dispatch-secret",
        max_attempts=3,
        http_client=httpx.Client(transport=httpx.MockTransport(worker)),
        sleep=lambda seconds: None,
    )
    return PipelineDriver(
        items=ItemStore(test_db),
        transcripts=TranscriptService(test_db),
        analyses=AnalysisService(test_db),
        scanner=CatalogScanner(scanner_client, "UCchannel"),
        dispatcher=dispatcher,
        orchestrator=AgentOrchestrator(reasoning_client),
        notifier=notifier,
        agent_kinds=[get_agent_kind("must_roster")],
        fetch_limit=10,
    )


class TestRunBatch:
    """End-to-end batch behavior."""

    def test_end_to_end_scenario(self, driver: PipelineDriver, test_db: Session, worker: FakeWorker) -> None:
        summary = driver.run_batch()

        items = driver.items
        assert items.get("A").status == "succeeded"
        assert items.get("C").status == "succeeded"
        failed = items.get("B")
        assert failed.status == "failed"
        assert "after 3 attempts" in failed.notes

        assert worker.calls == {"A": 1, "B": 3, "C": 1}
        analyzed = {record.item_id for record in test_db.query(AnalysisRecord).all()}
        assert analyzed == {"A", "C"}

        assert summary.discovered == 3
        assert summary.processed == 3
        assert summary.succeeded == 2
        assert summary.failed == 1
        assert summary.analyzed == 2
        assert summary.aborted is False
        assert len(summary.errors) == 1
        assert "Failed to process item B" in summary.errors[0]

    def test_second_run_is_idempotent(self, driver: PipelineDriver, test_db: Session, worker: FakeWorker,
                                      reasoning_client: Mock) -> None:
        driver.run_batch()
        second = driver.run_batch()

        assert second.discovered == 0
        assert second.processed == 0
        assert test_db.query(Transcript).count() == 2
        assert test_db.query(AnalysisRecord).count() == 2
        assert worker.calls == {"A": 1, "B": 3, "C": 1}
        assert reasoning_client.run.call_count == 2

    def test_notifies_once_with_only_high_findings(self, driver: PipelineDriver, notifier: Mock) -> None:
        summary = driver.run_batch()

        assert notifier.notify_findings.call_count == 2
        item_id, title, findings, _, _ = notifier.notify_findings.call_args_list[0].args
        assert item_id == "A"
        assert title == "Video A"
        assert [finding.subject_name for finding in findings] == ["Ryan Rollins"]
        assert all(finding.urgency == UrgencyLevel.HIGH for finding in findings)
        assert summary.high_urgency_findings == 2
        assert summary.notified == 2

    def test_no_high_findings_means_no_notification(self, driver: PipelineDriver, notifier: Mock,
                                                    reasoning_client: Mock) -> None:
        reasoning_client.run.return_value = final_step(make_output([make_finding("Jaylon Tyson", urgency="LOW")]))

        summary = driver.run_batch()

        notifier.notify_findings.assert_not_called()
        assert summary.analyzed == 2
        assert summary.notified == 0

    def test_schema_failure_is_recorded_and_item_stays_succeeded(self, driver: PipelineDriver,
                                                                 reasoning_client: Mock, test_db: Session) -> None:
        reasoning_client.run.return_value = final_step({"findings": [], "summary": "missing confidence"})

        summary = driver.run_batch()

        assert driver.items.get("A").status == "succeeded"
        assert test_db.query(AnalysisRecord).count() == 0
        assert summary.analyzed == 0
        assert sum("analysis failed" in error for error in summary.errors) == 2

    def test_catalog_failure_still_processes_leftovers(self, driver: PipelineDriver, scanner_client: Mock,
                                                       notifier: Mock) -> None:
        driver.items.upsert("A", "Leftover", datetime(2025, 11, 1))
        scanner_client.list.side_effect = CatalogUnavailableError("YouTube API error (403): quota")

        summary = driver.run_batch()

        assert summary.discovered == 0
        assert summary.succeeded == 1
        assert summary.aborted is False
        assert "Failed to fetch items from catalog" in summary.errors[0]
        notifier.notify_error.assert_called_once()

    def test_unexpected_batch_error_aborts_with_partial_summary(self, driver: PipelineDriver,
                                                                notifier: Mock) -> None:
        driver.items = Mock(wraps=driver.items)
        driver.items.list_by_status.side_effect = RuntimeError("database went away")

        summary = driver.run_batch()

        assert summary.aborted is True
        assert summary.discovered == 3
        assert summary.processed == 0
        assert summary.errors[-1] == "Automation failed: database went away"
        notifier.notify_error.assert_called_once()

    def test_broken_webhook_never_escapes_the_run(self, driver: PipelineDriver) -> None:
        driver.notifier = DiscordNotifier("https://discord.com/api/webhooks/1/abc\x00def")
        driver.scanner.client.list.side_effect = CatalogUnavailableError("YouTube API error (500)")
        driver.items = Mock(wraps=driver.items)
        driver.items.list_by_status.side_effect = RuntimeError("database went away")

        summary = driver.run_batch()

        assert summary.aborted is True
        assert "Failed to fetch items from catalog" in summary.errors[0]
        assert summary.errors[-1] == "Automation failed: database went away"

    def test_malformed_catalog_payload_still_processes_leftovers(self, driver: PipelineDriver,
                                                                 notifier: Mock) -> None:
        youtube = httpx.Client(
            base_url=YOUTUBE_API_BASE,
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"items": ["not-a-dict"]})),
        )
        driver.scanner = CatalogScanner(YouTubeCatalogClient("yt-key", http_client=youtube), "UCchannel")
        driver.items.upsert("A", "Leftover", datetime(2025, 11, 1))

        summary = driver.run_batch()

        assert summary.aborted is False
        assert summary.succeeded == 1
        assert "Failed to fetch items from catalog" in summary.errors[0]
        notifier.notify_error.assert_called_once()

    def test_existing_transcript_is_reused(self, driver: PipelineDriver, worker: FakeWorker) -> None:
        driver.items.upsert("A", "Video A", datetime(2025, 11, 2))
        driver.transcripts.upsert_transcript("A", "Earlier transcript of A", "en")
        driver.scanner.client.list.return_value = [entry("A")]

        summary = driver.run_batch()

        assert worker.calls == {}
        assert summary.succeeded == 1
        assert driver.items.get("A").status == "succeeded"

    def test_worker_duration_fills_missing_catalog_duration(self, driver: PipelineDriver,
                                                             scanner_client: Mock) -> None:
        scanner_client.list.return_value = [entry("A", duration=None)]

        driver.run_batch()

        assert driver.items.get("A").duration_sec == 600

    def test_notification_failure_does_not_fail_item(self, driver: PipelineDriver, notifier: Mock) -> None:
        notifier.notify_findings.return_value = False

        summary = driver.run_batch()

        assert summary.succeeded == 2
        assert summary.notified == 0
        assert summary.high_urgency_findings == 2


class TestSingleItemOperations:
    """Manual reprocessing and analysis."""

    def test_transcribe_item_resets_failed_item(self, driver: PipelineDriver, worker: FakeWorker) -> None:
        driver.run_batch()
        worker.failing.clear()

        transcript = driver.transcribe_item("B")

        assert transcript.item_id == "B"
        assert driver.items.get("B").status == "succeeded"
        assert driver.items.get("B").notes is None

    def test_transcribe_item_returns_existing_transcript(self, driver: PipelineDriver, worker: FakeWorker) -> None:
        driver.run_batch()
        calls_before = dict(worker.calls)

        transcript = driver.transcribe_item("A")

        assert transcript.text.startswith("Transcript of A")
        assert worker.calls == calls_before

    def test_transcribe_item_failure_marks_failed(self, driver: PipelineDriver) -> None:
        driver.items.upsert("B", "Video B", datetime(2025, 11, 2))

        with pytest.raises(TransientWorkerError):
            driver.transcribe_item("B")

        assert driver.items.get("B").status == "failed"

    def test_transcribe_item_busy(self, driver: PipelineDriver) -> None:
        driver.items.upsert("A", "Video A", datetime(2025, 11, 2))
        driver.items.claim("A")

        with pytest.raises(ItemBusyError):
            driver.transcribe_item("A")

    def test_analyze_item(self, driver: PipelineDriver) -> None:
        driver.items.upsert("A", "Video A", datetime(2025, 11, 2))
        driver.transcripts.upsert_transcript("A", "Ryan Rollins is a must add.", "en")

        record = driver.analyze_item("A", get_agent_kind("drop"))

        assert record.agent_kind == "drop"
        assert record.findings[0]["subject_name"] == "Ryan Rollins"

    def test_analyze_item_without_transcript(self, driver: PipelineDriver) -> None:
        with pytest.raises(TranscriptNotFoundError):
            driver.analyze_item("A", get_agent_kind("drop"))

    def test_discover_only_queues(self, driver: PipelineDriver, worker: FakeWorker) -> None:
        summary = driver.discover(5)

        assert summary.discovered == 3
        assert summary.processed == 0
        assert len(driver.items.list_by_status("queued")) == 3
        assert worker.calls == {}
