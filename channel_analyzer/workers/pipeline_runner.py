"""
Batch driver for the processing pipeline.
Discovers new catalog items, extracts transcripts through the media worker,
runs the configured agents and notifies on high-urgency findings.
"""

import sys
import time
from dataclasses import replace
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from channel_analyzer.agents.base_agent import AgentProcessingError, AnthropicReasoningClient
from channel_analyzer.agents.kinds import get_agent_kind
from channel_analyzer.agents.orchestrator import AgentKind, AgentOrchestrator
from channel_analyzer.config import ConfigurationError, Settings, get_settings
from channel_analyzer.db.database import get_session_factory, init_db
from channel_analyzer.models.analysis import AnalysisRecord
from channel_analyzer.models.item import Item
from channel_analyzer.models.transcript import Transcript
from channel_analyzer.schemas.dispatch import TranscribeRequest
from channel_analyzer.schemas.pipeline import RunSummary
from channel_analyzer.services.analysis_service import AnalysisService
from channel_analyzer.services.catalog_service import (
    CatalogScanner,
    CatalogUnavailableError,
    YouTubeCatalogClient,
    parse_iso_duration,
)
from channel_analyzer.services.dispatch_client import DispatchClient
from channel_analyzer.services.item_service import ItemStore
from channel_analyzer.services.notifier import DiscordNotifier, watch_url
from channel_analyzer.services.transcript_service import TranscriptService
from channel_analyzer.utils.logger import get_logger, set_correlation_id, setup_logging

logger = get_logger(__name__)


class ItemBusyError(Exception):
    """Raised when an item is being processed by another run."""
    pass


class TranscriptNotFoundError(Exception):
    """Raised when an analysis is requested for an item without a usable transcript."""
    pass


class PipelineDriver:
    """
    Runs one batch at a time, strictly sequentially.

    Each item is claimed, extracted and analyzed to completion before the next
    one starts. A failure on one item is recorded and never stops the batch.
    """

    def __init__(
        self,
        items: ItemStore,
        transcripts: TranscriptService,
        analyses: AnalysisService,
        scanner: CatalogScanner,
        dispatcher: DispatchClient,
        orchestrator: AgentOrchestrator,
        notifier: DiscordNotifier,
        agent_kinds: Sequence[AgentKind],
        fetch_limit: int = 10,
        language_hint: str = "en",
    ) -> None:
        self.items = items
        self.transcripts = transcripts
        self.analyses = analyses
        self.scanner = scanner
        self.dispatcher = dispatcher
        self.orchestrator = orchestrator
        self.notifier = notifier
        self.agent_kinds = list(agent_kinds)
        self.fetch_limit = fetch_limit
        self.language_hint = language_hint

    def run_batch(self) -> RunSummary:
        """
        Scan, queue, and process every queued item.

        Returns:
            Aggregate summary of the run
        """
        run_id = set_correlation_id()
        start_time = time.time()
        summary = RunSummary()

        logger.info("Batch run starting",
                    run_id=run_id,
                    agent_kinds=[kind.name for kind in self.agent_kinds],
                    fetch_limit=self.fetch_limit)

        try:
            self._discover(summary, self.fetch_limit)

            queued = self.items.list_by_status("queued")
            logger.info("Queued items to process", count=len(queued))

            for position, item in enumerate(queued, start=1):
                logger.info("Processing item",
                            item_id=item.id,
                            title=item.title,
                            position=f"{position}/{len(queued)}")
                self._process_queued_item(item, summary)

        except Exception as e:
            error_msg = f"Automation failed: {e}"
            logger.error("Batch run aborted", error=str(e), error_type=type(e).__name__)
            summary.errors.append(error_msg)
            summary.aborted = True
            self.notifier.notify_error(error_msg, context="Critical automation failure")

        summary.duration_seconds = round(time.time() - start_time, 2)

        logger.info("Batch run complete",
                    discovered=summary.discovered,
                    processed=summary.processed,
                    succeeded=summary.succeeded,
                    failed=summary.failed,
                    analyzed=summary.analyzed,
                    high_urgency_findings=summary.high_urgency_findings,
                    notified=summary.notified,
                    errors=len(summary.errors),
                    aborted=summary.aborted,
                    duration_seconds=summary.duration_seconds)
        return summary

    def discover(self, limit: Optional[int] = None) -> RunSummary:
        """Scan the catalog and queue new items without processing anything."""
        summary = RunSummary()
        start_time = time.time()
        self._discover(summary, limit or self.fetch_limit)
        summary.duration_seconds = round(time.time() - start_time, 2)
        return summary

    def transcribe_item(self, item_id: str) -> Transcript:
        """
        Reprocess a single item on request.

        An existing transcript is returned as is. Otherwise the item is reset to
        queued, claimed and extracted exactly like a batch item.

        Raises:
            ItemNotFoundError: If the item does not exist
            ItemBusyError: If another run currently holds the item
            DispatchError: If extraction fails (the item is marked failed)
        """
        item = self.items.get(item_id)

        existing = self.transcripts.get_by_item_id(item_id)
        if existing is not None:
            logger.info("Item already transcribed", item_id=item_id)
            return existing

        if item.status == "processing":
            raise ItemBusyError(f"Item {item_id} is already being processed")

        self.items.reset(item_id)
        if not self.items.claim(item_id):
            raise ItemBusyError(f"Item {item_id} was claimed by another run")

        try:
            transcript, duration = self._extract(item)
        except Exception as e:
            self.items.mark_failed(item_id, str(e))
            logger.error("Manual transcription failed", item_id=item_id, error=str(e))
            raise

        self.items.mark_succeeded(item_id, duration_sec=duration)
        return transcript

    def analyze_item(self, item_id: str, kind: AgentKind) -> AnalysisRecord:
        """
        Run one agent kind over an item's stored transcript and persist the record.

        Raises:
            TranscriptNotFoundError: If the item has no transcript or it is empty
            AgentProcessingError: If the agent fails (SchemaValidationError included)
        """
        transcript = self.transcripts.get_by_item_id(item_id)
        if transcript is None:
            raise TranscriptNotFoundError(f"Transcript not found for item {item_id}")
        if not transcript.text:
            raise TranscriptNotFoundError(f"Transcript for item {item_id} is empty")

        result = self.orchestrator.run(kind, transcript.text)
        return self.analyses.upsert_analysis(item_id, kind.name, result.output, raw_model_output=result.raw_output)

    def _discover(self, summary: RunSummary, limit: int) -> None:
        try:
            entries = self.scanner.fetch(limit)
        except CatalogUnavailableError as e:
            error_msg = f"Failed to fetch items from catalog: {e}"
            logger.error("Catalog scan failed", error=str(e))
            summary.errors.append(error_msg)
            # Leftover queued items can still be processed
            self.notifier.notify_error(error_msg, context="Catalog fetch failed")
            return

        known = set(self.items.existing_ids([entry.external_id for entry in entries]))
        new_entries = [entry for entry in entries if entry.external_id not in known]

        logger.info("Catalog scanned",
                    listed=len(entries),
                    already_known=len(known),
                    new=len(new_entries))

        for entry in new_entries:
            duration = parse_iso_duration(entry.iso_duration) if entry.iso_duration else None
            if self.items.upsert(entry.external_id, entry.title, entry.published_at, duration or None):
                summary.discovered += 1

    def _process_queued_item(self, item: Item, summary: RunSummary) -> None:
        if not self.items.claim(item.id):
            logger.info("Item claimed elsewhere, skipping", item_id=item.id)
            return

        summary.processed += 1

        try:
            transcript, duration = self._extract(item)
        except Exception as e:
            error_msg = f"Failed to process item {item.id}: {e}"
            logger.error("Item extraction failed", item_id=item.id, error=str(e), error_type=type(e).__name__)
            summary.errors.append(error_msg)
            summary.failed += 1
            self.items.mark_failed(item.id, str(e))
            return

        self.items.mark_succeeded(item.id, duration_sec=duration)
        summary.succeeded += 1

        for kind in self.agent_kinds:
            self._analyze_and_notify(item, transcript, kind, summary)

    def _extract(self, item: Item):
        """Return (transcript, measured duration) for a claimed item."""
        existing = self.transcripts.get_by_item_id(item.id)
        if existing is not None:
            logger.info("Transcript already exists, skipping extraction", item_id=item.id)
            return existing, None

        request = TranscribeRequest(resource_url=watch_url(item.id), language_hint=self.language_hint)
        response = self.dispatcher.transcribe(request)

        transcript = self.transcripts.upsert_transcript(item.id, response.text, response.language)
        return transcript, int(round(response.duration_seconds)) or None

    def _analyze_and_notify(self, item: Item, transcript: Transcript, kind: AgentKind, summary: RunSummary) -> None:
        try:
            result = self.orchestrator.run(kind, transcript.text)
            self.analyses.upsert_analysis(item.id, kind.name, result.output, raw_model_output=result.raw_output)
        except AgentProcessingError as e:
            error_msg = f"{kind.label} analysis failed for item {item.id}: {e}"
            logger.error("Agent analysis failed", item_id=item.id, agent_kind=kind.name, error=str(e))
            summary.errors.append(error_msg)
            return
        except Exception as e:
            error_msg = f"Failed to store {kind.label} analysis for item {item.id}: {e}"
            logger.error("Analysis persistence failed", item_id=item.id, agent_kind=kind.name, error=str(e))
            summary.errors.append(error_msg)
            return

        summary.analyzed += 1
        output = result.output
        high_urgency = output.high_urgency_findings()

        if not high_urgency:
            logger.info("No HIGH urgency findings, skipping notification", item_id=item.id, agent_kind=kind.name)
            return

        summary.high_urgency_findings += len(high_urgency)
        if self.notifier.notify_findings(item.id, item.title, high_urgency, output.summary, output.confidence):
            summary.notified += 1

    def close(self) -> None:
        self.dispatcher.close()
        self.scanner.client.close()
        self.notifier.close()


def build_driver(settings: Settings, db: Session) -> PipelineDriver:
    """Wire a driver with real collaborators from settings."""
    reasoning_client = AnthropicReasoningClient(
        api_key=settings.anthropic_api_key,
        model=settings.claude_model,
        max_tokens=settings.agent_max_tokens,
    )
    return PipelineDriver(
        items=ItemStore(db),
        transcripts=TranscriptService(db),
        analyses=AnalysisService(db),
        scanner=CatalogScanner(YouTubeCatalogClient(settings.youtube_api_key), settings.youtube_channel_id),
        dispatcher=DispatchClient(
            base_url=settings.media_worker_url,
            secret=settings.media_worker_secret,
            max_attempts=settings.dispatch_max_attempts,
            base_delay=settings.dispatch_base_delay_seconds,
            max_delay=settings.dispatch_max_delay_seconds,
            timeout=settings.dispatch_timeout_seconds,
        ),
        orchestrator=AgentOrchestrator(reasoning_client),
        notifier=DiscordNotifier(settings.discord_webhook_url),
        agent_kinds=[replace(get_agent_kind(name), max_steps=settings.agent_max_steps)
                     for name in settings.pipeline_agent_kinds],
        fetch_limit=settings.catalog_fetch_limit,
        language_hint=settings.language_hint,
    )


def main():
    """Main entry point for one batch run."""
    settings = get_settings()
    setup_logging(settings.log_level)

    logger.info("Channel Analyzer - batch run starting")

    try:
        settings.validate_for_pipeline()
    except ConfigurationError as e:
        logger.error("Invalid pipeline configuration", error=str(e))
        sys.exit(1)

    init_db()
    db = get_session_factory()()
    driver: Optional[PipelineDriver] = None
    try:
        driver = build_driver(settings, db)
        summary = driver.run_batch()
    finally:
        if driver is not None:
            driver.close()
        db.close()

    print(summary.model_dump_json(indent=2))
    if summary.aborted:
        sys.exit(1)


if __name__ == "__main__":
    main()
