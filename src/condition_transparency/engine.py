"""
Engine wiring.

TransparencyEngine constructs every service from settings and a set of
collaborators, so the HTTP server, the CLI and tests share one object
graph.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Optional, Union

import httpx

from .acknowledgements import AcknowledgementTracker
from .adjustments import BatchAdjuster
from .chronicle import Adjustment, ChronicleService
from .collaborators import InMemoryCampaignDirectory, LoggingNotificationSender, NotificationSender
from .config import TransparencySettings, load_settings
from .exports import (
    ExportDatasetBuilder,
    ExportJobQueue,
    ExportPipeline,
    ExportStorage,
    ExportWorker,
    LocalExportStorage,
    WebhookDispatcher,
    WebhookRegistry,
)
from .maintenance import MaintenanceSnapshot
from .models import AdjustmentEvent, AdjustmentReason, Clock, utcnow
from .notifications import EscalationNotifier
from .permissions import GroupAccessResolver
from .presentation import SummaryPresenter
from .sharing import ConsentLedger, ShareLinkService
from .storage import TransparencyStore
from .summary import InMemorySummaryCache, RefreshResult, SummaryCache, SummaryProjector, UrgencyPolicy

logger = logging.getLogger("condition-transparency")

CAMPAIGN_FILE = "campaign.json"


class TransparencyEngine:
    """
    All transparency services wired together.

    ``directory`` must provide the token, membership, preference and
    briefing protocols; InMemoryCampaignDirectory does.
    """

    def __init__(
        self,
        settings: Optional[TransparencySettings] = None,
        directory: Optional[Any] = None,
        sender: Optional[NotificationSender] = None,
        cache: Optional[SummaryCache] = None,
        export_storage: Optional[ExportStorage] = None,
        webhook_transport: Optional[httpx.AsyncBaseTransport] = None,
        notification_executor: Optional[ThreadPoolExecutor] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.settings = settings or TransparencySettings()
        self.directory = directory if directory is not None else InMemoryCampaignDirectory()
        self.clock = clock
        s = self.settings

        self.store = TransparencyStore(s.data_dir)
        self.access = GroupAccessResolver(self.directory)

        self.notifier = EscalationNotifier(
            self.directory,
            self.directory,
            sender or LoggingNotificationSender(),
            clock=clock,
            debounce_seconds=s.escalation_debounce_seconds,
            max_workers=s.notification_workers,
            executor=notification_executor,
        )
        self.projector = SummaryProjector(
            self.directory,
            cache or InMemorySummaryCache(default_ttl=s.summary_cache_ttl),
            policy=UrgencyPolicy(s.critical_threshold, s.warning_threshold),
            notifier=self.notifier,
            clock=clock,
            max_duration=s.max_condition_duration,
        )
        self.acknowledgements = AcknowledgementTracker(self.store, self.directory, clock=clock)
        self.chronicle = ChronicleService(self.store, self.directory, s.timeline_limit, clock=clock)
        self.adjustments = BatchAdjuster(
            self.directory, self.chronicle, self.projector, self.access, s.max_condition_duration
        )
        self.presenter = SummaryPresenter(self.projector, self.acknowledgements, self.chronicle, self.access)

        self.consent = ConsentLedger(self.store, self.directory, clock=clock)
        self.shares = ShareLinkService(
            self.store,
            self.projector,
            self.consent,
            self.chronicle,
            self.directory,
            self.directory,
            self.directory,
            self.access,
            s,
            clock=clock,
        )

        self.webhooks = WebhookRegistry(self.store, self.access, clock=clock)
        self.dispatcher = WebhookDispatcher(
            self.store,
            signature_header=s.signature_header,
            timeout=s.webhook_timeout,
            transport=webhook_transport,
            clock=clock,
        )
        self.export_queue = ExportJobQueue()
        self.exports = ExportPipeline(
            self.store,
            ExportDatasetBuilder(self.projector, self.store, self.consent, self.chronicle, clock=clock),
            export_storage or LocalExportStorage(s.export_dir or Path(s.export_path), s.storage_timeout),
            self.dispatcher,
            self.notifier,
            self.access,
            self.export_queue,
            s,
            clock=clock,
        )
        self.export_worker = ExportWorker(
            self.exports,
            self.export_queue,
            max_attempts=s.export_max_attempts,
            backoff=s.export_retry_backoff,
        )
        self.maintenance = MaintenanceSnapshot(self.store, self.directory, self.consent, s, clock=clock)

        logger.debug(f"Transparency engine initialized (data_dir={s.data_dir})")

    def after_turn(
        self,
        group_id: str,
        token_id: str,
        adjustments: list[Adjustment],
        reason: Union[AdjustmentReason, str] = AdjustmentReason.TURN_TICK,
    ) -> tuple[list[AdjustmentEvent], RefreshResult]:
        """
        Chronicle timer changes made by turn processing and refresh the summary.

        The token collaborator already holds the new durations; this records
        them and triggers escalation detection.

        Raises:
            ValueError: If ``reason`` is not a known adjustment reason
        """
        reason = AdjustmentReason(reason)
        events = self.chronicle.record(
            group_id, token_id, adjustments, reason, context={"source": reason.value}
        )
        return events, self.projector.refresh(group_id, reason.value)

    def close(self) -> None:
        self.notifier.flush(self.settings.notification_timeout)
        self.notifier.close()


def build_engine(env_file: Optional[str] = None, directory: Optional[Any] = None, **overrides: Any) -> TransparencyEngine:
    """
    Build an engine from environment settings.

    Without an explicit directory, ``campaign.json`` in the data directory
    is loaded when present.
    """
    settings = load_settings(env_file, **overrides)
    if directory is None and settings.data_dir is not None:
        campaign_file = settings.data_dir / CAMPAIGN_FILE
        if campaign_file.is_file():
            directory = InMemoryCampaignDirectory.from_json(campaign_file)
    return TransparencyEngine(settings, directory)


__all__ = [
    "CAMPAIGN_FILE",
    "TransparencyEngine",
    "build_engine",
]
