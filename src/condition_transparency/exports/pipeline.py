"""
Asynchronous export pipeline.

Key components:
- ExportJobQueue: asyncio queue of export ids (jobs never carry payloads)
- ExportPipeline: request_export() persists a pending row and enqueues it
  (create_export() only persists);
  process() builds, stores, notifies and delivers
- ExportWorker: consumes the queue and retries failed exports

process() is idempotent under redelivery: a completed export is never
processed again, and a failed one only when the worker retries it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Union

from ..exceptions import FatalExportFailure, NotFound
from ..models import (
    Clock,
    ExportFormat,
    ExportRequest,
    ExportStatus,
    NotificationChannel,
    VisibilityMode,
    utcnow,
)
from .serializers import serialize_dataset

if TYPE_CHECKING:
    from ..config import TransparencySettings
    from ..notifications.escalation import EscalationNotifier
    from ..permissions import GroupAccessResolver
    from ..storage import TransparencyStore
    from .dataset import ExportDatasetBuilder
    from .storage import ExportStorage
    from .webhooks import DeliveryOutcome, WebhookDispatcher

logger = logging.getLogger("condition-transparency.exports")


class ExportJobQueue:
    """FIFO of (export_id, attempt) pairs."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[tuple[str, int]] = asyncio.Queue()

    def put(self, export_id: str, attempt: int = 1) -> None:
        self._queue.put_nowait((export_id, attempt))

    async def get(self) -> tuple[str, int]:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    def empty(self) -> bool:
        return self._queue.empty()

    def qsize(self) -> int:
        return self._queue.qsize()


class ExportPipeline:
    """
    Builds and delivers condition transparency exports.

    Attributes:
        store: Export and webhook tables
        builder: Dataset builder applying share-equivalent redaction
        storage: Export file storage
        dispatcher: Signed webhook delivery
        notifier: Used to tell the requester about success or failure
        queue: Job queue the worker consumes
        last_deliveries: Webhook outcomes of the most recent completed export
    """

    def __init__(
        self,
        store: "TransparencyStore",
        builder: "ExportDatasetBuilder",
        storage: "ExportStorage",
        dispatcher: "WebhookDispatcher",
        notifier: "EscalationNotifier",
        access: "GroupAccessResolver",
        queue: ExportJobQueue,
        settings: "TransparencySettings",
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.builder = builder
        self.storage = storage
        self.dispatcher = dispatcher
        self.notifier = notifier
        self.access = access
        self.queue = queue
        self.settings = settings
        self.clock = clock
        self.last_deliveries: list["DeliveryOutcome"] = []

    def request_export(
        self,
        group_id: str,
        requester_id: str,
        format: Union[ExportFormat, str, None] = None,
        visibility_mode: Union[VisibilityMode, str, None] = None,
        filters: Optional[dict[str, Any]] = None,
    ) -> ExportRequest:
        """
        Persist a pending export and enqueue its id.

        Unknown formats or visibility modes fall back to the configured
        defaults.

        Raises:
            Forbidden: If the requester is not an owner or dungeon master
        """
        export = self.create_export(group_id, requester_id, format, visibility_mode, filters)
        self.queue.put(export.id)
        return export

    def create_export(
        self,
        group_id: str,
        requester_id: str,
        format: Union[ExportFormat, str, None] = None,
        visibility_mode: Union[VisibilityMode, str, None] = None,
        filters: Optional[dict[str, Any]] = None,
    ) -> ExportRequest:
        """Persist a pending export without enqueueing it.

        The caller puts the id on the queue from the event loop thread.
        """
        self.access.require_privileged(group_id, requester_id)

        export = ExportRequest(
            group_id=group_id,
            requested_by=requester_id,
            format=_coerce(format, ExportFormat, self.settings.default_export_format),
            visibility_mode=_coerce(visibility_mode, VisibilityMode, self.settings.default_export_visibility),
            filters=dict(filters or {}),
            created_at=self.clock(),
        )
        self.store.insert_export(export)
        logger.info(
            f"Export {export.id} queued for group {group_id} "
            f"({export.format.value}, {export.visibility_mode.value})"
        )
        return export

    async def process(self, export_id: str, retry: bool = False) -> ExportRequest:
        """
        Run one export attempt.

        Args:
            export_id: Export to process
            retry: True when the job scheduler is retrying a failed export

        Returns:
            The export row after this attempt

        Raises:
            NotFound: If the export does not exist
            FatalExportFailure: If building, serializing or storing failed;
                                the row is already marked failed
        """
        export = self.store.get_export(export_id)
        if export is None:
            raise NotFound(f"Export not found: {export_id}", resource="export")
        if export.status == ExportStatus.COMPLETED:
            logger.info(f"Export {export_id} already completed; skipping")
            return export
        if export.status == ExportStatus.FAILED and not retry:
            logger.info(f"Export {export_id} already failed; skipping")
            return export

        is_retry = export.status == ExportStatus.FAILED
        try:
            dataset = self.builder.build(export)
            content = serialize_dataset(dataset, export.format)
            reference = await self.storage.write(self._file_name(export), content)
        except Exception as e:
            reason = (str(e) or e.__class__.__name__)[: self.settings.failure_reason_length]
            failed = self.store.increment_export_attempts(
                export_id, status=ExportStatus.FAILED, failure_reason=reason
            )
            logger.error(f"Export {export_id} failed (attempt {failed.retry_attempts}): {reason}")
            self._notify_requester(failed, "condition_transparency_export_failed")
            raise FatalExportFailure(
                f"Export {export_id} failed: {reason}",
                export_id=export_id,
                details={"retry_attempts": failed.retry_attempts},
            ) from e

        changes = {
            "status": ExportStatus.COMPLETED,
            "file_path": reference,
            "completed_at": self.clock(),
            "failure_reason": None,
        }
        if is_retry:
            completed = self.store.increment_export_attempts(export_id, **changes)
        else:
            completed = self.store.update_export(export_id, **changes)
        logger.info(f"Export {export_id} completed: {reference}")

        self._notify_requester(completed, "condition_transparency_export_ready")

        webhooks = self.store.webhooks_for(completed.group_id, active_only=True)
        self.last_deliveries = await self.dispatcher.deliver_all(webhooks, self.webhook_payload(completed))
        return completed

    @staticmethod
    def webhook_payload(export: ExportRequest) -> dict[str, Any]:
        return {
            "export_id": export.id,
            "group_id": export.group_id,
            "format": export.format.value,
            "visibility_mode": export.visibility_mode.value,
            "generated_at": export.completed_at.isoformat() if export.completed_at else None,
            "file_reference": export.file_path,
        }

    def _file_name(self, export: ExportRequest) -> str:
        stamp = self.clock().strftime("%Y%m%d_%H%M%S")
        return f"group-{export.group_id}_export-{export.id}_{stamp}.{export.format.value}"

    def _notify_requester(self, export: ExportRequest, kind: str) -> None:
        payload = {
            "title": "Condition export ready" if export.status == ExportStatus.COMPLETED else "Condition export failed",
            "export_id": export.id,
            "group_id": export.group_id,
            "status": export.status.value,
            "file_reference": export.file_path,
            "failure_reason": export.failure_reason,
        }
        self.notifier.dispatch(export.requested_by, kind, payload, [NotificationChannel.IN_APP])


def _coerce(value, enum_type, default: str):
    if value is None:
        return enum_type(default)
    try:
        return enum_type(value)
    except ValueError:
        logger.warning(f"Unsupported {enum_type.__name__} '{value}', using {default}")
        return enum_type(default)


class ExportWorker:
    """
    Queue consumer with a bounded retry policy.

    A FatalExportFailure is re-enqueued with ``retry=True`` until
    ``max_attempts`` is reached, sleeping ``backoff * attempt`` seconds
    first. Any other error is logged and the job dropped so one bad export
    never stops the consumer.
    """

    def __init__(
        self,
        pipeline: ExportPipeline,
        queue: ExportJobQueue,
        max_attempts: int = 3,
        backoff: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.pipeline = pipeline
        self.queue = queue
        self.max_attempts = max_attempts
        self.backoff = backoff
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> None:
        export_id, attempt = await self.queue.get()
        try:
            await self._handle(export_id, attempt)
        finally:
            self.queue.task_done()

    async def _handle(self, export_id: str, attempt: int) -> None:
        try:
            await self.pipeline.process(export_id, retry=attempt > 1)
        except FatalExportFailure:
            if attempt >= self.max_attempts:
                logger.error(f"Export {export_id} gave up after {attempt} attempts")
                return
            await self._sleep(self.backoff * attempt)
            self.queue.put(export_id, attempt + 1)
        except NotFound:
            logger.warning(f"Dropping job for unknown export {export_id}")
        except Exception as e:
            logger.error(f"Export {export_id} attempt {attempt} failed unexpectedly: {e}", exc_info=True)

    async def drain(self) -> None:
        """Process jobs until the queue is empty, retries included."""
        while not self.queue.empty():
            await self.run_once()

    async def run(self) -> None:
        while True:
            await self.run_once()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="condition-export-worker")
        return self._task

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


__all__ = [
    "ExportJobQueue",
    "ExportPipeline",
    "ExportWorker",
]
