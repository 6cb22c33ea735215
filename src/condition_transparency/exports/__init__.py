"""
Export pipeline for condition transparency data.

Key components:
- ExportPipeline / ExportWorker: queued, idempotent export processing
- ExportDatasetBuilder: redacted dataset construction
- WebhookRegistry / WebhookDispatcher: signed webhook delivery
- sign_payload: pure HMAC-SHA256 signing
"""

from .dataset import ExportDatasetBuilder
from .pipeline import ExportJobQueue, ExportPipeline, ExportWorker
from .serializers import CSV_HEADER, serialize_dataset
from .signing import generate_secret, sign_payload, verify_signature
from .storage import ExportStorage, LocalExportStorage
from .webhooks import DeliveryOutcome, WebhookDispatcher, WebhookRegistry, encode_payload

__all__ = [
    "ExportDatasetBuilder",
    "ExportJobQueue",
    "ExportPipeline",
    "ExportWorker",
    "CSV_HEADER",
    "serialize_dataset",
    "generate_secret",
    "sign_payload",
    "verify_signature",
    "ExportStorage",
    "LocalExportStorage",
    "DeliveryOutcome",
    "WebhookDispatcher",
    "WebhookRegistry",
    "encode_payload",
]
