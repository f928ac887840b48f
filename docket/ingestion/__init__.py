"""docket.ingestion

Inbound provider webhooks.
"""

from docket.ingestion.normalizers import NormalizedEvent, extract_task_key
from docket.ingestion.pipeline import IngestResult, WebhookIngestionPipeline

__all__ = ["IngestResult", "NormalizedEvent", "WebhookIngestionPipeline", "extract_task_key"]
