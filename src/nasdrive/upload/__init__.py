"""Upload pipeline: server-side receiver and client-side orchestration."""

from .models import ChunkReceipt, ChunkRequest, UploadSource, UploadSummary, UploadTask
from .orchestrator import (
    CHUNK_SIZE_BYTES,
    CHUNK_THRESHOLD_BYTES,
    DEFAULT_CONCURRENCY,
    DEFAULT_MAX_RETRIES,
    UploadOrchestrator,
)
from .receiver import STAGING_SUFFIX, UploadReceiver
from .transport import LocalTransport, UploadTransport

__all__ = [
    "ChunkReceipt",
    "ChunkRequest",
    "UploadSource",
    "UploadSummary",
    "UploadTask",
    "UploadOrchestrator",
    "UploadReceiver",
    "UploadTransport",
    "LocalTransport",
    "STAGING_SUFFIX",
    "CHUNK_SIZE_BYTES",
    "CHUNK_THRESHOLD_BYTES",
    "DEFAULT_CONCURRENCY",
    "DEFAULT_MAX_RETRIES",
]
