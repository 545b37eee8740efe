"""Car listing sync pipeline components."""

from .checkpoint import (
    Checkpoint,
    CheckpointStore,
    DatabaseCheckpointStore,
    FileCheckpointStore,
    build_checkpoint_store,
    is_fresh,
)
from .circuit_breaker import BreakerState, CircuitBreaker
from .concurrency import ConcurrencyLimiter
from .fetcher import PageFetcher
from .metrics import AcceptanceTargets, SyncMetrics, evaluate_acceptance
from .pipeline import CarSyncPipeline, SyncReport, build_pipeline, run_sync
from .rate_limiter import TokenBucket
from .transformer import TransformResult, compute_data_hash, transform_listing, transform_page
from .writer import BatchWriter

__all__ = [
    "AcceptanceTargets",
    "BatchWriter",
    "BreakerState",
    "CarSyncPipeline",
    "Checkpoint",
    "CheckpointStore",
    "CircuitBreaker",
    "ConcurrencyLimiter",
    "DatabaseCheckpointStore",
    "FileCheckpointStore",
    "PageFetcher",
    "SyncMetrics",
    "SyncReport",
    "TokenBucket",
    "TransformResult",
    "build_checkpoint_store",
    "build_pipeline",
    "compute_data_hash",
    "evaluate_acceptance",
    "is_fresh",
    "run_sync",
    "transform_listing",
    "transform_page",
]
