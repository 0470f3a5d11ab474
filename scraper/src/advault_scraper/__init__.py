"""Paid-search ad collection: provider jobs, staging, tracking, rendering and storage."""

from .backoff import NOT_READY, BackoffPolicy, poll, retry
from .batch import BatchCoordinator, BatchItem, load_batch_items
from .errors import (
    AdvaultError,
    ConfigurationError,
    DuplicateJobError,
    JobFailedError,
    NetworkError,
    PersistenceError,
    PollCancelledError,
    PollTimeoutError,
    ProcessingError,
    StateTransitionError,
    SubmissionError,
    ValidationError,
)
from .extraction import StagingExtractor
from .logging import adlog, jlog, joblog
from .pipeline import AdVaultPipeline, PipelineOptions, QueryResult
from .provider import JobSubmissionClient, SearchRequest
from .recovery import RecoveryTools
from .rendering import LandingPageRenderer, RenderSummary, RenderTarget
from .staging import ProcessingOutcome, StagingGateway
from .storage import ArtifactUploader
from .tracking import JobTracker
from .versioning import get_scraper_version

__all__ = [
    "NOT_READY",
    "AdVaultPipeline",
    "AdvaultError",
    "ArtifactUploader",
    "BackoffPolicy",
    "BatchCoordinator",
    "BatchItem",
    "ConfigurationError",
    "DuplicateJobError",
    "JobFailedError",
    "JobSubmissionClient",
    "JobTracker",
    "LandingPageRenderer",
    "NetworkError",
    "PersistenceError",
    "PipelineOptions",
    "PollCancelledError",
    "PollTimeoutError",
    "ProcessingError",
    "ProcessingOutcome",
    "QueryResult",
    "RecoveryTools",
    "RenderSummary",
    "RenderTarget",
    "SearchRequest",
    "StagingExtractor",
    "StagingGateway",
    "StateTransitionError",
    "SubmissionError",
    "ValidationError",
    "adlog",
    "get_scraper_version",
    "jlog",
    "joblog",
    "load_batch_items",
    "poll",
    "retry",
]
