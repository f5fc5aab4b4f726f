"""Pricing source adapters"""

from .aggregator import AggregatorAdapter
from .base import SourceAdapter, TrustTier
from .extraction import BatchItem, ExtractionAdapter
from .registry import SourceRegistry, build_adapters
from .submission import Submission, SubmissionAdapter, SubmissionQueue
from .verified import VerifiedConstantsAdapter

__all__ = [
    "AggregatorAdapter",
    "BatchItem",
    "ExtractionAdapter",
    "SourceAdapter",
    "SourceRegistry",
    "Submission",
    "SubmissionAdapter",
    "SubmissionQueue",
    "TrustTier",
    "VerifiedConstantsAdapter",
    "build_adapters",
]
