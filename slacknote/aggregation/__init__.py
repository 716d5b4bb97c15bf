"""Reaction-driven conversation digests."""

from slacknote.aggregation.buffer import MessageBuffer
from slacknote.aggregation.guard import ArtifactRegistry, FlushGuard
from slacknote.aggregation.pipeline import AggregationPipeline

__all__ = ["AggregationPipeline", "ArtifactRegistry", "FlushGuard", "MessageBuffer"]
