"""Pydantic models for the application."""

from recall.models.learning import (
    CandidatePredicate,
    CardStateResponse,
    QueueConfig,
    QueueScope,
    ReviewContext,
)

__all__ = [
    "CandidatePredicate",
    "CardStateResponse",
    "QueueConfig",
    "QueueScope",
    "ReviewContext",
]
