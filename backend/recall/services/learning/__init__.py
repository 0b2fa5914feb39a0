"""
Learning System Services

Services for the FSRS-based spaced repetition scheduling core.

Modules:
- memory_model: Memory model interface and value types
- fsrs: FSRS library adapter implementing the memory model
- history_store: Append-only review history
- state_cache: Derived per-card scheduling state
- parameter_store: Versioned per-learner FSRS parameters
- assignments: Deck assignment and learner eligibility
- review_recorder: Atomic review recording
- queue_assembler: Practice queue assembly with interleaving
- cache_rebuilder: State cache regeneration from history
- parameter_optimizer: Per-learner parameter fitting
- candidate_selector: Retrievability-filtered candidate sampling
- jobs: Job handles for deferred operations
- spaced_rep_service: Facade consumed by exercise strategies and the API

Usage:
    from recall.services.learning import (
        SpacedRepService,
        ReviewRecorder,
        CacheRebuilder,
        ParameterOptimizer,
    )
"""

from recall.services.learning.cache_rebuilder import CacheRebuilder
from recall.services.learning.candidate_selector import CandidateSelector
from recall.services.learning.fsrs import FSRSMemoryModel, create_memory_model
from recall.services.learning.jobs import JobService
from recall.services.learning.memory_model import (
    MemoryModel,
    MemoryState,
    NextState,
    NextStates,
    ReviewStep,
)
from recall.services.learning.parameter_optimizer import ParameterOptimizer
from recall.services.learning.queue_assembler import QueueAssembler, interleave
from recall.services.learning.review_recorder import ReviewRecorder
from recall.services.learning.spaced_rep_service import (
    ReviewCapability,
    SpacedRepService,
)

__all__ = [
    # Memory model
    "MemoryModel",
    "MemoryState",
    "NextState",
    "NextStates",
    "ReviewStep",
    "FSRSMemoryModel",
    "create_memory_model",
    # Services
    "CacheRebuilder",
    "CandidateSelector",
    "JobService",
    "ParameterOptimizer",
    "QueueAssembler",
    "interleave",
    "ReviewRecorder",
    "ReviewCapability",
    "SpacedRepService",
]
