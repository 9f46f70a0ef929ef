"""
Auto-reply core for autoresponder.

Provides the reply pipeline and its guards:
- Per-sender rate limiting
- Feedback loop detection
- Per-service circuit breakers
- Rolling chat transcripts
- Humanized delivery
- Contact notifications for handed-over chats
- Per-chat ordered dispatch
"""

from autoresponder.auto_reply.circuit import CircuitBreaker, CircuitState
from autoresponder.auto_reply.errors import (
    AdmissionRejected,
    BackendError,
    DegradedInput,
    DeliveryFailure,
    PipelineError,
    TransportError,
    UpstreamUnavailable,
)
from autoresponder.auto_reply.history import ChatHistory, HistoryEntry
from autoresponder.auto_reply.loop_detect import LoopDetector, levenshtein, similarity
from autoresponder.auto_reply.notify import ContactNotifier
from autoresponder.auto_reply.pipeline import (
    DropReason,
    PipelineOutcome,
    PipelineStatus,
    ResponsePipeline,
)
from autoresponder.auto_reply.queue import ChatDispatcher, DispatchConfig
from autoresponder.auto_reply.rate_limit import RateLimiter
from autoresponder.auto_reply.sender import (
    DeliveryOptions,
    DeliveryReport,
    DeliveryUnit,
    HumanizedSender,
    split_sentences,
)
from autoresponder.auto_reply.state import PipelineState, PipelineStats

__all__ = [
    # Guards
    "RateLimiter",
    "LoopDetector",
    "levenshtein",
    "similarity",
    "CircuitBreaker",
    "CircuitState",
    # Transcript
    "ChatHistory",
    "HistoryEntry",
    # Pipeline
    "ResponsePipeline",
    "PipelineOutcome",
    "PipelineStatus",
    "DropReason",
    "PipelineState",
    "PipelineStats",
    # Delivery
    "HumanizedSender",
    "DeliveryOptions",
    "DeliveryReport",
    "DeliveryUnit",
    "split_sentences",
    "ContactNotifier",
    # Dispatch
    "ChatDispatcher",
    "DispatchConfig",
    # Errors
    "PipelineError",
    "AdmissionRejected",
    "UpstreamUnavailable",
    "DegradedInput",
    "DeliveryFailure",
    "BackendError",
    "TransportError",
]
