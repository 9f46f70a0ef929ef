"""
Failure taxonomy for the reply pipeline.

Every stage maps its failures onto one of these kinds and either continues
or drops the current event. None of them escape the pipeline.
"""


class PipelineError(Exception):
    """Base class for reply pipeline failures."""


class AdmissionRejected(PipelineError):
    """Message not admitted (rate-limited, loop, self echo). Dropped silently."""

    def __init__(self, reason: str, sender_key: str = ""):
        super().__init__(f"admission rejected ({reason}) for {sender_key or 'unknown sender'}")
        self.reason = reason
        self.sender_key = sender_key


class UpstreamUnavailable(PipelineError):
    """AI service unavailable: circuit open or call failed."""

    def __init__(self, service: str, detail: str = ""):
        message = f"upstream '{service}' unavailable"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.service = service
        self.detail = detail


class DegradedInput(PipelineError):
    """Transcription or description failed; recovered with a placeholder."""

    def __init__(self, kind: str, detail: str = ""):
        super().__init__(f"could not process {kind} input: {detail}")
        self.kind = kind
        self.detail = detail


class DeliveryFailure(PipelineError):
    """Outbound send failed. Logged, never retried."""

    def __init__(self, chat_id: str, detail: str = ""):
        super().__init__(f"delivery to {chat_id} failed: {detail}")
        self.chat_id = chat_id
        self.detail = detail


class BackendError(Exception):
    """An AI backend call failed or returned nothing usable."""


class TransportError(Exception):
    """Transport is not in a state that allows the requested operation."""
