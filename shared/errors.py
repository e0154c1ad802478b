"""
Error taxonomy shared by the narration services.
"""
from typing import Optional, Sequence


class NarrationError(Exception):
    """Base class for narration pipeline failures."""


class GenerationError(NarrationError):
    """No script candidate satisfied the contract within the retry budget."""

    def __init__(self, message: str, last_violation: Optional[str] = None):
        super().__init__(message)
        self.last_violation = last_violation


class EngineUnavailableError(NarrationError):
    """No credential is configured for any requested speech engine."""


class SynthesisError(NarrationError):
    """A specific engine call failed. Callers may retry with another engine."""

    def __init__(self, message: str, engine: Optional[str] = None):
        super().__init__(message)
        self.engine = engine


class RateLimitExceededError(SynthesisError):
    """The engine kept answering 429 after every backoff cycle."""


class EndpointsUnreachableError(SynthesisError):
    """Every candidate endpoint was down or unreachable."""


class EngineRejectedError(SynthesisError):
    """The backend was reachable but refused to generate (quota or capacity)."""


class JobFailedError(SynthesisError):
    """One or more asynchronous jobs reached a failed or canceled state."""

    def __init__(
        self,
        message: str,
        engine: Optional[str] = None,
        failed_jobs: Sequence[int] = (),
    ):
        super().__init__(message, engine)
        self.failed_jobs = list(failed_jobs)


class PollTimeoutError(SynthesisError):
    """A polling loop exhausted its budget with jobs still pending."""

    def __init__(
        self,
        message: str,
        engine: Optional[str] = None,
        pending_jobs: Sequence[int] = (),
    ):
        super().__init__(message, engine)
        self.pending_jobs = list(pending_jobs)


class AssemblyError(NarrationError):
    """Media tooling failed while converting, concatenating or mastering audio."""
