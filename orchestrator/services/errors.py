"""Error taxonomy shared by the review pipeline and its collaborators."""

from __future__ import annotations

from typing import Optional


class PRPilotError(Exception):
    """Base class for every error raised by prpilot components."""


class ValidationError(PRPilotError):
    """A model response or a setup config failed structural validation."""


class UpstreamError(PRPilotError):
    """An external API (LLM provider or code host) returned a non-2xx status."""

    def __init__(self, source: str, status_code: int, body: str):
        self.source = source
        self.status_code = status_code
        self.body = body
        super().__init__(f"{source} returned HTTP {status_code}: {body}")


class UnsupportedProviderError(PRPilotError):
    """The requested completion or VM provider is not registered."""

    def __init__(self, provider: str, kind: str = "completion"):
        self.provider = provider
        super().__init__(f"Unsupported {kind} provider: {provider!r}")


class MissingCredentialsError(PRPilotError):
    """A provider was called without its API key configured."""


class ProvisionError(PRPilotError):
    """The cloud provider rejected or failed the instance creation request."""


class ProvisionTimeoutError(ProvisionError):
    """The instance never reached a ready state within the attempt budget."""

    def __init__(self, instance_id: str, attempts: int, interval: float):
        self.instance_id = instance_id
        self.attempts = attempts
        super().__init__(
            f"Instance {instance_id} did not become ready after "
            f"{attempts} attempts ({attempts * interval:.0f}s)"
        )


class AgentExhaustedError(PRPilotError):
    """The agent loop hit its step budget without reporting success or failure."""

    def __init__(self, max_steps: int, steps: Optional[list] = None):
        self.max_steps = max_steps
        self.steps = steps or []
        super().__init__(
            f"Agent did not finish within {max_steps} steps (timed out)"
        )


class PhaseError(PRPilotError):
    """A review phase failed; later phases must not run."""

    def __init__(self, phase: str, message: str):
        self.phase = phase
        self.message = message
        super().__init__(f"{phase} phase failed: {message}")


class StoreError(PRPilotError):
    """Review state could not be written to durable storage."""
