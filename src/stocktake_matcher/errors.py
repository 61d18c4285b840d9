from __future__ import annotations


class MatchError(RuntimeError):
    """Base class for product matching failures."""

    retryable = False


class ProviderUnconfigured(MatchError):
    def __init__(self, message: str = "OPENAI_API_KEY is not set.") -> None:
        super().__init__(message)


class NoCandidates(MatchError):
    def __init__(self, department: str | None = None) -> None:
        scope = f" in department {department!r}" if department else ""
        super().__init__(f"No catalog products to match against{scope}.")
        self.department = department


class EmbeddingUnavailable(MatchError):
    retryable = True

    def __init__(self, message: str = "Query embedding could not be produced.") -> None:
        super().__init__(message)


class MalformedModelResponse(MatchError):
    """Model output that is not the JSON shape we asked for."""


class TransientProviderFailure(MatchError):
    """A single provider call failed or timed out."""

    retryable = True
