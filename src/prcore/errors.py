from __future__ import annotations


class PipelineError(Exception):
    """Base class for per-paper pipeline failures.

    ``recoverable`` tells callers whether the failure is confined to one
    facet (review, score, QA, ...) or blocks the whole paper.
    """

    recoverable = True


class ConversionError(PipelineError):
    """Converter output has no extractable text or section structure."""

    recoverable = False


class PaperNotFoundError(PipelineError, KeyError):
    def __init__(self, fingerprint: str):
        super().__init__(f"No normalized paper cached for {fingerprint}")
        self.fingerprint = fingerprint

    def __str__(self) -> str:
        return self.args[0]


class UnknownModelError(PipelineError, ValueError):
    pass


class ModelBackendError(PipelineError):
    pass


class ModelTimeoutError(ModelBackendError):
    pass


class ModelRateLimitError(ModelBackendError):
    pass


class EmbeddingProviderError(PipelineError):
    pass


class EmptyRetrievalError(PipelineError):
    pass


class ReviewParseError(PipelineError):
    pass


class ScoreParseError(ReviewParseError):
    pass


class ScoreOutOfRangeError(PipelineError):
    def __init__(self, value: float, clamped: int):
        super().__init__(f"Score {value} outside [1, 10]; clamped to {clamped}")
        self.value = value
        self.clamped = clamped


class FeedbackPersistError(PipelineError):
    pass
