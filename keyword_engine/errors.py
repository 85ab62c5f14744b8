"""Exception taxonomy for the keyword discovery pipeline.

Only FetchError, AnalysisError and PipelineTimeoutError abort a run.
Every other error is caught by the stage that raised it and replaced
with that stage's degraded default.
"""


class KeywordEngineError(Exception):
    """Base class for all pipeline errors."""


class FetchError(KeywordEngineError):
    """A page could not be fetched (timeout, navigation error, non-2xx)."""

    def __init__(self, url: str, reason: str, status: int | None = None):
        self.url = url
        self.reason = reason
        self.status = status
        super().__init__(f"Failed to fetch {url}: {reason}")


class LLMError(KeywordEngineError):
    """The language model call failed or returned unparseable output."""


class AnalysisError(KeywordEngineError):
    """Site analysis produced no usable result."""


class ProviderError(KeywordEngineError):
    """The keyword metrics provider failed (credentials, transport, non-2xx)."""

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message)


class ClassificationError(KeywordEngineError):
    """No batch of a classification pass succeeded."""


class SpyError(KeywordEngineError):
    """Competitor spying failed for every competitor attempted."""


class ClusterError(KeywordEngineError):
    """Keyword clustering failed."""


class PersistError(KeywordEngineError):
    """A write to the persistence store was rejected."""


class PipelineTimeoutError(KeywordEngineError):
    """The analysis exceeded its wall-clock budget."""
