class JDBuilderError(Exception):
    """Base class for application errors."""


class ConfigurationError(JDBuilderError):
    """Raised at startup when required configuration is missing."""


class DocumentParseError(JDBuilderError):
    """A document could not be turned into text. The message is safe to show to users."""


class UnsupportedDocumentError(DocumentParseError):
    pass


class NoKeyAvailableError(JDBuilderError):
    """Every API key in the pool is cooling down."""

    def __init__(self, message="AI service is busy, please try again shortly."):
        super().__init__(message)


class AIServiceError(JDBuilderError):
    """The upstream AI call failed."""

    def __init__(self, message="AI service request failed, please try again."):
        super().__init__(message)


class WorkerError(JDBuilderError):
    """An executor reported an `error` message for an operation."""


class OperationCancelled(JDBuilderError):
    """An executor acknowledged cancellation of an operation."""


class CircuitOpenError(JDBuilderError):
    """Upstream calls are suspended after repeated failures."""

    def __init__(self, message="AI service is temporarily unavailable, please try again shortly."):
        super().__init__(message)


class WorkerTimeout(WorkerError):
    """No message arrived from the executor within the allowed time."""
