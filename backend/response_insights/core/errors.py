class InsightsError(Exception):
    """Base exception for the insights backend."""
    pass


class ConfigurationError(InsightsError):
    """Raised when a provider configuration is invalid."""
    pass


class ProviderError(InsightsError):
    """Raised when an embedding or LLM provider call fails or returns malformed output."""
    pass


class NotFoundError(InsightsError):
    """Raised when a referenced document or insight does not exist."""
    pass


class ConflictError(InsightsError):
    """Raised when a generated identifier collides with an existing row."""
    pass
