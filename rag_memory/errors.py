"""Exception types raised by the knowledge store."""


class RagMemoryError(Exception):
    """Base class for all knowledge store errors."""


class NotFoundError(RagMemoryError):
    """A document, entity or chunk does not exist."""


class EntityExistsError(RagMemoryError):
    """An entity with the same name is already stored."""

    def __init__(self, name: str):
        super().__init__(f"Entity already exists: {name}")
        self.name = name


class EmbeddingUnavailableError(RagMemoryError):
    """No embedding provider is usable in this process."""


class ConfigurationError(RagMemoryError):
    """Invalid configuration value."""
