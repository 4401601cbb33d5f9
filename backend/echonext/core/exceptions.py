"""Error taxonomy for the prediction service."""


class EchoNextError(Exception):
    """Base exception for EchoNext errors."""

    pass


class EmbeddingServiceError(EchoNextError):
    """Network, auth, or quota failure from the embedding service."""

    pass


class CompletionServiceError(EchoNextError):
    """Network, auth, or quota failure from the completion service."""

    pass


class KnowledgeBaseError(EchoNextError):
    """Base exception for knowledge base errors."""

    pass


class KnowledgeBaseNotFoundError(KnowledgeBaseError):
    """Requested knowledge base file does not exist."""

    pass


class KnowledgeBaseParseError(KnowledgeBaseError):
    """Knowledge base file content is malformed."""

    pass


class DimensionMismatchError(KnowledgeBaseError):
    """Embedding dimensionality differs from the knowledge base's."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Expected {expected}-dim embedding, got {actual}-dim")
        self.expected = expected
        self.actual = actual
