"""Error types raised by the RAG pipeline and the generation adapter."""


class KBChatError(Exception):
    """Base class for all kbchat errors."""


class ConfigurationError(KBChatError, ValueError):
    """Invalid configuration (chunk sizes, vector backend, ...)."""


class EmbeddingError(KBChatError):
    """The embedding service failed or returned a malformed response."""


class IngestionError(KBChatError):
    """Building the knowledge index failed."""


class RetrievalError(KBChatError):
    """Embedding or searching for a single query failed."""


class GenerationError(KBChatError):
    """The language model failed before or during streaming."""
