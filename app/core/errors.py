"""
Application errors for clean API error handling.

Use ServiceUnavailableError when a dependency (vector store, embeddings, LLM)
is misconfigured or unreachable so the API can return 503 with a user-facing message.
The remaining errors mark the failure classes of a chat turn: transport faults talking
to the LLM, compaction faults, and vector search faults.
"""


class ServiceUnavailableError(Exception):
    """Raised when a required service (e.g. LLM, vector store) is unavailable or misconfigured."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class SessionNotFoundError(Exception):
    """Raised when a chat session does not exist or is not owned by the caller."""

    def __init__(self, uid: str) -> None:
        self.uid = uid
        super().__init__(f"session not found: {uid}")


class LLMTransportError(Exception):
    """Network or decoding failure talking to the LLM provider. Fatal to the current round."""


class CompactionError(Exception):
    """Summarization or persistence failure while compacting history. Chat proceeds uncompacted."""


class VectorSearchError(Exception):
    """Every step-down attempt of a similarity query failed."""
