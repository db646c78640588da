"""Error types surfaced by the docsearch server."""

from enum import Enum
from typing import Any, Dict


class ErrorCode(str, Enum):
    """Closed set of query-time failures."""
    INVALID_QUERY = "invalid_query"
    CORRUPT_DOCUMENT = "corrupt_document"
    EMBEDDING_FAILED = "embedding_failed"
    INDEX_UNAVAILABLE = "index_unavailable"


HTTP_STATUS = {
    ErrorCode.INVALID_QUERY: 400,
    ErrorCode.CORRUPT_DOCUMENT: 500,
    ErrorCode.EMBEDDING_FAILED: 503,
    ErrorCode.INDEX_UNAVAILABLE: 503,
}


class SearchError(Exception):
    """A search request failed; ``code`` says why."""

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.code]

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code.value, "detail": self.message}


class StartupError(RuntimeError):
    """A required artifact or component could not be prepared before serving."""
