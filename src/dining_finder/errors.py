"""Error taxonomy shared by the storage, ETA, ranking and HTTP layers."""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence


class DiningError(RuntimeError):
    """Base class for failures that the HTTP edge knows how to report."""

    code = "internal_error"
    status_code = 500

    def to_payload(self) -> Dict[str, Any]:
        """JSON body written by the HTTP layer for this error."""
        return {"error": self.code, "details": str(self)}


class StorageUnavailable(DiningError):
    """Raised when the menu database cannot be reached or was never initialized."""

    code = "storage_unavailable"


class QueryError(DiningError):
    """Raised when the database rejects a menu query."""

    code = "query_error"


class MissingApiKey(DiningError):
    """Raised when an external API credential is not configured."""

    code = "missing_api_key"

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.code}


class MatrixError(DiningError):
    """Raised when the distance-matrix upstream fails or answers with an unexpected shape."""

    code = "matrix_error"

    def __init__(self, message: str, *, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    def to_payload(self) -> Dict[str, Any]:
        # message already embeds the upstream status, e.g. "matrix_http_503"
        return {"error": str(self)}


class RankingParseError(DiningError):
    """Raised when model output cannot be coerced into a list of ranked halls."""

    code = "ranking_parse_error"
    status_code = 502


class RankingUnavailable(DiningError):
    """Raised when every generative backend failed to produce a ranking."""

    code = "ranking_unavailable"
    status_code = 502

    def __init__(self, message: str, *, failures: Sequence[str] = ()):
        super().__init__(message)
        self.failures = list(failures)

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.code, "details": str(self), "failures": self.failures}


class InvalidRequest(DiningError):
    """Malformed client input. The message doubles as the wire error code."""

    code = "invalid_request"
    status_code = 400

    def to_payload(self) -> Dict[str, Any]:
        return {"error": str(self) or self.code}


class InvalidOrigin(InvalidRequest):
    code = "invalid_origin"


class HallNotFound(InvalidRequest):
    code = "hall_not_found"
    status_code = 404


class PayloadTooLarge(DiningError):
    code = "payload_too_large"
    status_code = 413

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.code}
