"""Error types carrying the HTTP status the API layer reports for them"""

from typing import Optional


class IndexerError(Exception):
    """Base error with a numeric cause code"""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ClientError(IndexerError):
    """Malformed or unbound request (never retried)"""

    status_code = 400


class NotFoundError(IndexerError):
    """Unknown pair, unknown denom or no data"""

    status_code = 404


class RequestTimeoutError(IndexerError):
    """Waited too long for new data"""

    status_code = 408


class CacheGenerateTimeoutError(IndexerError):
    """A cache generation took longer than its timeout"""

    status_code = 500


class UpstreamError(Exception):
    """Upstream feed unreachable or returned an unexpected response"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
