"""Custom exceptions for Throughline."""


class ThroughlineError(Exception):
    """Base exception for all analysis errors."""

    pass


class APIError(ThroughlineError):
    """Paper metadata request failed."""

    pass


class RateLimitError(APIError):
    """API rate limit exceeded."""

    pass


class PaperNotFoundError(APIError):
    """Paper could not be resolved to a stable identifier."""

    pass


class OracleError(ThroughlineError):
    """Language model call failed."""

    pass


class MissingCredentialError(OracleError):
    """Language model credential is not configured."""

    pass


class MalformedResponseError(ThroughlineError):
    """Model output could not be parsed even after cleanup."""

    pass


class RankingParseError(ThroughlineError):
    """Ranking response unparseable after one repair round-trip."""

    def __init__(self, message: str, raw_response: str, repair_response=None):
        super().__init__(message)
        self.raw_response = raw_response
        self.repair_response = repair_response


class AnalysisCancelled(Exception):
    """Analysis stopped by user.

    Deliberately not a ThroughlineError: handlers that absorb analysis
    failures must never absorb a cancellation.
    """

    def __init__(self, message: str = "Analysis stopped by user"):
        super().__init__(message)
