"""
Unit tests for throughline.utils.errors: exception hierarchy and messages (pytest).
"""
import pytest
from throughline.utils.errors import (
    ThroughlineError,
    APIError,
    RateLimitError,
    PaperNotFoundError,
    OracleError,
    MissingCredentialError,
    MalformedResponseError,
    RankingParseError,
    AnalysisCancelled,
)


def test_throughline_base():
    """ThroughlineError is base; others inherit from it."""
    e = ThroughlineError("base")
    assert str(e) == "base"
    assert isinstance(e, Exception)


def test_rate_limit_inherits_api():
    """RateLimitError inherits from APIError and ThroughlineError."""
    e = RateLimitError("429")
    assert isinstance(e, APIError)
    assert isinstance(e, ThroughlineError)
    assert str(e) == "429"


def test_paper_not_found_is_api_error():
    with pytest.raises(APIError) as exc_info:
        raise PaperNotFoundError('Could not find paper in Semantic Scholar: "X"')
    assert "Could not find paper" in str(exc_info.value)


def test_missing_credential_is_oracle_error():
    """A missing key is reported through the same channel as oracle failures."""
    e = MissingCredentialError("Gemini API key not set")
    assert isinstance(e, OracleError)
    assert isinstance(e, ThroughlineError)


def test_malformed_response_error():
    e = MalformedResponseError("Invalid JSON array")
    assert isinstance(e, ThroughlineError)
    assert not isinstance(e, OracleError)


def test_ranking_parse_error_carries_responses():
    """RankingParseError keeps both raw outputs for the decision log."""
    e = RankingParseError("Failed to parse", raw_response="[1, 2", repair_response="nope")
    assert str(e) == "Failed to parse"
    assert e.raw_response == "[1, 2"
    assert e.repair_response == "nope"
    assert isinstance(e, ThroughlineError)


def test_ranking_parse_error_without_repair_response():
    e = RankingParseError("Failed to parse", raw_response="garbage")
    assert e.repair_response is None


def test_analysis_cancelled_default_message():
    e = AnalysisCancelled()
    assert str(e) == "Analysis stopped by user"


def test_analysis_cancelled_not_absorbed_by_failure_handlers():
    """Handlers catching ThroughlineError must let a cancellation through."""
    assert not isinstance(AnalysisCancelled(), ThroughlineError)

    with pytest.raises(AnalysisCancelled):
        try:
            raise AnalysisCancelled()
        except ThroughlineError:
            pytest.fail("cancellation was absorbed")
