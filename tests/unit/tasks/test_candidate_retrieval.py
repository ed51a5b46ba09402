"""Unit tests for throughline.tasks.candidate_retrieval (CandidateRetriever)."""
import asyncio

import pytest

from tests.conftest import PRESENT_YEAR, FakeSource, make_paper
from throughline.models.session import SessionContext
from throughline.tasks.broad_search import FixedQuerySearch
from throughline.tasks.candidate_retrieval import CandidateRetriever, year_distribution
from throughline.utils.errors import APIError


def _run(coro):
    return asyncio.run(coro)


FRONTIER = make_paper(
    "front0000001",
    "Frontier Paper",
    2019,
    authors=[{"authorId": "11", "name": "First Author"}, {"authorId": "22", "name": "Last Author"}],
)


@pytest.fixture
def context():
    return SessionContext(present_year=PRESENT_YEAR)


def _retriever(source, context, **kwargs):
    options = dict(
        include_author_papers=False,
        grace_years=2,
        min_citations=5,
        year_lookback=2,
        ordering="chronological",
    )
    options.update(kwargs)
    return CandidateRetriever(source, context, **options)


def test_year_distribution():
    papers = [make_paper(year=2020), make_paper(year=2020), make_paper(year=None)]
    assert year_distribution(papers) == {"2020": 2, "unknown": 1}


class TestQualityFilter:
    def test_boundary(self, context):
        retriever = _retriever(FakeSource(), context)
        assert retriever.passes_quality(make_paper(year=2022, citation_count=0))
        assert not retriever.passes_quality(make_paper(year=2021, citation_count=4))
        assert retriever.passes_quality(make_paper(year=2021, citation_count=5))

    def test_unknown_year_treated_as_recent(self, context):
        retriever = _retriever(FakeSource(), context)
        assert retriever.passes_quality(make_paper(year=None, citation_count=0))


class TestEffectiveMinYear:
    def test_lookback_bounded_by_frontier(self, context):
        retriever = _retriever(FakeSource(), context)
        assert retriever.effective_min_year(2019, FRONTIER) == 2018
        assert retriever.effective_min_year(2023, FRONTIER) == 2021


class TestRetrieve:
    def test_merge_filter_and_chronological_order(self, context):
        shared = make_paper("shared000001", "Shared", 2021)
        source = FakeSource(
            citations={
                FRONTIER.paperId: [
                    make_paper("late00000001", "Late", 2023),
                    shared,
                    make_paper("old000000001", "Too Old", 2017, citation_count=500),
                    make_paper("noyear000001", "No Year", None),
                    make_paper("future000001", "Future", 2025),
                ]
            },
            recommendations={
                FRONTIER.paperId: [
                    shared.with_reason("duplicate"),
                    make_paper("edge00000001", "Edge", 2018),
                ]
            },
        )

        candidates = _run(_retriever(source, context).retrieve(FRONTIER, 2019))

        assert [p.title for p in candidates] == ["Edge", "Shared", "Late"]
        assert context.candidate_pool.source_of(shared) == "citations"
        assert context.candidate_pool.source_of(make_paper("edge00000001", "Edge")) == "recommendations"

    def test_claimed_papers_not_removed(self, context):
        paper = make_paper("claimed00001", "Claimed", 2020)
        context.claimed.add(paper)
        source = FakeSource(citations={FRONTIER.paperId: [paper]})

        candidates = _run(_retriever(source, context).retrieve(FRONTIER, 2019))

        assert [p.title for p in candidates] == ["Claimed"]

    def test_quality_filter_applied(self, context):
        source = FakeSource(
            citations={
                FRONTIER.paperId: [
                    make_paper("weak00000001", "Weak", 2020, citation_count=1),
                    make_paper("fresh0000001", "Fresh", 2023, citation_count=0),
                ]
            }
        )
        candidates = _run(_retriever(source, context).retrieve(FRONTIER, 2019))
        assert [p.title for p in candidates] == ["Fresh"]

    def test_scored_ordering_with_cap(self, context):
        source = FakeSource(
            citations={
                FRONTIER.paperId: [
                    make_paper("a00000000001", "Classic", 2019, citation_count=250),
                    make_paper("b00000000001", "Recent", 2023, citation_count=60),
                    make_paper("c00000000001", "Middling", 2020, citation_count=100),
                ]
            }
        )
        retriever = _retriever(source, context, ordering="scored", scored_cap=2)

        candidates = _run(retriever.retrieve(FRONTIER, 2019))

        # Recent: 60 + 100 * 2 = 260, Classic: 250, Middling: 100
        assert [p.title for p in candidates] == ["Recent", "Classic"]

    def test_unknown_ordering_rejected(self, context):
        with pytest.raises(ValueError, match="Unknown candidate ordering"):
            _retriever(FakeSource(), context, ordering="random")

    def test_citation_failure_propagates(self, context):
        source = FakeSource(citations={FRONTIER.paperId: APIError("HTTP 500: error")})
        with pytest.raises(APIError):
            _run(_retriever(source, context).retrieve(FRONTIER, 2019))

    def test_recommendation_failure_tolerated_with_citations(self, context):
        source = FakeSource(
            citations={FRONTIER.paperId: [make_paper("cite00000001", "Citing", 2020)]},
            recommendations={FRONTIER.paperId: APIError("HTTP 404: not found")},
        )
        candidates = _run(_retriever(source, context).retrieve(FRONTIER, 2019))
        assert [p.title for p in candidates] == ["Citing"]

    def test_recommendation_failure_without_citations_raises(self, context):
        source = FakeSource(recommendations={FRONTIER.paperId: APIError("HTTP 404: not found")})
        with pytest.raises(APIError):
            _run(_retriever(source, context).retrieve(FRONTIER, 2019))

    def test_broad_search_only_on_first_expansion(self, context):
        source = FakeSource(
            search_results={"sparse attention": [make_paper("broad0000001", "Broad Hit", 2021)]}
        )
        retriever = _retriever(
            source, context, broad_search=FixedQuerySearch(source, ["sparse attention"])
        )

        first = _run(retriever.retrieve(FRONTIER, 2019, first_expansion=True, theme="Attention"))
        later = _run(retriever.retrieve(FRONTIER, 2019))

        assert [p.title for p in first] == ["Broad Hit"]
        assert later == []
        assert source.calls_to("search") == ["sparse attention"]
        assert context.candidate_pool.source_of(first[0]) == "broader_search"

    def test_author_follow_up(self, context):
        source = FakeSource(
            author_papers={
                "11": [make_paper("auth00000001", "By First", 2020)],
                "22": APIError("HTTP 429"),
            }
        )
        retriever = _retriever(source, context, include_author_papers=True)

        candidates = _run(retriever.retrieve(FRONTIER, 2019))

        assert [p.title for p in candidates] == ["By First"]
        assert source.calls_to("author_papers") == ["11", "22"]

    def test_logs_search_decision(self, context):
        source = FakeSource(citations={FRONTIER.paperId: [make_paper("cite00000001", "Citing", 2020)]})

        _run(_retriever(source, context).retrieve(FRONTIER, 2019))

        node = context.decision_log.of_type("search")[-1]
        assert node.data["minYear"] == 2018
        assert node.data["afterYearFilter"] == 1
        assert node.data["searchPaper"] == "Frontier Paper"
