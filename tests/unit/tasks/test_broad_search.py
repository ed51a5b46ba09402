"""Unit tests for throughline.tasks.broad_search."""
import asyncio

import pytest

from tests.conftest import FakeOracle, FakeSource, make_paper
from throughline.llm.base import OracleReply, ToolInvocation
from throughline.models.session import SessionContext
from throughline.tasks.broad_search import (
    SEARCH_TOOL,
    FixedQuerySearch,
    LLMQuerySearch,
    ToolCallingSearch,
    build_broad_search,
)
from throughline.tasks.relevance import RelevanceEngine
from throughline.utils.errors import APIError

FRONTIER = make_paper("front0000001", "Frontier Paper", 2019)


def _run(coro):
    return asyncio.run(coro)


def _search_call(query):
    return OracleReply(tool_invocations=[ToolInvocation(name="search_papers", arguments={"query": query})])


class TestFixedQuerySearch:
    def test_runs_every_query(self):
        source = FakeSource(
            search_results={
                "sparse attention": [make_paper("a00000000001", "Sparse")],
                "linear attention": [make_paper("b00000000001", "Linear")],
            }
        )
        search = FixedQuerySearch(source, ["sparse attention", "", "linear attention"])

        papers = _run(search.find(FRONTIER, "Theme", 2018))

        assert [p.title for p in papers] == ["Sparse", "Linear"]
        assert source.calls_to("search") == ["sparse attention", "linear attention"]

    def test_failed_query_yields_nothing(self):
        source = FakeSource(
            search_results={
                "broken": APIError("HTTP 500: error"),
                "working": [make_paper("a00000000001", "Found")],
            }
        )
        papers = _run(FixedQuerySearch(source, ["broken", "working"]).find(FRONTIER, "Theme", None))
        assert [p.title for p in papers] == ["Found"]


class TestLLMQuerySearch:
    def test_oracle_queries_drive_search(self):
        source = FakeSource(search_results={"mixture of experts": [make_paper("m00000000001", "MoE")]})
        oracle = FakeOracle(queries='["mixture of experts", "routing networks"]')
        relevance = RelevanceEngine(oracle, SessionContext(present_year=2024))

        papers = _run(LLMQuerySearch(source, relevance, query_count=2).find(FRONTIER, "Theme", 2018))

        assert [p.title for p in papers] == ["MoE"]
        assert source.calls_to("search") == ["mixture of experts", "routing networks"]
        assert "Propose 2 queries." in oracle.calls_of("queries")[0]


class TestToolCallingSearch:
    def test_runs_requested_searches_until_done(self):
        source = FakeSource(search_results={"sparse attention": [make_paper("a00000000001", "Sparse", 2020)]})
        oracle = FakeOracle(
            tool_replies=[_search_call("sparse attention"), OracleReply(text="That covers it.")]
        )

        papers = _run(ToolCallingSearch(source, oracle).find(FRONTIER, "Theme", 2018))

        assert [p.title for p in papers] == ["Sparse"]
        assert len(oracle.tool_calls) == 2
        second_round = oracle.tool_calls[1]
        assert [m.role for m in second_round] == ["user", "assistant", "tool"]
        assert '"Sparse" (2020), 10 citations' in second_round[2].content

    def test_round_limit(self):
        source = FakeSource()
        oracle = FakeOracle(tool_replies=[_search_call(f"query {i}") for i in range(5)])

        _run(ToolCallingSearch(source, oracle, max_rounds=2).find(FRONTIER, "Theme", None))

        assert source.calls_to("search") == ["query 0", "query 1"]

    def test_unknown_tool_and_missing_query(self):
        source = FakeSource()
        oracle = FakeOracle(
            tool_replies=[
                OracleReply(
                    tool_invocations=[
                        ToolInvocation(name="delete_everything", arguments={}),
                        ToolInvocation(name=SEARCH_TOOL.name, arguments={}),
                    ]
                )
            ]
        )

        papers = _run(ToolCallingSearch(source, oracle).find(FRONTIER, "Theme", None))

        assert papers == []
        results = [m.content for m in oracle.tool_calls[1] if m.role == "tool"]
        assert results == ["Unknown tool: delete_everything", "Missing required argument: query"]
        assert source.calls_to("search") == []


class TestBuildBroadSearch:
    @pytest.fixture
    def parts(self):
        oracle = FakeOracle()
        return FakeSource(), oracle, RelevanceEngine(oracle, SessionContext(present_year=2024))

    def test_modes(self, parts):
        source, oracle, relevance = parts
        assert build_broad_search("off", source, oracle, relevance) is None
        assert build_broad_search("none", source, oracle, relevance) is None
        assert isinstance(build_broad_search("llm", source, oracle, relevance), LLMQuerySearch)
        assert isinstance(build_broad_search("TOOLS", source, oracle, relevance), ToolCallingSearch)

    def test_fixed_mode_uses_given_queries(self, parts):
        source, oracle, relevance = parts
        search = build_broad_search("fixed", source, oracle, relevance, queries=["a", "b"])
        assert isinstance(search, FixedQuerySearch)
        assert search.queries == ["a", "b"]

    def test_unknown_mode(self, parts):
        source, oracle, relevance = parts
        with pytest.raises(ValueError, match="Unknown broad search mode"):
            build_broad_search("everything", source, oracle, relevance)
