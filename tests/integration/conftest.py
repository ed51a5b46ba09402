"""Fixtures for integration tests: full analysis sessions, no external I/O."""
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from tests.conftest import PRESENT_YEAR, make_paper  # noqa: E402
from throughline.tasks.analysis_session import AnalysisSession  # noqa: E402


@pytest.fixture
def make_session():
    """Build a session with broad search and pool clustering off by default."""

    def _make(source, oracle, **overrides):
        options = dict(
            broad_search_mode="off",
            enable_pool_clustering=False,
            present_year=PRESENT_YEAR,
        )
        options.update(overrides)
        return AnalysisSession(source, oracle, **options)

    return _make


@pytest.fixture
def lineage_papers():
    """Seed (2017) and three successors (2018, 2019, 2020)."""
    return {
        "seed": make_paper("seed000000001", "Seed Paper", 2017, citation_count=1000),
        "s2018": make_paper("succ00002018", "Successor 2018", 2018, citation_count=300),
        "s2019": make_paper("succ00002019", "Successor 2019", 2019, citation_count=200),
        "s2020": make_paper("succ00002020", "Successor 2020", 2020, citation_count=100),
    }
