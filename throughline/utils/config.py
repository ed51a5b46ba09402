"""Configuration management using Pydantic settings."""

from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings


# ========================================
# Pydantic Settings (from .env)
# ========================================

class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Semantic Scholar
    semantic_scholar_api_key: str = ""
    semantic_scholar_base_url: str = "https://api.semanticscholar.org/graph/v1"
    semantic_scholar_recommendations_url: str = (
        "https://api.semanticscholar.org/recommendations/v1"
    )
    semantic_scholar_request_timeout: int = 30
    semantic_scholar_delay: float = 1.0
    semantic_scholar_retry_budget: float = 20.0
    semantic_scholar_max_attempts: int = 8
    semantic_scholar_backoff_base: float = 1.0
    semantic_scholar_backoff_cap: float = 5.0
    semantic_scholar_slowdown_step: float = 0.5
    semantic_scholar_slowdown_cap: float = 3.0
    citation_page_size: int = 100

    # Response cache
    cache_backend: str = "disk"
    cache_dir: str = ".throughline_cache"
    cache_ttl: int = 604800

    # Redis settings (cache_backend=redis)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: str = ""

    # Gemini settings
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    gemini_temperature: float = 0.3
    gemini_max_output_tokens: int = 8192
    oracle_max_attempts: int = 3
    oracle_retry_delay: float = 2.0

    # Expansion limits
    max_threads: int = 10
    max_papers_per_thread: int = 20
    max_papers_per_iteration: int = 5
    max_papers_per_year: int = 3
    selection_window: int = 10
    selection_fallback_count: int = 3

    # Candidate retrieval
    quality_grace_years: int = 2
    quality_min_citations: int = 5
    year_lookback: int = 2
    candidate_ordering: str = "chronological"
    scored_candidate_cap: int = 50
    broad_search_mode: str = "llm"
    broad_search_queries: List[str] = []
    broad_search_results_per_query: int = 25
    include_author_papers: bool = False

    # Candidate pool post-pass
    enable_pool_clustering: bool = True
    pool_min_size: int = 10
    pool_max_threads: int = 2

    # Free-text override for the lineage definition used in prompts
    clustering_criteria: Optional[str] = None

    # Monitoring
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()


# ========================================
# Paths
# ========================================

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent  # throughline/utils/config.py -> project root
OUTPUT_DIR = _PROJECT_ROOT / "outputs"

RESULTS_FILE: str = str(OUTPUT_DIR / "throughline-results.json")
DEBUG_TREE_FILE: str = str(OUTPUT_DIR / "throughline-debug-tree.txt")
LOG_FILE: str = str(OUTPUT_DIR / "throughline.log")
